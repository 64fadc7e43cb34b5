"""create user, protection_request and claim tables

Revision ID: 1a7c0e52b9d1
Revises:
Create Date: 2026-09-02 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '1a7c0e52b9d1'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'user',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('password_hash', sa.String(length=256), nullable=False),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index('ix_user_username', 'user', ['username'], unique=True)

    op.create_table(
        'protection_request',
        sa.Column('id', sa.String(length=16), primary_key=True),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('tribe_key', sa.String(length=128), nullable=False),
        sa.Column('tribe_name', sa.String(length=128), nullable=False),
        sa.Column('ign', sa.String(length=128), nullable=True),
        sa.Column('server_type', sa.String(length=64), nullable=True),
        sa.Column('map', sa.String(length=128), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('requested_by', sa.String(length=64), nullable=False),
        sa.Column('requested_at', sa.BigInteger(), nullable=False),
        sa.Column('approved_by', sa.String(length=64), nullable=True),
        sa.Column('approved_at', sa.BigInteger(), nullable=True),
        sa.Column('denied_by', sa.String(length=64), nullable=True),
        sa.Column('denied_at', sa.BigInteger(), nullable=True),
        sa.Column('expired_at', sa.BigInteger(), nullable=True),
        sa.Column('ended_early_by', sa.String(length=64), nullable=True),
        sa.Column('ended_early_at', sa.BigInteger(), nullable=True),
        sa.Column('end_reason', sa.Text(), nullable=True),
        sa.Column('bounty_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('bounty_started_at', sa.BigInteger(), nullable=True),
        sa.Column('bounty_ends_at', sa.BigInteger(), nullable=True),
        sa.Column('bounty_started_by', sa.String(length=64), nullable=True),
        sa.Column('bounty_reason', sa.Text(), nullable=True),
        sa.Column('bounty_locked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('bounty_locked_by_claim_id', sa.String(length=16), nullable=True),
        sa.Column('bounty_claimed_at', sa.BigInteger(), nullable=True),
        sa.Column('bounty_claimed_by', sa.String(length=64), nullable=True),
        sa.Column('bounty_removed_at', sa.BigInteger(), nullable=True),
        sa.Column('bounty_removed_by', sa.String(length=64), nullable=True),
        sa.Column('bounty_expired_at', sa.BigInteger(), nullable=True),
    )
    op.create_index('ix_protection_request_status', 'protection_request', ['status'])
    op.create_index('ix_protection_request_tribe_key', 'protection_request', ['tribe_key'])
    op.create_index('ix_protection_request_requested_by', 'protection_request', ['requested_by'])

    op.create_table(
        'claim',
        sa.Column('id', sa.String(length=16), primary_key=True),
        sa.Column('bounty_record_id', sa.String(length=16), sa.ForeignKey('protection_request.id'), nullable=False),
        sa.Column('tribe_key', sa.String(length=128), nullable=False),
        sa.Column('submitted_by', sa.String(length=64), nullable=False),
        sa.Column('submitted_at', sa.BigInteger(), nullable=False),
        sa.Column('claimant_tag', sa.String(length=128), nullable=False),
        sa.Column('target_tag', sa.String(length=128), nullable=False),
        sa.Column('proof', sa.Text(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('approved_by', sa.String(length=64), nullable=True),
        sa.Column('approved_at', sa.BigInteger(), nullable=True),
        sa.Column('denied_by', sa.String(length=64), nullable=True),
        sa.Column('denied_at', sa.BigInteger(), nullable=True),
    )
    op.create_index('ix_claim_bounty_record_id', 'claim', ['bounty_record_id'])
    op.create_index('ix_claim_status', 'claim', ['status'])


def downgrade():
    op.drop_table('claim')
    op.drop_table('protection_request')
    op.drop_index('ix_user_username', table_name='user')
    op.drop_table('user')
