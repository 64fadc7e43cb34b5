"""add warned_at markers and bounty announce ref to protection_request

Revision ID: 5c2e9f03d4aa
Revises: 1a7c0e52b9d1
Create Date: 2026-09-10 18:30:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c2e9f03d4aa'
down_revision = '1a7c0e52b9d1'
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    cols = {c['name'] for c in insp.get_columns('protection_request')}
    with op.batch_alter_table('protection_request') as batch_op:
        if 'warned_at' not in cols:
            batch_op.add_column(sa.Column('warned_at', sa.BigInteger(), nullable=True))
        if 'bounty_warned_at' not in cols:
            batch_op.add_column(sa.Column('bounty_warned_at', sa.BigInteger(), nullable=True))
        if 'bounty_announce_ref' not in cols:
            batch_op.add_column(sa.Column('bounty_announce_ref', sa.String(length=128), nullable=True))


def downgrade():
    with op.batch_alter_table('protection_request') as batch_op:
        batch_op.drop_column('bounty_announce_ref')
        batch_op.drop_column('bounty_warned_at')
        batch_op.drop_column('warned_at')
