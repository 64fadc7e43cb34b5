from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
socketio = SocketIO(async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from whiteflag.main import main
    flask_app.register_blueprint(main)

    from whiteflag.api.protection import protection
    flask_app.register_blueprint(protection, url_prefix='/api/protection')

    from whiteflag.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    # One engine per process; run.py reconciles before serving, the first
    # request does it when the app is served some other way
    from whiteflag.services.protection import init_engine, ensure_reconciled, Unavailable
    init_engine(flask_app)

    @flask_app.before_request
    def reconcile_on_first_request():
        if not flask_app.config.get('RECONCILE_ON_REQUEST', True):
            return
        try:
            ensure_reconciled(flask_app)
        except Unavailable as exc:
            # Commands keep answering 503 until a later request gets through
            flask_app.logger.error(f"[reconcile] deferred: {exc.message}")

    from whiteflag.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @click.command('create-user')
    @click.argument('username')
    @click.argument('password')
    @click.option('--admin', is_flag=True, help='Grant moderation rights.')
    def create_user_command(username, password, admin):
        """Creates a user account, optionally with admin rights."""
        with flask_app.app_context():
            if User.query.filter_by(username=username).first():
                raise click.ClickException(f'User {username} already exists')
            user = User(username=username, is_admin=admin)
            user.set_password(password)
            db.session.add(user)
            db.session.commit()
            click.echo(f"Created {'admin' if admin else 'user'} {username}")

    flask_app.cli.add_command(create_user_command)

    return flask_app
