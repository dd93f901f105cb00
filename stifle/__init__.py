from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
login_manager = LoginManager()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:5174",
    "http://127.0.0.1:5174",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Import and register blueprints here
    from stifle.main import main
    flask_app.register_blueprint(main)

    from stifle.api.events import events
    flask_app.register_blueprint(events, url_prefix='/api/events')

    from stifle.api.scores import scores
    flask_app.register_blueprint(scores, url_prefix='/api/scores')

    # Register Socket.IO event handlers
    from stifle.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    # Devices authenticate with a bearer token issued by the account service
    from stifle.models import User

    @login_manager.request_loader
    def load_user_from_request(req):
        header = req.headers.get('Authorization', '')
        scheme, _, token = header.partition(' ')
        if scheme.lower() != 'bearer' or not token:
            return None
        return User.query.filter_by(api_token=token.strip()).first()

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Authentication required'}), 401

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            # Seed users
            for name in ['testuser1', 'testuser2', 'testuser3']:
                user = User(username=name, timezone=flask_app.config.get('DEFAULT_TIMEZONE', 'UTC'))
                db.session.add(user)
                db.session.flush()
                click.echo(f'{user.username}: {user.api_token}')

            db.session.commit()
            click.echo('Database has been reset and seeded!')

    @click.command('create-user')
    @click.argument('username')
    @click.option('--timezone', 'tz_name', default=None, help='IANA timezone, e.g. Europe/Berlin')
    def create_user_command(username, tz_name):
        """Creates a user and prints its API token."""
        with flask_app.app_context():
            if User.query.filter_by(username=username).first():
                raise click.ClickException(f'Username {username} already exists')
            user = User(username=username, timezone=tz_name or flask_app.config.get('DEFAULT_TIMEZONE', 'UTC'))
            db.session.add(user)
            db.session.commit()
            click.echo(user.api_token)

    @click.command('purge-events')
    @click.option('--days', type=int, default=None, help='Retention window; defaults to EVENT_RETENTION_DAYS')
    def purge_events_command(days):
        """Deletes raw events older than the retention window."""
        from stifle.services.events.cleanup import cleanup_old_events
        with flask_app.app_context():
            deleted = cleanup_old_events(days)
            click.echo(f'Deleted {deleted} old events')

    @click.command('recalculate-scores')
    @click.option('--week-start', default=None, help='Any date in the week (YYYY-MM-DD); defaults to the current week')
    def recalculate_scores_command(week_start):
        """Recomputes weekly scores for every user."""
        from datetime import date
        from stifle.services.scoring.weekly import update_weekly_score
        with flask_app.app_context():
            week = None
            if week_start:
                day = date.fromisoformat(week_start)
                week = date.fromordinal(day.toordinal() - day.weekday())
            users = User.query.all()
            for user in users:
                update_weekly_score(user, week)
            click.echo(f'Recalculated scores for {len(users)} users')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(create_user_command)
    flask_app.cli.add_command(purge_events_command)
    flask_app.cli.add_command(recalculate_scores_command)

    return flask_app
