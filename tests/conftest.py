import os
import sys
import pytest

# Ensure the project root (containing the `stifle` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from stifle import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SYNC_MAX_BATCH = 50
    SYNC_MAX_NEW_EVENTS = 5
    SYNC_MAX_EVENT_AGE_DAYS = 7
    SYNC_MAX_CLOCK_SKEW_MS = 60_000
    SYNC_CHECKPOINT_OVERLAP_MS = 300_000
    EVENT_RETENTION_DAYS = 14
    DEFAULT_TIMEZONE = 'UTC'


MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import stifle.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def user(flask_app):
    from stifle.models import User
    u = User(username='alice', timezone='UTC')
    db.session.add(u)
    db.session.commit()
    return u


@pytest.fixture()
def auth_headers(user):
    return {'Authorization': f'Bearer {user.api_token}'}


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass
