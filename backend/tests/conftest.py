import os
import sys
import types
import pytest

# Ensure the backend root (containing the `triad` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from triad import create_app, db, socketio
from triad.errors import OracleError
from triad.services.oracle import OracleClient


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    BCRYPT_LOG_ROUNDS = 4
    LOG_LEVEL = 'DEBUG'
    CORS_ORIGINS = ['http://localhost:3000']
    MAX_ROUNDS = 3
    MAX_ROUNDS_LIMIT = 10
    DISCUSSION_DURATION_SEC = 0
    MESSAGE_HISTORY_LIMIT = 100
    MAX_MESSAGE_LENGTH = 500
    OPENAI_API_KEY = None
    OPENAI_MODEL = 'gpt-4o-mini'
    ORACLE_TIMEOUT_SEC = 5


class StubOracle(OracleClient):
    """Oracle that answers from a queue of canned model replies."""

    def __init__(self):
        super().__init__(api_key='test-key')
        self.replies = []
        self.prompts = []

    def queue(self, *replies):
        self.replies.extend(replies)

    def complete(self, prompt, temperature=0.8):
        self.prompts.append(prompt)
        if not self.replies:
            raise OracleError('no stub reply queued')
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import triad.models  # noqa: F401
        db.create_all()
    # No app context stays pushed: each request gets its own `g`, so
    # Flask-Login does not leak one client's user into the next request.
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def oracle(flask_app):
    stub = StubOracle()
    flask_app.extensions['oracle'] = stub
    return stub


def signup(flask_app, username, password='password'):
    """Register ``username`` and return a test client logged in as them."""
    test_client = flask_app.test_client()
    res = test_client.post('/api/auth/signup', json={
        'username': username,
        'email': f'{username}@example.com',
        'password': password,
    })
    assert res.status_code == 201, res.get_json()
    test_client.user = res.get_json()['user']
    return test_client


@pytest.fixture()
def users(flask_app):
    return types.SimpleNamespace(
        judge=signup(flask_app, 'judy'),
        alice=signup(flask_app, 'alice'),
        bob=signup(flask_app, 'bob'),
    )


@pytest.fixture()
def human_table(users):
    """A human-judged game with all three seats filled (round 1, subject-selection)."""
    created = users.judge.post('/api/games', json={'name': 'Friday Trial', 'max_rounds': 2}).get_json()
    game_id = created['id']
    assert users.alice.post(f'/api/games/{game_id}/join').status_code == 200
    assert users.bob.post(f'/api/games/{game_id}/join').status_code == 200
    return types.SimpleNamespace(id=game_id, judge=users.judge, alice=users.alice, bob=users.bob)


@pytest.fixture()
def ai_table(users):
    """An AI-judged game with both player seats filled."""
    created = users.alice.post('/api/games', json={'judge_type': 'ai', 'max_rounds': 1}).get_json()
    game_id = created['id']
    assert users.bob.post(f'/api/games/{game_id}/join').status_code == 200
    return types.SimpleNamespace(id=game_id, alice=users.alice, bob=users.bob, outsider=users.judge)


@pytest.fixture()
def sio_client(flask_app, users):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=users.alice,
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass
