import os
import sys
from datetime import datetime, timedelta, timezone

import pytest
from flask import g

# Ensure the project root (containing the `highlander` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from highlander import create_app, db, socketio
from highlander.models import Game, Team, Ticket, User
from highlander.services.rounds import EngineConfig
from highlander.services.rounds.evaluator import activate_game
from highlander.services.rounds.fixtures import record_result, register_fixture, seed_teams


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    DEADLINE_SWEEP_INTERVAL_SEC = 0


NOW = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)

    # Requests reuse the fixture's app context, so drop the user Flask-Login
    # cached in `g` and let each test client's session cookie decide.
    @application.before_request
    def reset_login_cache():
        g.pop('_login_user', None)

    with application.app_context():
        db.create_all()
        seed_teams()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    if test_client.is_connected('/ws'):
        test_client.disconnect(namespace='/ws')


@pytest.fixture()
def now():
    return NOW


@pytest.fixture()
def config(flask_app):
    return EngineConfig.from_mapping(flask_app.config)


@pytest.fixture()
def team(flask_app):
    """Team id by three-letter code."""
    def lookup(code):
        return Team.query.filter_by(code=code).one().id
    return lookup


@pytest.fixture()
def make_user(flask_app):
    def factory(username, password='password', is_admin=False):
        user = User(username=username, is_admin=is_admin)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user
    return factory


@pytest.fixture()
def player(make_user):
    return make_user('player1')


@pytest.fixture()
def admin_client(flask_app, make_user):
    make_user('admin', is_admin=True)
    admin = flask_app.test_client()
    res = admin.post('/login', json={'username': 'admin', 'password': 'password'})
    assert res.status_code == 200
    return admin


@pytest.fixture()
def player_client(flask_app, player):
    c = flask_app.test_client()
    res = c.post('/login', json={'username': player.username, 'password': 'password'})
    assert res.status_code == 200
    return c


@pytest.fixture()
def make_game(flask_app, player):
    """Game in registration with ``tickets`` tickets owned by ``player``."""
    def factory(start_round=1, tickets=2, owner=None):
        owner = owner or player
        game = Game(name='Highlander', start_round=start_round)
        db.session.add(game)
        db.session.commit()
        issued = [Ticket(game_id=game.id, owner_id=owner.id, is_active=True) for _ in range(tickets)]
        db.session.add_all(issued)
        db.session.commit()
        return game, issued
    return factory


@pytest.fixture()
def open_game(config, now):
    """Activate ``game`` with a deadline one hour after ``now``."""
    def factory(game, deadline=None):
        return activate_game(game, now, config, deadline=deadline or now + timedelta(hours=1))
    return factory


@pytest.fixture()
def schedule(team):
    """Register fixtures for a round from (home_code, away_code) pairs."""
    def factory(round_number, pairs):
        return [register_fixture(round_number, team(h), team(a)) for h, a in pairs]
    return factory


@pytest.fixture()
def play():
    def factory(match, home_score, away_score):
        return record_result(match, home_score, away_score)
    return factory
