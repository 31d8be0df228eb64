from flask import Flask, jsonify
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
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from highlander.routes import main
    flask_app.register_blueprint(main)

    from highlander.api.games import games
    flask_app.register_blueprint(games, url_prefix='/api')

    from highlander.api.matches import matches
    flask_app.register_blueprint(matches, url_prefix='/api')

    from highlander.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    # Flask-Login user loader
    from highlander.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Authentication required'}), 401

    register_cli(flask_app)

    from highlander.services.rounds.scheduler import start_deadline_sweeper
    start_deadline_sweeper(flask_app)

    return flask_app


def register_cli(flask_app):
    from highlander.models import Game, User
    from highlander.services.rounds import EngineConfig, HighlanderError
    from highlander.services.rounds.deadlines import utcnow
    from highlander.services.rounds.fixtures import seed_teams
    from highlander.services.rounds.lifecycle import resolve_and_advance
    from highlander.services.rounds.scheduler import run_deadline_sweep

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            seed_teams()
            admin = User(username='admin', is_admin=True)
            admin.set_password('password')
            db.session.add(admin)
            for u in ['player1', 'player2', 'player3']:
                user = User(username=u)
                user.set_password('password')
                db.session.add(user)

            db.session.commit()
            print('Database has been reset and seeded!')

    @click.command('seed-teams')
    def seed_teams_command():
        """Inserts the league teams that are missing."""
        with flask_app.app_context():
            print(f'Added {seed_teams()} teams')

    @click.command('create-admin')
    @click.argument('username')
    @click.password_option()
    def create_admin_command(username, password):
        """Creates an admin account (or promotes an existing one)."""
        with flask_app.app_context():
            user = User.query.filter_by(username=username).first()
            if user is None:
                user = User(username=username)
            user.is_admin = True
            user.set_password(password)
            db.session.add(user)
            db.session.commit()
            print(f'Admin {username} ready')

    @click.command('sweep-deadlines')
    def sweep_deadlines_command():
        """Locks every round whose selection deadline has passed (cron entry point)."""
        results = run_deadline_sweep(flask_app)
        locked = [r['game_id'] for r in results if r['action'] == 'locked']
        print(f'Checked {len(results)} games, locked {locked}')

    @click.command('resolve-round')
    @click.argument('game_id', type=int)
    @click.argument('round_number', type=int)
    def resolve_round_command(game_id, round_number):
        """Resolves a locked round from the stored match results (cron entry point)."""
        with flask_app.app_context():
            game = db.session.get(Game, game_id)
            if game is None:
                raise click.ClickException(f'Game {game_id} not found')
            config = EngineConfig.from_mapping(flask_app.config)
            try:
                outcome = resolve_and_advance(game, round_number, config, now=utcnow())
            except HighlanderError as exc:
                raise click.ClickException(f'{exc.code}: {exc.message}')
            print(
                f'Round {round_number}: eliminated={len(outcome.eliminated)} '
                f'survivors={len(outcome.survivors)} game={outcome.game_status}'
            )

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(seed_teams_command)
    flask_app.cli.add_command(create_admin_command)
    flask_app.cli.add_command(sweep_deadlines_command)
    flask_app.cli.add_command(resolve_round_command)
