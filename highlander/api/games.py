from datetime import datetime

from flask import Blueprint, jsonify, request, current_app
from flask_login import current_user, login_required
from highlander import db
from highlander.models import Game, Ticket, TeamSelection, User
from highlander.routes import admin_required
from highlander.socketio_events import broadcast_state
from highlander.services.rounds import EngineConfig, HighlanderError
from highlander.services.rounds.deadlines import lock_round, set_deadline, utcnow
from highlander.services.rounds.evaluator import activate_game
from highlander.services.rounds.lifecycle import resolve_and_advance
from highlander.services.rounds.selection import submit_selection
from highlander.services.rounds.status import sort_by_status, ticket_status_payload
from highlander.services.rounds.tickets import issue_tickets


games = Blueprint('games', __name__)


def _engine_config() -> EngineConfig:
    return EngineConfig.from_mapping(current_app.config)


def parse_timestamp(raw):
    """ISO-8601 string -> datetime; ``None`` when missing or malformed."""
    if not raw or not isinstance(raw, str):
        return None
    try:
        return datetime.fromisoformat(raw.replace('Z', '+00:00'))
    except ValueError:
        return None


@games.errorhandler(HighlanderError)
def handle_engine_error(exc):
    return jsonify(exc.to_dict()), exc.status_code


@games.route('/games', methods=['POST'])
@admin_required
def create_game():
    data = request.get_json(silent=True) or {}
    name = (data.get('name') or '').strip()
    start_round = data.get('start_round')
    if not name or start_round is None:
        return jsonify({'error': 'Game name and start_round are required'}), 400
    try:
        start_round = int(start_round)
    except (TypeError, ValueError):
        return jsonify({'error': 'start_round must be an integer'}), 400
    config = _engine_config()
    if not 1 <= start_round <= config.season_last_matchday:
        return jsonify({'error': f'start_round must be between 1 and {config.season_last_matchday}'}), 400

    new_game = Game(
        name=name,
        description=data.get('description'),
        start_round=start_round,
        created_by=current_user.id,
    )
    db.session.add(new_game)
    db.session.commit()
    current_app.logger.info(f"[game-created] game={new_game.id} start_round={start_round}")
    return jsonify(new_game.to_dict()), 201


@games.route('/games', methods=['GET'])
@login_required
def list_games():
    if current_user.is_admin:
        rows = Game.query.order_by(Game.id.desc()).all()
    else:
        rows = (
            Game.query.join(Ticket, Ticket.game_id == Game.id)
            .filter(Ticket.owner_id == current_user.id)
            .distinct()
            .order_by(Game.id.desc())
            .all()
        )
    return jsonify([g.to_dict() for g in rows])


@games.route('/games/<int:game_id>', methods=['GET'])
def get_game_state(game_id):
    game = db.get_or_404(Game, game_id)
    payload = game.to_dict()
    payload['final_round'] = _engine_config().final_round(game.start_round)
    return jsonify(payload)


@games.route('/games/<int:game_id>/activate', methods=['POST'])
@admin_required
def activate(game_id):
    game = db.get_or_404(Game, game_id)
    data = request.get_json(silent=True) or {}
    deadline = None
    if data.get('deadline') is not None:
        deadline = parse_timestamp(data.get('deadline'))
        if deadline is None:
            return jsonify({'error': 'deadline must be an ISO-8601 timestamp'}), 400
    activate_game(game, utcnow(), _engine_config(), deadline=deadline)
    broadcast_state(game)
    return jsonify(game.to_dict())


@games.route('/games/<int:game_id>/deadline', methods=['POST'])
@admin_required
def update_deadline(game_id):
    game = db.get_or_404(Game, game_id)
    data = request.get_json(silent=True) or {}
    deadline = parse_timestamp(data.get('deadline'))
    if deadline is None:
        return jsonify({'error': 'deadline must be an ISO-8601 timestamp'}), 400
    set_deadline(game, deadline, utcnow(), _engine_config())
    broadcast_state(game)
    return jsonify(game.to_dict())


@games.route('/games/<int:game_id>/lock', methods=['POST'])
@admin_required
def lock_selections(game_id):
    game = db.get_or_404(Game, game_id)
    entry = lock_round(game, utcnow(), _engine_config(), trigger='admin')
    if entry is None:
        return jsonify({'error': 'Selections are not open for this game'}), 409
    broadcast_state(game)
    return jsonify(game.to_dict())


@games.route('/games/<int:game_id>/rounds/<int:round_number>/resolve', methods=['POST'])
@admin_required
def resolve(game_id, round_number):
    game = db.get_or_404(Game, game_id)
    outcome = resolve_and_advance(game, round_number, _engine_config(), now=utcnow())
    if not outcome.already_resolved:
        broadcast_state(game)
    return jsonify(outcome.to_dict())


@games.route('/games/<int:game_id>/tickets', methods=['POST'])
@admin_required
def assign_tickets(game_id):
    game = db.get_or_404(Game, game_id)
    data = request.get_json(silent=True) or {}
    owner = db.session.get(User, data.get('user_id')) if data.get('user_id') else None
    if owner is None:
        return jsonify({'error': 'User not found'}), 404
    if owner.is_admin:
        return jsonify({'error': 'Cannot assign tickets to admin users'}), 400
    try:
        count = int(data.get('count', 1))
    except (TypeError, ValueError):
        return jsonify({'error': 'count must be an integer'}), 400
    try:
        tickets = issue_tickets(game, owner, count, _engine_config())
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400
    broadcast_state(game)
    return jsonify([t.to_dict() for t in tickets]), 201


@games.route('/games/<int:game_id>/tickets', methods=['GET'])
@login_required
def list_tickets(game_id):
    game = db.get_or_404(Game, game_id)
    query = Ticket.query.filter_by(game_id=game.id)
    if not current_user.is_admin:
        query = query.filter_by(owner_id=current_user.id)
    rows = []
    for ticket in sort_by_status(query.all(), game):
        item = ticket.to_dict()
        item.update(ticket_status_payload(ticket, game))
        rows.append(item)
    return jsonify(rows)


@games.route('/tickets/<int:ticket_id>/selections', methods=['POST'])
@login_required
def create_selection(ticket_id):
    ticket = db.get_or_404(Ticket, ticket_id)
    if ticket.owner_id != current_user.id:
        return jsonify({'error': 'Not your ticket'}), 403
    data = request.get_json(silent=True) or {}
    team_id = data.get('team_id')
    round_number = data.get('round')
    try:
        team_id = int(team_id)
        round_number = int(round_number) if round_number is not None else None
    except (TypeError, ValueError):
        return jsonify({'error': 'team_id (and round, if given) must be integers'}), 400

    selection = submit_selection(ticket, team_id, utcnow(), round_number=round_number)
    return jsonify(selection.to_dict())


@games.route('/tickets/<int:ticket_id>/selections', methods=['GET'])
@login_required
def list_selections(ticket_id):
    ticket = db.get_or_404(Ticket, ticket_id)
    if ticket.owner_id != current_user.id and not current_user.is_admin:
        return jsonify({'error': 'Access denied'}), 403
    rows = TeamSelection.query.filter_by(ticket_id=ticket.id).order_by(TeamSelection.round).all()
    return jsonify([s.to_dict() for s in rows])


@games.route('/tickets/<int:ticket_id>/status', methods=['GET'])
def get_ticket_status(ticket_id):
    ticket = db.get_or_404(Ticket, ticket_id)
    return jsonify(ticket_status_payload(ticket, ticket.game))
