from flask import Blueprint, jsonify, request, current_app
from highlander import db
from highlander.models import Match, Team
from highlander.routes import admin_required
from highlander.api.games import parse_timestamp
from highlander.services.rounds.fixtures import record_result, register_fixture


matches = Blueprint('matches', __name__)


@matches.route('/teams', methods=['GET'])
def list_teams():
    return jsonify([t.to_dict() for t in Team.query.order_by(Team.name).all()])


@matches.route('/matches/<int:round_number>', methods=['GET'])
def list_round_matches(round_number):
    rows = Match.query.filter_by(round=round_number).order_by(Match.id).all()
    return jsonify([m.to_dict() for m in rows])


@matches.route('/matches', methods=['POST'])
@admin_required
def create_match():
    data = request.get_json(silent=True) or {}
    try:
        round_number = int(data.get('round'))
        home_team_id = int(data.get('home_team_id'))
        away_team_id = int(data.get('away_team_id'))
    except (TypeError, ValueError):
        return jsonify({'error': 'round, home_team_id and away_team_id must be integers'}), 400
    match_date = None
    if data.get('match_date') is not None:
        match_date = parse_timestamp(data.get('match_date'))
        if match_date is None:
            return jsonify({'error': 'match_date must be an ISO-8601 timestamp'}), 400
    try:
        match = register_fixture(round_number, home_team_id, away_team_id,
                                 match_date=match_date, venue=data.get('venue'))
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400
    return jsonify(match.to_dict()), 201


@matches.route('/matches/<int:match_id>/result', methods=['POST'])
@admin_required
def set_match_result(match_id):
    match = db.get_or_404(Match, match_id)
    data = request.get_json(silent=True) or {}
    try:
        home_score = int(data.get('home_score'))
        away_score = int(data.get('away_score'))
    except (TypeError, ValueError):
        return jsonify({'error': 'home_score and away_score must be integers'}), 400
    if match.is_completed:
        current_app.logger.warning(f"[result-overwrite] match={match.id} round={match.round}")
    try:
        record_result(match, home_score, away_score, is_completed=data.get('is_completed', True))
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400
    return jsonify(match.to_dict())
