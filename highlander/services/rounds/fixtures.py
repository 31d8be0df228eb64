"""Fixture and result intake.

Fixtures and scores come from external providers; this module only stores
them and derives the H/A/D result from the final score.
"""

from datetime import datetime
from typing import Iterable, Optional, Set

from flask import current_app

from highlander import db
from highlander.models import Match, MatchResult, Team

SERIE_A_TEAMS = [
    ('Atalanta', 'ATA'), ('Bologna', 'BOL'), ('Cagliari', 'CAG'), ('Como', 'COM'),
    ('Cremonese', 'CRE'), ('Fiorentina', 'FIO'), ('Genoa', 'GEN'), ('Inter', 'INT'),
    ('Juventus', 'JUV'), ('Lazio', 'LAZ'), ('Lecce', 'LEC'), ('Milan', 'MIL'),
    ('Napoli', 'NAP'), ('Parma', 'PAR'), ('Pisa', 'PIS'), ('Roma', 'ROM'),
    ('Sassuolo', 'SAS'), ('Torino', 'TOR'), ('Udinese', 'UDI'), ('Verona', 'VER'),
]


def derive_result(home_score: int, away_score: int) -> MatchResult:
    if home_score > away_score:
        return MatchResult.HOME
    if away_score > home_score:
        return MatchResult.AWAY
    return MatchResult.DRAW


def teams_playing(round_number: int) -> Set[int]:
    team_ids = set()
    for match in Match.query.filter_by(round=round_number).all():
        team_ids.add(match.home_team_id)
        team_ids.add(match.away_team_id)
    return team_ids


def seed_teams(teams: Iterable = SERIE_A_TEAMS) -> int:
    """Insert the given (name, code) pairs that are not stored yet."""
    existing = {t.code for t in Team.query.all()}
    added = 0
    for name, code in teams:
        if code in existing:
            continue
        db.session.add(Team(name=name, code=code))
        added += 1
    db.session.commit()
    return added


def register_fixture(round_number: int, home_team_id: int, away_team_id: int,
                     match_date: Optional[datetime] = None, venue: Optional[str] = None) -> Match:
    if round_number < 1:
        raise ValueError('Round must be >= 1')
    if home_team_id == away_team_id:
        raise ValueError('A team cannot play against itself')
    for team_id in (home_team_id, away_team_id):
        if db.session.get(Team, team_id) is None:
            raise ValueError(f'Unknown team {team_id}')
    # A team plays at most once per matchday
    busy = teams_playing(round_number) & {home_team_id, away_team_id}
    if busy:
        raise ValueError(f'Team(s) {sorted(busy)} already scheduled in round {round_number}')

    match = Match(
        round=round_number,
        home_team_id=home_team_id,
        away_team_id=away_team_id,
        match_date=match_date,
        venue=venue,
    )
    db.session.add(match)
    db.session.commit()
    current_app.logger.info(
        f"[fixture] match={match.id} round={round_number} home={home_team_id} away={away_team_id}"
    )
    return match


def record_result(match: Match, home_score: int, away_score: int, is_completed: bool = True) -> Match:
    """Store a score. ``result`` is only set once the match is completed."""
    if not isinstance(is_completed, bool):
        raise ValueError('is_completed must be a boolean')
    if home_score is None or away_score is None or home_score < 0 or away_score < 0:
        raise ValueError('Scores must be non-negative integers')
    match.home_score = home_score
    match.away_score = away_score
    match.is_completed = is_completed
    match.result = derive_result(home_score, away_score) if match.is_completed else None
    db.session.add(match)
    db.session.commit()
    current_app.logger.info(
        f"[result] match={match.id} round={match.round} score={home_score}-{away_score} "
        f"completed={match.is_completed} result={match.result.value if match.result else None}"
    )
    return match
