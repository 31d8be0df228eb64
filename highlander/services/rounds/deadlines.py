"""Per-round selection deadlines: open -> locked transitions.

The decision itself (:func:`lock_due`) is a pure function of the clock, the
deadline and the round status. Everything that writes goes through a
conditional UPDATE on the game row so a sweep racing an admin lock (or a
second sweep) can only lock a round once.
"""

import random
from datetime import datetime, timezone
from typing import List, Optional

from flask import current_app

from highlander import db
from highlander.models import Game, GameStatus, RoundStatus, TeamSelection, Ticket
from .config import EngineConfig
from .errors import DeadlineRejected, DeadlineReason
from .fixtures import teams_playing


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timezone-aware UTC view of ``value``; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def lock_due(now: datetime, round_deadline: Optional[datetime], round_status: RoundStatus) -> bool:
    if round_status is not RoundStatus.SELECTION_OPEN or round_deadline is None:
        return False
    return as_utc(now) >= as_utc(round_deadline)


def check_deadline_bounds(deadline: datetime, now: datetime, config: EngineConfig) -> datetime:
    """Return ``deadline`` in UTC, or raise if it is not a usable deadline."""
    now = as_utc(now)
    deadline = as_utc(deadline)
    if deadline <= now:
        raise DeadlineRejected(DeadlineReason.DEADLINE_NOT_IN_FUTURE, 'Deadline must be in the future')
    if deadline - now > config.deadline_max_horizon:
        raise DeadlineRejected(
            DeadlineReason.DEADLINE_TOO_FAR,
            f'Deadline must be within {config.deadline_max_horizon.days} days',
        )
    return deadline


def set_deadline(game: Game, deadline: datetime, now: datetime, config: EngineConfig) -> Game:
    """Set or move the selection deadline of the game's current round.

    Accepted selections are left untouched when the deadline moves.
    """
    if game.status is not GameStatus.ACTIVE:
        raise DeadlineRejected(DeadlineReason.ROUND_NOT_OPEN, 'Game is not active')
    if game.round_status is not RoundStatus.SELECTION_OPEN:
        raise DeadlineRejected(DeadlineReason.SELECTIONS_LOCKED, 'Selections for this round are already closed')

    now = as_utc(now)
    deadline = check_deadline_bounds(deadline, now, config)

    previous = as_utc(game.round_deadline)
    round_number = game.current_round
    history = game.history_with({
        'event': 'deadline_set',
        'round': round_number,
        'deadline': deadline.isoformat(),
        'previous_deadline': previous.isoformat() if previous else None,
        'at': now.isoformat(),
    })
    updated = Game.query.filter_by(
        id=game.id,
        current_round=round_number,
        round_status=RoundStatus.SELECTION_OPEN,
    ).update({Game.round_deadline: deadline, Game.round_history: history}, synchronize_session=False)
    if not updated:
        db.session.rollback()
        raise DeadlineRejected(DeadlineReason.SELECTIONS_LOCKED, 'Selections for this round are already closed')
    db.session.commit()
    current_app.logger.info(
        f"[deadline-set] game={game.id} round={round_number} deadline={deadline.isoformat()} "
        f"previous={previous.isoformat() if previous else None}"
    )
    return game


def lock_round(game: Game, now: datetime, config: EngineConfig, trigger: str = 'deadline',
               rng: Optional[random.Random] = None) -> Optional[dict]:
    """Close selections for the game's current round.

    Returns the history entry written, or ``None`` when the round was not
    open (already locked by someone else, or the game is not active).
    """
    if game.status is not GameStatus.ACTIVE or game.round_status is not RoundStatus.SELECTION_OPEN:
        current_app.logger.info(
            f"[lock-skip] game={game.id} status={game.status.value} round_status={game.round_status.value}"
        )
        return None

    now = as_utc(now)
    round_number = game.current_round
    auto_assigned = 0
    if config.auto_assign_missing_picks:
        auto_assigned = _auto_assign_missing_picks(game, round_number, rng or random.Random())

    deadline = as_utc(game.round_deadline)
    entry = {
        'event': 'locked',
        'round': round_number,
        'trigger': trigger,
        'deadline': deadline.isoformat() if deadline else None,
        'auto_assigned': auto_assigned,
        'at': now.isoformat(),
    }
    claimed = Game.query.filter_by(
        id=game.id,
        status=GameStatus.ACTIVE,
        current_round=round_number,
        round_status=RoundStatus.SELECTION_OPEN,
    ).update(
        {Game.round_status: RoundStatus.SELECTION_LOCKED, Game.round_history: game.history_with(entry)},
        synchronize_session=False,
    )
    if not claimed:
        db.session.rollback()
        current_app.logger.info(f"[lock-skip] game={game.id} round={round_number} already locked")
        return None
    db.session.commit()
    current_app.logger.info(
        f"[round-locked] game={game.id} round={round_number} trigger={trigger} auto_assigned={auto_assigned}"
    )
    return entry


def _auto_assign_missing_picks(game: Game, round_number: int, rng: random.Random) -> int:
    existing = TeamSelection.query.filter_by(game_id=game.id, round=round_number).all()
    picked_tickets = {s.ticket_id for s in existing}
    taken_this_round = {s.team_id for s in existing}
    playing = sorted(teams_playing(round_number))

    assigned = 0
    for ticket in Ticket.query.filter_by(game_id=game.id, is_active=True).order_by(Ticket.id).all():
        if ticket.id in picked_tickets:
            continue
        used = {s.team_id for s in ticket.selections}
        available = [team_id for team_id in playing if team_id not in used]
        if not available:
            current_app.logger.warning(
                f"[auto-assign] game={game.id} round={round_number} ticket={ticket.id} has no team left"
            )
            continue
        # Spread auto picks over teams nobody chose this round when possible
        preferred = [team_id for team_id in available if team_id not in taken_this_round] or available
        team_id = rng.choice(preferred)
        db.session.add(TeamSelection(
            ticket_id=ticket.id,
            team_id=team_id,
            round=round_number,
            game_id=game.id,
            is_auto_assigned=True,
        ))
        taken_this_round.add(team_id)
        assigned += 1
    return assigned


def sweep_expired_deadlines(now: datetime, config: EngineConfig,
                            rng: Optional[random.Random] = None) -> List[dict]:
    """Lock every open round whose deadline has passed. Meant for a timer or cron."""
    games = (
        Game.query.filter(
            Game.status == GameStatus.ACTIVE,
            Game.round_status == RoundStatus.SELECTION_OPEN,
            Game.round_deadline.isnot(None),
        )
        .order_by(Game.id)
        .all()
    )
    results = []
    for game in games:
        if not lock_due(now, game.round_deadline, game.round_status):
            results.append({'game_id': game.id, 'action': 'no_action'})
            continue
        try:
            entry = lock_round(game, now, config, trigger='deadline', rng=rng)
        except Exception:
            db.session.rollback()
            current_app.logger.exception(f"[sweep-error] game={game.id} round={game.current_round}")
            results.append({'game_id': game.id, 'action': 'error'})
            continue
        if entry is None:
            results.append({'game_id': game.id, 'action': 'no_action'})
        else:
            results.append({
                'game_id': game.id,
                'action': 'locked',
                'round': entry['round'],
                'auto_assigned': entry['auto_assigned'],
            })
    return results
