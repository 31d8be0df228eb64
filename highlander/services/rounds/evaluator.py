"""Game progression: the only writer of ``Game.status`` and ``Game.current_round``."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from flask import current_app

from highlander import db
from highlander.models import EndReason, Game, GameStatus, RoundStatus, Ticket
from .config import EngineConfig
from .deadlines import as_utc, check_deadline_bounds
from .errors import PreconditionReason, RoundPreconditionFailed


@dataclass
class GameDecision:
    game_id: int
    round: int
    completed: bool
    survivors: List[int] = field(default_factory=list)
    winners: List[int] = field(default_factory=list)
    end_reason: Optional[EndReason] = None
    next_round: Optional[int] = None

    def to_dict(self):
        return {
            'game_id': self.game_id,
            'round': self.round,
            'completed': self.completed,
            'survivors': self.survivors,
            'winners': self.winners,
            'end_reason': self.end_reason.value if self.end_reason else None,
            'next_round': self.next_round,
        }


def decide_progression(survivor_ids: List[int], round_number: int, start_round: int,
                       config: EngineConfig) -> GameDecision:
    """Pure decision table for a just-calculated round (game id left as 0)."""
    final_round = config.final_round(start_round)
    if len(survivor_ids) == 0:
        return GameDecision(0, round_number, True, [], [], EndReason.ALL_ELIMINATED)
    if len(survivor_ids) == 1:
        return GameDecision(0, round_number, True, survivor_ids, survivor_ids, EndReason.SINGLE_SURVIVOR)
    if round_number >= final_round:
        reason = EndReason.SEASON_END if config.capped_by_season(start_round) else EndReason.MAX_ROUNDS
        return GameDecision(0, round_number, True, survivor_ids, survivor_ids, reason)
    return GameDecision(0, round_number, False, survivor_ids, next_round=round_number + 1)


def activate_game(game: Game, now: datetime, config: EngineConfig,
                  deadline: Optional[datetime] = None) -> Game:
    """Close registration and open selections for the first round."""
    if game.status is not GameStatus.REGISTRATION:
        raise RoundPreconditionFailed(PreconditionReason.GAME_NOT_IN_REGISTRATION, 'Game is not in registration')
    if game.start_round > config.season_last_matchday:
        raise RoundPreconditionFailed(
            PreconditionReason.ROUND_OUT_OF_RANGE,
            f'Start round {game.start_round} is past the last matchday {config.season_last_matchday}',
        )
    if deadline is not None:
        deadline = check_deadline_bounds(deadline, now, config)

    entries = [{
        'event': 'activated',
        'round': game.start_round,
        'tickets': Ticket.query.filter_by(game_id=game.id).count(),
        'at': as_utc(now).isoformat(),
    }]
    if deadline is not None:
        entries.append({
            'event': 'deadline_set',
            'round': game.start_round,
            'deadline': deadline.isoformat(),
            'previous_deadline': None,
            'at': as_utc(now).isoformat(),
        })
    # Activation and the first deadline land in one commit
    updated = Game.query.filter_by(id=game.id, status=GameStatus.REGISTRATION).update(
        {
            Game.status: GameStatus.ACTIVE,
            Game.current_round: game.start_round,
            Game.round_status: RoundStatus.SELECTION_OPEN,
            Game.round_deadline: deadline,
            Game.round_history: game.history_with(*entries),
        },
        synchronize_session=False,
    )
    if not updated:
        db.session.rollback()
        raise RoundPreconditionFailed(PreconditionReason.GAME_NOT_IN_REGISTRATION, 'Game is not in registration')
    db.session.commit()
    current_app.logger.info(
        f"[game-activated] game={game.id} round={game.start_round} "
        f"deadline={deadline.isoformat() if deadline else None}"
    )
    return game


def evaluate_round(game: Game, config: EngineConfig, now: Optional[datetime] = None) -> Optional[GameDecision]:
    """Finish the game or open the next round after a calculated round.

    Returns ``None`` when there is nothing to evaluate (round not calculated
    or game no longer active), which makes retries harmless.
    """
    if game.status is not GameStatus.ACTIVE or game.round_status is not RoundStatus.CALCULATED:
        return None

    round_number = game.current_round
    survivors = [t.id for t in Ticket.query.filter_by(game_id=game.id, is_active=True).order_by(Ticket.id).all()]
    decision = decide_progression(survivors, round_number, game.start_round, config)
    decision.game_id = game.id

    entry = {'round': round_number, 'survivors': len(survivors)}
    if now is not None:
        entry['at'] = as_utc(now).isoformat()
    if decision.completed:
        entry.update({'event': 'completed', 'end_reason': decision.end_reason.value, 'winners': decision.winners})
        values = {
            Game.status: GameStatus.COMPLETED,
            Game.end_reason: decision.end_reason,
            Game.round_deadline: None,
        }
    else:
        entry.update({'event': 'advanced', 'next_round': decision.next_round})
        values = {
            Game.current_round: decision.next_round,
            Game.round_status: RoundStatus.SELECTION_OPEN,
            Game.round_deadline: None,
        }
    values[Game.round_history] = game.history_with(entry)

    updated = Game.query.filter_by(
        id=game.id,
        status=GameStatus.ACTIVE,
        current_round=round_number,
        round_status=RoundStatus.CALCULATED,
    ).update(values, synchronize_session=False)
    if not updated:
        db.session.rollback()
        current_app.logger.info(f"[evaluate-noop] game={game.id} round={round_number} already evaluated")
        return None
    db.session.commit()

    if decision.completed:
        current_app.logger.info(
            f"[game-completed] game={game.id} round={round_number} reason={decision.end_reason.value} "
            f"winners={decision.winners}"
        )
    else:
        current_app.logger.info(
            f"[next-round] game={game.id} advance round {round_number} -> {decision.next_round} "
            f"survivors={len(survivors)}"
        )
    return decision
