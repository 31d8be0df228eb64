from datetime import datetime
from typing import Optional

from highlander.models import Game, GameStatus
from .config import EngineConfig
from .evaluator import evaluate_round
from .resolver import RoundOutcome, resolve_round


def resolve_and_advance(game: Game, round_number: int, config: EngineConfig,
                        now: Optional[datetime] = None) -> RoundOutcome:
    """Resolve a round and, right after, let the win evaluator move the game on.

    The evaluator also runs when the round was already calculated by an
    earlier call that stopped before evaluating, so a retry completes it.
    """
    outcome = resolve_round(game, round_number, config, now=now)
    if game.current_round == round_number:
        evaluate_round(game, config, now=now)
    outcome.game_status = game.status.value
    if game.status is GameStatus.COMPLETED:
        outcome.end_reason = game.end_reason.value if game.end_reason else None
        outcome.winners = [t.id for t in game.active_tickets()]
    elif game.current_round > round_number:
        outcome.next_round = game.current_round
    return outcome
