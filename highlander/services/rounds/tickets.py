from typing import List

from flask import current_app

from highlander import db
from highlander.models import Game, GameStatus, Ticket, User
from .config import EngineConfig


def issue_tickets(game: Game, owner: User, count: int, config: EngineConfig) -> List[Ticket]:
    """Create ``count`` fresh tickets for ``owner``. Raises ValueError on policy violations."""
    if game.status is GameStatus.COMPLETED:
        raise ValueError('Game is already completed')
    if game.status is GameStatus.ACTIVE and not config.allow_late_tickets:
        raise ValueError('Registration is closed for this game')
    if count < 1 or count > config.max_tickets_per_assignment:
        raise ValueError(f'Ticket count must be between 1 and {config.max_tickets_per_assignment}')

    tickets = [Ticket(game_id=game.id, owner_id=owner.id, is_active=True) for _ in range(count)]
    db.session.add_all(tickets)
    db.session.commit()
    current_app.logger.info(
        f"[tickets-issued] game={game.id} owner={owner.id} count={count} ids={[t.id for t in tickets]}"
    )
    return tickets
