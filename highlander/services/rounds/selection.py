from datetime import datetime
from typing import AbstractSet, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from highlander import db
from highlander.models import Game, GameStatus, RoundStatus, TeamSelection, Ticket
from .deadlines import as_utc
from .errors import RejectionReason, SelectionRejected
from .fixtures import teams_playing

_MESSAGES = {
    RejectionReason.ROUND_NOT_OPEN: 'Selections are not open for this round',
    RejectionReason.SELECTIONS_LOCKED: 'Selections for this round are closed',
    RejectionReason.TICKET_ELIMINATED: 'This ticket has been eliminated',
    RejectionReason.TEAM_ALREADY_SELECTED: 'This ticket already used that team in an earlier round',
    RejectionReason.INVALID_TEAM_FOR_ROUND: 'That team does not play in this round',
    RejectionReason.ALREADY_PICKED_THIS_ROUND: 'This ticket already has a pick for this round',
}


def validate_selection(ticket: Ticket, game: Game, team_id: int, round_number: int, *,
                       used_team_ids: AbstractSet[int], picked_rounds: AbstractSet[int],
                       fixture_team_ids: AbstractSet[int], now: datetime) -> Optional[RejectionReason]:
    """Check a proposed pick. Returns ``None`` when it is acceptable.

    Pure: every piece of stored state is passed in. The checks run in a fixed
    order and the first failing one decides the reason.
    """
    # A round without a deadline has not been opened to players yet
    if game.status is not GameStatus.ACTIVE or round_number != game.current_round or game.round_deadline is None:
        return RejectionReason.ROUND_NOT_OPEN
    if game.round_status is not RoundStatus.SELECTION_OPEN or as_utc(now) >= as_utc(game.round_deadline):
        return RejectionReason.SELECTIONS_LOCKED
    if not ticket.is_active:
        return RejectionReason.TICKET_ELIMINATED
    if team_id in used_team_ids:
        return RejectionReason.TEAM_ALREADY_SELECTED
    if team_id not in fixture_team_ids:
        return RejectionReason.INVALID_TEAM_FOR_ROUND
    if round_number in picked_rounds:
        return RejectionReason.ALREADY_PICKED_THIS_ROUND
    return None


def submit_selection(ticket: Ticket, team_id: int, now: datetime,
                     round_number: Optional[int] = None) -> TeamSelection:
    """Validate and store a pick for ``ticket``. Raises :class:`SelectionRejected`."""
    game = ticket.game
    if round_number is None:
        round_number = game.current_round

    existing = TeamSelection.query.filter_by(ticket_id=ticket.id).all()
    reason = validate_selection(
        ticket, game, team_id, round_number,
        used_team_ids={s.team_id for s in existing},
        picked_rounds={s.round for s in existing},
        fixture_team_ids=teams_playing(round_number),
        now=now,
    )
    if reason is not None:
        current_app.logger.info(
            f"[selection-rejected] ticket={ticket.id} team={team_id} round={round_number} reason={reason.value}"
        )
        raise SelectionRejected(reason, _MESSAGES[reason])

    # Hold a share lock on the game row so a concurrent lock cannot slip in
    # between the check above and the insert below.
    still_open = (
        Game.query.filter_by(
            id=game.id,
            status=GameStatus.ACTIVE,
            current_round=round_number,
            round_status=RoundStatus.SELECTION_OPEN,
        )
        .with_for_update(read=True)
        .first()
    )
    if still_open is None:
        db.session.rollback()
        raise SelectionRejected(
            RejectionReason.SELECTIONS_LOCKED, _MESSAGES[RejectionReason.SELECTIONS_LOCKED]
        )

    selection = TeamSelection(ticket_id=ticket.id, team_id=team_id, round=round_number, game_id=game.id)
    db.session.add(selection)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        reason = _constraint_reason(ticket.id, team_id)
        current_app.logger.info(
            f"[selection-conflict] ticket={ticket.id} team={team_id} round={round_number} reason={reason.value}"
        )
        raise SelectionRejected(reason, _MESSAGES[reason])

    current_app.logger.info(
        f"[selection] ticket={ticket.id} team={team_id} round={round_number} game={game.id}"
    )
    return selection


def _constraint_reason(ticket_id: int, team_id: int) -> RejectionReason:
    """Which uniqueness rule a concurrent writer beat us on."""
    if TeamSelection.query.filter_by(ticket_id=ticket_id, team_id=team_id).first() is not None:
        return RejectionReason.TEAM_ALREADY_SELECTED
    return RejectionReason.ALREADY_PICKED_THIS_ROUND
