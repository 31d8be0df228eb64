"""Display-only ticket status, derived on demand and never stored."""

import enum

from highlander.models import Game, GameStatus, RoundStatus, Ticket


class TicketStatus(enum.Enum):
    WINNER = 'winner'
    ACTIVE = 'active'
    PASSED = 'passed'
    ELIMINATED = 'eliminated'


STATUS_LABELS = {
    TicketStatus.WINNER: 'Winner',
    TicketStatus.ACTIVE: 'Active',
    TicketStatus.PASSED: 'Passed',
    TicketStatus.ELIMINATED: 'Eliminated',
}

# Listing order: winners first, eliminated last
STATUS_SORT_ORDER = {
    TicketStatus.WINNER: 0,
    TicketStatus.ACTIVE: 1,
    TicketStatus.PASSED: 2,
    TicketStatus.ELIMINATED: 3,
}


def project_ticket_status(ticket: Ticket, game: Game) -> TicketStatus:
    if not ticket.is_active:
        return TicketStatus.ELIMINATED
    if game.status is GameStatus.COMPLETED:
        return TicketStatus.WINNER
    if game.status is GameStatus.REGISTRATION:
        return TicketStatus.ACTIVE
    if game.round_status is RoundStatus.CALCULATED:
        return TicketStatus.PASSED
    if game.round_status in (RoundStatus.SELECTION_OPEN, RoundStatus.SELECTION_LOCKED):
        return TicketStatus.ACTIVE
    raise ValueError(f'Unhandled round status {game.round_status!r}')


def ticket_status_payload(ticket: Ticket, game: Game) -> dict:
    status = project_ticket_status(ticket, game)
    return {
        'ticket_id': ticket.id,
        'game_id': game.id,
        'status': status.value,
        'label': STATUS_LABELS[status],
        'eliminated_in_round': ticket.eliminated_in_round,
    }


def sort_by_status(tickets, game: Game):
    return sorted(tickets, key=lambda t: (STATUS_SORT_ORDER[project_ticket_status(t, game)], t.id))
