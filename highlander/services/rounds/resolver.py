"""Round resolution: match results + selections -> eliminations.

:func:`decide_eliminations` is the pure part and is deterministic for a given
set of tickets, selections and matches (output ordered by ticket id).
:func:`resolve_round` wraps it in a single transaction that also moves the
round to ``calculated``; the move is a conditional UPDATE so only one of
several concurrent callers applies the batch.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from flask import current_app

from highlander import db
from highlander.models import (
    Game,
    GameStatus,
    Match,
    MatchResult,
    RoundStatus,
    TeamSelection,
    Ticket,
)
from .config import EngineConfig
from .deadlines import as_utc
from .errors import InvariantViolation, PreconditionReason, RoundPreconditionFailed
from .fixtures import derive_result

WON = 'won'
LOST = 'lost'
DRAW = 'draw'
NO_PICK = 'no_pick'


@dataclass(frozen=True)
class TicketDecision:
    ticket_id: int
    survived: bool
    outcome: str
    team_id: Optional[int] = None
    match_id: Optional[int] = None

    def to_dict(self):
        return {
            'ticket_id': self.ticket_id,
            'survived': self.survived,
            'outcome': self.outcome,
            'team_id': self.team_id,
            'match_id': self.match_id,
        }


@dataclass
class RoundOutcome:
    game_id: int
    round: int
    eliminated: List[int] = field(default_factory=list)
    survivors: List[int] = field(default_factory=list)
    decisions: List[TicketDecision] = field(default_factory=list)
    already_resolved: bool = False
    # Filled in by the win evaluator
    game_status: Optional[str] = None
    next_round: Optional[int] = None
    winners: List[int] = field(default_factory=list)
    end_reason: Optional[str] = None

    def to_dict(self):
        return {
            'game_id': self.game_id,
            'round': self.round,
            'eliminated': self.eliminated,
            'survivors': self.survivors,
            'decisions': [d.to_dict() for d in self.decisions],
            'already_resolved': self.already_resolved,
            'game_status': self.game_status,
            'next_round': self.next_round,
            'winners': self.winners,
            'end_reason': self.end_reason,
        }


def match_result(match: Match) -> MatchResult:
    if not match.is_completed:
        raise InvariantViolation(f'Match {match.id} is not completed', {'match_id': match.id})
    if match.result is not None:
        return match.result
    if match.home_score is None or match.away_score is None:
        raise InvariantViolation(f'Completed match {match.id} has no score', {'match_id': match.id})
    return derive_result(match.home_score, match.away_score)


def _judge(team_id: int, match: Match) -> str:
    result = match_result(match)
    if result is MatchResult.DRAW:
        return DRAW
    if result is MatchResult.HOME:
        return WON if team_id == match.home_team_id else LOST
    if result is MatchResult.AWAY:
        return WON if team_id == match.away_team_id else LOST
    raise InvariantViolation(f'Unhandled match result {result!r}', {'match_id': match.id})


def decide_eliminations(tickets: Iterable[Ticket], selections: Iterable[TeamSelection],
                        matches: Iterable[Match]) -> List[TicketDecision]:
    """Survive only if the picked team won. Draws, losses and missing picks eliminate."""
    matches = list(matches)
    by_ticket: Dict[int, TeamSelection] = {}
    for selection in selections:
        if selection.ticket_id in by_ticket:
            raise InvariantViolation(
                f'Ticket {selection.ticket_id} has more than one selection for round {selection.round}',
                {'ticket_id': selection.ticket_id, 'round': selection.round},
            )
        by_ticket[selection.ticket_id] = selection

    decisions = []
    for ticket in sorted(tickets, key=lambda t: t.id):
        if not ticket.is_active:
            continue
        selection = by_ticket.get(ticket.id)
        if selection is None:
            decisions.append(TicketDecision(ticket_id=ticket.id, survived=False, outcome=NO_PICK))
            continue
        played = [m for m in matches if m.involves(selection.team_id)]
        if len(played) != 1:
            raise InvariantViolation(
                f'Team {selection.team_id} picked by ticket {ticket.id} plays {len(played)} matches in the round',
                {'ticket_id': ticket.id, 'team_id': selection.team_id},
            )
        match = played[0]
        outcome = _judge(selection.team_id, match)
        decisions.append(TicketDecision(
            ticket_id=ticket.id,
            survived=outcome == WON,
            outcome=outcome,
            team_id=selection.team_id,
            match_id=match.id,
        ))
    return decisions


def _stored_outcome(game: Game, round_number: int) -> RoundOutcome:
    """Outcome of a round resolved earlier, rebuilt from ticket state."""
    tickets = Ticket.query.filter_by(game_id=game.id).order_by(Ticket.id).all()
    eliminated = [t.id for t in tickets if t.eliminated_in_round == round_number]
    survivors = [t.id for t in tickets if t.is_active or (t.eliminated_in_round or 0) > round_number]
    return RoundOutcome(
        game_id=game.id,
        round=round_number,
        eliminated=eliminated,
        survivors=survivors,
        already_resolved=True,
    )


def resolve_round(game: Game, round_number: int, config: EngineConfig,
                  now: Optional[datetime] = None) -> RoundOutcome:
    """Apply the eliminations of ``round_number`` and mark it calculated.

    Resolving a round that is already calculated (or long gone) is a no-op
    returning the stored outcome, so retries and racing callers are safe.
    """
    if game.status is GameStatus.REGISTRATION:
        raise RoundPreconditionFailed(PreconditionReason.GAME_NOT_ACTIVE, 'Game has not started yet')
    if round_number < game.start_round or round_number > game.current_round:
        raise RoundPreconditionFailed(
            PreconditionReason.ROUND_OUT_OF_RANGE,
            f'Round {round_number} is outside {game.start_round}..{game.current_round}',
        )
    if (round_number < game.current_round
            or game.status is GameStatus.COMPLETED
            or game.round_status is RoundStatus.CALCULATED):
        current_app.logger.info(f"[resolve-noop] game={game.id} round={round_number} already resolved")
        return _stored_outcome(game, round_number)
    if game.round_status is not RoundStatus.SELECTION_LOCKED:
        raise RoundPreconditionFailed(
            PreconditionReason.ROUND_NOT_LOCKED, 'Selections must be locked before resolving'
        )

    matches = Match.query.filter_by(round=round_number).order_by(Match.id).all()
    pending = [m.id for m in matches if not m.is_completed]
    if not matches or pending:
        raise RoundPreconditionFailed(
            PreconditionReason.RESULTS_INCOMPLETE,
            'Not all matches of the round have a final result',
            {'pending_match_ids': pending, 'match_count': len(matches)},
        )

    tickets = Ticket.query.filter_by(game_id=game.id, is_active=True).order_by(Ticket.id).all()
    selections = TeamSelection.query.filter_by(game_id=game.id, round=round_number).all()
    try:
        decisions = decide_eliminations(tickets, selections, matches)
        eliminated = [d.ticket_id for d in decisions if not d.survived]
        survivors = [d.ticket_id for d in decisions if d.survived]

        entry = {
            'event': 'resolved',
            'round': round_number,
            'eliminated': len(eliminated),
            'survivors': len(survivors),
            'no_pick': sum(1 for d in decisions if d.outcome == NO_PICK),
        }
        if now is not None:
            entry['at'] = as_utc(now).isoformat()
        claimed = Game.query.filter_by(
            id=game.id,
            status=GameStatus.ACTIVE,
            current_round=round_number,
            round_status=RoundStatus.SELECTION_LOCKED,
        ).update(
            {Game.round_status: RoundStatus.CALCULATED, Game.round_history: game.history_with(entry)},
            synchronize_session=False,
        )
        if not claimed:
            db.session.rollback()
            current_app.logger.info(f"[resolve-noop] game={game.id} round={round_number} lost the race")
            return _stored_outcome(game, round_number)

        if eliminated:
            changed = Ticket.query.filter(
                Ticket.id.in_(eliminated),
                Ticket.game_id == game.id,
                Ticket.is_active.is_(True),
            ).update(
                {Ticket.is_active: False, Ticket.eliminated_in_round: round_number},
                synchronize_session=False,
            )
            if changed != len(eliminated):
                raise InvariantViolation(
                    f'Expected to eliminate {len(eliminated)} tickets, touched {changed}',
                    {'round': round_number, 'expected': len(eliminated), 'changed': changed},
                )
        db.session.commit()
    except InvariantViolation as exc:
        db.session.rollback()
        current_app.logger.error(
            f"[resolve-abort] game={game.id} round={round_number} invariant violated: {exc.message} {exc.details}"
        )
        raise

    db.session.expire_all()
    current_app.logger.info(
        f"[round-resolved] game={game.id} round={round_number} eliminated={len(eliminated)} survivors={len(survivors)}"
    )
    return RoundOutcome(
        game_id=game.id,
        round=round_number,
        eliminated=eliminated,
        survivors=survivors,
        decisions=decisions,
    )
