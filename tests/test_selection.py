from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from highlander import db
from highlander.models import Game, GameStatus, RoundStatus, TeamSelection, Ticket
from highlander.services.rounds import SelectionRejected
from highlander.services.rounds.errors import RejectionReason
from highlander.services.rounds.lifecycle import resolve_and_advance
from highlander.services.rounds.deadlines import lock_round, set_deadline
from highlander.services.rounds.selection import _constraint_reason, submit_selection, validate_selection


def _open_game(now, **overrides):
    values = dict(
        name='g', start_round=5, status=GameStatus.ACTIVE,
        round_status=RoundStatus.SELECTION_OPEN, round_deadline=now + timedelta(hours=1),
    )
    values.update(overrides)
    return Game(**values)


def _validate(game, ticket, now, team_id=1, round_number=5, used=(), picked=(), playing=(1, 2, 3, 4)):
    return validate_selection(
        ticket, game, team_id, round_number,
        used_team_ids=set(used), picked_rounds=set(picked), fixture_team_ids=set(playing), now=now,
    )


def test_validator_accepts_valid_pick(now):
    assert _validate(_open_game(now), Ticket(is_active=True), now) is None


def test_validator_round_not_open(now):
    ticket = Ticket(is_active=True)
    assert _validate(_open_game(now, round_deadline=None), ticket, now) is RejectionReason.ROUND_NOT_OPEN
    assert _validate(_open_game(now), ticket, now, round_number=6) is RejectionReason.ROUND_NOT_OPEN
    registration = _open_game(now, status=GameStatus.REGISTRATION)
    assert _validate(registration, ticket, now) is RejectionReason.ROUND_NOT_OPEN


def test_validator_locked_round_or_elapsed_deadline(now):
    ticket = Ticket(is_active=True)
    locked = _open_game(now, round_status=RoundStatus.SELECTION_LOCKED)
    assert _validate(locked, ticket, now) is RejectionReason.SELECTIONS_LOCKED
    # Deadline reached but the sweep has not locked the round yet
    assert _validate(_open_game(now), ticket, now + timedelta(hours=1)) is RejectionReason.SELECTIONS_LOCKED


def test_validator_checks_run_in_order(now):
    eliminated = Ticket(is_active=False, eliminated_in_round=4)
    locked = _open_game(now, round_status=RoundStatus.SELECTION_LOCKED)
    assert _validate(locked, eliminated, now) is RejectionReason.SELECTIONS_LOCKED
    assert _validate(_open_game(now), eliminated, now, used=[1]) is RejectionReason.TICKET_ELIMINATED

    ticket = Ticket(is_active=True)
    # Used team that does not even play this round still reports the reuse
    assert _validate(_open_game(now), ticket, now, team_id=9, used=[9]) is RejectionReason.TEAM_ALREADY_SELECTED
    assert _validate(_open_game(now), ticket, now, team_id=9, picked=[5]) is RejectionReason.INVALID_TEAM_FOR_ROUND
    assert _validate(_open_game(now), ticket, now, picked=[5]) is RejectionReason.ALREADY_PICKED_THIS_ROUND


def test_submit_selection_stores_row(make_game, open_game, schedule, team, now):
    game, (ticket, _) = make_game(start_round=1)
    schedule(1, [('JUV', 'INT'), ('MIL', 'NAP')])
    open_game(game)

    selection = submit_selection(ticket, team('JUV'), now)

    assert selection.id is not None
    assert selection.round == 1
    assert selection.game_id == game.id
    assert selection.is_auto_assigned is False


def test_second_pick_same_round_rejected(make_game, open_game, schedule, team, now):
    game, (ticket, _) = make_game(start_round=1)
    schedule(1, [('JUV', 'INT'), ('MIL', 'NAP')])
    open_game(game)
    submit_selection(ticket, team('JUV'), now)

    with pytest.raises(SelectionRejected) as exc:
        submit_selection(ticket, team('MIL'), now)
    assert exc.value.reason is RejectionReason.ALREADY_PICKED_THIS_ROUND
    assert TeamSelection.query.filter_by(ticket_id=ticket.id).count() == 1


def test_team_not_playing_rejected(make_game, open_game, schedule, team, now):
    game, (ticket, _) = make_game(start_round=1)
    schedule(1, [('JUV', 'INT')])
    open_game(game)

    with pytest.raises(SelectionRejected) as exc:
        submit_selection(ticket, team('ROM'), now)
    assert exc.value.reason is RejectionReason.INVALID_TEAM_FOR_ROUND


def test_reused_team_in_later_round_rejected(make_game, open_game, schedule, play, team, config, now):
    game, (first, second) = make_game(start_round=1)
    round_one = schedule(1, [('JUV', 'INT'), ('ROM', 'LAZ')])
    schedule(2, [('JUV', 'ROM'), ('INT', 'LAZ')])
    open_game(game)
    submit_selection(first, team('JUV'), now)
    submit_selection(second, team('ROM'), now)
    lock_round(game, now, config, trigger='admin')
    play(round_one[0], 2, 0)
    play(round_one[1], 3, 1)
    outcome = resolve_and_advance(game, 1, config, now=now)
    assert outcome.next_round == 2

    set_deadline(game, now + timedelta(hours=2), now, config)

    with pytest.raises(SelectionRejected) as exc:
        submit_selection(first, team('JUV'), now)
    assert exc.value.reason is RejectionReason.TEAM_ALREADY_SELECTED
    assert TeamSelection.query.filter_by(ticket_id=first.id, round=2).count() == 0


def test_eliminated_ticket_cannot_pick(make_game, open_game, schedule, team, now):
    game, (ticket, _) = make_game(start_round=1)
    schedule(1, [('JUV', 'INT')])
    open_game(game)
    ticket.is_active = False
    ticket.eliminated_in_round = 1
    db.session.commit()

    with pytest.raises(SelectionRejected) as exc:
        submit_selection(ticket, team('JUV'), now)
    assert exc.value.reason is RejectionReason.TICKET_ELIMINATED


def test_unique_constraints_reject_duplicates(make_game, team, flask_app):
    game, (ticket, _) = make_game(start_round=1)
    db.session.add(TeamSelection(ticket_id=ticket.id, team_id=team('JUV'), round=1, game_id=game.id))
    db.session.commit()

    db.session.add(TeamSelection(ticket_id=ticket.id, team_id=team('JUV'), round=2, game_id=game.id))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()

    db.session.add(TeamSelection(ticket_id=ticket.id, team_id=team('INT'), round=1, game_id=game.id))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()

    assert _constraint_reason(ticket.id, team('JUV')) is RejectionReason.TEAM_ALREADY_SELECTED
    assert _constraint_reason(ticket.id, team('INT')) is RejectionReason.ALREADY_PICKED_THIS_ROUND


def test_concurrent_duplicate_insert_maps_to_rejection(make_game, open_game, schedule, team, now, monkeypatch):
    game, (ticket, _) = make_game(start_round=1)
    schedule(1, [('JUV', 'INT'), ('MIL', 'NAP')])
    open_game(game)
    submit_selection(ticket, team('JUV'), now)

    # A writer that passed validation before the first pick committed
    monkeypatch.setattr('highlander.services.rounds.selection.validate_selection', lambda *args, **kwargs: None)

    with pytest.raises(SelectionRejected) as exc:
        submit_selection(ticket, team('JUV'), now)
    assert exc.value.reason is RejectionReason.TEAM_ALREADY_SELECTED

    with pytest.raises(SelectionRejected) as exc:
        submit_selection(ticket, team('MIL'), now)
    assert exc.value.reason is RejectionReason.ALREADY_PICKED_THIS_ROUND

    assert TeamSelection.query.filter_by(ticket_id=ticket.id).count() == 1
