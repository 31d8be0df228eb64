from dataclasses import replace
from datetime import timedelta

import pytest

from highlander import db
from highlander.models import EndReason, Game, GameStatus, RoundStatus, Ticket
from highlander.services.rounds import DeadlineRejected, RoundPreconditionFailed
from highlander.services.rounds.deadlines import as_utc, lock_round
from highlander.services.rounds.errors import DeadlineReason, PreconditionReason
from highlander.services.rounds.evaluator import activate_game, decide_progression, evaluate_round
from highlander.services.rounds.lifecycle import resolve_and_advance
from highlander.services.rounds.selection import submit_selection
from highlander.services.rounds.status import TicketStatus, project_ticket_status


def _play_round(game, round_number, picks, results, schedule, play, team, config, now):
    """picks: ticket -> team code; results: (home, away, home_score, away_score)."""
    matches = schedule(round_number, [(h, a) for h, a, _, _ in results])
    for ticket, code in picks.items():
        submit_selection(ticket, team(code), now)
    lock_round(game, now, config, trigger='admin')
    for match, (_, _, hs, as_) in zip(matches, results):
        play(match, hs, as_)
    return resolve_and_advance(game, round_number, config, now=now)


def test_decide_progression_table(config):
    assert decide_progression([], 5, 1, config).end_reason is EndReason.ALL_ELIMINATED
    single = decide_progression([7], 5, 1, config)
    assert single.completed and single.winners == [7]
    assert single.end_reason is EndReason.SINGLE_SURVIVOR

    advance = decide_progression([1, 2], 5, 1, config)
    assert advance.completed is False
    assert advance.next_round == 6

    # Start on matchday 1: twenty rounds, last one is matchday 20
    capped = decide_progression([1, 2], 20, 1, config)
    assert capped.end_reason is EndReason.MAX_ROUNDS
    assert capped.winners == [1, 2]
    # Start on matchday 30: the season ends first
    season = decide_progression([1, 2, 3], 38, 30, config)
    assert season.end_reason is EndReason.SEASON_END
    assert decide_progression([1, 2], 37, 30, config).next_round == 38


def test_single_survivor_wins(make_game, open_game, schedule, play, team, config, now):
    game, (a, b) = make_game(start_round=1)
    open_game(game)

    outcome = _play_round(game, 1, {a: 'JUV', b: 'MIL'},
                          [('JUV', 'INT', 1, 0), ('MIL', 'NAP', 0, 0)],
                          schedule, play, team, config, now)

    game = db.session.get(Game, game.id)
    assert game.status is GameStatus.COMPLETED
    assert game.end_reason is EndReason.SINGLE_SURVIVOR
    assert game.round_deadline is None
    assert outcome.winners == [a.id]
    assert outcome.game_status == 'completed'
    assert project_ticket_status(db.session.get(Ticket, a.id), game) is TicketStatus.WINNER
    assert project_ticket_status(db.session.get(Ticket, b.id), game) is TicketStatus.ELIMINATED


def test_survivors_at_final_round_share_the_win(make_game, open_game, schedule, play, team, config, now):
    game, tickets = make_game(start_round=38, tickets=3)
    open_game(game)

    outcome = _play_round(game, 38, dict(zip(tickets, ['JUV', 'MIL', 'ROM'])),
                          [('JUV', 'INT', 2, 1), ('MIL', 'NAP', 3, 0), ('ROM', 'LAZ', 1, 0)],
                          schedule, play, team, config, now)

    game = db.session.get(Game, game.id)
    assert game.status is GameStatus.COMPLETED
    assert game.end_reason is EndReason.SEASON_END
    assert outcome.winners == [t.id for t in tickets]
    for ticket in tickets:
        assert project_ticket_status(db.session.get(Ticket, ticket.id), game) is TicketStatus.WINNER


def test_max_rounds_cap(make_game, open_game, schedule, play, team, config, now):
    short = replace(config, max_game_rounds=1)
    game, (a, b) = make_game(start_round=1)
    activate_game(game, now, short, deadline=now + timedelta(hours=1))

    outcome = _play_round(game, 1, {a: 'JUV', b: 'MIL'},
                          [('JUV', 'INT', 1, 0), ('MIL', 'NAP', 2, 0)],
                          schedule, play, team, short, now)

    assert outcome.end_reason == 'max_rounds'
    assert sorted(outcome.winners) == [a.id, b.id]


def test_everyone_eliminated(make_game, open_game, schedule, play, team, config, now):
    game, (a, b) = make_game(start_round=1)
    open_game(game)

    outcome = _play_round(game, 1, {a: 'JUV', b: 'INT'},
                          [('JUV', 'INT', 1, 1)],
                          schedule, play, team, config, now)

    game = db.session.get(Game, game.id)
    assert game.status is GameStatus.COMPLETED
    assert game.end_reason is EndReason.ALL_ELIMINATED
    assert outcome.winners == []
    assert game.to_dict()['winner_ticket_ids'] == []


def test_multiple_survivors_advance(make_game, open_game, schedule, play, team, config, now):
    game, (a, b) = make_game(start_round=4)
    open_game(game)

    outcome = _play_round(game, 4, {a: 'JUV', b: 'MIL'},
                          [('JUV', 'INT', 1, 0), ('MIL', 'NAP', 2, 0)],
                          schedule, play, team, config, now)

    game = db.session.get(Game, game.id)
    assert outcome.next_round == 5
    assert game.status is GameStatus.ACTIVE
    assert game.current_round == 5
    assert game.round_status is RoundStatus.SELECTION_OPEN
    assert game.round_deadline is None
    assert [e['event'] for e in game.history][-2:] == ['resolved', 'advanced']


def test_evaluate_only_after_calculation(make_game, open_game, config, now):
    game, _ = make_game(start_round=1)
    open_game(game)
    assert evaluate_round(game, config, now=now) is None
    lock_round(game, now, config)
    assert evaluate_round(game, config, now=now) is None


def test_activate_game_guards(make_game, config, now):
    game, _ = make_game(start_round=1)
    activate_game(game, now, config)
    assert db.session.get(Game, game.id).status is GameStatus.ACTIVE

    with pytest.raises(RoundPreconditionFailed) as exc:
        activate_game(game, now, config)
    assert exc.value.reason is PreconditionReason.GAME_NOT_IN_REGISTRATION

    late, _ = make_game(start_round=39)
    with pytest.raises(RoundPreconditionFailed) as exc:
        activate_game(late, now, config)
    assert exc.value.reason is PreconditionReason.ROUND_OUT_OF_RANGE


@pytest.mark.parametrize('offset, reason', [
    (timedelta(hours=-1), DeadlineReason.DEADLINE_NOT_IN_FUTURE),
    (timedelta(days=31), DeadlineReason.DEADLINE_TOO_FAR),
])
def test_activate_with_bad_deadline_leaves_game_in_registration(make_game, config, now, offset, reason):
    game, _ = make_game(start_round=1)

    with pytest.raises(DeadlineRejected) as exc:
        activate_game(game, now, config, deadline=now + offset)
    assert exc.value.reason is reason

    game = db.session.get(Game, game.id)
    assert game.status is GameStatus.REGISTRATION
    assert game.round_deadline is None
    assert game.history == []


def test_activate_with_deadline_writes_both_events(make_game, config, now):
    game, _ = make_game(start_round=3)
    deadline = now + timedelta(hours=6)
    activate_game(game, now, config, deadline=deadline)

    game = db.session.get(Game, game.id)
    assert game.status is GameStatus.ACTIVE
    assert game.current_round == 3
    assert as_utc(game.round_deadline) == deadline
    events = [entry['event'] for entry in game.history]
    assert events == ['activated', 'deadline_set']
    assert game.history[1]['deadline'] == deadline.isoformat()
    assert game.history[1]['previous_deadline'] is None
