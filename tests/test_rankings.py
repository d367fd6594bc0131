"""Tests for the ratings read side and the replay audit."""

from gamenight.core.outcome import GameOutcome, Participant
from gamenight.models import Member, session_scope


def _play(wager, night, players, winner):
    session_id = wager.sessions.add_session(night, "Azul")
    wager.sessions.confirm_session(session_id, [Participant(m) for m in players])
    wager.resolve_session(
        session_id,
        GameOutcome(wager.sessions.get_roster(session_id), winner_member_id=winner),
    )
    return session_id


def test_leaderboard_orders_by_rating(wager, night, members):
    _play(wager, night, members[:2], members[1])
    board = wager.rankings.leaderboard()
    assert [e.member_id for e in board[:1]] == [members[1]]
    assert board[0].rank == 1
    assert board[0].rating == 1216
    assert board[-1].member_id == members[0]
    assert len(wager.rankings.leaderboard(take=2)) == 2


def test_rating_history(wager, night, members):
    first = _play(wager, night, members[:2], members[0])
    second = _play(wager, night, members[:3], members[2])
    history = wager.rankings.rating_history(members[0])
    assert [h.session_id for h in history] == [first, second]
    assert history[0].delta == 16
    assert history[1].rating_before == history[0].rating_after


def test_get_ratings_defaults(wager, members):
    assert wager.rankings.get_rating(members[0]) == 1200
    assert wager.rankings.get_ratings([members[0], members[1]]) == {members[0]: 1200, members[1]: 1200}


def test_audit_clean_after_play(wager, night, members):
    _play(wager, night, members[:2], members[0])
    _play(wager, night, members, members[3])
    _play(wager, night, members[1:], members[1])
    assert wager.rankings.audit_ratings() == []


def test_audit_detects_tampering(wager, session_factory, night, members):
    _play(wager, night, members[:2], members[0])
    with session_scope(session_factory) as db:
        db.get(Member, members[0]).rating = 1500

    discrepancies = wager.rankings.audit_ratings()
    assert len(discrepancies) == 1
    assert discrepancies[0].member_id == members[0]
    assert (discrepancies[0].stored, discrepancies[0].replayed) == (1500, 1216)


def test_audit_replays_from_seeded_rating(wager, session_factory, night, members):
    with session_scope(session_factory) as db:
        db.get(Member, members[0]).rating = 1400
    _play(wager, night, members[:2], members[1])
    _play(wager, night, members[:2], members[0])
    assert wager.rankings.audit_ratings() == []

    # Players who joined at the default replay from default_rating
    history = wager.rankings.rating_history(members[1])
    assert history[0].rating_before == wager.config.default_rating
