"""Tests for the session state machine."""

import pytest

from gamenight.core.outcome import OUTCOME_TEAM, Participant
from gamenight.errors import InvalidSessionTransition, NotFound
from gamenight.models import (
    STATE_CONFIRMED,
    STATE_PLANNED,
    STATE_PLAYED,
    STATE_RESOLVED,
    session_scope,
)
from gamenight.services.sessions import transition


def test_add_session_starts_planned(wager, night):
    session_id = wager.sessions.add_session(night, "  Catan ")
    view = wager.sessions.get_session(session_id)
    assert view.state == STATE_PLANNED
    assert view.board_game_name == "Catan"
    assert not view.is_confirmed
    assert view.bet_count == 0


def test_add_session_unknown_night(wager):
    with pytest.raises(NotFound):
        wager.sessions.add_session(404, "Catan")


def test_confirm_locks_roster(wager, night, members):
    session_id = wager.sessions.add_session(night, "Codenames")
    wager.sessions.confirm_session(
        session_id, [Participant(members[0], "Red"), Participant(members[1], "Blue")]
    )
    assert wager.sessions.get_session(session_id).state == STATE_CONFIRMED
    assert wager.sessions.get_roster(session_id) == (
        Participant(members[0], "Red"),
        Participant(members[1], "Blue"),
    )
    # Roster cannot be replaced
    with pytest.raises(InvalidSessionTransition):
        wager.sessions.confirm_session(session_id, [Participant(members[2])])


@pytest.mark.parametrize("roster", [[], "dupes"])
def test_confirm_rejects_bad_roster(wager, night, members, roster):
    session_id = wager.sessions.add_session(night, "Azul")
    if roster == "dupes":
        roster = [Participant(members[0]), Participant(members[0])]
    with pytest.raises(ValueError):
        wager.sessions.confirm_session(session_id, roster)
    assert wager.sessions.get_session(session_id).state == STATE_PLANNED


def test_confirm_rejects_unknown_member(wager, night, members):
    session_id = wager.sessions.add_session(night, "Azul")
    with pytest.raises(NotFound):
        wager.sessions.confirm_session(session_id, [Participant(members[0]), Participant(777)])


def test_record_outcome(wager, confirmed_session, members):
    outcome = wager.sessions.record_outcome(confirmed_session, winner_member_id=members[1])
    view = wager.sessions.get_session(confirmed_session)
    assert view.state == STATE_PLAYED
    assert view.winner_member_id == members[1]
    assert wager.sessions.get_outcome(confirmed_session) == outcome


def test_winner_set_only_once(wager, confirmed_session, members):
    wager.sessions.record_outcome(confirmed_session, winner_member_id=members[1])
    with pytest.raises(InvalidSessionTransition):
        wager.sessions.record_outcome(confirmed_session, winner_member_id=members[0])
    assert wager.sessions.get_session(confirmed_session).winner_member_id == members[1]


def test_record_outcome_requires_confirmation(wager, night, members):
    session_id = wager.sessions.add_session(night, "Azul")
    with pytest.raises(ValueError):
        # Planned sessions have no roster, so the winner is not on it
        wager.sessions.record_outcome(session_id, winner_member_id=members[0])


def test_team_outcome_round_trips(wager, night, members):
    session_id = wager.sessions.add_session(night, "Codenames")
    wager.sessions.confirm_session(session_id, [
        Participant(members[0], "Red"), Participant(members[1], "Red"),
        Participant(members[2], "Blue"), Participant(members[3], "Blue"),
    ])
    wager.sessions.record_outcome(session_id, winner_team_name="RED")
    outcome = wager.sessions.get_outcome(session_id)
    assert outcome.kind == OUTCOME_TEAM
    assert outcome.winning_member_ids() == frozenset({members[0], members[1]})


def test_get_outcome_before_played(wager, confirmed_session):
    with pytest.raises(InvalidSessionTransition):
        wager.sessions.get_outcome(confirmed_session)


class TestTransition:
    def test_compare_and_set(self, session_factory, confirmed_session):
        with session_scope(session_factory) as db:
            transition(db, confirmed_session, STATE_CONFIRMED, STATE_PLAYED)
        with session_scope(session_factory) as db:
            with pytest.raises(InvalidSessionTransition) as info:
                transition(db, confirmed_session, STATE_CONFIRMED, STATE_PLAYED)
        assert info.value.context["current_state"] == STATE_PLAYED

    def test_accepts_several_expected_states(self, session_factory, confirmed_session):
        with session_scope(session_factory) as db:
            transition(db, confirmed_session, (STATE_PLANNED, STATE_CONFIRMED), STATE_PLAYED)

    def test_missing_session(self, session_factory):
        with session_scope(session_factory) as db:
            with pytest.raises(NotFound):
                transition(db, 999, STATE_PLAYED, STATE_RESOLVED)


class TestDelete:
    def test_delete_cascades(self, wager, priced_session):
        wager.sessions.delete_session(priced_session)
        with pytest.raises(NotFound):
            wager.sessions.get_session(priced_session)

    def test_refuses_with_bets(self, wager, priced_session, members):
        wager.place_bet(priced_session, members[2], members[0], 10)
        with pytest.raises(InvalidSessionTransition):
            wager.sessions.delete_session(priced_session)

    def test_refuses_when_resolved(self, wager, confirmed_session, members):
        wager.sessions.record_outcome(confirmed_session, winner_member_id=members[0])
        wager.resolve_session(confirmed_session)
        with pytest.raises(InvalidSessionTransition):
            wager.sessions.delete_session(confirmed_session)


def test_list_sessions(wager, night, confirmed_session):
    second = wager.sessions.add_session(night, "Carcassonne")
    views = wager.sessions.list_sessions(night)
    assert [v.id for v in views] == [confirmed_session, second]
    assert [v.is_confirmed for v in views] == [True, False]


def test_team_game_rejects_member_winner(wager, night, members):
    session_id = wager.sessions.add_session(night, "Codenames")
    wager.sessions.confirm_session(session_id, [
        Participant(members[0], "Red"), Participant(members[1], "Red"),
        Participant(members[2], "Blue"), Participant(members[3], "Blue"),
    ])
    with pytest.raises(ValueError):
        wager.sessions.record_outcome(session_id, winner_member_id=members[0])
    assert wager.sessions.get_session(session_id).state == STATE_CONFIRMED
