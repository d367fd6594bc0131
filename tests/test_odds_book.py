"""Tests for OddsBook: pricing, persistence and the regeneration lock."""

import pytest

from gamenight.core.outcome import Participant
from gamenight.core.wager_config import WagerConfig
from gamenight.errors import NotFound, OddsLocked, SessionNotOpenForBetting, UnknownCandidate
from gamenight.models import Member, session_scope
from gamenight.services.odds_book import OddsBook


def _set_rating(session_factory, member_id, rating):
    with session_scope(session_factory) as db:
        db.get(Member, member_id).rating = rating


def test_equal_ratings_get_equal_odds(wager, confirmed_session, members):
    snapshot = wager.generate_odds(confirmed_session)
    # 0.5 * (1 - 0.08) = 0.46 -> 100 / 0.46 = 217.4
    assert snapshot.as_dict() == {members[0]: 217, members[1]: 217}
    assert wager.get_odds_for_session(confirmed_session) == snapshot


def test_favourite_gets_shorter_odds(wager, session_factory, confirmed_session, members):
    _set_rating(session_factory, members[0], 1400)
    snapshot = wager.generate_odds(confirmed_session)
    assert snapshot.get(members[0]) < snapshot.get(members[1])
    assert snapshot.get(members[0]) >= 100


def test_book_is_generous_by_margin(wager, night, members):
    session_id = wager.sessions.add_session(night, "Splendor")
    wager.sessions.confirm_session(session_id, [Participant(m) for m in members])
    snapshot = wager.generate_odds(session_id)
    implied = sum(100 / q.odds_times100 for q in snapshot.quotes)
    assert implied == pytest.approx(0.92, abs=0.01)


def test_team_members_share_odds(wager, session_factory, night, members):
    _set_rating(session_factory, members[0], 1500)
    session_id = wager.sessions.add_session(night, "Codenames")
    wager.sessions.confirm_session(session_id, [
        Participant(members[0], "Red"), Participant(members[1], "Red"),
        Participant(members[2], "Blue"), Participant(members[3], "Blue"),
    ])
    odds = wager.generate_odds(session_id).as_dict()
    assert odds[members[0]] == odds[members[1]]
    assert odds[members[2]] == odds[members[3]]
    assert odds[members[0]] < odds[members[2]]


def test_candidate_subset(wager, confirmed_session, members):
    snapshot = wager.generate_odds(confirmed_session, candidates=[members[1]])
    assert snapshot.as_dict() == {members[1]: 217}


def test_candidate_not_on_roster(wager, confirmed_session, members):
    with pytest.raises(UnknownCandidate):
        wager.generate_odds(confirmed_session, candidates=[members[3]])
    assert len(wager.get_odds_for_session(confirmed_session)) == 0


def test_snapped_odds(session_factory, confirmed_session, members):
    book = OddsBook(session_factory, WagerConfig(snap_odds=True, retry_base_delay=0.0))
    assert book.generate_odds(confirmed_session).as_dict() == {members[0]: 220, members[1]: 220}


class TestLocking:
    def test_planned_session_has_no_odds(self, wager, night):
        session_id = wager.sessions.add_session(night, "Azul")
        with pytest.raises(SessionNotOpenForBetting):
            wager.generate_odds(session_id)

    def test_played_session(self, wager, confirmed_session, members):
        wager.sessions.record_outcome(confirmed_session, winner_member_id=members[0])
        with pytest.raises(SessionNotOpenForBetting):
            wager.generate_odds(confirmed_session)

    def test_unknown_session(self, wager):
        with pytest.raises(NotFound):
            wager.generate_odds(4242)

    def test_second_generation_needs_regenerate(self, wager, priced_session):
        with pytest.raises(OddsLocked):
            wager.generate_odds(priced_session)

    def test_regenerate_before_bets(self, wager, session_factory, priced_session, members):
        _set_rating(session_factory, members[0], 1400)
        snapshot = wager.generate_odds(priced_session, regenerate=True)
        assert snapshot.get(members[0]) < 217
        assert len(snapshot) == 2

    def test_regenerate_after_bet_is_refused(self, wager, session_factory, priced_session, members):
        wager.place_bet(priced_session, members[2], members[0], 50)
        before = wager.get_odds_for_session(priced_session)

        _set_rating(session_factory, members[0], 1600)
        with pytest.raises(OddsLocked):
            wager.generate_odds(priced_session, regenerate=True)

        assert wager.get_odds_for_session(priced_session) == before
        assert wager.get_bets_for_user(members[2])[0].odds_times100 == 217
