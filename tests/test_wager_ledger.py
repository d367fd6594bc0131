"""Tests for bet placement, settlement and per-night results."""

import pytest
from sqlalchemy import select

from gamenight.core.outcome import GameOutcome
from gamenight.errors import (
    AlreadyResolved,
    BettingLocked,
    DuplicateBet,
    InsufficientBalance,
    InvalidAmount,
    SessionNotOpenForBetting,
    UnknownCandidate,
)
from gamenight.models import Bet, Member, session_scope
from gamenight.services.wager_ledger import WagerLedger

from conftest import STARTING_COINS, balance, set_odds


def test_place_bet_copies_odds_and_debits_stake(wager, session_factory, priced_session, members):
    receipt = wager.place_bet(priced_session, members[2], members[0], 100)

    assert receipt.session_id == priced_session
    assert receipt.user_id == members[2]
    assert receipt.predicted_winner_member_id == members[0]
    assert receipt.amount == 100
    assert receipt.odds_times100 == 217
    assert receipt.potential_payout == 217
    assert receipt.is_resolved is False
    assert receipt.payout == 0

    assert balance(wager, session_factory, members[2]) == STARTING_COINS - 100
    assert wager.sessions.get_session(priced_session).bet_count == 1


def test_players_may_bet(wager, priced_session, members):
    receipt = wager.place_bet(priced_session, members[0], members[0], 10)
    assert receipt.odds_times100 == 217


class TestPreconditions:
    def test_session_not_confirmed(self, wager, night, members):
        session_id = wager.sessions.add_session(night, "Azul")
        with pytest.raises(SessionNotOpenForBetting):
            wager.place_bet(session_id, members[2], members[0], 10)

    def test_session_already_played(self, wager, priced_session, members):
        wager.sessions.record_outcome(priced_session, winner_member_id=members[0])
        with pytest.raises(SessionNotOpenForBetting):
            wager.place_bet(priced_session, members[2], members[0], 10)

    def test_session_resolved(self, wager, priced_session, members):
        wager.resolve_session(priced_session, _winner(wager, priced_session, members[0]))
        with pytest.raises(SessionNotOpenForBetting):
            wager.place_bet(priced_session, members[2], members[0], 10)

    def test_attendee_locked_out_after_start(self, wager, night, priced_session, members):
        wager.lifecycle.check_in(night, members[2])
        wager.lifecycle.start_night(night)
        with pytest.raises(BettingLocked):
            wager.place_bet(priced_session, members[2], members[0], 10)
        # Remote member still bets
        assert wager.place_bet(priced_session, members[3], members[0], 10).amount == 10

    def test_unknown_candidate(self, wager, priced_session, members):
        with pytest.raises(UnknownCandidate):
            wager.place_bet(priced_session, members[2], members[3], 10)

    def test_no_odds_yet(self, wager, confirmed_session, members):
        with pytest.raises(UnknownCandidate):
            wager.place_bet(confirmed_session, members[2], members[0], 10)

    def test_duplicate(self, wager, session_factory, priced_session, members):
        wager.place_bet(priced_session, members[2], members[0], 10)
        with pytest.raises(DuplicateBet):
            wager.place_bet(priced_session, members[2], members[1], 20)
        assert balance(wager, session_factory, members[2]) == STARTING_COINS - 10

    @pytest.mark.parametrize("amount", [0, -5, 1.5, True, "10", None])
    def test_invalid_amount(self, wager, priced_session, members, amount):
        with pytest.raises(InvalidAmount):
            wager.place_bet(priced_session, members[2], members[0], amount)

    def test_insufficient_balance(self, wager, session_factory, priced_session, members):
        with pytest.raises(InsufficientBalance):
            wager.place_bet(priced_session, members[2], members[0], STARTING_COINS + 1)
        assert balance(wager, session_factory, members[2]) == STARTING_COINS
        assert wager.sessions.get_session(priced_session).bet_count == 0
        assert wager.get_bets_for_user(members[2]) == []

    def test_member_without_wallet(self, wager, session_factory, priced_session, members):
        with session_scope(session_factory) as db:
            broke = Member(name="Gus", rating=1200)
            db.add(broke)
            db.flush()
            broke_id = broke.id
        with pytest.raises(InsufficientBalance):
            wager.place_bet(priced_session, broke_id, members[0], 1)


class TestPreconditionOrder:
    def test_state_before_lock(self, wager, night, priced_session, members):
        wager.lifecycle.check_in(night, members[2])
        wager.lifecycle.start_night(night)
        wager.sessions.record_outcome(priced_session, winner_member_id=members[0])
        with pytest.raises(SessionNotOpenForBetting):
            wager.place_bet(priced_session, members[2], members[3], 0)

    def test_lock_before_candidate(self, wager, night, priced_session, members):
        wager.lifecycle.check_in(night, members[2])
        wager.lifecycle.start_night(night)
        with pytest.raises(BettingLocked):
            wager.place_bet(priced_session, members[2], members[3], 0)

    def test_candidate_before_duplicate(self, wager, priced_session, members):
        wager.place_bet(priced_session, members[2], members[0], 10)
        with pytest.raises(UnknownCandidate):
            wager.place_bet(priced_session, members[2], members[3], 0)

    def test_duplicate_before_amount(self, wager, priced_session, members):
        wager.place_bet(priced_session, members[2], members[0], 10)
        with pytest.raises(DuplicateBet):
            wager.place_bet(priced_session, members[2], members[0], 0)

    def test_amount_before_balance(self, wager, priced_session, members):
        with pytest.raises(InvalidAmount):
            wager.place_bet(priced_session, members[2], members[0], -(STARTING_COINS + 1))


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------

class TestSettleBet:
    def _bet(self, db, session_id, user_id):
        return db.execute(
            select(Bet).where(Bet.session_id == session_id, Bet.user_id == user_id)
        ).scalar_one()

    def test_winner_and_loser(self, wager, session_factory, confirmed_session, members):
        set_odds(session_factory, confirmed_session, {members[0]: 175, members[1]: 250})
        wager.place_bet(confirmed_session, members[2], members[0], 100)
        wager.place_bet(confirmed_session, members[3], members[1], 40)

        with session_scope(session_factory) as db:
            won = WagerLedger.settle_bet(db, self._bet(db, confirmed_session, members[2]), True)
            lost = WagerLedger.settle_bet(db, self._bet(db, confirmed_session, members[3]), False)
            assert (won.payout, won.is_resolved) == (175, True)
            assert (lost.payout, lost.is_resolved) == (0, True)
            assert won.resolved_at is not None

    def test_already_resolved(self, wager, session_factory, priced_session, members):
        wager.place_bet(priced_session, members[2], members[0], 100)
        with session_scope(session_factory) as db:
            bet = self._bet(db, priced_session, members[2])
            WagerLedger.settle_bet(db, bet, True)
            with pytest.raises(AlreadyResolved):
                WagerLedger.settle_bet(db, bet, False)
            assert bet.payout == 217


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def _winner(wager, session_id, member_id):
    return GameOutcome(wager.sessions.get_roster(session_id), winner_member_id=member_id)


def test_bets_for_user_filtered_by_night(wager, priced_session, members):
    other_night = wager.lifecycle.create_night(20260202)
    wager.place_bet(priced_session, members[2], members[0], 10)

    assert [b.session_id for b in wager.get_bets_for_user(members[2])] == [priced_session]
    assert wager.get_bets_for_user(members[2], night_id=other_night) == []
    assert len(wager.ledger.get_bets_for_session(priced_session)) == 1


def test_night_net_results(wager, session_factory, night, confirmed_session, members):
    set_odds(session_factory, confirmed_session, {members[0]: 175, members[1]: 250})
    wager.place_bet(confirmed_session, members[2], members[0], 100)   # wins 175
    wager.place_bet(confirmed_session, members[3], members[1], 40)    # loses
    wager.resolve_session(confirmed_session, _winner(wager, confirmed_session, members[0]))

    results = wager.ledger.night_net_results(night)
    assert [(r.user_id, r.net, r.bets) for r in results] == [
        (members[2], 75, 1),
        (members[3], -40, 1),
    ]
    assert results[0].name == "Cato"


def test_unresolved_bets_not_in_net_results(wager, night, priced_session, members):
    wager.place_bet(priced_session, members[2], members[0], 100)
    assert wager.ledger.night_net_results(night) == []
