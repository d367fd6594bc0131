"""Tests for CoinWallet."""

import pytest
from sqlalchemy import select

from gamenight.errors import InsufficientBalance, InvalidAmount
from gamenight.models import Member, WalletTransaction, session_scope
from gamenight.services.wallet import CoinWallet

from conftest import STARTING_COINS


@pytest.fixture
def wallet():
    return CoinWallet()


def test_debit_and_credit(wallet, session_factory, members):
    with session_scope(session_factory) as db:
        assert wallet.debit(db, members[0], 300, "stake:1:1") is True
        assert wallet.credit(db, members[0], 50, "payout:1:1") is True
        assert wallet.get_balance(db, members[0]) == STARTING_COINS - 250


def test_repeated_keys_are_noops(wallet, session_factory, members):
    with session_scope(session_factory) as db:
        wallet.debit(db, members[0], 300, "stake:1:1")
        assert wallet.debit(db, members[0], 300, "stake:1:1") is False
        assert wallet.get_balance(db, members[0]) == STARTING_COINS - 300


def test_debit_cannot_overdraw(wallet, session_factory, members):
    with session_scope(session_factory) as db:
        with pytest.raises(InsufficientBalance) as info:
            wallet.debit(db, members[0], STARTING_COINS + 1, "stake:1:1")
        assert info.value.context["balance"] == STARTING_COINS
        assert wallet.get_balance(db, members[0]) == STARTING_COINS


def test_credit_creates_wallet(wallet, session_factory, members):
    with session_scope(session_factory) as db:
        newcomer = Member(name="Hal", rating=1200)
        db.add(newcomer)
        db.flush()
        assert wallet.get_balance(db, newcomer.id) == 0
        wallet.credit(db, newcomer.id, 80, "grant:hal")
        assert wallet.get_balance(db, newcomer.id) == 80


@pytest.mark.parametrize("amount", [0, -10])
def test_non_positive_amounts(wallet, session_factory, members, amount):
    with session_scope(session_factory) as db:
        with pytest.raises(InvalidAmount):
            wallet.debit(db, members[0], amount, "x")
        with pytest.raises(InvalidAmount):
            wallet.credit(db, members[0], amount, "y")


def test_journal_is_signed(wallet, session_factory, members):
    with session_scope(session_factory) as db:
        wallet.debit(db, members[1], 40, "stake:9:2")
        wallet.credit(db, members[1], 70, "payout:9:2")
    with session_scope(session_factory) as db:
        rows = db.execute(
            select(WalletTransaction.amount)
            .where(WalletTransaction.user_id == members[1])
            .order_by(WalletTransaction.id)
        ).scalars().all()
    assert rows == [STARTING_COINS, -40, 70]
