"""Shared fixtures: a file-backed SQLite database per test.

A file (not ``:memory:``) so that worker threads in the concurrency tests
open their own connections and contend on SQLite's real locks.
"""

import pytest
from sqlalchemy.orm import sessionmaker

from gamenight.core.outcome import Participant
from gamenight.core.wager_config import WagerConfig
from gamenight.models import Base, Member, OddsEntry, make_engine, session_scope
from gamenight.services.engine import WagerEngine

STARTING_COINS = 1000
MEMBER_NAMES = ("Ada", "Brook", "Cato", "Dana")


@pytest.fixture
def db_engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'gamenight.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def config():
    return WagerConfig(retry_base_delay=0.0)


@pytest.fixture
def wager(session_factory, config):
    return WagerEngine(session_factory, config=config)


@pytest.fixture
def members(session_factory, wager):
    """Four members rated 1200, each with a funded wallet.  Returns their ids."""
    ids = []
    with session_scope(session_factory) as db:
        for name in MEMBER_NAMES:
            member = Member(name=name, rating=1200)
            db.add(member)
            db.flush()
            wager.wallet.deposit(db, member.id, STARTING_COINS, f"seed:{member.id}")
            ids.append(member.id)
    return ids


@pytest.fixture
def night(wager):
    return wager.lifecycle.create_night(20260126)


@pytest.fixture
def confirmed_session(wager, night, members):
    """Ada vs Brook, confirmed, no odds yet."""
    session_id = wager.sessions.add_session(night, "Azul")
    wager.sessions.confirm_session(
        session_id, [Participant(members[0]), Participant(members[1])]
    )
    return session_id


@pytest.fixture
def priced_session(wager, confirmed_session):
    wager.generate_odds(confirmed_session)
    return confirmed_session


def set_odds(session_factory, session_id, odds):
    """Write odds rows directly, for scenarios that need exact prices."""
    with session_scope(session_factory) as db:
        for member_id, odds_times100 in odds.items():
            db.add(OddsEntry(session_id=session_id, member_id=member_id, odds_times100=odds_times100))


def balance(wager, session_factory, user_id):
    with session_scope(session_factory) as db:
        return wager.wallet.get_balance(db, user_id)
