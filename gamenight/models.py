"""
Database models for the game-night wagering engine
SQLAlchemy ORM; SQLite for development, PostgreSQL in production

Relationships are plain foreign-key ids resolved by explicit queries.  There
are no ORM navigation properties and no implicit cascades: removing a parent
row is done by the owning service (see GameSessionService.delete_session).
"""

import os
from contextlib import contextmanager
from datetime import datetime, timezone

from dotenv import load_dotenv
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.orm import declarative_base, sessionmaker

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./gamenight.db")


def make_engine(url: str = DATABASE_URL, **kwargs):
    """Create an engine; SQLite connections may be shared across worker threads."""
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", 30)
        return create_engine(url, connect_args=connect_args, **kwargs)
    return create_engine(url, pool_pre_ping=True, **kwargs)


engine = make_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Dependency for FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(session_factory=SessionLocal):
    """One unit of work: commit on success, roll back on any exception."""
    db = session_factory()
    try:
        yield db
        db.commit()
    except BaseException:
        db.rollback()
        raise
    finally:
        db.close()


# ---------------------------------------------------------------------------
# Session states; the only legal path is left to right.
# ---------------------------------------------------------------------------

STATE_PLANNED = "planned"
STATE_CONFIRMED = "confirmed"
STATE_PLAYED = "played"
STATE_RESOLVING = "resolving"
STATE_RESOLVED = "resolved"

SESSION_STATES = (
    STATE_PLANNED,
    STATE_CONFIRMED,
    STATE_PLAYED,
    STATE_RESOLVING,
    STATE_RESOLVED,
)


class Member(Base):
    """Club member; also the identity bets and wallets are keyed on."""

    __tablename__ = "members"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)

    # Written only by ResolutionEngine
    rating = Column(Integer, nullable=False, default=1200)
    rating_updated_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), default=utcnow)


class GameNight(Base):
    """One club night; date_key is YYYYMMDD"""

    __tablename__ = "game_nights"

    id = Column(Integer, primary_key=True, index=True)
    date_key = Column(Integer, nullable=False, unique=True, index=True)
    has_started = Column(Boolean, nullable=False, default=False)
    started_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), default=utcnow)


class Attendee(Base):
    """Member checked in to a night"""

    __tablename__ = "game_night_attendees"

    id = Column(Integer, primary_key=True, index=True)
    game_night_id = Column(Integer, ForeignKey("game_nights.id"), nullable=False, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    checked_in_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (UniqueConstraint("game_night_id", "member_id", name="_night_member_uc"),)


class GameSession(Base):
    """One board game played at one night: the unit of betting and resolution"""

    __tablename__ = "game_sessions"

    id = Column(Integer, primary_key=True, index=True)
    game_night_id = Column(Integer, ForeignKey("game_nights.id"), nullable=False, index=True)
    board_game_name = Column(String(200), nullable=False)

    state = Column(String(16), nullable=False, default=STATE_PLANNED, index=True)

    # Outcome, set once by the confirmed -> played transition
    winner_member_id = Column(Integer, ForeignKey("members.id"))
    winner_team_name = Column(String(64))
    is_draw = Column(Boolean, nullable=False, default=False)

    # Bumped by every accepted bet through the same conditional update that
    # checks state; non-zero means odds are frozen.
    bet_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    confirmed_at = Column(DateTime(timezone=True))
    played_at = Column(DateTime(timezone=True))
    resolved_at = Column(DateTime(timezone=True))

    @property
    def is_confirmed(self) -> bool:
        return self.state != STATE_PLANNED

    @property
    def is_played(self) -> bool:
        return self.state in (STATE_PLAYED, STATE_RESOLVING, STATE_RESOLVED)

    @property
    def is_resolved(self) -> bool:
        return self.state == STATE_RESOLVED


class SessionPlayer(Base):
    """Roster entry, locked when the session is confirmed"""

    __tablename__ = "session_players"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("game_sessions.id"), nullable=False, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False)
    team_name = Column(String(64))

    __table_args__ = (UniqueConstraint("session_id", "member_id", name="_session_player_uc"),)


class OddsEntry(Base):
    """Decimal odds x100 for one candidate; immutable once any bet exists"""

    __tablename__ = "session_odds"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("game_sessions.id"), nullable=False, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False)
    odds_times100 = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (UniqueConstraint("session_id", "member_id", name="_session_odds_uc"),)


class Bet(Base):
    """One member's wager on one session"""

    __tablename__ = "bets"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("game_sessions.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    predicted_winner_member_id = Column(Integer, ForeignKey("members.id"), nullable=False)

    amount = Column(Integer, nullable=False)
    # Snapshot of OddsEntry.odds_times100 at placement; never recomputed
    odds_times100 = Column(Integer, nullable=False)

    is_resolved = Column(Boolean, nullable=False, default=False)
    payout = Column(Integer, nullable=False, default=0)  # stake included; 0 for losers
    resolved_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (UniqueConstraint("session_id", "user_id", name="_session_user_bet_uc"),)


class PendingCredit(Base):
    """Winning payout waiting to be credited to the bettor's wallet"""

    __tablename__ = "pending_credits"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("game_sessions.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("members.id"), nullable=False)
    amount = Column(Integer, nullable=False)
    idempotency_key = Column(String(120), nullable=False, unique=True)

    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(String(500))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    delivered_at = Column(DateTime(timezone=True), index=True)


class RatingChange(Base):
    """Audit trail of every rating update made by resolution"""

    __tablename__ = "rating_changes"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("game_sessions.id"), nullable=False, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    rating_before = Column(Integer, nullable=False)
    rating_after = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (UniqueConstraint("session_id", "member_id", name="_session_rating_uc"),)


class Wallet(Base):
    """Coin balance per member (CoinWallet backend)"""

    __tablename__ = "wallets"

    user_id = Column(Integer, ForeignKey("members.id"), primary_key=True)
    coins = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class WalletTransaction(Base):
    """Signed coin movement; the idempotency key makes replays no-ops"""

    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    idempotency_key = Column(String(120), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
