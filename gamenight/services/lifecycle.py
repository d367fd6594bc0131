"""
Game-night lifecycle: attendance and the in-person betting lock.

Once a night has started, members checked in to that night can no longer
place new bets: they are at the table and may know how a game is going.
Members who are not there keep betting as before.
"""

import logging
from datetime import date
from typing import List, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gamenight.errors import BettingLocked, NotFound
from gamenight.models import Attendee, GameNight, Member, SessionLocal, session_scope, utcnow
from gamenight.utils.retry import with_retries

logger = logging.getLogger(__name__)


def to_date_key(value: Union[date, int]) -> int:
    """``date(2026, 1, 26)`` → ``20260126``.  Ints pass through."""
    if isinstance(value, int):
        return value
    return value.year * 10000 + value.month * 100 + value.day


class GameNightLifecycle:
    """Attendance registry plus the ``can member bet`` rule."""

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Betting gate
    # ------------------------------------------------------------------

    @staticmethod
    def member_can_bet(db: Session, night_id: int, member_id: int) -> bool:
        """Evaluate the betting lock inside the caller's transaction."""
        night = db.get(GameNight, night_id)
        if night is None:
            raise NotFound(f"Game night {night_id} not found", night_id=night_id)
        if not night.has_started:
            return True
        is_attendee = db.execute(
            select(Attendee.id).where(
                Attendee.game_night_id == night_id,
                Attendee.member_id == member_id,
            )
        ).first() is not None
        return not is_attendee

    def ensure_can_bet(self, db: Session, night_id: int, member_id: int) -> None:
        if not self.member_can_bet(db, night_id, member_id):
            raise BettingLocked(
                "Attendees cannot place bets once the night has started",
                night_id=night_id,
                member_id=member_id,
            )

    def can_member_bet(self, night_id: int, member_id: int) -> bool:
        def _read() -> bool:
            with session_scope(self.session_factory) as db:
                return self.member_can_bet(db, night_id, member_id)

        return with_retries(_read, label=f"can_member_bet({night_id}, {member_id})")

    # ------------------------------------------------------------------
    # Attendance registry
    # ------------------------------------------------------------------

    def create_night(self, night_date: Union[date, int]) -> int:
        """Create the night for *night_date*, or return the existing one."""
        date_key = to_date_key(night_date)
        with session_scope(self.session_factory) as db:
            existing = db.execute(
                select(GameNight.id).where(GameNight.date_key == date_key)
            ).scalar_one_or_none()
            if existing is not None:
                return existing
            night = GameNight(date_key=date_key, has_started=False)
            db.add(night)
            db.flush()
            logger.info("Created game night %d (id=%d)", date_key, night.id)
            return night.id

    def get_night_id(self, night_date: Union[date, int]) -> Optional[int]:
        with session_scope(self.session_factory) as db:
            return db.execute(
                select(GameNight.id).where(GameNight.date_key == to_date_key(night_date))
            ).scalar_one_or_none()

    def check_in(self, night_id: int, member_id: int) -> bool:
        """Record *member_id* as present.  Returns False if already checked in."""
        try:
            with session_scope(self.session_factory) as db:
                if db.get(GameNight, night_id) is None:
                    raise NotFound(f"Game night {night_id} not found", night_id=night_id)
                if db.get(Member, member_id) is None:
                    raise NotFound(f"Member {member_id} not found", member_id=member_id)
                already = db.execute(
                    select(Attendee.id).where(
                        Attendee.game_night_id == night_id,
                        Attendee.member_id == member_id,
                    )
                ).first()
                if already is not None:
                    return False
                db.add(Attendee(game_night_id=night_id, member_id=member_id))
        except IntegrityError:
            # Concurrent check-in of the same member won the insert
            return False
        logger.info("Member %d checked in to night %d", member_id, night_id)
        return True

    def check_out(self, night_id: int, member_id: int) -> bool:
        with session_scope(self.session_factory) as db:
            attendee = db.execute(
                select(Attendee).where(
                    Attendee.game_night_id == night_id,
                    Attendee.member_id == member_id,
                )
            ).scalar_one_or_none()
            if attendee is None:
                return False
            db.delete(attendee)
            return True

    def start_night(self, night_id: int) -> bool:
        """Flip ``has_started``.  Idempotent; returns False if already started."""
        with session_scope(self.session_factory) as db:
            night = db.get(GameNight, night_id)
            if night is None:
                raise NotFound(f"Game night {night_id} not found", night_id=night_id)
            if night.has_started:
                return False
            night.has_started = True
            night.started_at = utcnow()
        logger.info("Game night %d started; attendee betting locked", night_id)
        return True

    def get_attendees(self, night_id: int) -> List[int]:
        with session_scope(self.session_factory) as db:
            return list(
                db.execute(
                    select(Attendee.member_id)
                    .where(Attendee.game_night_id == night_id)
                    .order_by(Attendee.member_id)
                ).scalars()
            )
