"""
Read side of member ratings.

Only ResolutionEngine writes ratings.  This module reads them, and can
re-derive them: :meth:`Rankings.audit_ratings` replays every resolved session
in resolution order through the rating model and reports members whose stored
rating disagrees with the replay.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select

from gamenight.core.elo import RatingModel, replay_ratings
from gamenight.core.wager_config import WagerConfig
from gamenight.errors import NotFound
from gamenight.models import (
    STATE_RESOLVED,
    GameSession,
    Member,
    RatingChange,
    SessionLocal,
    session_scope,
)
from gamenight.services.sessions import load_outcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RankedMember:
    rank: int
    member_id: int
    name: str
    rating: int


@dataclass(frozen=True)
class RatingHistoryEntry:
    session_id: int
    rating_before: int
    rating_after: int
    created_at: Optional[datetime]

    @property
    def delta(self) -> int:
        return self.rating_after - self.rating_before


@dataclass(frozen=True)
class RatingDiscrepancy:
    member_id: int
    stored: int
    replayed: int


class Rankings:
    def __init__(self, session_factory=SessionLocal, config: Optional[WagerConfig] = None):
        self.session_factory = session_factory
        self.config = config or WagerConfig()

    def get_rating(self, member_id: int) -> int:
        with session_scope(self.session_factory) as db:
            member = db.get(Member, member_id)
            if member is None:
                raise NotFound(f"Member {member_id} not found", member_id=member_id)
            return member.rating if member.rating is not None else self.config.default_rating

    def get_ratings(self, member_ids: Iterable[int]) -> Dict[int, int]:
        ids = list(member_ids)
        with session_scope(self.session_factory) as db:
            stored = dict(db.execute(select(Member.id, Member.rating).where(Member.id.in_(ids))).all())
        return {m: stored.get(m) or self.config.default_rating for m in ids}

    def leaderboard(self, take: int = 20) -> List[RankedMember]:
        """Highest rated first; ties broken by name, then id."""
        with session_scope(self.session_factory) as db:
            rows = db.execute(
                select(Member.id, Member.name, Member.rating)
                .order_by(Member.rating.desc(), Member.name, Member.id)
                .limit(take)
            ).all()
        return [
            RankedMember(rank=i, member_id=r.id, name=r.name, rating=r.rating)
            for i, r in enumerate(rows, start=1)
        ]

    def rating_history(self, member_id: int) -> List[RatingHistoryEntry]:
        with session_scope(self.session_factory) as db:
            rows = db.execute(
                select(RatingChange)
                .where(RatingChange.member_id == member_id)
                .order_by(RatingChange.id)
            ).scalars()
            return [
                RatingHistoryEntry(r.session_id, r.rating_before, r.rating_after, r.created_at)
                for r in rows
            ]

    def audit_ratings(self) -> List[RatingDiscrepancy]:
        """Replay resolved sessions and compare with stored ratings.

        Every member starts the replay from the rating they had before their
        first recorded change.  That is ``default_rating`` for members who
        joined at the default and the seeded rating for members imported with
        one; members who never played start from their current rating.
        An empty list means the stored ratings are exactly re-derivable.
        """
        with session_scope(self.session_factory) as db:
            session_ids = list(db.execute(
                select(GameSession.id)
                .where(GameSession.state == STATE_RESOLVED)
                .order_by(GameSession.resolved_at, GameSession.id)
            ).scalars())
            outcomes = [load_outcome(db, sid) for sid in session_ids]

            initial: Dict[int, int] = {}
            for change in db.execute(select(RatingChange).order_by(RatingChange.id)).scalars():
                initial.setdefault(change.member_id, change.rating_before)

            stored = dict(db.execute(select(Member.id, Member.rating)).all())

        for member_id, rating in stored.items():
            initial.setdefault(member_id, rating)

        replayed = replay_ratings(outcomes, initial, RatingModel(self.config))
        discrepancies = [
            RatingDiscrepancy(member_id, stored[member_id], replayed[member_id])
            for member_id in sorted(stored)
            if member_id in replayed and replayed[member_id] != stored[member_id]
        ]
        if discrepancies:
            logger.warning("Rating audit found %d discrepancies", len(discrepancies))
        else:
            logger.info("Rating audit clean over %d resolved sessions", len(outcomes))
        return discrepancies
