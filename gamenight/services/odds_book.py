"""
Odds book: prices every candidate of a confirmed session.

Odds are generated once, after the roster is locked, and are frozen from the
moment the first bet references them.  Generation serialises with bet
placement through a conditional UPDATE on ``game_sessions`` that requires
``state = 'confirmed' AND bet_count = 0``; ``place_bet`` bumps ``bet_count``
under ``state = 'confirmed'``, so the two can never interleave.

Team games (two or more named teams) are priced per team from the team's
average rating and every member of a team carries the same price.  A bet on
any member of the winning team wins.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from gamenight.core.odds_math import (
    apply_house_margin,
    probability_to_odds_times100,
    snap_to_fraction,
    win_probabilities,
)
from gamenight.core.outcome import Participant
from gamenight.core.wager_config import WagerConfig
from gamenight.errors import NotFound, OddsLocked, SessionNotOpenForBetting, UnknownCandidate
from gamenight.models import (
    STATE_CONFIRMED,
    Bet,
    GameSession,
    Member,
    OddsEntry,
    SessionLocal,
    session_scope,
)
from gamenight.services.sessions import load_roster
from gamenight.utils.retry import with_retries

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OddsQuote:
    member_id: int
    odds_times100: int


@dataclass(frozen=True)
class OddsSnapshot:
    """Immutable view of a session's odds, in candidate order."""

    session_id: int
    quotes: Tuple[OddsQuote, ...]

    def get(self, member_id: int) -> Optional[int]:
        for quote in self.quotes:
            if quote.member_id == member_id:
                return quote.odds_times100
        return None

    def as_dict(self) -> Dict[int, int]:
        return {q.member_id: q.odds_times100 for q in self.quotes}

    def __len__(self) -> int:
        return len(self.quotes)


def load_snapshot(db: Session, session_id: int) -> OddsSnapshot:
    rows = db.execute(
        select(OddsEntry.member_id, OddsEntry.odds_times100)
        .where(OddsEntry.session_id == session_id)
        .order_by(OddsEntry.id)
    ).all()
    return OddsSnapshot(
        session_id=session_id,
        quotes=tuple(OddsQuote(r.member_id, r.odds_times100) for r in rows),
    )


class OddsBook:
    def __init__(self, session_factory=SessionLocal, config: Optional[WagerConfig] = None):
        self.session_factory = session_factory
        self.config = config or WagerConfig()

    # ------------------------------------------------------------------
    # Pricing (no I/O)
    # ------------------------------------------------------------------

    def price(
        self, roster: Iterable[Participant], ratings: Dict[int, int]
    ) -> Dict[int, int]:
        """Return ``{member_id: odds_times100}`` for every member of *roster*."""
        roster = tuple(roster)
        units = self._pricing_units(roster)
        unit_ratings = {
            key: sum(ratings.get(m, self.config.default_rating) for m in members) / len(members)
            for key, members in units.items()
        }
        probabilities = apply_house_margin(
            win_probabilities(unit_ratings), self.config.house_margin
        )

        odds: Dict[int, int] = {}
        for key, members in units.items():
            price = probability_to_odds_times100(
                probabilities[key],
                epsilon=self.config.probability_epsilon,
                min_odds_times100=self.config.min_odds_times100,
                max_odds_times100=self.config.max_odds_times100,
            )
            if self.config.snap_odds:
                price = snap_to_fraction(price)
                price = max(self.config.min_odds_times100, min(price, self.config.max_odds_times100))
            for m in members:
                odds[m] = price
        return odds

    @staticmethod
    def _pricing_units(roster: Tuple[Participant, ...]) -> Dict[str, Tuple[int, ...]]:
        teams: Dict[str, List[int]] = {}
        for p in roster:
            if p.team_name and p.team_name.strip():
                teams.setdefault(p.team_name.strip().casefold(), []).append(p.member_id)

        if len(teams) < 2:
            return {f"member:{p.member_id}": (p.member_id,) for p in roster}

        units: Dict[str, Tuple[int, ...]] = {f"team:{k}": tuple(v) for k, v in teams.items()}
        for p in roster:
            if not (p.team_name and p.team_name.strip()):
                units[f"member:{p.member_id}"] = (p.member_id,)
        return units

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate_odds(
        self,
        session_id: int,
        candidates: Optional[Iterable[int]] = None,
        regenerate: bool = False,
    ) -> OddsSnapshot:
        """Price the session and persist the result.

        Args:
            session_id: A confirmed session.
            candidates: Members to price; defaults to the whole roster.  Team
                averages are always taken over the full team.
            regenerate: Replace odds that already exist.  Refused once any
                bet has been placed.

        Raises:
            NotFound: Unknown session.
            SessionNotOpenForBetting: Session is not confirmed.
            OddsLocked: Odds exist and *regenerate* is False, or bets exist.
            UnknownCandidate: A candidate is not on the roster.
        """
        wanted = None if candidates is None else list(dict.fromkeys(candidates))

        def _generate() -> OddsSnapshot:
            with session_scope(self.session_factory) as db:
                return self._generate_in(db, session_id, wanted, regenerate)

        return with_retries(
            _generate,
            max_attempts=self.config.max_attempts,
            base_delay=self.config.retry_base_delay,
            label=f"generate_odds({session_id})",
        )

    def _generate_in(
        self,
        db: Session,
        session_id: int,
        candidates: Optional[List[int]],
        regenerate: bool,
    ) -> OddsSnapshot:
        # Takes the row lock first so no bet can slip in between the checks
        # below and the insert.
        claimed = db.execute(
            update(GameSession)
            .where(
                GameSession.id == session_id,
                GameSession.state == STATE_CONFIRMED,
                GameSession.bet_count == 0,
            )
            .values(state=STATE_CONFIRMED)
        ).rowcount
        if claimed != 1:
            session = db.get(GameSession, session_id)
            if session is None:
                raise NotFound(f"Session {session_id} not found", session_id=session_id)
            if session.state != STATE_CONFIRMED:
                raise SessionNotOpenForBetting(
                    f"Session {session_id} is {session.state}; odds need a confirmed roster",
                    session_id=session_id,
                    state=session.state,
                )
            raise OddsLocked(
                f"Session {session_id} already has bets; odds are frozen",
                session_id=session_id,
            )

        bets = db.execute(
            select(func.count(Bet.id)).where(Bet.session_id == session_id)
        ).scalar_one()
        if bets:
            raise OddsLocked(
                f"Session {session_id} already has bets; odds are frozen",
                session_id=session_id,
            )

        existing = db.execute(
            select(func.count(OddsEntry.id)).where(OddsEntry.session_id == session_id)
        ).scalar_one()
        if existing and not regenerate:
            raise OddsLocked(
                f"Odds for session {session_id} already exist",
                session_id=session_id,
            )

        roster = load_roster(db, session_id)
        if candidates is not None:
            on_roster = {p.member_id for p in roster}
            unknown = [c for c in candidates if c not in on_roster]
            if unknown:
                raise UnknownCandidate(
                    f"Candidates {unknown} are not playing session {session_id}",
                    session_id=session_id,
                    candidate_ids=unknown,
                )

        ratings = dict(
            db.execute(
                select(Member.id, Member.rating).where(
                    Member.id.in_([p.member_id for p in roster])
                )
            ).all()
        )
        prices = self.price(roster, ratings)
        selected = [p.member_id for p in roster] if candidates is None else candidates

        if existing:
            db.execute(delete(OddsEntry).where(OddsEntry.session_id == session_id))
        for member_id in selected:
            db.add(OddsEntry(
                session_id=session_id,
                member_id=member_id,
                odds_times100=prices[member_id],
            ))
        db.flush()

        logger.info(
            "Odds %s for session %d: %s",
            "regenerated" if existing else "generated",
            session_id,
            {m: prices[m] for m in selected},
        )
        return load_snapshot(db, session_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_odds_for_session(self, session_id: int) -> OddsSnapshot:
        def _read() -> OddsSnapshot:
            with session_scope(self.session_factory) as db:
                if db.get(GameSession, session_id) is None:
                    raise NotFound(f"Session {session_id} not found", session_id=session_id)
                return load_snapshot(db, session_id)

        return with_retries(
            _read,
            max_attempts=self.config.max_attempts,
            base_delay=self.config.retry_base_delay,
            label=f"get_odds_for_session({session_id})",
        )
