"""
Resolution engine: settles a played session exactly once.

Protocol (one transaction, retried as a whole on transient failure):

    1. record the outcome if the caller supplies it for a confirmed session
    2. claim:   played -> resolving      (losers of the race: AlreadyResolved)
    3. settle every unresolved bet       (WagerLedger.settle_bet)
    4. queue a pending credit per winning bet
    5. apply RatingModel, write members.rating + a rating_changes row each
    6. finish:  resolving -> resolved, stamp resolved_at

Wallet credits are delivered after the commit.  A failed credit stays in
``pending_credits`` with its error and attempt count, and is retried by
:meth:`ResolutionEngine.deliver_pending_credits` (scheduled in main.py).
Settlement is never undone because a wallet was unavailable; the wallet's
idempotency key keeps re-delivery from paying twice.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from gamenight.core.elo import RatingModel
from gamenight.core.outcome import GameOutcome, is_winning_pick
from gamenight.core.wager_config import WagerConfig
from gamenight.errors import AlreadyResolved, InvalidSessionTransition, NotFound, WagerError
from gamenight.models import (
    STATE_CONFIRMED,
    STATE_PLAYED,
    STATE_RESOLVED,
    STATE_RESOLVING,
    Bet,
    GameSession,
    Member,
    PendingCredit,
    RatingChange,
    SessionLocal,
    session_scope,
    utcnow,
)
from gamenight.services.sessions import GameSessionService, load_outcome, transition
from gamenight.services.wager_ledger import WagerLedger
from gamenight.services.wallet import BaseWallet, CoinWallet
from gamenight.utils.retry import storage_errors, with_retries

logger = logging.getLogger(__name__)


def payout_key(session_id: int, user_id: int) -> str:
    return f"payout:{session_id}:{user_id}"


@dataclass
class ResolutionResult:
    session_id: int
    bets_settled: int = 0
    winning_bets: int = 0
    total_staked: int = 0
    total_paid_out: int = 0
    rating_changes: Dict[int, int] = field(default_factory=dict)  # member_id -> delta
    already_resolved: bool = False
    credits_delivered: int = 0


def _same_outcome(a: GameOutcome, b: GameOutcome) -> bool:
    return (
        a.kind == b.kind
        and a.winner_member_id == b.winner_member_id
        and (a.winner_team_name or "").strip().casefold()
        == (b.winner_team_name or "").strip().casefold()
    )


class ResolutionEngine:
    def __init__(
        self,
        session_factory=SessionLocal,
        ledger: Optional[WagerLedger] = None,
        sessions: Optional[GameSessionService] = None,
        wallet: Optional[BaseWallet] = None,
        rating_model: Optional[RatingModel] = None,
        config: Optional[WagerConfig] = None,
    ):
        self.session_factory = session_factory
        self.config = config or WagerConfig()
        self.wallet = wallet or CoinWallet()
        self.ledger = ledger or WagerLedger(session_factory, self.wallet, config=self.config)
        self.sessions = sessions or GameSessionService(session_factory)
        self.rating_model = rating_model or RatingModel(self.config)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_session(
        self, session_id: int, outcome: Optional[GameOutcome] = None
    ) -> ResolutionResult:
        """Settle every bet and update ratings for *session_id*.

        Args:
            session_id: A played session, or a confirmed one when *outcome*
                is given.
            outcome: How the game ended.  Optional once the outcome has been
                recorded; if given it must agree with the recorded one.

        Raises:
            AlreadyResolved: Another call resolved (or is resolving) it.
            InvalidSessionTransition: No outcome, or a conflicting one.
            TransientPersistenceFailure: Storage kept failing.
        """
        def _resolve() -> ResolutionResult:
            with session_scope(self.session_factory) as db:
                return self._resolve_in(db, session_id, outcome)

        result = with_retries(
            _resolve,
            max_attempts=self.config.max_attempts,
            base_delay=self.config.retry_base_delay,
            label=f"resolve_session({session_id})",
        )
        logger.info(
            "Session %d resolved: %d bets settled, %d winners, %d staked, %d paid out",
            session_id, result.bets_settled, result.winning_bets,
            result.total_staked, result.total_paid_out,
        )
        try:
            result.credits_delivered = self.deliver_pending_credits(session_id=session_id)
        except WagerError as exc:
            # Settlement is committed; the scheduled job delivers the credits later
            logger.warning("Session %d resolved but credit delivery deferred: %s", session_id, exc)
        return result

    def resolve_session_idempotent(
        self, session_id: int, outcome: Optional[GameOutcome] = None
    ) -> ResolutionResult:
        """Like :meth:`resolve_session`, but a repeat call is a success."""
        try:
            return self.resolve_session(session_id, outcome)
        except AlreadyResolved:
            logger.info("Session %d was already resolved; nothing to do", session_id)
            return self.summarize(session_id)

    def _resolve_in(
        self, db: Session, session_id: int, outcome: Optional[GameOutcome]
    ) -> ResolutionResult:
        session = db.get(GameSession, session_id)
        if session is None:
            raise NotFound(f"Session {session_id} not found", session_id=session_id)
        if session.state in (STATE_RESOLVING, STATE_RESOLVED):
            raise AlreadyResolved(f"Session {session_id} is {session.state}", session_id=session_id)

        if session.state == STATE_CONFIRMED:
            if outcome is None:
                raise InvalidSessionTransition(
                    f"Session {session_id} has no recorded outcome",
                    session_id=session_id,
                    current_state=session.state,
                    target_state=STATE_RESOLVING,
                )
            GameSessionService.record_outcome_in(db, session_id, outcome)
        elif session.state == STATE_PLAYED and outcome is not None:
            if not _same_outcome(outcome, load_outcome(db, session_id)):
                raise InvalidSessionTransition(
                    f"Outcome for session {session_id} differs from the recorded one",
                    session_id=session_id,
                    current_state=session.state,
                )

        try:
            transition(db, session_id, STATE_PLAYED, STATE_RESOLVING)
        except InvalidSessionTransition as exc:
            if exc.context.get("current_state") in (STATE_RESOLVING, STATE_RESOLVED):
                raise AlreadyResolved(
                    f"Session {session_id} was claimed by another resolver",
                    session_id=session_id,
                ) from exc
            raise

        recorded = load_outcome(db, session_id)
        result = ResolutionResult(session_id=session_id)

        bets = db.execute(
            select(Bet)
            .where(Bet.session_id == session_id, Bet.is_resolved.is_(False))
            .order_by(Bet.id)
        ).scalars().all()
        for bet in bets:
            won = is_winning_pick(recorded, bet.predicted_winner_member_id)
            self.ledger.settle_bet(db, bet, won)
            result.bets_settled += 1
            result.total_staked += bet.amount
            result.total_paid_out += bet.payout
            if won:
                result.winning_bets += 1
            if bet.payout > 0:
                db.add(PendingCredit(
                    session_id=session_id,
                    user_id=bet.user_id,
                    amount=bet.payout,
                    idempotency_key=payout_key(session_id, bet.user_id),
                ))

        result.rating_changes = self._apply_ratings(db, session_id, recorded)

        transition(db, session_id, STATE_RESOLVING, STATE_RESOLVED, resolved_at=utcnow())
        return result

    def _apply_ratings(self, db: Session, session_id: int, outcome: GameOutcome) -> Dict[int, int]:
        members = {
            m.id: m
            for m in db.execute(
                select(Member).where(Member.id.in_(outcome.member_ids))
            ).scalars()
        }
        before = {
            member_id: member.rating if member.rating is not None else self.config.default_rating
            for member_id, member in members.items()
        }
        after = self.rating_model.update_ratings(outcome, before)

        now = utcnow()
        deltas: Dict[int, int] = {}
        for member_id, new_rating in after.items():
            member = members[member_id]
            db.add(RatingChange(
                session_id=session_id,
                member_id=member_id,
                rating_before=before[member_id],
                rating_after=new_rating,
            ))
            member.rating = new_rating
            member.rating_updated_at = now
            deltas[member_id] = new_rating - before[member_id]
        db.flush()
        return deltas

    def summarize(self, session_id: int) -> ResolutionResult:
        """Rebuild the result of a resolved session from what was stored."""
        with storage_errors(), session_scope(self.session_factory) as db:
            session = db.get(GameSession, session_id)
            if session is None:
                raise NotFound(f"Session {session_id} not found", session_id=session_id)
            bets = db.execute(
                select(Bet).where(Bet.session_id == session_id, Bet.is_resolved.is_(True))
            ).scalars().all()
            changes = db.execute(
                select(RatingChange).where(RatingChange.session_id == session_id)
            ).scalars().all()
            return ResolutionResult(
                session_id=session_id,
                bets_settled=len(bets),
                winning_bets=sum(1 for b in bets if b.payout > 0),
                total_staked=sum(b.amount for b in bets),
                total_paid_out=sum(b.payout for b in bets),
                rating_changes={c.member_id: c.rating_after - c.rating_before for c in changes},
                already_resolved=True,
            )

    # ------------------------------------------------------------------
    # Wallet credits
    # ------------------------------------------------------------------

    def deliver_pending_credits(self, session_id: Optional[int] = None, limit: int = 100) -> int:
        """Push undelivered payouts to the wallet.  Returns how many landed.

        Each credit is its own transaction so one failing wallet call does
        not hold back the others.
        """
        with storage_errors(), session_scope(self.session_factory) as db:
            query = select(PendingCredit.id).where(PendingCredit.delivered_at.is_(None))
            if session_id is not None:
                query = query.where(PendingCredit.session_id == session_id)
            credit_ids = list(db.execute(query.order_by(PendingCredit.id).limit(limit)).scalars())

        delivered = 0
        for credit_id in credit_ids:
            try:
                with session_scope(self.session_factory) as db:
                    credit = db.get(PendingCredit, credit_id)
                    if credit is None or credit.delivered_at is not None:
                        continue
                    self.wallet.credit(db, credit.user_id, credit.amount, credit.idempotency_key)
                    credit.attempts = (credit.attempts or 0) + 1
                    credit.delivered_at = utcnow()
                    credit.last_error = None
                delivered += 1
            except Exception as exc:
                logger.warning("Credit %d not delivered: %s", credit_id, exc)
                self._record_failure(credit_id, exc)

        if credit_ids:
            logger.info("Delivered %d/%d pending credits", delivered, len(credit_ids))
        return delivered

    def _record_failure(self, credit_id: int, exc: Exception) -> None:
        try:
            with session_scope(self.session_factory) as db:
                credit = db.get(PendingCredit, credit_id)
                if credit is not None:
                    credit.attempts = (credit.attempts or 0) + 1
                    credit.last_error = str(exc)[:500]
        except Exception as record_exc:
            logger.error("Could not record failure of credit %d: %s", credit_id, record_exc)

    def pending_credit_count(self) -> int:
        with storage_errors(), session_scope(self.session_factory) as db:
            return db.execute(
                select(func.count(PendingCredit.id)).where(PendingCredit.delivered_at.is_(None))
            ).scalar_one()
