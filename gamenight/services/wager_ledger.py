"""
Wager ledger: bet placement, settlement and the per-night money view.

Placement checks its preconditions in a fixed order, each with its own
failure:

    1. session confirmed            SessionNotOpenForBetting
    2. member allowed to bet        BettingLocked
    3. candidate has odds           UnknownCandidate
    4. no earlier bet by the member DuplicateBet
    5. positive integer stake       InvalidAmount
    6. wallet covers the stake      InsufficientBalance

The checks are then made binding in one transaction: a conditional UPDATE
bumps ``bet_count`` only while the session is still ``confirmed``, the
``(session_id, user_id)`` unique constraint rejects a concurrent duplicate,
and the stake is debited from the wallet in the same commit.

Payout arithmetic
-----------------
    payout = floor(amount * odds_times100 / 100)   winning bet, stake included
    payout = 0                                     losing bet
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gamenight.core.odds_math import payout_for
from gamenight.core.wager_config import WagerConfig
from gamenight.errors import (
    AlreadyResolved,
    DuplicateBet,
    InsufficientBalance,
    InvalidAmount,
    NotFound,
    SessionNotOpenForBetting,
    UnknownCandidate,
)
from gamenight.models import (
    STATE_CONFIRMED,
    Bet,
    GameSession,
    Member,
    OddsEntry,
    SessionLocal,
    session_scope,
    utcnow,
)
from gamenight.services.lifecycle import GameNightLifecycle
from gamenight.services.wallet import BaseWallet, CoinWallet
from gamenight.utils.retry import with_retries

logger = logging.getLogger(__name__)


def stake_key(session_id: int, user_id: int) -> str:
    return f"stake:{session_id}:{user_id}"


@dataclass(frozen=True)
class BetReceipt:
    id: int
    session_id: int
    user_id: int
    predicted_winner_member_id: int
    amount: int
    odds_times100: int
    is_resolved: bool
    payout: int
    resolved_at: Optional[datetime]
    created_at: Optional[datetime]

    @classmethod
    def from_row(cls, bet: Bet) -> "BetReceipt":
        return cls(
            id=bet.id,
            session_id=bet.session_id,
            user_id=bet.user_id,
            predicted_winner_member_id=bet.predicted_winner_member_id,
            amount=bet.amount,
            odds_times100=bet.odds_times100,
            is_resolved=bool(bet.is_resolved),
            payout=bet.payout or 0,
            resolved_at=bet.resolved_at,
            created_at=bet.created_at,
        )

    @property
    def potential_payout(self) -> int:
        return payout_for(self.amount, self.odds_times100)

    @property
    def net(self) -> int:
        """Coins won or lost; 0 until resolved."""
        return self.payout - self.amount if self.is_resolved else 0


@dataclass(frozen=True)
class NetResult:
    user_id: int
    name: str
    net: int
    bets: int


def _is_valid_amount(amount) -> bool:
    return isinstance(amount, int) and not isinstance(amount, bool) and amount > 0


class WagerLedger:
    def __init__(
        self,
        session_factory=SessionLocal,
        wallet: Optional[BaseWallet] = None,
        lifecycle: Optional[GameNightLifecycle] = None,
        config: Optional[WagerConfig] = None,
    ):
        self.session_factory = session_factory
        self.wallet = wallet or CoinWallet()
        self.lifecycle = lifecycle or GameNightLifecycle(session_factory)
        self.config = config or WagerConfig()

    # ------------------------------------------------------------------
    # Placement
    # ------------------------------------------------------------------

    def place_bet(self, session_id: int, user_id: int, candidate_id: int, amount: int) -> BetReceipt:
        """Place *user_id*'s bet of *amount* coins on *candidate_id* winning.

        The bet carries the candidate's odds as they stand at placement;
        nothing recomputes them later.
        """
        def _place() -> BetReceipt:
            try:
                with session_scope(self.session_factory) as db:
                    return self._place_in(db, session_id, user_id, candidate_id, amount)
            except IntegrityError as exc:
                # Lost the race on _session_user_bet_uc
                raise DuplicateBet(
                    f"Member {user_id} already has a bet on session {session_id}",
                    session_id=session_id,
                    user_id=user_id,
                ) from exc

        receipt = with_retries(
            _place,
            max_attempts=self.config.max_attempts,
            base_delay=self.config.retry_base_delay,
            label=f"place_bet({session_id}, {user_id})",
        )
        logger.info(
            "Bet %d: member %d staked %d on %d in session %d at %d",
            receipt.id, user_id, amount, candidate_id, session_id, receipt.odds_times100,
        )
        return receipt

    def _place_in(
        self, db: Session, session_id: int, user_id: int, candidate_id: int, amount: int
    ) -> BetReceipt:
        session = db.get(GameSession, session_id)
        if session is None:
            raise NotFound(f"Session {session_id} not found", session_id=session_id)
        if session.state != STATE_CONFIRMED:
            raise SessionNotOpenForBetting(
                f"Session {session_id} is {session.state}",
                session_id=session_id,
                state=session.state,
            )

        self.lifecycle.ensure_can_bet(db, session.game_night_id, user_id)

        if self._odds_for(db, session_id, candidate_id) is None:
            raise UnknownCandidate(
                f"Member {candidate_id} has no odds on session {session_id}",
                session_id=session_id,
                candidate_id=candidate_id,
            )

        if self._find_bet(db, session_id, user_id) is not None:
            raise DuplicateBet(
                f"Member {user_id} already has a bet on session {session_id}",
                session_id=session_id,
                user_id=user_id,
            )

        if not _is_valid_amount(amount):
            raise InvalidAmount(f"Stake must be a positive integer, got {amount!r}", amount=amount)

        balance = self.wallet.get_balance(db, user_id)
        if balance < amount:
            raise InsufficientBalance(
                f"Member {user_id} has {balance} coins, stake is {amount}",
                user_id=user_id,
                amount=amount,
                balance=balance,
            )

        # Binding state check; also freezes the odds (see OddsBook)
        claimed = db.execute(
            update(GameSession)
            .where(GameSession.id == session_id, GameSession.state == STATE_CONFIRMED)
            .values(bet_count=GameSession.bet_count + 1)
        ).rowcount
        if claimed != 1:
            raise SessionNotOpenForBetting(
                f"Session {session_id} closed while the bet was being placed",
                session_id=session_id,
            )

        # Re-read under the write lock: the snapshot copied onto the bet
        odds_times100 = self._odds_for(db, session_id, candidate_id)
        if odds_times100 is None:
            raise UnknownCandidate(
                f"Member {candidate_id} has no odds on session {session_id}",
                session_id=session_id,
                candidate_id=candidate_id,
            )

        bet = Bet(
            session_id=session_id,
            user_id=user_id,
            predicted_winner_member_id=candidate_id,
            amount=amount,
            odds_times100=odds_times100,
            is_resolved=False,
            payout=0,
        )
        db.add(bet)
        db.flush()

        self.wallet.debit(db, user_id, amount, stake_key(session_id, user_id))
        return BetReceipt.from_row(bet)

    @staticmethod
    def _odds_for(db: Session, session_id: int, candidate_id: int) -> Optional[int]:
        return db.execute(
            select(OddsEntry.odds_times100).where(
                OddsEntry.session_id == session_id,
                OddsEntry.member_id == candidate_id,
            )
        ).scalar_one_or_none()

    @staticmethod
    def _find_bet(db: Session, session_id: int, user_id: int) -> Optional[int]:
        return db.execute(
            select(Bet.id).where(Bet.session_id == session_id, Bet.user_id == user_id)
        ).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Settlement (ResolutionEngine only)
    # ------------------------------------------------------------------

    @staticmethod
    def settle_bet(db: Session, bet: Bet, is_winner: bool) -> Bet:
        """Fix the bet's payout.  Runs inside the resolution transaction."""
        if bet.is_resolved:
            raise AlreadyResolved(f"Bet {bet.id} is already settled", bet_id=bet.id)
        bet.payout = payout_for(bet.amount, bet.odds_times100) if is_winner else 0
        bet.is_resolved = True
        bet.resolved_at = utcnow()
        return bet

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_bets_for_user(self, user_id: int, night_id: Optional[int] = None) -> List[BetReceipt]:
        def _read() -> List[BetReceipt]:
            with session_scope(self.session_factory) as db:
                query = select(Bet).where(Bet.user_id == user_id)
                if night_id is not None:
                    query = query.join(GameSession, GameSession.id == Bet.session_id).where(
                        GameSession.game_night_id == night_id
                    )
                rows = db.execute(query.order_by(Bet.created_at.desc(), Bet.id.desc())).scalars()
                return [BetReceipt.from_row(b) for b in rows]

        return with_retries(
            _read,
            max_attempts=self.config.max_attempts,
            base_delay=self.config.retry_base_delay,
            label=f"get_bets_for_user({user_id})",
        )

    def get_bets_for_session(self, session_id: int) -> List[BetReceipt]:
        with session_scope(self.session_factory) as db:
            rows = db.execute(
                select(Bet).where(Bet.session_id == session_id).order_by(Bet.id)
            ).scalars()
            return [BetReceipt.from_row(b) for b in rows]

    def night_net_results(self, night_id: int) -> List[NetResult]:
        """Coins won or lost by each bettor over a night's resolved bets, best first."""
        with session_scope(self.session_factory) as db:
            rows = db.execute(
                select(
                    Bet.user_id,
                    Member.name,
                    func.sum(Bet.payout - Bet.amount).label("net"),
                    func.count(Bet.id).label("bets"),
                )
                .join(GameSession, GameSession.id == Bet.session_id)
                .join(Member, Member.id == Bet.user_id)
                .where(GameSession.game_night_id == night_id, Bet.is_resolved.is_(True))
                .group_by(Bet.user_id, Member.name)
            ).all()
        results = [NetResult(r.user_id, r.name, int(r.net or 0), r.bets) for r in rows]
        results.sort(key=lambda r: (-r.net, r.user_id))
        return results
