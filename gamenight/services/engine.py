"""
WagerEngine: the operations other parts of the club application call.

Wires the services to one session factory, one wallet and one config, and
exposes the five collaborator-facing operations.  Everything returns a
structured result or raises a :class:`~gamenight.errors.WagerError`.
"""

import logging
from typing import Iterable, List, Optional

from gamenight.core.elo import RatingModel
from gamenight.core.outcome import GameOutcome
from gamenight.core.wager_config import WagerConfig
from gamenight.models import SessionLocal
from gamenight.services.lifecycle import GameNightLifecycle
from gamenight.services.odds_book import OddsBook, OddsSnapshot
from gamenight.services.rankings import Rankings
from gamenight.services.resolution import ResolutionEngine, ResolutionResult
from gamenight.services.sessions import GameSessionService
from gamenight.services.wager_ledger import BetReceipt, WagerLedger
from gamenight.services.wallet import BaseWallet, CoinWallet

logger = logging.getLogger(__name__)


class WagerEngine:
    def __init__(
        self,
        session_factory=SessionLocal,
        wallet: Optional[BaseWallet] = None,
        config: Optional[WagerConfig] = None,
    ):
        self.session_factory = session_factory
        self.config = config or WagerConfig.from_env()
        self.wallet = wallet or CoinWallet()

        self.lifecycle = GameNightLifecycle(session_factory)
        self.sessions = GameSessionService(session_factory)
        self.odds_book = OddsBook(session_factory, self.config)
        self.ledger = WagerLedger(session_factory, self.wallet, self.lifecycle, self.config)
        self.rankings = Rankings(session_factory, self.config)
        self.resolution = ResolutionEngine(
            session_factory,
            ledger=self.ledger,
            sessions=self.sessions,
            wallet=self.wallet,
            rating_model=RatingModel(self.config),
            config=self.config,
        )
        logger.debug("WagerEngine ready: %r", self.config)

    def place_bet(self, session_id: int, user_id: int, candidate_id: int, amount: int) -> BetReceipt:
        return self.ledger.place_bet(session_id, user_id, candidate_id, amount)

    def generate_odds(
        self,
        session_id: int,
        candidates: Optional[Iterable[int]] = None,
        regenerate: bool = False,
    ) -> OddsSnapshot:
        return self.odds_book.generate_odds(session_id, candidates, regenerate)

    def resolve_session(
        self, session_id: int, outcome: Optional[GameOutcome] = None
    ) -> ResolutionResult:
        """Caller-facing resolution: a repeated call reports success."""
        return self.resolution.resolve_session_idempotent(session_id, outcome)

    def get_odds_for_session(self, session_id: int) -> OddsSnapshot:
        return self.odds_book.get_odds_for_session(session_id)

    def get_bets_for_user(self, user_id: int, night_id: Optional[int] = None) -> List[BetReceipt]:
        return self.ledger.get_bets_for_user(user_id, night_id)


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_engine: Optional[WagerEngine] = None


def get_wager_engine() -> WagerEngine:
    global _engine
    if _engine is None:
        _engine = WagerEngine()
    return _engine
