"""
Wagering Exception Hierarchy

Every failure a public engine operation can report.  Callers receive one of
these, never a raw storage error.

Exception Classes:
- WagerError: Base exception (retryable=False)
- SessionNotOpenForBetting: Session is not confirmed, or already played/resolved
- BettingLocked: Attendee of a started night tried to bet
- UnknownCandidate: Predicted winner has no odds on the session
- DuplicateBet: Member already has a bet on the session
- InvalidAmount: Stake is not a positive integer
- InsufficientBalance: Wallet cannot cover the stake
- OddsLocked: Odds already exist / bets already reference them
- AlreadyResolved: Session or bet was settled before
- InvalidSessionTransition: State machine move not allowed from current state
- NotFound: Referenced night, session or member does not exist
- TransientPersistenceFailure: Storage hiccup (retryable=True)

Retry Logic:
- Retryable errors are retried locally with exponential backoff
  (see gamenight.utils.retry), then surfaced to the caller
- Non-retryable errors fail fast
"""


class WagerError(Exception):
    """Base class for all engine failures."""

    retryable = False

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.context = context

    def to_dict(self) -> dict:
        return {"error": self.__class__.__name__, "message": self.message, **self.context}


class SessionNotOpenForBetting(WagerError):
    pass


class BettingLocked(WagerError):
    pass


class UnknownCandidate(WagerError):
    pass


class DuplicateBet(WagerError):
    pass


class InvalidAmount(WagerError):
    pass


class InsufficientBalance(WagerError):
    pass


class OddsLocked(WagerError):
    pass


class AlreadyResolved(WagerError):
    pass


class InvalidSessionTransition(WagerError):
    pass


class NotFound(WagerError):
    pass


class TransientPersistenceFailure(WagerError):
    """Lock timeout, dropped connection or serialization failure."""

    retryable = True
