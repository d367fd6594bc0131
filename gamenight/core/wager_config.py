"""Wagering configuration: every tunable constant of the engine in one place.

Nowhere else in the codebase should the K-factor, default rating, house
margin or odds bounds be hard-coded.  Services receive a
:class:`WagerConfig` at construction time and read constants from it.

Typical usage::

    from gamenight.core.wager_config import WagerConfig

    cfg = WagerConfig.from_env()

    # Override a single constant for a one-off night:
    from dataclasses import replace
    generous = replace(cfg, house_margin=0.15)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Final

from dotenv import load_dotenv

load_dotenv()

#: Prefix for every environment variable read by :meth:`WagerConfig.from_env`.
ENV_PREFIX: Final[str] = "GAMENIGHT_"

#: Decimal odds x100 of an even-money return.  A payout multiplier below this
#: would pay back less than the stake.
EVEN_MONEY_TIMES100: Final[int] = 100


@dataclass(frozen=True)
class WagerConfig:
    """Immutable configuration bundle for the wagering engine.

    Attributes:
        default_rating: Rating assigned to members with no rating history.
        min_rating: Floor under which no rating update may push a member.
        k_factor: Elo K-factor.  Chess uses 16-32; a casual club wants
            ratings to move, so 32.
        no_winner_penalty: Points every participant loses when a
            co-operative game ends with nobody winning.

        --- Odds ---
        house_margin: Fraction removed from the total implied probability
            before conversion to odds.  ``0.08`` makes the book sum to 0.92,
            i.e. odds 8% more generous than fair.
        probability_epsilon: Lower clamp on a candidate's probability so a
            hopeless candidate still gets finite odds.
        min_odds_times100: Odds floor.  Never below 100 (1.00x).
        max_odds_times100: Odds cap (2000 = 20.00x).
        snap_odds: Snap generated odds to conventional fractional prices.

        --- Persistence ---
        max_attempts: Attempts per operation on transient storage failures.
        retry_base_delay: First backoff delay in seconds; doubles per attempt.
        credit_retry_minutes: Interval of the pending-credit delivery job.
    """

    default_rating: int = 1200
    min_rating: int = 100
    k_factor: int = 32
    no_winner_penalty: int = 10

    house_margin: float = 0.08
    probability_epsilon: float = 0.01
    min_odds_times100: int = EVEN_MONEY_TIMES100
    max_odds_times100: int = 2000
    snap_odds: bool = False

    max_attempts: int = 3
    retry_base_delay: float = 0.05
    credit_retry_minutes: int = 5

    def __post_init__(self) -> None:
        if self.k_factor <= 0:
            raise ValueError(f"k_factor must be positive, got {self.k_factor}")
        if not 0.0 <= self.house_margin < 1.0:
            raise ValueError(
                f"house_margin must be in [0, 1), got {self.house_margin}"
            )
        if not 0.0 < self.probability_epsilon < 1.0:
            raise ValueError(
                f"probability_epsilon must be in (0, 1), got {self.probability_epsilon}"
            )
        if self.min_odds_times100 < EVEN_MONEY_TIMES100:
            raise ValueError(
                f"min_odds_times100={self.min_odds_times100} would pay less than 1:1"
            )
        if self.max_odds_times100 < self.min_odds_times100:
            raise ValueError("max_odds_times100 must be >= min_odds_times100")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def from_env(cls) -> WagerConfig:
        """Build a config from ``GAMENIGHT_*`` environment variables.

        Unset variables keep their defaults.  ``GAMENIGHT_SNAP_ODDS`` accepts
        ``true``/``false``.
        """
        defaults = cls()

        def _int(name: str, default: int) -> int:
            return int(os.getenv(ENV_PREFIX + name, str(default)))

        def _float(name: str, default: float) -> float:
            return float(os.getenv(ENV_PREFIX + name, str(default)))

        snap = os.getenv(ENV_PREFIX + "SNAP_ODDS", "false").lower() == "true"

        return cls(
            default_rating=_int("DEFAULT_RATING", defaults.default_rating),
            min_rating=_int("MIN_RATING", defaults.min_rating),
            k_factor=_int("K_FACTOR", defaults.k_factor),
            no_winner_penalty=_int("NO_WINNER_PENALTY", defaults.no_winner_penalty),
            house_margin=_float("HOUSE_MARGIN", defaults.house_margin),
            probability_epsilon=_float("PROBABILITY_EPSILON", defaults.probability_epsilon),
            min_odds_times100=_int("MIN_ODDS_TIMES100", defaults.min_odds_times100),
            max_odds_times100=_int("MAX_ODDS_TIMES100", defaults.max_odds_times100),
            snap_odds=snap,
            max_attempts=_int("MAX_ATTEMPTS", defaults.max_attempts),
            retry_base_delay=_float("RETRY_BASE_DELAY", defaults.retry_base_delay),
            credit_retry_minutes=_int("CREDIT_RETRY_MINUTES", defaults.credit_retry_minutes),
        )

    def __repr__(self) -> str:
        return (
            f"WagerConfig(k={self.k_factor}, "
            f"margin={self.house_margin}, "
            f"odds=[{self.min_odds_times100}, {self.max_odds_times100}])"
        )
