"""Odds mathematics: ratings to probabilities to integer decimal odds.

Every function here is **pure**: no I/O, no logging, no side effects.
Import from this module; never reimplement payout or odds arithmetic locally
in services.

Odds are carried as ``odds_times100``: decimal odds multiplied by 100 and
stored as an integer (175 = 1.75x, the stake included).  Money arithmetic is
integer-only from the moment odds are generated:

    payout = floor(amount * odds_times100 / 100)

Pricing pipeline
----------------
1. :func:`win_probabilities`: logistic transform of each candidate's rating
   against the field mean, normalised to sum to 1.
2. :func:`apply_house_margin`: shrink the book so its total implied
   probability is ``1 - margin``.  A positive margin makes every price more
   generous than fair.
3. :func:`probability_to_odds_times100`: ``round(100 / max(p, ε))`` clamped
   to ``[min_odds, max_odds]``; the floor is never below 100 so a winning
   bet never returns less than its stake.
4. Optionally :func:`snap_to_fraction` for prices that read well as
   fractional odds.

Run tests with::

    pytest tests/test_odds_math.py -v
"""

from __future__ import annotations

import bisect
from math import gcd
from typing import Dict, Final, Hashable, Mapping, Tuple, TypeVar

from gamenight.core.elo import ELO_SCALE

K = TypeVar("K", bound=Hashable)

# ---------------------------------------------------------------------------
# Module-level constants
# ---------------------------------------------------------------------------

#: Decimal odds x100 of a bet that returns exactly its stake.
EVEN_STAKE_TIMES100: Final[int] = 100

#: Conventional prices (decimal x100), ascending.  Fractional reading in
#: the trailing comment of each row.
FRACTIONAL_LADDER: Final[Tuple[int, ...]] = (
    110, 115, 120, 125, 130, 140, 150, 160, 170, 180, 190,  # 1/10 .. 9/10
    200,                                                    # evens
    210, 220, 225, 240, 250, 275,                           # 11/10 .. 7/4
    300, 325, 350, 375, 400, 450, 500, 550, 600, 650,       # 2/1 .. 11/2
    700, 800, 900, 1000, 1100, 1200, 1400, 1600, 1800, 2000,  # 6/1 .. 19/1
)

STYLE_DECIMAL: Final[str] = "decimal"
STYLE_FRACTION: Final[str] = "fraction"


# ---------------------------------------------------------------------------
# Probabilities
# ---------------------------------------------------------------------------


def win_probabilities(ratings: Mapping[K, float]) -> Dict[K, float]:
    """Implied win probability of each candidate, normalised to sum to 1.

    Each candidate's strength is the logistic transform of its rating
    against the mean rating of the field::

        s(c) = 1 / (1 + 10^(-(r_c - mean) / 400))
        p(c) = s(c) / Σ s

    Equal ratings give equal probabilities; a single candidate gets 1.0.

    Raises:
        ValueError: If *ratings* is empty.
    """
    if not ratings:
        raise ValueError("Cannot price an empty field")
    if len(ratings) == 1:
        return {key: 1.0 for key in ratings}

    mean = sum(ratings.values()) / len(ratings)
    strengths = {
        key: 1.0 / (1.0 + 10.0 ** (-(rating - mean) / ELO_SCALE))
        for key, rating in ratings.items()
    }
    total = sum(strengths.values())
    return {key: s / total for key, s in strengths.items()}


def apply_house_margin(probabilities: Mapping[K, float], margin: float) -> Dict[K, float]:
    """Scale a normalised book so its total implied probability is ``1 - margin``."""
    if not 0.0 <= margin < 1.0:
        raise ValueError(f"margin must be in [0, 1), got {margin}")
    return {key: p * (1.0 - margin) for key, p in probabilities.items()}


# ---------------------------------------------------------------------------
# Odds conversion
# ---------------------------------------------------------------------------


def probability_to_odds_times100(
    probability: float,
    epsilon: float = 0.01,
    min_odds_times100: int = EVEN_STAKE_TIMES100,
    max_odds_times100: int = 2000,
) -> int:
    """Convert a win probability into decimal odds x100.

    Examples::

        probability_to_odds_times100(0.5)  → 200
        probability_to_odds_times100(0.4)  → 250
        probability_to_odds_times100(0.0)  → 2000   (ε clamp, then cap)
    """
    odds = int(round(100.0 / max(probability, epsilon)))
    floor = max(min_odds_times100, EVEN_STAKE_TIMES100)
    return max(floor, min(odds, max_odds_times100))


def snap_to_fraction(odds_times100: int) -> int:
    """Snap odds to the nearest entry of :data:`FRACTIONAL_LADDER`.

    Equidistant values snap down (the less generous price).
    """
    index = bisect.bisect_left(FRACTIONAL_LADDER, odds_times100)
    if index == 0:
        return FRACTIONAL_LADDER[0]
    if index >= len(FRACTIONAL_LADDER):
        return FRACTIONAL_LADDER[-1]
    lower = FRACTIONAL_LADDER[index - 1]
    upper = FRACTIONAL_LADDER[index]
    if upper == odds_times100:
        return upper
    return lower if (odds_times100 - lower) <= (upper - odds_times100) else upper


def payout_for(amount: int, odds_times100: int) -> int:
    """Total return of a winning bet, stake included: ``floor(amount * odds / 100)``."""
    return (amount * odds_times100) // 100


# ---------------------------------------------------------------------------
# Display
# ---------------------------------------------------------------------------


def format_decimal(odds_times100: int) -> str:
    """``175`` → ``"1.75"``."""
    return f"{odds_times100 // 100}.{odds_times100 % 100:02d}"


def format_fraction(odds_times100: int) -> str:
    """Profit-to-stake fraction in lowest terms: ``175`` → ``"3/4"``.

    Prices at or below even stake read as ``"1/1"``.
    """
    if odds_times100 <= EVEN_STAKE_TIMES100:
        return "1/1"
    numerator = odds_times100 - EVEN_STAKE_TIMES100
    divisor = gcd(numerator, EVEN_STAKE_TIMES100)
    return f"{numerator // divisor}/{EVEN_STAKE_TIMES100 // divisor}"


def format_odds(odds_times100: int, style: str = STYLE_FRACTION) -> str:
    if style == STYLE_DECIMAL:
        return format_decimal(odds_times100)
    if style == STYLE_FRACTION:
        return format_fraction(odds_times100)
    raise ValueError(f"Unknown odds style {style!r}")
