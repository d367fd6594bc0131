"""Elo-style rating updates: the only way a member's rating may change.

Every function here is **pure**: no I/O, no logging, no clock.  Given the
same outcome and the same starting ratings the result is always the same,
which is what lets :func:`replay_ratings` re-derive a member's rating from
history for an audit.

Model
-----
* Expected score ``E = 1 / (1 + 10^((R_opp - R_self) / 400))``.
* A single comparison changes a rating by ``round(K * (actual - E))`` with
  ``actual`` 1 for a win, 0 for a loss and 0.5 for a draw.
* Multi-player games are scored **winner-vs-field**: the winner is compared
  to each other participant using the pre-game ratings; the winner's gain is
  the sum of the per-pair gains while each loser only pays its own pair.
* Team games compare team *average* ratings.  Every member of a team
  receives the team's change.
* A co-operative game lost by everyone costs each participant a small fixed
  penalty.
* No rating may fall below ``min_rating``.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from gamenight.core.outcome import (
    OUTCOME_DRAW,
    OUTCOME_NO_WINNER,
    OUTCOME_TEAM,
    GameOutcome,
)
from gamenight.core.wager_config import WagerConfig

#: Scale of the logistic curve: a 400-point gap means 10:1 expected odds.
ELO_SCALE = 400.0


def expected_score(rating: float, opponent_rating: float) -> float:
    """Probability that a player rated *rating* beats *opponent_rating*.

    Examples::

        expected_score(1200, 1200) → 0.5
        expected_score(1600, 1200) → 0.909
    """
    return 1.0 / (1.0 + 10.0 ** ((opponent_rating - rating) / ELO_SCALE))


def rating_change(
    rating: float, opponent_rating: float, actual: float, k_factor: int
) -> int:
    """Integer rating delta for one comparison: ``round(K * (actual - E))``."""
    return int(round(k_factor * (actual - expected_score(rating, opponent_rating))))


# A scoring unit is a set of members whose rating moves together: a single
# player in an individual game, or a whole team.
_Unit = Tuple[str, Tuple[int, ...]]


def _member_key(member_id: int) -> str:
    return f"member:{member_id}"


class RatingModel:
    """Computes new ratings for the participants of one game."""

    def __init__(self, config: Optional[WagerConfig] = None):
        self.config = config or WagerConfig()

    def update_ratings(
        self, outcome: GameOutcome, ratings: Mapping[int, int]
    ) -> Dict[int, int]:
        """Return the new rating of every participant of *outcome*.

        Args:
            outcome: The played game.
            ratings: Pre-game ratings.  Participants missing from the mapping
                are treated as ``default_rating``.

        Returns:
            ``{member_id: new_rating}`` for every participant, including
            those whose rating did not move.
        """
        current = {
            member_id: int(ratings.get(member_id, self.config.default_rating))
            for member_id in outcome.member_ids
        }
        if len(current) < 2 and outcome.kind != OUTCOME_NO_WINNER:
            return dict(current)

        if outcome.kind == OUTCOME_NO_WINNER:
            deltas = {m: -self.config.no_winner_penalty for m in current}
        elif outcome.kind == OUTCOME_DRAW:
            units = self._units(outcome, by_team=len(outcome.teams()) >= 2)
            deltas = self._draw_deltas(units, current)
        elif outcome.kind == OUTCOME_TEAM:
            units = self._units(outcome, by_team=True)
            winner_key = next(
                key for key, _ in units
                if outcome.winner_team_name.strip().casefold() == key.casefold()
            )
            deltas = self._winner_deltas(units, winner_key, current)
        else:
            units = self._units(outcome, by_team=False)
            deltas = self._winner_deltas(units, _member_key(outcome.winner_member_id), current)

        return {
            member_id: max(self.config.min_rating, rating + deltas.get(member_id, 0))
            for member_id, rating in current.items()
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _units(outcome: GameOutcome, by_team: bool) -> List[_Unit]:
        if not by_team:
            return [(_member_key(m), (m,)) for m in outcome.member_ids]
        units: List[_Unit] = list(outcome.teams().items())
        units.extend(
            (_member_key(m), (m,)) for m in outcome.member_ids if outcome.team_of(m) is None
        )
        return units

    @staticmethod
    def _average(members: Tuple[int, ...], ratings: Mapping[int, int]) -> float:
        return sum(ratings[m] for m in members) / len(members)

    def _winner_deltas(
        self, units: List[_Unit], winner_key: str, ratings: Mapping[int, int]
    ) -> Dict[int, int]:
        k = self.config.k_factor
        winner_members = dict(units)[winner_key]
        winner_avg = self._average(winner_members, ratings)

        deltas: Dict[int, int] = {}
        winner_gain = 0
        for key, members in units:
            if key == winner_key:
                continue
            loser_avg = self._average(members, ratings)
            winner_gain += rating_change(winner_avg, loser_avg, 1.0, k)
            loss = rating_change(loser_avg, winner_avg, 0.0, k)
            for m in members:
                deltas[m] = loss

        for m in winner_members:
            deltas[m] = winner_gain
        return deltas

    def _draw_deltas(
        self, units: List[_Unit], ratings: Mapping[int, int]
    ) -> Dict[int, int]:
        k = self.config.k_factor
        averages = {key: self._average(members, ratings) for key, members in units}

        deltas: Dict[int, int] = {}
        for key, members in units:
            delta = sum(
                rating_change(averages[key], averages[other], 0.5, k)
                for other, _ in units
                if other != key
            )
            for m in members:
                deltas[m] = delta
        return deltas


def replay_ratings(
    outcomes: Iterable[GameOutcome],
    initial: Optional[Mapping[int, int]] = None,
    model: Optional[RatingModel] = None,
) -> Dict[int, int]:
    """Fold a chronological sequence of outcomes into final ratings.

    Used to audit stored ratings: replaying every resolved session in
    resolution order from the starting ratings must reproduce the ratings
    currently stored on members.
    """
    model = model or RatingModel()
    ratings: Dict[int, int] = dict(initial or {})
    for outcome in outcomes:
        ratings.update(model.update_ratings(outcome, ratings))
    return ratings
