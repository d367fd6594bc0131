"""Game outcomes and the winning-pick policy.

A :class:`GameOutcome` is the participant-level record of how one board game
ended.  It feeds two consumers:

* the rating model (:mod:`gamenight.core.elo`), which needs the full roster
  with team context, and
* bet settlement, which only needs to know whether a predicted winner won;
  see :func:`is_winning_pick`.

Four kinds of outcome exist:

``individual``
    One member won; everybody else lost.
``team``
    A named team won; every member of that team won.
``draw``
    The game ended in an explicit tie.  Nobody won.
``no_winner``
    A co-operative game the table lost together.  Nobody won.

Bets are binary (win or lose), so draws and no-winner outcomes settle every
bet as lost.  Changing that is a matter of replacing :func:`is_winning_pick`,
which is the only place settlement asks "did this pick win?".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional, Tuple

OUTCOME_INDIVIDUAL = "individual"
OUTCOME_TEAM = "team"
OUTCOME_DRAW = "draw"
OUTCOME_NO_WINNER = "no_winner"


@dataclass(frozen=True, slots=True)
class Participant:
    """One member on a session's roster, optionally assigned to a team."""

    member_id: int
    team_name: Optional[str] = None


@dataclass(frozen=True)
class GameOutcome:
    """How a played session ended.

    Attributes:
        participants: The locked roster.
        winner_member_id: Individual winner, if any.
        winner_team_name: Winning team (case-insensitive match), if any.
        is_draw: Explicit tie.
    """

    participants: Tuple[Participant, ...]
    winner_member_id: Optional[int] = None
    winner_team_name: Optional[str] = None
    is_draw: bool = False
    _team_index: Dict[int, str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "participants", tuple(self.participants))
        if self.winner_member_id is not None and self.winner_team_name:
            raise ValueError("An outcome has a member winner or a team winner, not both")
        if self.is_draw and (self.winner_member_id is not None or self.winner_team_name):
            raise ValueError("A draw cannot have a winner")

        # Team names match case-insensitively; the first spelling on the
        # roster is the one reported.
        spellings: Dict[str, str] = {}
        index: Dict[int, str] = {}
        for p in self.participants:
            if p.team_name and p.team_name.strip():
                name = spellings.setdefault(self._team_key(p.team_name), p.team_name.strip())
                index[p.member_id] = name
        object.__setattr__(self, "_team_index", index)

        member_ids = [p.member_id for p in self.participants]
        if len(set(member_ids)) != len(member_ids):
            raise ValueError("A member may appear on the roster only once")
        if self.winner_member_id is not None and self.winner_member_id not in member_ids:
            raise ValueError(f"Winner {self.winner_member_id} is not on the roster")
        if self.winner_member_id is not None and len(spellings) >= 2:
            # Team rosters are priced per team, so only a team can win
            raise ValueError("A team game is won by a team, not a single member")
        if self.winner_team_name and self._team_key(self.winner_team_name) not in {
            self._team_key(t) for t in index.values()
        }:
            raise ValueError(f"Winning team {self.winner_team_name!r} is not on the roster")

    @property
    def kind(self) -> str:
        if self.is_draw:
            return OUTCOME_DRAW
        if self.winner_team_name:
            return OUTCOME_TEAM
        if self.winner_member_id is not None:
            return OUTCOME_INDIVIDUAL
        return OUTCOME_NO_WINNER

    @property
    def member_ids(self) -> Tuple[int, ...]:
        return tuple(p.member_id for p in self.participants)

    def team_of(self, member_id: int) -> Optional[str]:
        return self._team_index.get(member_id)

    def teams(self) -> Dict[str, Tuple[int, ...]]:
        """Group the roster by team name, in roster order.

        Members without a team are omitted.
        """
        grouped: Dict[str, list] = {}
        for p in self.participants:
            team = self._team_index.get(p.member_id)
            if team is not None:
                grouped.setdefault(team, []).append(p.member_id)
        return {name: tuple(ids) for name, ids in grouped.items()}

    def winning_member_ids(self) -> FrozenSet[int]:
        if self.kind == OUTCOME_INDIVIDUAL:
            return frozenset({self.winner_member_id})
        if self.kind == OUTCOME_TEAM:
            winner_key = self._team_key(self.winner_team_name)
            return frozenset(
                member_id
                for member_id, team in self._team_index.items()
                if self._team_key(team) == winner_key
            )
        return frozenset()

    @staticmethod
    def _team_key(name: str) -> str:
        return name.strip().casefold()


def is_winning_pick(outcome: GameOutcome, candidate_member_id: int) -> bool:
    """Return True if a bet on *candidate_member_id* wins under *outcome*.

    A pick wins when the candidate is the individual winner, or belongs to
    the winning team.  Draws and no-winner outcomes have no winning picks.
    """
    return candidate_member_id in outcome.winning_member_ids()
