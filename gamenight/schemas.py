"""
Pydantic request/response schemas for the game-night wagering API.

Explicit schemas keep ORM rows out of responses and give accurate
OpenAPI docs.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


# ---------------------------------------------------------------------------
# Odds
# ---------------------------------------------------------------------------

class OddsGenerateRequest(BaseModel):
    """Payload for POST /api/sessions/{session_id}/odds."""

    candidates: Optional[List[int]] = Field(
        None, description="Members to price; defaults to the whole roster"
    )
    regenerate: bool = Field(False, description="Replace existing odds (refused once bets exist)")


class OddsQuoteResponse(BaseModel):
    member_id: int
    odds_times100: int
    decimal: str = Field(..., description='e.g. "1.75"')
    fraction: str = Field(..., description='e.g. "3/4"')


class OddsResponse(BaseModel):
    session_id: int
    quotes: List[OddsQuoteResponse]


# ---------------------------------------------------------------------------
# Bets
# ---------------------------------------------------------------------------

class BetCreate(BaseModel):
    """
    Payload for POST /api/sessions/{session_id}/bets.

    The odds are not part of the payload: they are copied from the session's
    odds at the moment the bet is accepted.
    """

    user_id: int = Field(..., description="Betting member")
    candidate_id: int = Field(..., description="Member predicted to win")
    amount: int = Field(..., description="Stake in coins")

    model_config = {
        "json_schema_extra": {
            "example": {"user_id": 3, "candidate_id": 7, "amount": 100}
        }
    }


class BetResponse(BaseModel):
    id: int
    session_id: int
    user_id: int
    predicted_winner_member_id: int
    amount: int
    odds_times100: int
    potential_payout: int
    is_resolved: bool
    payout: int
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

class ResolveRequest(BaseModel):
    """
    Payload for POST /api/sessions/{session_id}/resolve.

    Leave everything empty to resolve a session whose outcome was already
    recorded.  Otherwise give exactly one of winner_member_id,
    winner_team_name, is_draw; ``no_winner=True`` records a co-operative
    loss.
    """

    winner_member_id: Optional[int] = None
    winner_team_name: Optional[str] = Field(None, max_length=64)
    is_draw: bool = False
    no_winner: bool = False

    @field_validator("winner_team_name")
    @classmethod
    def strip_team(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        return v or None

    @model_validator(mode="after")
    def one_outcome(self) -> "ResolveRequest":
        given = sum([
            self.winner_member_id is not None,
            self.winner_team_name is not None,
            self.is_draw,
            self.no_winner,
        ])
        if given > 1:
            raise ValueError("Give at most one of winner_member_id, winner_team_name, is_draw, no_winner")
        return self

    @property
    def has_outcome(self) -> bool:
        return (
            self.winner_member_id is not None
            or self.winner_team_name is not None
            or self.is_draw
            or self.no_winner
        )


class ResolveResponse(BaseModel):
    session_id: int
    already_resolved: bool
    bets_settled: int
    winning_bets: int
    total_staked: int
    total_paid_out: int
    credits_delivered: int
    rating_changes: Dict[int, int]


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

class NetResultResponse(BaseModel):
    user_id: int
    name: str
    net: int
    bets: int


class LeaderboardEntry(BaseModel):
    rank: int
    member_id: int
    name: str
    rating: int

