"""
FastAPI application for the game-night wagering engine
Thin HTTP adapter over WagerEngine plus the pending-credit delivery job
"""

from fastapi import FastAPI, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from sqlalchemy import text
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional
import logging
import os

from gamenight.core.odds_math import format_decimal, format_fraction
from gamenight.core.outcome import GameOutcome
from gamenight.errors import (
    AlreadyResolved,
    BettingLocked,
    DuplicateBet,
    InsufficientBalance,
    InvalidAmount,
    InvalidSessionTransition,
    NotFound,
    OddsLocked,
    SessionNotOpenForBetting,
    TransientPersistenceFailure,
    UnknownCandidate,
    WagerError,
)
from gamenight.models import get_db
from gamenight.schemas import (
    BetCreate,
    BetResponse,
    LeaderboardEntry,
    NetResultResponse,
    OddsGenerateRequest,
    OddsResponse,
    OddsQuoteResponse,
    ResolveRequest,
    ResolveResponse,
)
from gamenight.services.engine import WagerEngine, get_wager_engine
from gamenight.services.odds_book import OddsSnapshot
from gamenight.services.wager_ledger import BetReceipt

# Logging setup
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Scheduler instance
scheduler = BackgroundScheduler()

STATUS_BY_ERROR = {
    NotFound: 404,
    BettingLocked: 403,
    UnknownCandidate: 422,
    InvalidAmount: 422,
    SessionNotOpenForBetting: 409,
    DuplicateBet: 409,
    InsufficientBalance: 409,
    OddsLocked: 409,
    AlreadyResolved: 409,
    InvalidSessionTransition: 409,
    TransientPersistenceFailure: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Starting game-night wagering engine")

    # Re-deliver wallet credits that failed during resolution
    credit_interval = int(os.getenv("CREDIT_RETRY_INTERVAL_MIN", "5"))
    scheduler.add_job(
        _deliver_credits_job,
        IntervalTrigger(minutes=credit_interval),
        id="deliver_pending_credits",
        name="Deliver Pending Wallet Credits",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Scheduler started: pending credits every %dmin", credit_interval)

    yield

    logger.info("Shutting down game-night wagering engine")
    scheduler.shutdown()


app = FastAPI(
    title="Game Night Wagers",
    description="Coin wagers, odds and Elo ratings for club game nights",
    version="1.0",
    lifespan=lifespan,
)


def get_engine() -> WagerEngine:
    return get_wager_engine()


@app.exception_handler(WagerError)
async def wager_error_handler(request: Request, exc: WagerError):
    status = 500
    for error_type in type(exc).__mro__:
        if error_type in STATUS_BY_ERROR:
            status = STATUS_BY_ERROR[error_type]
            break
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content=exc.to_dict())


# ============================================================================
# SCHEDULED JOB
# ============================================================================

def _deliver_credits_job():
    """Retry undelivered payouts, runs every 5 min (configurable)."""
    try:
        delivered = get_wager_engine().resolution.deliver_pending_credits()
        if delivered:
            logger.info("Credit job delivered %d payouts", delivered)
    except Exception as exc:
        logger.error("Credit delivery job failed: %s", exc, exc_info=True)


# ============================================================================
# HELPERS
# ============================================================================

def _odds_response(snapshot: OddsSnapshot) -> OddsResponse:
    return OddsResponse(
        session_id=snapshot.session_id,
        quotes=[
            OddsQuoteResponse(
                member_id=q.member_id,
                odds_times100=q.odds_times100,
                decimal=format_decimal(q.odds_times100),
                fraction=format_fraction(q.odds_times100),
            )
            for q in snapshot.quotes
        ],
    )


def _bet_response(receipt: BetReceipt) -> BetResponse:
    return BetResponse(
        id=receipt.id,
        session_id=receipt.session_id,
        user_id=receipt.user_id,
        predicted_winner_member_id=receipt.predicted_winner_member_id,
        amount=receipt.amount,
        odds_times100=receipt.odds_times100,
        potential_payout=receipt.potential_payout,
        is_resolved=receipt.is_resolved,
        payout=receipt.payout,
        resolved_at=receipt.resolved_at,
        created_at=receipt.created_at,
    )


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """Health check endpoint"""
    health = {
        "status": "healthy",
        "database": "connected",
        "scheduler": "running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Health check database error: %s", e)
        health["status"] = "degraded"
        health["database"] = f"error: {str(e)}"

    if not scheduler.running:
        health["status"] = "degraded"
        health["scheduler"] = "stopped"

    return health


# ============================================================================
# ODDS
# ============================================================================

@app.post("/api/sessions/{session_id}/odds", response_model=OddsResponse)
def generate_odds(
    session_id: int,
    payload: Optional[OddsGenerateRequest] = None,
    engine: WagerEngine = Depends(get_engine),
):
    """Price a confirmed session.  Refused once any bet exists."""
    payload = payload or OddsGenerateRequest()
    snapshot = engine.generate_odds(session_id, payload.candidates, payload.regenerate)
    return _odds_response(snapshot)


@app.get("/api/sessions/{session_id}/odds", response_model=OddsResponse)
def get_odds(session_id: int, engine: WagerEngine = Depends(get_engine)):
    return _odds_response(engine.get_odds_for_session(session_id))


# ============================================================================
# BETS
# ============================================================================

@app.post("/api/sessions/{session_id}/bets", response_model=BetResponse, status_code=201)
def place_bet(session_id: int, payload: BetCreate, engine: WagerEngine = Depends(get_engine)):
    receipt = engine.place_bet(session_id, payload.user_id, payload.candidate_id, payload.amount)
    return _bet_response(receipt)


@app.get("/api/users/{user_id}/bets", response_model=List[BetResponse])
def get_user_bets(
    user_id: int,
    night_id: Optional[int] = Query(None, description="Only bets placed at this night"),
    engine: WagerEngine = Depends(get_engine),
):
    return [_bet_response(r) for r in engine.get_bets_for_user(user_id, night_id)]


# ============================================================================
# RESOLUTION
# ============================================================================

@app.post("/api/sessions/{session_id}/resolve", response_model=ResolveResponse)
def resolve_session(
    session_id: int,
    payload: Optional[ResolveRequest] = None,
    engine: WagerEngine = Depends(get_engine),
):
    """
    Settle a played session.  Repeating the call is safe: the response then
    carries ``already_resolved=true`` and nothing is paid or rated twice.
    """
    payload = payload or ResolveRequest()
    outcome = None
    if payload.has_outcome:
        try:
            outcome = GameOutcome(
                participants=engine.sessions.get_roster(session_id),
                winner_member_id=payload.winner_member_id,
                winner_team_name=payload.winner_team_name,
                is_draw=payload.is_draw,
            )
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc))

    result = engine.resolve_session(session_id, outcome)
    return ResolveResponse(
        session_id=result.session_id,
        already_resolved=result.already_resolved,
        bets_settled=result.bets_settled,
        winning_bets=result.winning_bets,
        total_staked=result.total_staked,
        total_paid_out=result.total_paid_out,
        credits_delivered=result.credits_delivered,
        rating_changes=result.rating_changes,
    )


# ============================================================================
# REPORTS
# ============================================================================

@app.get("/api/nights/{night_id}/results", response_model=List[NetResultResponse])
def night_results(night_id: int, engine: WagerEngine = Depends(get_engine)):
    """Net coins won or lost per bettor over the night's resolved bets."""
    return [
        NetResultResponse(user_id=r.user_id, name=r.name, net=r.net, bets=r.bets)
        for r in engine.ledger.night_net_results(night_id)
    ]


@app.get("/api/leaderboard", response_model=List[LeaderboardEntry])
def leaderboard(
    take: int = Query(20, ge=1, le=200),
    engine: WagerEngine = Depends(get_engine),
):
    return [
        LeaderboardEntry(rank=m.rank, member_id=m.member_id, name=m.name, rating=m.rating)
        for m in engine.rankings.leaderboard(take)
    ]
