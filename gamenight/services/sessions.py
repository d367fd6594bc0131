"""
Game session state machine.

A session moves along exactly one path:

    planned → confirmed → played → resolving → resolved

Every move goes through :func:`transition`, a conditional UPDATE that only
succeeds when the row is still in the expected state.  Two writers racing
for the same move can therefore never both win; the loser sees
``InvalidSessionTransition`` and decides what that means for it (bet
placement reports ``SessionNotOpenForBetting``, resolution reports
``AlreadyResolved``).

``confirmed`` locks the roster and is the earliest point odds may exist.
``played`` records the outcome; the winner can be written once only, because
only the confirmed → played move writes it.  ``resolving`` / ``resolved``
belong to :class:`~gamenight.services.resolution.ResolutionEngine`.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from gamenight.core.outcome import GameOutcome, Participant
from gamenight.errors import InvalidSessionTransition, NotFound
from gamenight.models import (
    STATE_CONFIRMED,
    STATE_PLANNED,
    STATE_PLAYED,
    STATE_RESOLVED,
    STATE_RESOLVING,
    Bet,
    GameNight,
    GameSession,
    Member,
    OddsEntry,
    PendingCredit,
    RatingChange,
    SessionLocal,
    SessionPlayer,
    session_scope,
    utcnow,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionView:
    """Read-only snapshot of a session row."""

    id: int
    game_night_id: int
    board_game_name: str
    state: str
    winner_member_id: Optional[int]
    winner_team_name: Optional[str]
    is_draw: bool
    bet_count: int
    resolved_at: Optional[datetime]

    @classmethod
    def from_row(cls, row: GameSession) -> "SessionView":
        return cls(
            id=row.id,
            game_night_id=row.game_night_id,
            board_game_name=row.board_game_name,
            state=row.state,
            winner_member_id=row.winner_member_id,
            winner_team_name=row.winner_team_name,
            is_draw=bool(row.is_draw),
            bet_count=row.bet_count or 0,
            resolved_at=row.resolved_at,
        )

    @property
    def is_confirmed(self) -> bool:
        return self.state != STATE_PLANNED

    @property
    def is_played(self) -> bool:
        return self.state in (STATE_PLAYED, STATE_RESOLVING, STATE_RESOLVED)


# ---------------------------------------------------------------------------
# Compare-and-set primitive
# ---------------------------------------------------------------------------

def current_state(db: Session, session_id: int) -> str:
    state = db.execute(
        select(GameSession.state).where(GameSession.id == session_id)
    ).scalar_one_or_none()
    if state is None:
        raise NotFound(f"Session {session_id} not found", session_id=session_id)
    return state


def transition(
    db: Session,
    session_id: int,
    expected: Union[str, Sequence[str]],
    new_state: str,
    **values,
) -> None:
    """Move *session_id* from *expected* to *new_state*, or fail.

    Extra keyword arguments are written in the same UPDATE.

    Raises:
        NotFound: The session does not exist.
        InvalidSessionTransition: The row was not in *expected*.
    """
    expected_states: Tuple[str, ...] = (expected,) if isinstance(expected, str) else tuple(expected)
    result = db.execute(
        update(GameSession)
        .where(GameSession.id == session_id, GameSession.state.in_(expected_states))
        .values(state=new_state, **values)
    )
    if result.rowcount != 1:
        state = current_state(db, session_id)
        raise InvalidSessionTransition(
            f"Session {session_id} cannot move {state} -> {new_state}",
            session_id=session_id,
            current_state=state,
            target_state=new_state,
        )
    logger.debug("Session %d: %s -> %s", session_id, "/".join(expected_states), new_state)


def load_roster(db: Session, session_id: int) -> Tuple[Participant, ...]:
    rows = db.execute(
        select(SessionPlayer.member_id, SessionPlayer.team_name)
        .where(SessionPlayer.session_id == session_id)
        .order_by(SessionPlayer.id)
    ).all()
    return tuple(Participant(member_id=r.member_id, team_name=r.team_name) for r in rows)


def load_outcome(db: Session, session_id: int) -> GameOutcome:
    """Rebuild the recorded outcome of a played session."""
    session = db.get(GameSession, session_id)
    if session is None:
        raise NotFound(f"Session {session_id} not found", session_id=session_id)
    if not session.is_played:
        raise InvalidSessionTransition(
            f"Session {session_id} has no outcome yet ({session.state})",
            session_id=session_id,
            current_state=session.state,
        )
    return GameOutcome(
        participants=load_roster(db, session_id),
        winner_member_id=session.winner_member_id,
        winner_team_name=session.winner_team_name,
        is_draw=bool(session.is_draw),
    )


class GameSessionService:
    """Creates sessions and drives them through confirmed and played."""

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def add_session(self, night_id: int, board_game_name: str) -> int:
        with session_scope(self.session_factory) as db:
            if db.get(GameNight, night_id) is None:
                raise NotFound(f"Game night {night_id} not found", night_id=night_id)
            session = GameSession(
                game_night_id=night_id,
                board_game_name=board_game_name.strip(),
                state=STATE_PLANNED,
            )
            db.add(session)
            db.flush()
            logger.info("Added %s to night %d (session %d)", board_game_name, night_id, session.id)
            return session.id

    def get_session(self, session_id: int) -> SessionView:
        with session_scope(self.session_factory) as db:
            session = db.get(GameSession, session_id)
            if session is None:
                raise NotFound(f"Session {session_id} not found", session_id=session_id)
            return SessionView.from_row(session)

    def get_roster(self, session_id: int) -> Tuple[Participant, ...]:
        with session_scope(self.session_factory) as db:
            return load_roster(db, session_id)

    def get_outcome(self, session_id: int) -> GameOutcome:
        with session_scope(self.session_factory) as db:
            return load_outcome(db, session_id)

    def list_sessions(self, night_id: int) -> List[SessionView]:
        with session_scope(self.session_factory) as db:
            rows = db.execute(
                select(GameSession)
                .where(GameSession.game_night_id == night_id)
                .order_by(GameSession.id)
            ).scalars()
            return [SessionView.from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # planned -> confirmed
    # ------------------------------------------------------------------

    def confirm_session(self, session_id: int, players: Iterable[Participant]) -> None:
        """Lock the roster and open the session for odds and betting."""
        roster = tuple(players)
        if not roster:
            raise ValueError("A session needs at least one player to be confirmed")
        member_ids = [p.member_id for p in roster]
        if len(set(member_ids)) != len(member_ids):
            raise ValueError("A member may appear on the roster only once")

        with session_scope(self.session_factory) as db:
            known = set(
                db.execute(select(Member.id).where(Member.id.in_(member_ids))).scalars()
            )
            missing = sorted(set(member_ids) - known)
            if missing:
                raise NotFound(f"Unknown members on roster: {missing}", member_ids=missing)

            transition(db, session_id, STATE_PLANNED, STATE_CONFIRMED, confirmed_at=utcnow())
            for p in roster:
                team = p.team_name.strip() if p.team_name and p.team_name.strip() else None
                db.add(SessionPlayer(session_id=session_id, member_id=p.member_id, team_name=team))

        logger.info("Session %d confirmed with %d players", session_id, len(roster))

    # ------------------------------------------------------------------
    # confirmed -> played
    # ------------------------------------------------------------------

    def record_outcome(
        self,
        session_id: int,
        winner_member_id: Optional[int] = None,
        winner_team_name: Optional[str] = None,
        is_draw: bool = False,
    ) -> GameOutcome:
        """Record how the game ended.  Called by the game-night workflow."""
        with session_scope(self.session_factory) as db:
            outcome = GameOutcome(
                participants=load_roster(db, session_id),
                winner_member_id=winner_member_id,
                winner_team_name=winner_team_name,
                is_draw=is_draw,
            )
            self.record_outcome_in(db, session_id, outcome)
            return outcome

    @staticmethod
    def record_outcome_in(db: Session, session_id: int, outcome: GameOutcome) -> None:
        """Apply the confirmed -> played move inside the caller's transaction."""
        roster = load_roster(db, session_id)
        if {p.member_id for p in roster} != set(outcome.member_ids):
            raise ValueError(f"Outcome roster does not match session {session_id}")
        transition(
            db,
            session_id,
            STATE_CONFIRMED,
            STATE_PLAYED,
            winner_member_id=outcome.winner_member_id,
            winner_team_name=outcome.winner_team_name.strip() if outcome.winner_team_name else None,
            is_draw=outcome.is_draw,
            played_at=utcnow(),
        )
        logger.info("Session %d played: %s", session_id, outcome.kind)

    # ------------------------------------------------------------------
    # Removal (explicit cascade)
    # ------------------------------------------------------------------

    def delete_session(self, session_id: int) -> None:
        """Remove a session and everything it owns.

        Sessions with bets, or past the played state, are kept: deleting them
        would orphan stakes or erase settlement history.
        """
        with session_scope(self.session_factory) as db:
            state = current_state(db, session_id)
            if state in (STATE_RESOLVING, STATE_RESOLVED):
                raise InvalidSessionTransition(
                    f"Session {session_id} is {state} and cannot be deleted",
                    session_id=session_id,
                    current_state=state,
                )
            bet_rows = db.execute(
                select(func.count(Bet.id)).where(Bet.session_id == session_id)
            ).scalar_one()
            if bet_rows:
                raise InvalidSessionTransition(
                    f"Session {session_id} has {bet_rows} bets and cannot be deleted",
                    session_id=session_id,
                    current_state=state,
                )
            for model in (OddsEntry, SessionPlayer, PendingCredit, RatingChange):
                db.execute(delete(model).where(model.session_id == session_id))
            db.execute(delete(GameSession).where(GameSession.id == session_id))
        logger.info("Deleted session %d", session_id)
