"""Vote Reconciliation Engine

Keeps one user's vote on a post or comment responsive and consistent with the
shared aggregate counters. Each click updates the local VoteState optimistically,
then the absolute direction is sent to the VoteStore. On success the authoritative
counts are adopted and cached listings are invalidated; on failure the state is
rolled back to the snapshot taken just before the optimistic update.

Key Functions:
    VoteEngine.cast_vote — toggle-vote with optimistic update and rollback
    VoteEngine.load — lazily fetch the user's existing vote
    VoteEngine.close — detach the engine so late completions are ignored

Remote mutations are dispatched one at a time per engine (asyncio.Lock). Because
every request carries the absolute direction and the optimistic state is always
derived from the latest local state, rapid repeated clicks converge on the
user's final intended vote.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol, Tuple

import structlog

from src.backend.utils.errors import (
    NOTICE_TYPE_SIGN_IN_REQUIRED,
    NOTICE_TYPE_VOTE_FAILED,
    NoticeCollector,
)
from src.models.social_models import (
    Session,
    VoteCounts,
    VoteDirection,
    VoteState,
    VoteTarget,
    resolve_toggle,
)

logger = structlog.get_logger()

# Cached listing views that display vote totals
INVALIDATED_LISTINGS = ("posts", "questions", "confessions")

SIGN_IN_MESSAGE = "Please sign in to vote"

__all__ = [
    "INVALIDATED_LISTINGS",
    "PendingVote",
    "VoteCounts",
    "VoteEngine",
    "VotePhase",
    "VoteStore",
]


class VoteStore(Protocol):
    """Remote store holding vote rows and aggregate counters."""

    async def fetch_vote(self, user_id: str, target: VoteTarget) -> VoteDirection:
        ...

    async def apply_vote(self, user_id: str, target: VoteTarget, direction: VoteDirection) -> VoteCounts:
        ...


class VotePhase(Enum):
    IDLE = "idle"
    PENDING = "pending"
    SETTLED = "settled"


@dataclass(frozen=True)
class PendingVote:
    """An optimistic vote awaiting remote confirmation.

    Attributes:
        direction: Absolute direction sent to the store
        snapshot: VoteState captured immediately before the optimistic update
        generation: Monotonic cast number; the highest one is the latest intent
    """
    direction: VoteDirection
    snapshot: VoteState
    generation: int


class VoteEngine:
    """Optimistic vote state for one rendered post or comment.

    Attributes:
        session: Authentication context (injected, never looked up globally)
        store: VoteStore performing the remote mutation
        notices: NoticeCollector receiving sign-in and failure notices
        state: Current (possibly optimistic) VoteState
        phase: VotePhase of the engine

    Example:
        >>> engine = VoteEngine(session, store, VoteTarget.post("p-1"), upvotes=5, downvotes=2)
        >>> state = await engine.upvote()
        >>> state.current_vote, state.upvotes, state.score
        (<VoteDirection.UP: 1>, 6, 4)
    """

    def __init__(
        self,
        session: Session,
        store: VoteStore,
        target: VoteTarget,
        upvotes: int = 0,
        downvotes: int = 0,
        current_vote: VoteDirection = VoteDirection.NONE,
        notices: Optional[NoticeCollector] = None,
        invalidate: Optional[Callable[[Tuple[str, ...]], None]] = None,
    ):
        self.session = session
        self.store = store
        self.notices = notices if notices is not None else NoticeCollector()
        self._invalidate = invalidate

        self._state = VoteState(target, VoteDirection(current_vote), upvotes, downvotes)
        # Last state known to match the store
        self._confirmed = self._state
        self._pending: Optional[PendingVote] = None
        self._phase = VotePhase.IDLE
        self._generation = 0
        self._in_flight = 0
        self._dirty = False
        self._closed = False
        self._lock = asyncio.Lock()

    @property
    def state(self) -> VoteState:
        return self._state

    @property
    def target(self) -> VoteTarget:
        return self._state.target

    @property
    def phase(self) -> VotePhase:
        return self._phase

    @property
    def pending(self) -> Optional[PendingVote]:
        return self._pending

    @property
    def is_voting(self) -> bool:
        return self._in_flight > 0

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Detach the engine; completions arriving afterwards change nothing."""
        self._closed = True

    async def load(self) -> VoteState:
        """Fetch the user's existing vote on the target.

        No-op for signed-out visitors. The result is discarded if a vote was cast
        while the fetch was in flight, and fetch errors leave the state unchanged.
        """
        if not self.session.is_authenticated or self._closed:
            return self._state

        generation = self._generation
        try:
            existing = await self.store.fetch_vote(self.session.user_id, self.target)
        except Exception as e:
            logger.warning(
                "vote_fetch_failed",
                target_kind=self.target.kind.value,
                target_id=self.target.target_id,
                error=str(e)
            )
            return self._state

        if self._closed or generation != self._generation:
            return self._state

        self._state = VoteState(
            self.target, VoteDirection(existing), self._state.upvotes, self._state.downvotes
        )
        self._confirmed = self._state
        return self._state

    def sync_counts(self, upvotes: int, downvotes: int) -> None:
        """Mirror counts from a refreshed listing. Ignored while a vote is pending."""
        if self.is_voting or self._closed:
            return
        self._state = self._state.with_counts(upvotes, downvotes)
        self._confirmed = self._state

    async def upvote(self) -> VoteState:
        return await self.cast_vote(VoteDirection.UP)

    async def downvote(self) -> VoteState:
        return await self.cast_vote(VoteDirection.DOWN)

    async def cast_vote(self, direction: VoteDirection) -> VoteState:
        """Cast, change, or retract the user's vote.

        Casting the direction already held retracts it. The local state is updated
        before the first await so it always reflects the latest click; the remote
        mutation then waits its turn behind any mutation already in flight.

        Args:
            direction: VoteDirection.UP or VoteDirection.DOWN

        Returns:
            The engine's VoteState once this cast has completed

        Raises:
            ValueError: If direction is not UP or DOWN
        """
        if self._closed:
            return self._state

        if not self.session.is_authenticated:
            self.notices.append(
                NOTICE_TYPE_SIGN_IN_REQUIRED,
                SIGN_IN_MESSAGE,
                {"target_kind": self.target.kind.value, "target_id": self.target.target_id}
            )
            logger.info("vote_rejected_signed_out", target_id=self.target.target_id)
            return self._state

        snapshot = self._state
        new_vote = resolve_toggle(snapshot.current_vote, direction)

        self._generation += 1
        pending = PendingVote(direction=new_vote, snapshot=snapshot, generation=self._generation)
        self._pending = pending
        self._phase = VotePhase.PENDING
        self._state = snapshot.with_vote(new_vote)
        self._in_flight += 1

        logger.debug(
            "vote_cast",
            target_kind=self.target.kind.value,
            target_id=self.target.target_id,
            old_vote=int(snapshot.current_vote),
            new_vote=int(new_vote),
            generation=pending.generation
        )

        try:
            async with self._lock:
                counts = await self.store.apply_vote(self.session.user_id, self.target, new_vote)
        except Exception as e:
            self._in_flight -= 1
            self._on_failure(pending, e)
        else:
            self._in_flight -= 1
            self._on_success(pending, counts)

        return self._state

    def _is_latest(self, pending: PendingVote) -> bool:
        return pending.generation == self._generation

    def _settle(self) -> None:
        if self._in_flight == 0:
            self._pending = None
            self._phase = VotePhase.SETTLED
            self._dirty = False

    def _on_success(self, pending: PendingVote, counts: VoteCounts) -> None:
        if self._closed:
            return

        confirmed = VoteState(self.target, pending.direction, counts.upvotes, counts.downvotes)
        self._confirmed = confirmed
        if self._is_latest(pending):
            self._state = confirmed
        self._settle()

        logger.info(
            "vote_confirmed",
            target_kind=self.target.kind.value,
            target_id=self.target.target_id,
            vote=int(pending.direction),
            upvotes=counts.upvotes,
            downvotes=counts.downvotes
        )

        if self._invalidate is not None:
            self._invalidate(INVALIDATED_LISTINGS)

    def _on_failure(self, pending: PendingVote, error: Exception) -> None:
        if self._closed:
            return

        if self._is_latest(pending):
            # A failed earlier cast means this snapshot was never confirmed
            self._state = self._confirmed if self._dirty else pending.snapshot
        else:
            self._dirty = True
        self._settle()

        logger.warning(
            "vote_rolled_back",
            target_kind=self.target.kind.value,
            target_id=self.target.target_id,
            vote=int(pending.direction),
            error=str(error)
        )
        self.notices.append(
            NOTICE_TYPE_VOTE_FAILED,
            str(error) or "Failed to vote",
            {
                "target_kind": self.target.kind.value,
                "target_id": self.target.target_id,
                "error_type": type(error).__name__,
            }
        )
