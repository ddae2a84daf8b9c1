"""Social data models for Campus Pulse.

This module defines the data structures shared by the vote reconciliation engine,
the chat stream assembler, and the storage layer.

Data Models:
    VoteTarget — the post or comment a vote applies to (exactly one id set)
    VoteState — a user's current vote plus the optimistic mirror of the target's counters
    Session — explicitly passed authentication context
    Message — one transcript entry (user or assistant)
    Conversation — persisted chat session metadata

These models use dataclasses for simplicity and map cleanly to the database schema
in src/backend/db/schema.sql.
"""

from dataclasses import dataclass, replace
from enum import Enum, IntEnum
from typing import Dict, Optional, Tuple

# Conversation titles are cut to this many characters, plus an ellipsis
CONVERSATION_TITLE_LENGTH = 60
TITLE_ELLIPSIS = "…"


class VoteDirection(IntEnum):
    """Signed direction of a user's vote; the value is the stored vote_type."""
    UP = 1
    DOWN = -1
    NONE = 0


class TargetKind(Enum):
    POST = "post"
    COMMENT = "comment"


class PostType(str, Enum):
    CONFESSION = "confession"
    QUESTION = "question"
    RANT = "rant"
    ADVICE = "advice"
    DISCUSSION = "discussion"


class IdentityType(str, Enum):
    ANONYMOUS = "anonymous"
    PSEUDONYMOUS = "pseudonymous"
    NAMED = "named"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class VoteTarget:
    """The entity a vote applies to.

    Attributes:
        kind: TargetKind.POST or TargetKind.COMMENT
        target_id: Opaque identifier of the post or comment
    """
    kind: TargetKind
    target_id: str

    def __post_init__(self):
        if not isinstance(self.kind, TargetKind):
            raise ValueError(f"kind must be a TargetKind, got {self.kind!r}")
        if not self.target_id:
            raise ValueError("target_id must be a non-empty identifier")

    @classmethod
    def post(cls, post_id: str) -> "VoteTarget":
        return cls(TargetKind.POST, post_id)

    @classmethod
    def comment(cls, comment_id: str) -> "VoteTarget":
        return cls(TargetKind.COMMENT, comment_id)

    @classmethod
    def from_ids(cls, post_id: Optional[str] = None, comment_id: Optional[str] = None) -> "VoteTarget":
        """Build a target from a (post_id, comment_id) pair with exactly one set.

        Raises:
            ValueError: If both or neither id is given
        """
        if bool(post_id) == bool(comment_id):
            raise ValueError("Exactly one of post_id or comment_id must be set")
        if post_id:
            return cls.post(post_id)
        return cls.comment(comment_id)

    @property
    def post_id(self) -> Optional[str]:
        return self.target_id if self.kind is TargetKind.POST else None

    @property
    def comment_id(self) -> Optional[str]:
        return self.target_id if self.kind is TargetKind.COMMENT else None


def counter_delta(old: VoteDirection, new: VoteDirection) -> Tuple[int, int]:
    """Compute the (upvotes, downvotes) adjustment for moving from old to new.

    The old vote's effect is reversed first, then the new vote's effect applied.

    Examples:
        >>> counter_delta(VoteDirection.NONE, VoteDirection.UP)
        (1, 0)
        >>> counter_delta(VoteDirection.UP, VoteDirection.DOWN)
        (-1, 1)
        >>> counter_delta(VoteDirection.DOWN, VoteDirection.NONE)
        (0, -1)
    """
    old = VoteDirection(old)
    new = VoteDirection(new)
    d_up = 0
    d_down = 0

    if old is VoteDirection.UP:
        d_up -= 1
    elif old is VoteDirection.DOWN:
        d_down -= 1

    if new is VoteDirection.UP:
        d_up += 1
    elif new is VoteDirection.DOWN:
        d_down += 1

    return d_up, d_down


def resolve_toggle(current: VoteDirection, direction: VoteDirection) -> VoteDirection:
    """Apply the toggle rule: casting the held direction again retracts it.

    Raises:
        ValueError: If direction is not UP or DOWN
    """
    current = VoteDirection(current)
    direction = VoteDirection(direction)
    if direction not in (VoteDirection.UP, VoteDirection.DOWN):
        raise ValueError(f"direction must be UP or DOWN, got {direction!r}")
    return VoteDirection.NONE if current is direction else direction


@dataclass(frozen=True)
class VoteCounts:
    """Authoritative aggregate counters read back from the store."""
    upvotes: int
    downvotes: int


@dataclass(frozen=True)
class VoteState:
    """A user's vote on one target plus the optimistic mirror of its counters.

    One instance exists per rendered post/comment. Instances are immutable so a
    captured snapshot can be restored exactly on rollback.

    Attributes:
        target: The voted entity
        current_vote: Direction the current user holds (NONE when no vote row exists)
        upvotes: Optimistic mirror of the target's stored upvote counter
        downvotes: Optimistic mirror of the target's stored downvote counter
    """
    target: VoteTarget
    current_vote: VoteDirection = VoteDirection.NONE
    upvotes: int = 0
    downvotes: int = 0

    def __post_init__(self):
        if self.upvotes < 0 or self.downvotes < 0:
            raise ValueError(
                f"Vote counts must be non-negative, got upvotes={self.upvotes}, downvotes={self.downvotes}"
            )

    @property
    def score(self) -> int:
        """Net score; may be negative."""
        return self.upvotes - self.downvotes

    def with_vote(self, new_vote: VoteDirection) -> "VoteState":
        """Return the state after moving current_vote to new_vote."""
        d_up, d_down = counter_delta(self.current_vote, new_vote)
        return replace(
            self,
            current_vote=new_vote,
            upvotes=max(self.upvotes + d_up, 0),
            downvotes=max(self.downvotes + d_down, 0),
        )

    def with_counts(self, upvotes: int, downvotes: int) -> "VoteState":
        return replace(self, upvotes=upvotes, downvotes=downvotes)


@dataclass(frozen=True)
class Session:
    """Authentication context injected into the engine and the chat session.

    Attributes:
        user_id: Authenticated user's id, or None for a signed-out visitor
    """
    user_id: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)


@dataclass
class Message:
    """One conversational turn in a chat transcript.

    Attributes:
        role: MessageRole.USER or MessageRole.ASSISTANT
        content: Message text (grows while an assistant reply streams in)
        pending: True only for the in-progress assistant message
    """
    role: MessageRole
    content: str
    pending: bool = False

    def to_payload(self) -> Dict[str, str]:
        """Wire form sent to the chat endpoint."""
        return {"role": self.role.value, "content": self.content}


@dataclass
class Conversation:
    """Persisted chat session metadata.

    Attributes:
        id: Conversation id (chat_conversations.id)
        title: Derived from the first user message
        created_at: ISO 8601 UTC creation timestamp
        updated_at: ISO 8601 UTC timestamp of the last saved message
    """
    id: str
    title: str
    created_at: str
    updated_at: str


def conversation_title(first_message: str) -> str:
    """Derive a conversation title from its first user message.

    Examples:
        >>> conversation_title("How do I prepare for placement season?")
        'How do I prepare for placement season?'
        >>> len(conversation_title("x" * 100))
        61
    """
    if len(first_message) > CONVERSATION_TITLE_LENGTH:
        return first_message[:CONVERSATION_TITLE_LENGTH] + TITLE_ELLIPSIS
    return first_message
