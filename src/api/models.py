"""Pydantic models for API request/response structures.

This module defines the standard response and error envelopes used across all API
endpoints, pagination parameters for feed endpoints, and the vote payloads shared by
the post and comment routes.

Response Structure:
    All successful responses use ResponseEnvelope with:
    - data: The actual response payload (any type)
    - meta: Metadata including timestamp, version, and optional total count

Error Structure:
    All error responses use ErrorEnvelope with:
    - error: ErrorDetail containing code and message
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from src.models.social_models import VoteDirection

VOTE_DIRECTIONS = {
    "up": VoteDirection.UP,
    "down": VoteDirection.DOWN,
    "none": VoteDirection.NONE,
}


class MetaModel(BaseModel):
    """Metadata included in all successful responses.

    Attributes:
        timestamp: ISO 8601 formatted UTC timestamp of the response
        version: API version string (currently hardcoded as "1.0")
        total: Optional total count of items (used with pagination)
    """
    timestamp: str
    version: str
    total: Optional[int] = None


class ResponseEnvelope(BaseModel):
    data: Any
    meta: MetaModel


class ErrorDetail(BaseModel):
    """Error details included in error responses.

    Attributes:
        code: Machine-readable error code (see responses.py for constants)
        message: Human-readable error message
    """
    code: str
    message: str


class ErrorEnvelope(BaseModel):
    error: ErrorDetail


class PaginationParams(BaseModel):
    """Query parameters for feed endpoints.

    Attributes:
        limit: Maximum number of posts to return (default 20, max 100)
        offset: Number of posts to skip (default 0, min 0)
    """
    limit: int = Field(default=20, ge=1, le=100, description="Maximum number of items to return")
    offset: int = Field(default=0, ge=0, description="Number of items to skip")


class VoteRequest(BaseModel):
    """Absolute vote the caller wants to hold after the request.

    Sending the same body twice leaves the counters unchanged.
    """
    direction: Literal["up", "down", "none"]

    @property
    def vote(self) -> VoteDirection:
        return VOTE_DIRECTIONS[self.direction]


class VoteResult(BaseModel):
    """Caller's vote and the target's authoritative counters.

    Attributes:
        target_id: Post or comment id
        current_vote: 1, -1, or 0
        upvotes: Stored upvote counter
        downvotes: Stored downvote counter
        score: upvotes - downvotes
    """
    target_id: str
    current_vote: int
    upvotes: int
    downvotes: int
    score: int

    @classmethod
    def from_counts(cls, target_id: str, vote: VoteDirection, upvotes: int, downvotes: int) -> "VoteResult":
        return cls(
            target_id=target_id,
            current_vote=int(vote),
            upvotes=upvotes,
            downvotes=downvotes,
            score=upvotes - downvotes,
        )
