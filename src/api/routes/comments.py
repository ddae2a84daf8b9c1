"""Comment-related API endpoints.

- POST /comments/{id}/vote: Set the caller's vote on a comment
- POST /comments/{id}/best-answer: Mark a comment as the best answer to its question
"""

from fastapi import APIRouter, Depends, Request

from src import storage
from src.api.auth import require_session
from src.api.models import VoteRequest, VoteResult
from src.api.responses import NOT_FOUND, raise_api_error, raise_storage_error, wrap_response
from src.models.social_models import Session, VoteTarget

router = APIRouter(prefix="/comments", tags=["comments"])


@router.post("/{comment_id}/vote")
async def vote_on_comment(
    request: Request,
    comment_id: str,
    body: VoteRequest,
    session: Session = Depends(require_session)
):
    try:
        counts = storage.set_vote(
            request.app.state.db, session.user_id, VoteTarget.comment(comment_id), body.vote
        )
    except storage.StorageError as e:
        raise_storage_error(e)
    return wrap_response(
        VoteResult.from_counts(comment_id, body.vote, counts.upvotes, counts.downvotes).model_dump()
    )


@router.post("/{comment_id}/best-answer")
async def choose_best_answer(request: Request, comment_id: str, session: Session = Depends(require_session)):
    """Mark a comment as the best answer. Only the question's author may do this."""
    db = request.app.state.db
    comment = storage.get_comment(db, comment_id)
    if comment is None:
        raise_api_error(NOT_FOUND, f"Comment {comment_id} not found")

    try:
        updated = storage.mark_best_answer(db, comment["post_id"], comment_id, session.user_id)
    except storage.StorageError as e:
        raise_storage_error(e)
    return wrap_response(updated)
