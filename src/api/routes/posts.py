"""Post-related API endpoints.

This module provides the feed, post detail, voting and comment endpoints:
- GET /posts: List posts (filters: post_type, community_id; sorts: new/top/unanswered)
- GET /posts/mine: List the caller's own posts, anonymous ones included
- GET /posts/{id}: Get one post through the identity-protecting view
- POST /posts: Create a post
- GET|POST /posts/{id}/vote: Read or set the caller's vote
- GET|POST /posts/{id}/comments: List or add comments
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from src import storage
from src.api.auth import require_session
from src.api.models import PaginationParams, VoteRequest, VoteResult
from src.api.responses import NOT_FOUND, raise_api_error, raise_storage_error, wrap_response
from src.models.social_models import PostType, Session, VoteTarget

router = APIRouter(prefix="/posts", tags=["posts"])


def _get_db(request: Request):
    return request.app.state.db


class PostCreate(BaseModel):
    title: str
    content: str
    post_type: PostType = PostType.DISCUSSION
    community_id: Optional[str] = None
    is_anonymous: Optional[bool] = None
    pseudonym: Optional[str] = None


class CommentCreate(BaseModel):
    content: str
    is_anonymous: bool = False
    parent_id: Optional[str] = None


@router.get("")
async def list_posts(
    request: Request,
    post_type: Optional[PostType] = Query(None, description="Filter by post type"),
    community_id: Optional[str] = Query(None, description="Filter by community"),
    sort: str = Query("new", description="new, top or unanswered"),
    pagination: PaginationParams = Depends()
):
    """List posts for a feed, pinned posts first.

    Anonymous posts never expose their author's user_id.
    """
    try:
        posts = storage.list_posts(
            _get_db(request),
            post_type=post_type.value if post_type else None,
            community_id=community_id,
            sort=sort,
            limit=pagination.limit,
            offset=pagination.offset,
        )
    except storage.StorageError as e:
        raise_storage_error(e)
    return wrap_response(posts, total=len(posts))


@router.get("/mine")
async def list_my_posts(
    request: Request,
    post_type: Optional[PostType] = Query(None),
    session: Session = Depends(require_session)
):
    posts = storage.list_user_posts(
        _get_db(request),
        session.user_id,
        post_type=post_type.value if post_type else None,
    )
    return wrap_response(posts, total=len(posts))


@router.get("/{post_id}")
async def get_post(request: Request, post_id: str):
    post = storage.get_public_post(_get_db(request), post_id)
    if post is None:
        raise_api_error(NOT_FOUND, f"Post {post_id} not found")
    return wrap_response(post)


@router.post("", status_code=201)
async def create_post(request: Request, body: PostCreate, session: Session = Depends(require_session)):
    """Create a post as the caller.

    Identity is anonymous when is_anonymous is set, pseudonymous when a pseudonym
    is given, named otherwise. Omitting is_anonymous uses the caller's profile default.
    """
    try:
        post = storage.create_post(
            _get_db(request),
            session.user_id,
            title=body.title,
            content=body.content,
            post_type=body.post_type.value,
            community_id=body.community_id,
            is_anonymous=body.is_anonymous,
            pseudonym=body.pseudonym,
        )
    except storage.StorageError as e:
        raise_storage_error(e)
    return wrap_response(post)


@router.get("/{post_id}/vote")
async def get_post_vote(request: Request, post_id: str, session: Session = Depends(require_session)):
    db = _get_db(request)
    target = VoteTarget.post(post_id)
    try:
        counts = storage.get_vote_counts(db, target)
    except storage.StorageError as e:
        raise_storage_error(e)
    vote = storage.get_user_vote(db, session.user_id, target)
    return wrap_response(
        VoteResult.from_counts(post_id, vote, counts.upvotes, counts.downvotes).model_dump()
    )


@router.post("/{post_id}/vote")
async def vote_on_post(
    request: Request,
    post_id: str,
    body: VoteRequest,
    session: Session = Depends(require_session)
):
    """Set the caller's absolute vote on a post and return the stored counters."""
    try:
        counts = storage.set_vote(_get_db(request), session.user_id, VoteTarget.post(post_id), body.vote)
    except storage.StorageError as e:
        raise_storage_error(e)
    return wrap_response(
        VoteResult.from_counts(post_id, body.vote, counts.upvotes, counts.downvotes).model_dump()
    )


@router.get("/{post_id}/comments")
async def list_post_comments(request: Request, post_id: str):
    db = _get_db(request)
    if storage.get_public_post(db, post_id) is None:
        raise_api_error(NOT_FOUND, f"Post {post_id} not found")
    comments = storage.list_comments(db, post_id)
    return wrap_response(comments, total=len(comments))


@router.post("/{post_id}/comments", status_code=201)
async def add_comment(
    request: Request,
    post_id: str,
    body: CommentCreate,
    session: Session = Depends(require_session)
):
    try:
        comment = storage.create_comment(
            _get_db(request),
            post_id,
            session.user_id,
            body.content,
            is_anonymous=body.is_anonymous,
            parent_id=body.parent_id,
        )
    except storage.StorageError as e:
        raise_storage_error(e)
    return wrap_response(comment)
