"""Storage operations for posts, comments, votes, notifications, profiles and communities.

This module handles all database reads and writes for the social tables, including
the server side of the vote reconciliation protocol.

Key Functions:
    set_vote — Set a user's absolute vote on a post/comment and adjust its counters atomically
    get_user_vote — Read the direction a user currently holds on a target
    create_post / list_posts / get_public_post — Post CRUD over the posts_public view
    create_comment / list_comments / mark_best_answer — Comment threads
    list_notifications / mark_notification_read / mark_all_notifications_read — Inbox
    get_profile / update_profile — Display name, bio and default post anonymity
    list_communities — Community directory

Vote rows and aggregate counters are changed inside one BEGIN IMMEDIATE transaction,
and counters are adjusted in place (upvotes = upvotes + ?) rather than written back
from a client-side read, so concurrent voters cannot lose each other's updates.
"""

import sqlite3
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Generator, List, Optional

import structlog

from src.models.social_models import (
    IdentityType,
    PostType,
    TargetKind,
    VoteCounts,
    VoteDirection,
    VoteTarget,
    counter_delta,
)

logger = structlog.get_logger()

# Content rules (mirrors the post/comment forms)
TITLE_MIN_LENGTH = 5
TITLE_MAX_LENGTH = 200
CONTENT_MIN_LENGTH = 10
CONTENT_MAX_LENGTH = 5000
PSEUDONYM_MAX_LENGTH = 30
COMMENT_MAX_LENGTH = 2000
DISPLAY_NAME_MIN_LENGTH = 2
DISPLAY_NAME_MAX_LENGTH = 50
BIO_MAX_LENGTH = 200

POST_SORTS = ("new", "top", "unanswered")

NOTIFICATION_TYPE_COMMENT = "comment"
NOTIFICATION_TYPE_BEST_ANSWER = "best_answer"

_NOW = "strftime('%Y-%m-%dT%H:%M:%fZ', 'now')"

# Target kind -> (table holding the counters, votes column referencing it)
_TARGET_TABLES = {
    TargetKind.POST: ("posts", "post_id"),
    TargetKind.COMMENT: ("comments", "comment_id"),
}


class StorageError(Exception):
    """Base exception for storage rule violations."""
    pass


class TargetNotFoundError(StorageError):
    """Raised when a referenced post, comment, or community does not exist."""
    pass


class PermissionDeniedError(StorageError):
    """Raised when the acting user may not perform the operation."""
    pass


class ValidationError(StorageError):
    """Raised when input violates a content rule."""
    pass


def _new_id() -> str:
    return str(uuid.uuid4())


def _dict_from_row(row) -> Optional[Dict[str, Any]]:
    """Convert sqlite3.Row to dict."""
    return dict(row) if row else None


@contextmanager
def write_transaction(conn: sqlite3.Connection) -> Generator[sqlite3.Connection, None, None]:
    """Run the enclosed statements in one BEGIN IMMEDIATE transaction.

    Commits on normal exit; rolls back and re-raises on any exception. The write
    lock is taken up front so the read-then-write sequences below are atomic
    with respect to other connections.
    """
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    conn.commit()


# =============================================================================
# Votes
# =============================================================================

def _fetch_vote_row(conn: sqlite3.Connection, user_id: str, target: VoteTarget):
    _, column = _TARGET_TABLES[target.kind]
    return conn.execute(
        f"SELECT id, vote_type FROM votes WHERE user_id = ? AND {column} = ?",
        (user_id, target.target_id)
    ).fetchone()


def get_user_vote(conn: sqlite3.Connection, user_id: str, target: VoteTarget) -> VoteDirection:
    """Return the direction user_id currently holds on target (NONE if no vote row)."""
    row = _fetch_vote_row(conn, user_id, target)
    if row is None:
        return VoteDirection.NONE
    return VoteDirection(row['vote_type'])


def get_vote_counts(conn: sqlite3.Connection, target: VoteTarget) -> VoteCounts:
    """Read the stored aggregate counters of a post or comment.

    Raises:
        TargetNotFoundError: If the target row does not exist
    """
    table, _ = _TARGET_TABLES[target.kind]
    row = conn.execute(
        f"SELECT upvotes, downvotes FROM {table} WHERE id = ?",
        (target.target_id,)
    ).fetchone()
    if row is None:
        raise TargetNotFoundError(f"{target.kind.value} {target.target_id} not found")
    return VoteCounts(upvotes=row['upvotes'], downvotes=row['downvotes'])


def set_vote(
    conn: sqlite3.Connection,
    user_id: str,
    target: VoteTarget,
    direction: VoteDirection
) -> VoteCounts:
    """Set user_id's vote on target to an absolute direction and return the new counters.

    Runs the whole remote mutation protocol in one transaction:
    1. Read the existing vote row for (user, target)
    2. NONE: delete the row if present. UP/DOWN: update or insert the row
    3. Adjust the target's counters in place by counter_delta(old, new)

    Because the request carries the absolute direction and the delta is computed
    from the persisted row, replaying the same request is a no-op.

    Args:
        conn: SQLite database connection (no transaction may be open)
        user_id: Voting user
        target: Post or comment being voted on
        direction: Desired vote after the call

    Returns:
        VoteCounts read back inside the same transaction

    Raises:
        TargetNotFoundError: If the post/comment does not exist
        sqlite3.Error: On database failure (transaction rolled back)

    Example:
        >>> counts = set_vote(conn, "user-1", VoteTarget.post("p-1"), VoteDirection.UP)
        >>> counts.upvotes
        6
    """
    direction = VoteDirection(direction)
    table, column = _TARGET_TABLES[target.kind]

    with write_transaction(conn):
        exists = conn.execute(
            f"SELECT 1 FROM {table} WHERE id = ?", (target.target_id,)
        ).fetchone()
        if exists is None:
            raise TargetNotFoundError(f"{target.kind.value} {target.target_id} not found")

        existing = _fetch_vote_row(conn, user_id, target)
        old = VoteDirection(existing['vote_type']) if existing else VoteDirection.NONE

        if direction is VoteDirection.NONE:
            if existing:
                conn.execute("DELETE FROM votes WHERE id = ?", (existing['id'],))
        elif existing:
            if old is not direction:
                conn.execute(
                    f"UPDATE votes SET vote_type = ?, updated_at = {_NOW} WHERE id = ?",
                    (int(direction), existing['id'])
                )
        else:
            conn.execute(
                f"INSERT INTO votes (id, user_id, {column}, vote_type) VALUES (?, ?, ?, ?)",
                (_new_id(), user_id, target.target_id, int(direction))
            )

        d_up, d_down = counter_delta(old, direction)
        if d_up or d_down:
            conn.execute(
                f"""
                UPDATE {table}
                SET upvotes = MAX(upvotes + ?, 0),
                    downvotes = MAX(downvotes + ?, 0),
                    updated_at = {_NOW}
                WHERE id = ?
                """,
                (d_up, d_down, target.target_id)
            )

        counts = get_vote_counts(conn, target)

    logger.info(
        "vote_applied",
        target_kind=target.kind.value,
        target_id=target.target_id,
        old_vote=int(old),
        new_vote=int(direction),
        upvotes=counts.upvotes,
        downvotes=counts.downvotes
    )
    return counts


class SQLiteVoteStore:
    """VoteStore backed by the local SQLite database.

    Example:
        >>> store = SQLiteVoteStore(conn)
        >>> engine = VoteEngine(session, store, VoteTarget.post("p-1"), upvotes=5, downvotes=2)
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    async def fetch_vote(self, user_id: str, target: VoteTarget) -> VoteDirection:
        return get_user_vote(self.conn, user_id, target)

    async def apply_vote(self, user_id: str, target: VoteTarget, direction: VoteDirection) -> VoteCounts:
        return set_vote(self.conn, user_id, target, direction)


# =============================================================================
# Posts
# =============================================================================

def _identity_for(is_anonymous: bool, pseudonym: Optional[str]) -> IdentityType:
    if is_anonymous:
        return IdentityType.ANONYMOUS
    if pseudonym:
        return IdentityType.PSEUDONYMOUS
    return IdentityType.NAMED


def _validate_post(title: str, content: str, post_type: str, pseudonym: Optional[str]) -> None:
    if not (TITLE_MIN_LENGTH <= len(title) <= TITLE_MAX_LENGTH):
        raise ValidationError(
            f"Title must be between {TITLE_MIN_LENGTH} and {TITLE_MAX_LENGTH} characters"
        )
    if not (CONTENT_MIN_LENGTH <= len(content) <= CONTENT_MAX_LENGTH):
        raise ValidationError(
            f"Content must be between {CONTENT_MIN_LENGTH} and {CONTENT_MAX_LENGTH} characters"
        )
    if post_type not in {t.value for t in PostType}:
        raise ValidationError(f"Unknown post_type '{post_type}'")
    if pseudonym and len(pseudonym) > PSEUDONYM_MAX_LENGTH:
        raise ValidationError(f"Pseudonym must be at most {PSEUDONYM_MAX_LENGTH} characters")


def create_post(
    conn: sqlite3.Connection,
    user_id: str,
    title: str,
    content: str,
    post_type: str = PostType.DISCUSSION.value,
    community_id: Optional[str] = None,
    is_anonymous: Optional[bool] = None,
    pseudonym: Optional[str] = None,
) -> Dict[str, Any]:
    """Create a post and return its public projection.

    Identity is anonymous when is_anonymous is set, pseudonymous when a pseudonym is
    given, and named otherwise. A pseudonym is only stored for non-anonymous posts.
    When is_anonymous is None the author's profile is_anonymous_default applies.

    Raises:
        ValidationError: If title/content/post_type/pseudonym break the content rules
        TargetNotFoundError: If community_id does not exist
    """
    title = (title or "").strip()
    content = (content or "").strip()
    pseudonym = (pseudonym or "").strip() or None
    post_type = getattr(post_type, "value", post_type)

    _validate_post(title, content, post_type, pseudonym)
    if is_anonymous is None:
        is_anonymous = get_profile(conn, user_id)['is_anonymous_default']
    identity = _identity_for(is_anonymous, pseudonym)
    post_id = _new_id()

    with write_transaction(conn):
        if community_id is not None:
            community = conn.execute(
                "SELECT 1 FROM communities WHERE id = ?", (community_id,)
            ).fetchone()
            if community is None:
                raise TargetNotFoundError(f"community {community_id} not found")

        conn.execute("""
            INSERT INTO posts (id, user_id, community_id, title, content, post_type,
                               identity_type, pseudonym)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            post_id,
            user_id,
            community_id,
            title,
            content,
            post_type,
            identity.value,
            None if identity is IdentityType.ANONYMOUS else pseudonym,
        ))

    logger.info("post_created", post_id=post_id, post_type=post_type, identity_type=identity.value)
    return get_public_post(conn, post_id)


def get_public_post(conn: sqlite3.Connection, post_id: str) -> Optional[Dict[str, Any]]:
    """Fetch one post through the identity-protecting posts_public view."""
    row = conn.execute("SELECT * FROM posts_public WHERE id = ?", (post_id,)).fetchone()
    return _dict_from_row(row)


def list_posts(
    conn: sqlite3.Connection,
    post_type: Optional[str] = None,
    community_id: Optional[str] = None,
    sort: str = "new",
    limit: int = 20,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    """List posts for a feed, pinned posts first.

    Sorts:
        new — newest first
        top — most upvoted first
        unanswered — only posts with no comments, newest first

    Raises:
        ValidationError: If sort is not one of POST_SORTS
    """
    if sort not in POST_SORTS:
        raise ValidationError(f"Unknown sort '{sort}'. Must be one of: {', '.join(POST_SORTS)}")

    clauses = []
    params: List[Any] = []

    if post_type is not None:
        clauses.append("post_type = ?")
        params.append(post_type)
    if community_id is not None:
        clauses.append("community_id = ?")
        params.append(community_id)
    if sort == "unanswered":
        clauses.append("comment_count = 0")

    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    if sort == "top":
        order = "ORDER BY is_pinned DESC, upvotes DESC, created_at DESC"
    else:
        order = "ORDER BY is_pinned DESC, created_at DESC"

    rows = conn.execute(
        f"SELECT * FROM posts_public {where} {order} LIMIT ? OFFSET ?",
        params + [limit, offset]
    ).fetchall()
    return [dict(row) for row in rows]


def list_user_posts(
    conn: sqlite3.Connection,
    user_id: str,
    post_type: Optional[str] = None,
    limit: int = 50,
) -> List[Dict[str, Any]]:
    """List the caller's own posts, anonymous ones included, newest first."""
    params: List[Any] = [user_id]
    type_clause = ""
    if post_type is not None:
        type_clause = "AND p.post_type = ?"
        params.append(post_type)

    rows = conn.execute(f"""
        SELECT p.*, c.name AS community_name, c.icon AS community_icon
        FROM posts p
        LEFT JOIN communities c ON c.id = p.community_id
        WHERE p.user_id = ? {type_clause}
        ORDER BY p.created_at DESC
        LIMIT ?
    """, params + [limit]).fetchall()
    return [dict(row) for row in rows]


# =============================================================================
# Comments
# =============================================================================

def _comment_public(row) -> Optional[Dict[str, Any]]:
    comment = _dict_from_row(row)
    if comment and comment['identity_type'] == IdentityType.ANONYMOUS.value:
        comment['user_id'] = None
    return comment


def _insert_notification(
    conn: sqlite3.Connection,
    user_id: str,
    notification_type: str,
    title: str,
    message: Optional[str] = None,
    related_post_id: Optional[str] = None,
    related_comment_id: Optional[str] = None,
) -> str:
    notification_id = _new_id()
    conn.execute("""
        INSERT INTO notifications (id, user_id, type, title, message,
                                   related_post_id, related_comment_id)
        VALUES (?, ?, ?, ?, ?, ?, ?)
    """, (notification_id, user_id, notification_type, title, message,
          related_post_id, related_comment_id))
    return notification_id


def create_comment(
    conn: sqlite3.Connection,
    post_id: str,
    user_id: str,
    content: str,
    is_anonymous: bool = False,
    parent_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Add a comment (or reply) to a post.

    In the same transaction the post's comment_count is incremented in place and,
    unless the commenter owns the post, a 'comment' notification is queued for the
    post owner.

    Raises:
        ValidationError: If content is empty/too long or parent_id is on another post
        TargetNotFoundError: If the post or parent comment does not exist
    """
    content = (content or "").strip()
    if not content or len(content) > COMMENT_MAX_LENGTH:
        raise ValidationError(f"Comment must be between 1 and {COMMENT_MAX_LENGTH} characters")

    identity = IdentityType.ANONYMOUS if is_anonymous else IdentityType.NAMED
    comment_id = _new_id()

    with write_transaction(conn):
        post = conn.execute(
            "SELECT id, user_id, title FROM posts WHERE id = ?", (post_id,)
        ).fetchone()
        if post is None:
            raise TargetNotFoundError(f"post {post_id} not found")

        if parent_id is not None:
            parent = conn.execute(
                "SELECT post_id FROM comments WHERE id = ?", (parent_id,)
            ).fetchone()
            if parent is None:
                raise TargetNotFoundError(f"comment {parent_id} not found")
            if parent['post_id'] != post_id:
                raise ValidationError("Parent comment belongs to a different post")

        conn.execute("""
            INSERT INTO comments (id, post_id, parent_id, user_id, content, identity_type)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (comment_id, post_id, parent_id, user_id, content, identity.value))

        conn.execute(
            f"UPDATE posts SET comment_count = comment_count + 1, updated_at = {_NOW} WHERE id = ?",
            (post_id,)
        )

        if post['user_id'] != user_id:
            _insert_notification(
                conn,
                post['user_id'],
                NOTIFICATION_TYPE_COMMENT,
                "New comment on your post",
                f'Someone commented on "{post["title"][:50]}"',
                related_post_id=post_id,
                related_comment_id=comment_id,
            )

    logger.info("comment_created", post_id=post_id, comment_id=comment_id, is_reply=parent_id is not None)
    row = conn.execute("SELECT * FROM comments WHERE id = ?", (comment_id,)).fetchone()
    return _comment_public(row)


def get_comment(conn: sqlite3.Connection, comment_id: str) -> Optional[Dict[str, Any]]:
    row = conn.execute("SELECT * FROM comments WHERE id = ?", (comment_id,)).fetchone()
    return _comment_public(row)


def list_comments(conn: sqlite3.Connection, post_id: str) -> List[Dict[str, Any]]:
    """List a post's comments oldest first, with anonymous authors masked."""
    rows = conn.execute(
        "SELECT * FROM comments WHERE post_id = ? ORDER BY created_at ASC, rowid ASC",
        (post_id,)
    ).fetchall()
    return [_comment_public(row) for row in rows]


def mark_best_answer(
    conn: sqlite3.Connection,
    post_id: str,
    comment_id: str,
    user_id: str,
) -> Dict[str, Any]:
    """Mark comment_id as the best answer to a question post.

    Only the question's author may do this; any previous best answer is cleared.
    The comment's author receives a 'best_answer' notification unless they are the
    question's author.

    Raises:
        TargetNotFoundError: If the post or comment (on that post) does not exist
        PermissionDeniedError: If user_id does not own the post
        ValidationError: If the post is not a question
    """
    with write_transaction(conn):
        post = conn.execute(
            "SELECT user_id, post_type, title FROM posts WHERE id = ?", (post_id,)
        ).fetchone()
        if post is None:
            raise TargetNotFoundError(f"post {post_id} not found")
        if post['user_id'] != user_id:
            raise PermissionDeniedError("Only the question's author can choose the best answer")
        if post['post_type'] != PostType.QUESTION.value:
            raise ValidationError("Best answers can only be chosen on questions")

        comment = conn.execute(
            "SELECT user_id FROM comments WHERE id = ? AND post_id = ?", (comment_id, post_id)
        ).fetchone()
        if comment is None:
            raise TargetNotFoundError(f"comment {comment_id} not found on post {post_id}")

        conn.execute(
            "UPDATE comments SET is_best_answer = 0 WHERE post_id = ? AND is_best_answer = 1",
            (post_id,)
        )
        conn.execute(
            f"UPDATE comments SET is_best_answer = 1, updated_at = {_NOW} WHERE id = ?",
            (comment_id,)
        )

        if comment['user_id'] != user_id:
            _insert_notification(
                conn,
                comment['user_id'],
                NOTIFICATION_TYPE_BEST_ANSWER,
                "Your answer was chosen",
                f'Your comment was marked as the best answer to "{post["title"][:50]}"',
                related_post_id=post_id,
                related_comment_id=comment_id,
            )

    logger.info("best_answer_marked", post_id=post_id, comment_id=comment_id)
    row = conn.execute("SELECT * FROM comments WHERE id = ?", (comment_id,)).fetchone()
    return _comment_public(row)


# =============================================================================
# Notifications
# =============================================================================

def create_notification(
    conn: sqlite3.Connection,
    user_id: str,
    notification_type: str,
    title: str,
    message: Optional[str] = None,
    related_post_id: Optional[str] = None,
    related_comment_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Insert a notification row for user_id and return it."""
    with write_transaction(conn):
        notification_id = _insert_notification(
            conn, user_id, notification_type, title, message,
            related_post_id, related_comment_id
        )
    row = conn.execute("SELECT * FROM notifications WHERE id = ?", (notification_id,)).fetchone()
    return _dict_from_row(row)


def list_notifications(conn: sqlite3.Connection, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
    """List a user's notifications, newest first."""
    rows = conn.execute("""
        SELECT * FROM notifications
        WHERE user_id = ?
        ORDER BY created_at DESC, rowid DESC
        LIMIT ?
    """, (user_id, limit)).fetchall()
    return [dict(row) for row in rows]


def count_unread(conn: sqlite3.Connection, user_id: str) -> int:
    row = conn.execute(
        "SELECT COUNT(*) FROM notifications WHERE user_id = ? AND is_read = 0",
        (user_id,)
    ).fetchone()
    return row[0]


def mark_notification_read(conn: sqlite3.Connection, user_id: str, notification_id: str) -> bool:
    """Mark one of user_id's notifications as read.

    Returns:
        True if the notification exists and belongs to user_id, False otherwise
    """
    with write_transaction(conn):
        cursor = conn.execute(
            "UPDATE notifications SET is_read = 1 WHERE id = ? AND user_id = ?",
            (notification_id, user_id)
        )
    return cursor.rowcount > 0


def mark_all_notifications_read(conn: sqlite3.Connection, user_id: str) -> int:
    """Mark every unread notification of user_id as read; returns how many changed."""
    with write_transaction(conn):
        cursor = conn.execute(
            "UPDATE notifications SET is_read = 1 WHERE user_id = ? AND is_read = 0",
            (user_id,)
        )
    logger.debug("notifications_marked_read", user_id=user_id, count=cursor.rowcount)
    return cursor.rowcount


# =============================================================================
# Profiles
# =============================================================================

def _profile_from_row(row) -> Dict[str, Any]:
    profile = dict(row)
    profile['is_anonymous_default'] = bool(profile['is_anonymous_default'])
    return profile


def get_profile(conn: sqlite3.Connection, user_id: str) -> Dict[str, Any]:
    """Return user_id's profile, or the defaults if they never saved one.

    Users post anonymously by default until they turn is_anonymous_default off.
    """
    row = conn.execute("SELECT * FROM profiles WHERE user_id = ?", (user_id,)).fetchone()
    if row is None:
        return {
            'user_id': user_id,
            'display_name': None,
            'bio': None,
            'is_anonymous_default': True,
            'created_at': None,
            'updated_at': None,
        }
    return _profile_from_row(row)


def update_profile(
    conn: sqlite3.Connection,
    user_id: str,
    display_name: Optional[str] = None,
    bio: Optional[str] = None,
    is_anonymous_default: Optional[bool] = None,
) -> Dict[str, Any]:
    """Create or update user_id's profile and return it.

    Fields left as None keep their stored value. An empty display_name or bio
    clears it.

    Raises:
        ValidationError: If display_name is not 2-50 characters or bio is over 200
    """
    current = get_profile(conn, user_id)

    if display_name is not None:
        display_name = display_name.strip() or None
        if display_name and not (DISPLAY_NAME_MIN_LENGTH <= len(display_name) <= DISPLAY_NAME_MAX_LENGTH):
            raise ValidationError(
                f"Display name must be between {DISPLAY_NAME_MIN_LENGTH} and "
                f"{DISPLAY_NAME_MAX_LENGTH} characters"
            )
        current['display_name'] = display_name
    if bio is not None:
        bio = bio.strip() or None
        if bio and len(bio) > BIO_MAX_LENGTH:
            raise ValidationError(f"Bio must be at most {BIO_MAX_LENGTH} characters")
        current['bio'] = bio
    if is_anonymous_default is not None:
        current['is_anonymous_default'] = bool(is_anonymous_default)

    with write_transaction(conn):
        conn.execute(f"""
            INSERT INTO profiles (user_id, display_name, bio, is_anonymous_default)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                display_name = excluded.display_name,
                bio = excluded.bio,
                is_anonymous_default = excluded.is_anonymous_default,
                updated_at = {_NOW}
        """, (user_id, current['display_name'], current['bio'], int(current['is_anonymous_default'])))

    logger.info("profile_updated", user_id=user_id)
    return get_profile(conn, user_id)


# =============================================================================
# Communities
# =============================================================================

def list_communities(conn: sqlite3.Connection) -> List[Dict[str, Any]]:
    """List communities, largest first."""
    rows = conn.execute(
        "SELECT * FROM communities ORDER BY member_count DESC, name ASC"
    ).fetchall()
    return [dict(row) for row in rows]
