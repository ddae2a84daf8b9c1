"""Storage operations for AI assistant conversations.

Conversations belong to one user; every read, write and delete is filtered by the
owner so one student can never open or append to another's chat history.

Key Functions:
    create_conversation — Start a conversation titled from its first message
    save_message — Append one user/assistant message and touch updated_at
    list_conversations / list_messages — History sidebar and transcript loading
    delete_conversation — Owner-only delete (messages cascade)
"""

import sqlite3
import uuid
from typing import List, Optional

import structlog

from src.models.social_models import (
    Conversation,
    Message,
    MessageRole,
    conversation_title,
)
from src.storage import TargetNotFoundError, ValidationError, write_transaction

logger = structlog.get_logger()

_NOW = "strftime('%Y-%m-%dT%H:%M:%fZ', 'now')"


def _conversation_from_row(row) -> Conversation:
    return Conversation(
        id=row['id'],
        title=row['title'],
        created_at=row['created_at'],
        updated_at=row['updated_at'],
    )


def create_conversation(conn: sqlite3.Connection, user_id: str, first_message: str) -> Conversation:
    """Create a conversation for user_id titled from the first user message."""
    conversation_id = str(uuid.uuid4())
    with write_transaction(conn):
        conn.execute(
            "INSERT INTO chat_conversations (id, user_id, title) VALUES (?, ?, ?)",
            (conversation_id, user_id, conversation_title(first_message))
        )
    logger.info("conversation_created", conversation_id=conversation_id)
    return get_conversation(conn, user_id, conversation_id)


def get_conversation(conn: sqlite3.Connection, user_id: str, conversation_id: str) -> Optional[Conversation]:
    row = conn.execute(
        "SELECT * FROM chat_conversations WHERE id = ? AND user_id = ?",
        (conversation_id, user_id)
    ).fetchone()
    return _conversation_from_row(row) if row else None


def list_conversations(conn: sqlite3.Connection, user_id: str) -> List[Conversation]:
    """List user_id's conversations, most recently active first."""
    rows = conn.execute("""
        SELECT * FROM chat_conversations
        WHERE user_id = ?
        ORDER BY updated_at DESC, rowid DESC
    """, (user_id,)).fetchall()
    return [_conversation_from_row(row) for row in rows]


def list_messages(conn: sqlite3.Connection, user_id: str, conversation_id: str) -> List[Message]:
    """Return one of user_id's conversations' messages in conversational order.

    Raises:
        TargetNotFoundError: If the conversation does not exist or belongs to someone else
    """
    if get_conversation(conn, user_id, conversation_id) is None:
        raise TargetNotFoundError(f"conversation {conversation_id} not found")

    rows = conn.execute("""
        SELECT role, content FROM chat_messages
        WHERE conversation_id = ?
        ORDER BY created_at ASC, rowid ASC
    """, (conversation_id,)).fetchall()
    return [Message(role=MessageRole(row['role']), content=row['content']) for row in rows]


def save_message(conn: sqlite3.Connection, user_id: str, conversation_id: str, role: str, content: str) -> str:
    """Persist one message into user_id's conversation and bump its updated_at.

    Returns:
        The new message id

    Raises:
        ValidationError: If role is not 'user' or 'assistant'
        TargetNotFoundError: If the conversation does not exist or belongs to someone else
    """
    role = getattr(role, "value", role)
    if role not in {r.value for r in MessageRole}:
        raise ValidationError(f"Unknown message role '{role}'")

    message_id = str(uuid.uuid4())
    with write_transaction(conn):
        owned = conn.execute(
            "SELECT 1 FROM chat_conversations WHERE id = ? AND user_id = ?",
            (conversation_id, user_id)
        ).fetchone()
        if owned is None:
            raise TargetNotFoundError(f"conversation {conversation_id} not found")

        conn.execute(
            "INSERT INTO chat_messages (id, conversation_id, role, content) VALUES (?, ?, ?, ?)",
            (message_id, conversation_id, role, content)
        )
        conn.execute(
            f"UPDATE chat_conversations SET updated_at = {_NOW} WHERE id = ?",
            (conversation_id,)
        )

    logger.debug("chat_message_saved", conversation_id=conversation_id, role=role, length=len(content))
    return message_id


def delete_conversation(conn: sqlite3.Connection, user_id: str, conversation_id: str) -> bool:
    """Delete one of user_id's conversations. Returns False if it was not found."""
    with write_transaction(conn):
        cursor = conn.execute(
            "DELETE FROM chat_conversations WHERE id = ? AND user_id = ?",
            (conversation_id, user_id)
        )
    if cursor.rowcount:
        logger.info("conversation_deleted", conversation_id=conversation_id)
    return cursor.rowcount > 0


class SQLiteChatStore:
    """ChatStore backed by the local SQLite database."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    async def create_conversation(self, user_id: str, first_message: str) -> Conversation:
        return create_conversation(self.conn, user_id, first_message)

    async def save_message(self, user_id: str, conversation_id: str, role: str, content: str) -> str:
        return save_message(self.conn, user_id, conversation_id, role, content)

    async def list_conversations(self, user_id: str) -> List[Conversation]:
        return list_conversations(self.conn, user_id)

    async def list_messages(self, user_id: str, conversation_id: str) -> List[Message]:
        return list_messages(self.conn, user_id, conversation_id)

    async def delete_conversation(self, user_id: str, conversation_id: str) -> bool:
        return delete_conversation(self.conn, user_id, conversation_id)
