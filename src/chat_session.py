"""Streaming Response Assembler

ChatSession drives one user's conversation with the AI assistant: it persists the
user's message, opens the chat stream, grows an in-progress assistant message as
fragments arrive, and persists the assembled reply as a single row once the stream
ends.

Key Functions:
    ChatSession.send — one full exchange (persist, stream, assemble, persist)
    ChatSession.open_conversation — load a past conversation's transcript
    ChatSession.delete_conversation — remove a conversation from history

Every store call and every stream read is an await point; blocking reads from the
transport run in a worker thread via asyncio.to_thread. Failures are logged and
surfaced as chat_failed notices, never raised to the caller.
"""

import asyncio
from typing import Any, List, Optional, Protocol

import structlog

from src import sse_parser
from src.backend.utils.errors import (
    NOTICE_TYPE_CHAT_FAILED,
    NOTICE_TYPE_SIGN_IN_REQUIRED,
    NoticeCollector,
)
from src.chat_client import ChatTransport
from src.models.social_models import Conversation, Message, MessageRole, Session

logger = structlog.get_logger()

SIGN_IN_MESSAGE = "Please sign in to chat with the assistant"


class ChatStore(Protocol):
    """Persistence for conversations and their messages."""

    async def create_conversation(self, user_id: str, first_message: str) -> Conversation:
        ...

    async def save_message(self, user_id: str, conversation_id: str, role: str, content: str) -> Any:
        ...

    async def list_conversations(self, user_id: str) -> List[Conversation]:
        ...

    async def list_messages(self, user_id: str, conversation_id: str) -> List[Message]:
        ...

    async def delete_conversation(self, user_id: str, conversation_id: str) -> Any:
        ...


class ChatSession:
    """One user's assistant chat: transcript, active conversation and history.

    Attributes:
        session: Authentication context
        store: ChatStore persisting conversations and messages
        transport: ChatTransport opening the response stream
        notices: NoticeCollector receiving user-visible failures
        transcript: Messages in conversational order; the last one may be pending
        conversation_id: Active conversation, or None before the first message
        conversations: History list, most recent first
        is_loading: True while an exchange is in progress

    Example:
        >>> chat = ChatSession(session, SQLiteChatStore(conn), ChatStreamClient.from_env())
        >>> reply = await chat.send("Any tips for the DBMS midterm?")
    """

    def __init__(
        self,
        session: Session,
        store: ChatStore,
        transport: ChatTransport,
        notices: Optional[NoticeCollector] = None,
    ):
        self.session = session
        self.store = store
        self.transport = transport
        self.notices = notices if notices is not None else NoticeCollector()
        self.transcript: List[Message] = []
        self.conversation_id: Optional[str] = None
        self.conversations: List[Conversation] = []
        self.is_loading = False

    def _notify_failure(self, message: str, error: Optional[Exception] = None) -> None:
        context = {"conversation_id": self.conversation_id}
        if error is not None:
            context["error_type"] = type(error).__name__
            status_code = getattr(error, "status_code", None)
            if status_code is not None:
                context["status_code"] = status_code
        self.notices.append(NOTICE_TYPE_CHAT_FAILED, message, context)

    async def send(self, text: str) -> Optional[str]:
        """Send one user message and assemble the streamed reply.

        Returns:
            The assembled assistant text, or None if nothing was assembled
        """
        text = (text or "").strip()
        if not text or self.is_loading:
            return None

        if not self.session.is_authenticated:
            self.notices.append(NOTICE_TYPE_SIGN_IN_REQUIRED, SIGN_IN_MESSAGE)
            return None

        history = [m.to_payload() for m in self.transcript if not m.pending]
        history.append({"role": MessageRole.USER.value, "content": text})
        user_message = Message(MessageRole.USER, text)
        self.transcript.append(user_message)

        self.is_loading = True
        try:
            if not await self._ensure_conversation(text):
                self.transcript.remove(user_message)
                return None

            try:
                await self.store.save_message(
                    self.session.user_id, self.conversation_id, MessageRole.USER.value, text
                )
            except Exception as e:
                logger.error("chat_message_save_failed", conversation_id=self.conversation_id,
                             role="user", error=str(e))
                self._notify_failure(str(e) or "Failed to save message", e)
                # unsaved messages never reach a later request's history
                self.transcript.remove(user_message)
                return None

            return await self._stream_reply(history)
        finally:
            self.is_loading = False

    async def _ensure_conversation(self, first_message: str) -> bool:
        if self.conversation_id is not None:
            return True
        try:
            conversation = await self.store.create_conversation(self.session.user_id, first_message)
        except Exception as e:
            logger.error("conversation_create_failed", error=str(e))
            self._notify_failure("Failed to create conversation", e)
            return False

        self.conversation_id = conversation.id
        self.conversations.insert(0, conversation)
        return True

    async def _stream_reply(self, history: List[dict]) -> Optional[str]:
        placeholder = Message(MessageRole.ASSISTANT, "", pending=True)
        self.transcript.append(placeholder)

        content = ""
        state = sse_parser.StreamState()
        chunks = None
        try:
            chunks = await asyncio.to_thread(self.transport.open_stream, history)
            while not state.done:
                chunk = await asyncio.to_thread(next, chunks, None)
                if chunk is None:
                    break
                state, fragments = sse_parser.feed(state, chunk)
                for fragment in fragments:
                    content += fragment
                    placeholder.content = content

            for fragment in sse_parser.flush(state):
                content += fragment
                placeholder.content = content
        except Exception as e:
            logger.error(
                "chat_stream_failed",
                conversation_id=self.conversation_id,
                received_chars=len(content),
                error=str(e)
            )
            self._notify_failure(str(e) or "Failed to get a response", e)
            placeholder.pending = False
            if not content:
                self.transcript.remove(placeholder)
            return None
        finally:
            close = getattr(chunks, "close", None)
            if close is not None:
                close()

        placeholder.pending = False
        if not content:
            self.transcript.remove(placeholder)
            logger.info("chat_stream_empty", conversation_id=self.conversation_id)
            return None

        logger.info(
            "chat_stream_completed",
            conversation_id=self.conversation_id,
            terminated=state.done,
            length=len(content)
        )

        try:
            await self.store.save_message(
                self.session.user_id, self.conversation_id, MessageRole.ASSISTANT.value, content
            )
        except Exception as e:
            logger.error("chat_message_save_failed", conversation_id=self.conversation_id,
                         role="assistant", error=str(e))
            self._notify_failure(str(e) or "Failed to save message", e)
        return content

    async def refresh_conversations(self) -> List[Conversation]:
        """Reload the history list. Failures keep the previous list."""
        if not self.session.is_authenticated:
            return self.conversations
        try:
            self.conversations = await self.store.list_conversations(self.session.user_id)
        except Exception as e:
            logger.warning("conversations_fetch_failed", error=str(e))
        return self.conversations

    async def open_conversation(self, conversation_id: str) -> List[Message]:
        """Make one of the user's conversations active and load its transcript.

        Conversations owned by someone else fail to load like missing ones; the
        active conversation and transcript are left unchanged.
        """
        if self.is_loading:
            return self.transcript
        if not self.session.is_authenticated:
            self.notices.append(NOTICE_TYPE_SIGN_IN_REQUIRED, SIGN_IN_MESSAGE)
            return self.transcript
        try:
            messages = await self.store.list_messages(self.session.user_id, conversation_id)
        except Exception as e:
            logger.error("conversation_load_failed", conversation_id=conversation_id, error=str(e))
            self._notify_failure("Failed to load conversation", e)
            return self.transcript

        self.conversation_id = conversation_id
        self.transcript = list(messages)
        return self.transcript

    def start_new_chat(self) -> None:
        self.conversation_id = None
        self.transcript = []

    async def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation; clears the transcript if it was the active one."""
        try:
            deleted = await self.store.delete_conversation(self.session.user_id, conversation_id)
        except Exception as e:
            logger.error("conversation_delete_failed", conversation_id=conversation_id, error=str(e))
            self._notify_failure("Failed to delete conversation", e)
            return False

        if not deleted:
            logger.warning("conversation_delete_refused", conversation_id=conversation_id)
            self._notify_failure("Failed to delete conversation")
            return False

        self.conversations = [c for c in self.conversations if c.id != conversation_id]
        if self.conversation_id == conversation_id:
            self.start_new_chat()
        return True
