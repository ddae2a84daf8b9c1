"""AI assistant chat history endpoints (owner only).

- GET /conversations: The caller's conversations, most recent first
- GET /conversations/{id}/messages: Transcript of one conversation
- DELETE /conversations/{id}: Delete a conversation and its messages
"""

from dataclasses import asdict

from fastapi import APIRouter, Depends, Request

from src import chat_storage
from src.api.auth import require_session
from src.api.responses import NOT_FOUND, raise_api_error, raise_storage_error, wrap_response
from src.models.social_models import Session
from src.storage import StorageError

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.get("")
async def list_conversations(request: Request, session: Session = Depends(require_session)):
    conversations = chat_storage.list_conversations(request.app.state.db, session.user_id)
    return wrap_response([asdict(c) for c in conversations], total=len(conversations))


@router.get("/{conversation_id}/messages")
async def list_messages(request: Request, conversation_id: str, session: Session = Depends(require_session)):
    try:
        messages = chat_storage.list_messages(request.app.state.db, session.user_id, conversation_id)
    except StorageError as e:
        raise_storage_error(e)

    return wrap_response(
        [m.to_payload() for m in messages],
        total=len(messages)
    )


@router.delete("/{conversation_id}")
async def delete_conversation(request: Request, conversation_id: str, session: Session = Depends(require_session)):
    if not chat_storage.delete_conversation(request.app.state.db, session.user_id, conversation_id):
        raise_api_error(NOT_FOUND, f"Conversation {conversation_id} not found")
    return wrap_response({"id": conversation_id, "deleted": True})
