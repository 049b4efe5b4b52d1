from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from eduspace_realtime.repositories.message_repository import MessageRepository
from eduspace_realtime.schemas.messages import ConversationOut, MessageOut, ResolveConversationRequest
from eduspace_realtime.services.conversation_registry import ConversationRegistry
from eduspace_realtime.utils.dependencies import get_conversation_registry, get_current_user_id, get_message_repository
from eduspace_realtime.utils.errors import InvalidParticipantsError


router = APIRouter(prefix="/conversations", tags=["chat"])


@router.get("")
async def list_conversations(limit: int = Query(20, ge=1, le=100), cursor: Optional[str] = None, user_id: str = Depends(get_current_user_id), registry: ConversationRegistry = Depends(get_conversation_registry)):
    try:
        items, next_cursor = await registry.list_with_other_user(user_id, limit=limit, cursor=cursor)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"items": [ConversationOut.from_document(it) for it in items], "next_cursor": next_cursor}


@router.post("/resolve")
async def resolve_conversation(body: ResolveConversationRequest, user_id: str = Depends(get_current_user_id), registry: ConversationRegistry = Depends(get_conversation_registry)):
    try:
        conversation_id = await registry.resolve(user_id, body.other_user_id)
    except InvalidParticipantsError as exc:
        raise HTTPException(status_code=400, detail=exc.message)
    return {"conversation_id": conversation_id}


@router.get("/{conversation_id}/messages")
async def list_messages(conversation_id: str, limit: int = Query(50, ge=1, le=200), cursor: Optional[str] = None, user_id: str = Depends(get_current_user_id), registry: ConversationRegistry = Depends(get_conversation_registry), message_repo: MessageRepository = Depends(get_message_repository)):
    if await registry.get_for_participant(conversation_id, user_id) is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    try:
        messages, next_cursor = await message_repo.get_messages_by_conversation(conversation_id, limit=limit, cursor=cursor)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"items": [MessageOut.from_document(m) for m in messages], "next_cursor": next_cursor}
