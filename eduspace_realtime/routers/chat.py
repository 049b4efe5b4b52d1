from fastapi import APIRouter, Depends, HTTPException, status

from eduspace_realtime.repositories.message_repository import MessageRepository
from eduspace_realtime.schemas.messages import MarkReadRequest, MessageOut, SendMessageRequest, TypingRequest
from eduspace_realtime.services.conversation_registry import ConversationRegistry
from eduspace_realtime.services.message_stream import MessageService
from eduspace_realtime.utils.dependencies import get_conversation_registry, get_current_user_id, get_message_repository, get_message_service
from eduspace_realtime.utils.errors import (
    EmptyMessageError,
    InvalidParticipantsError,
    MessageDeleteForbiddenError,
    MessageNotFoundError,
    MessageSendError,
)


router = APIRouter(prefix="/messages", tags=["chat"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def send_message(body: SendMessageRequest, user_id: str = Depends(get_current_user_id), service: MessageService = Depends(get_message_service)):
    attachment = body.attachment.model_dump() if body.attachment else None
    try:
        saved = await service.send(user_id, body.receiver_id, body.content, conversation_id=body.conversation_id, attachment=attachment)
    except (EmptyMessageError, InvalidParticipantsError) as exc:
        raise HTTPException(status_code=400, detail=exc.message)
    except MessageSendError as exc:
        # client keeps the unsent text and may retry
        raise HTTPException(status_code=502, detail=exc.message)
    return MessageOut.from_document(saved)


@router.get("/unread")
async def get_unread_count(user_id: str = Depends(get_current_user_id), messages: MessageRepository = Depends(get_message_repository)):
    return {"unread": await messages.count_unread(user_id)}


@router.post("/mark_read")
async def mark_read(body: MarkReadRequest, user_id: str = Depends(get_current_user_id), registry: ConversationRegistry = Depends(get_conversation_registry), service: MessageService = Depends(get_message_service)):
    if await registry.get_for_participant(body.conversation_id, user_id) is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    count = await service.mark_read(body.conversation_id, user_id)
    return {"updated": count}


@router.delete("/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(message_id: str, user_id: str = Depends(get_current_user_id), service: MessageService = Depends(get_message_service)):
    try:
        await service.delete(message_id, user_id)
    except MessageNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message)
    except MessageDeleteForbiddenError as exc:
        raise HTTPException(status_code=403, detail=exc.message)


@router.post("/typing", status_code=status.HTTP_202_ACCEPTED)
async def typing(body: TypingRequest, user_id: str = Depends(get_current_user_id), registry: ConversationRegistry = Depends(get_conversation_registry), service: MessageService = Depends(get_message_service)):
    if await registry.get_for_participant(body.conversation_id, user_id) is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    await service.notify_typing(body.conversation_id, user_id)
    return {"ok": True}
