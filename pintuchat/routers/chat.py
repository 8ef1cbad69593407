import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, status
from redis.exceptions import RedisError

from pintuchat.config import get_settings
from pintuchat.database.connection import mongo_db_dependency
from pintuchat.repositories.conversation_repository import ConversationRepository
from pintuchat.repositories.message_repository import MessageRepository
from pintuchat.repositories.user_repository import UserRepository
from pintuchat.schemas.message import Conversation, MarkReadResponse, Message, SendMessageRequest, ThreadPage
from pintuchat.services.chat_service import ChatService
from pintuchat.services.realtime_dispatcher import RealtimeDispatcher
from pintuchat.utils.dependencies import get_current_user, resolve_token_user
from pintuchat.utils.realtime_bus import get_bus, user_channel
from pintuchat.utils.websocket_manager import CLOSE_INTERNAL_ERROR, ConnectionManager


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["chat"])
ws_router = APIRouter(tags=["chat"])
manager = ConnectionManager()

WS_UNAUTHORIZED = 4401
WS_FORBIDDEN = 4403


async def get_chat_service(db=Depends(mongo_db_dependency)) -> ChatService:
    settings = get_settings()
    msg_repo = MessageRepository(db, max_length=settings.message_max_length)
    user_repo = UserRepository(db)
    convo_repo = ConversationRepository(msg_repo, user_repo)
    dispatcher = RealtimeDispatcher(manager, await get_bus())
    return ChatService(msg_repo, convo_repo, user_repo, dispatcher)


@router.get("", response_model=List[Conversation])
async def list_conversations(current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    items = await service.list_conversations(current_user["_id"])
    return [Conversation.from_document(it) for it in items]


@router.get("/{counterpart_id}", response_model=ThreadPage)
async def get_thread(
    counterpart_id: str,
    limit: Optional[int] = Query(None, ge=1),
    cursor: Optional[str] = None,
    current_user: dict = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    settings = get_settings()
    page_size = min(limit or settings.thread_page_size, settings.thread_page_max)
    items, next_cursor = await service.get_thread(current_user["_id"], counterpart_id, limit=page_size, cursor=cursor)
    return ThreadPage(items=[Message.from_document(it) for it in items], next_cursor=next_cursor)


@router.post("", response_model=Message, status_code=status.HTTP_201_CREATED)
async def send_message(body: SendMessageRequest, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    saved = await service.send_message(current_user["_id"], body.receiver_id, body.content)
    return Message.from_document(saved)


@router.patch("/{counterpart_id}/read", response_model=MarkReadResponse)
async def mark_read(counterpart_id: str, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    updated = await service.mark_read(current_user["_id"], counterpart_id)
    return MarkReadResponse(updated_count=updated)


@ws_router.websocket("/ws")
async def push_channel(websocket: WebSocket, db=Depends(mongo_db_dependency)):
    # identity comes from the token only, never from anything the client sends later
    user = await resolve_token_user(websocket.query_params.get("token"), UserRepository(db))
    if user is None:
        await websocket.close(code=WS_UNAUTHORIZED)
        return
    if user.get("is_blocked", False):
        await websocket.close(code=WS_FORBIDDEN)
        return
    user_id = user["_id"]

    connection = None
    subscription = None
    bus = await get_bus()
    if bus.enabled:
        async def relay(payload: str) -> None:
            manager.deliver(connection, payload)

        # subscribe before accepting, so nothing published after the handshake is missed
        try:
            subscription = await bus.subscribe(user_channel(user_id), relay)
        except RedisError as exc:
            logger.warning("Realtime bus subscribe for user %s failed: %r", user_id, exc)
            await websocket.close(code=CLOSE_INTERNAL_ERROR)
            return

    try:
        connection = await manager.connect(user_id, websocket)
        if subscription is not None:
            subscription.start()
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            # inbound frames carry nothing authoritative; REST is the write path
            logger.debug("Ignored inbound push-channel frame from user %s", user_id)
    finally:
        if connection is not None:
            manager.disconnect(connection)
        if subscription is not None:
            await subscription.cancel()
