"""
ChatAgent HTTP routes — POST /api/chat,
                         POST /api/conversations,
                         GET  /api/conversations/{conversation_id}/messages

POST /api/chat streams NDJSON (application/x-ndjson) produced by
chat_service.stream_chat_turn(). Everything that can fail before the first byte
(auth, body, unknown conversation, token limit) is answered with the standard
error envelope instead.
"""
import logging
from typing import Any, Callable, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from covernow import store
from covernow.agents.chat_agent.chat_service import (
    apply_rolling_window,
    check_token_budget,
    stream_chat_turn,
)
from covernow.agents.chat_agent.schemas import ChatRequest, ConversationOut, CreateConversationRequest
from covernow.database import AsyncSessionLocal, get_db
from covernow.dependencies import get_user_id

router = APIRouter(prefix="/api", tags=["chat_agent"])
logger = logging.getLogger(__name__)


def get_session_factory() -> Callable[[], AsyncSession]:
    """Session factory for streaming turns (overridden in tests)."""
    return AsyncSessionLocal


def get_chat_graph(request: Request) -> Any:
    graph = getattr(request.app.state, "chat_graph", None)
    if graph is None:
        raise HTTPException(status_code=503, detail="Chat is not available right now")
    return graph


@router.post("/chat")
async def chat(
    request: Request,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
    session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),
    graph: Any = Depends(get_chat_graph),
    x_rolling_mode_acknowledged: Optional[str] = Header(default=None),
) -> StreamingResponse:
    try:
        body = ChatRequest.model_validate(await request.json())
    except (ValueError, ValidationError):
        raise HTTPException(status_code=400, detail="Invalid request body")

    rolling = await check_token_budget(
        db,
        body.conversationId,
        user_id,
        rolling_acknowledged=(x_rolling_mode_acknowledged or "").lower() == "true",
    )
    messages = apply_rolling_window(body.messages) if rolling else body.messages

    logger.info(
        "Chat turn user_id=%s conversation_id=%s messages=%d rolling=%s",
        user_id, body.conversationId, len(messages), rolling,
    )
    return StreamingResponse(
        stream_chat_turn(graph, session_factory, user_id, body.conversationId, messages),
        media_type="application/x-ndjson",
    )


@router.post("/conversations")
async def create_conversation(
    body: Optional[CreateConversationRequest] = None,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    conversation = await store.create_conversation(db, user_id, body.title if body else None)
    return JSONResponse(status_code=201, content=ConversationOut(**conversation).model_dump())


@router.get("/conversations/{conversation_id}/messages")
async def list_messages(
    conversation_id: str,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    if await store.get_conversation(db, conversation_id, user_id) is None:
        raise HTTPException(status_code=404, detail=store.CONVERSATION_NOT_FOUND)
    messages = await store.get_messages(db, conversation_id)
    return JSONResponse(status_code=200, content=messages)
