"""
chat_service.py — one chat turn, from request to persisted assistant message.

  check_token_budget()   — 409 guard / rolling-window decision for the conversation
  apply_rolling_window() — drop the oldest user/assistant pair
  to_langchain_messages()
  stream_chat_turn()     — async generator of NDJSON lines:
        {"type": "text", "content": ...}
        {"type": "tool_call", "toolCallId", "toolName", "args"}
        {"type": "tool_result", "toolCallId", "toolName", "result"}
        {"type": "error", "message": ...}
        {"type": "done", "tokensUsed", "tokenCount"}

The streaming body outlives the request's get_db() session, so the turn opens its
own session from the injected session factory. Tool calls commit one by one inside
the graph; the user message is committed before the model runs and the assistant
message plus token usage are committed at the end.
"""
import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Callable, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from sqlalchemy.ext.asyncio import AsyncSession

from covernow import store
from covernow.agents.chat_agent.prompts import build_system_prompt
from covernow.agents.chat_agent.schemas import ChatMessageIn
from covernow.config import settings
from covernow.errors import NotFoundError, TokenLimitError
from covernow.graph.graph import recursion_limit

logger = logging.getLogger(__name__)

STREAM_ERROR = "Sorry, something went wrong while generating a response. Please try again."


async def check_token_budget(
    db: AsyncSession,
    conversation_id: str,
    user_id: str,
    rolling_acknowledged: bool,
) -> bool:
    """
    Returns True when the turn must run in rolling mode (oldest pair dropped).

    Raises NotFoundError for an unknown conversation and TokenLimitError when the
    limit is reached and the client has not acknowledged rolling mode.
    """
    conversation = await store.get_conversation(db, conversation_id, user_id)
    if conversation is None:
        raise NotFoundError(store.CONVERSATION_NOT_FOUND)
    token_count = conversation["token_count"] or 0
    if token_count < settings.token_limit:
        return False
    if not rolling_acknowledged:
        logger.info(
            "Token limit reached conversation_id=%s tokens=%d", conversation_id, token_count
        )
        raise TokenLimitError(token_count)
    logger.info("Rolling mode conversation_id=%s tokens=%d", conversation_id, token_count)
    return True


def apply_rolling_window(messages: list[ChatMessageIn]) -> list[ChatMessageIn]:
    if len(messages) >= 2:
        return messages[2:]
    return messages


def to_langchain_messages(messages: list[ChatMessageIn]) -> list[BaseMessage]:
    converted: list[BaseMessage] = []
    for m in messages:
        if m.role == "user":
            converted.append(HumanMessage(content=m.content))
        else:
            converted.append(AIMessage(content=m.content))
    return converted


def _text_of(message: AIMessage) -> str:
    content = message.content
    if isinstance(content, str):
        return content
    return "".join(
        block.get("text", "") for block in content
        if isinstance(block, dict) and block.get("type") == "text"
    )


def _event(payload: dict[str, Any]) -> str:
    return json.dumps(payload, default=str) + "\n"


async def stream_chat_turn(
    graph: Any,
    session_factory: Callable[[], AsyncSession],
    user_id: str,
    conversation_id: str,
    messages: list[ChatMessageIn],
) -> AsyncIterator[str]:
    async with session_factory() as db:
        last_user = next((m for m in reversed(messages) if m.role == "user"), None)
        if last_user is not None:
            await store.save_message(db, conversation_id, "user", last_user.content)
            await db.commit()

        profile = await store.get_profile(db, user_id)
        state = {
            "messages": [
                SystemMessage(content=build_system_prompt(profile)),
                *to_langchain_messages(messages),
            ],
            "tool_steps": 0,
        }
        config = {
            "configurable": {
                "user_id": user_id,
                "conversation_id": conversation_id,
                "db": db,
            },
            "recursion_limit": recursion_limit(),
        }

        text_parts: list[str] = []
        tool_log: list[dict] = []
        tokens_used = 0

        try:
            async for update in graph.astream(state, config, stream_mode="updates"):
                for node, delta in update.items():
                    if not delta:
                        continue
                    if node == "agent":
                        for reply in delta.get("messages", []):
                            usage = getattr(reply, "usage_metadata", None) or {}
                            tokens_used += int(usage.get("total_tokens", 0))
                            text = _text_of(reply)
                            if text:
                                text_parts.append(text)
                                yield _event({"type": "text", "content": text})
                            for call in getattr(reply, "tool_calls", None) or []:
                                yield _event({
                                    "type": "tool_call",
                                    "toolCallId": call["id"],
                                    "toolName": call["name"],
                                    "args": call["args"],
                                })
                    elif node == "tools":
                        for entry in delta.get("tool_log", []):
                            tool_log.append(entry)
                            yield _event({
                                "type": "tool_result",
                                "toolCallId": entry["toolCallId"],
                                "toolName": entry["toolName"],
                                "result": entry["result"],
                            })
        except Exception:
            logger.error("Chat turn failed conversation_id=%s", conversation_id, exc_info=True)
            await db.rollback()
            yield _event({"type": "error", "message": STREAM_ERROR})
            return

        full_text = "".join(text_parts)
        if full_text or tool_log:
            await store.save_message(
                db, conversation_id, "assistant", full_text, tool_calls=tool_log or None
            )
        total: Optional[int] = None
        if tokens_used:
            total = await store.add_token_usage(db, conversation_id, tokens_used)
        await db.commit()
        logger.info(
            "Chat turn done conversation_id=%s tool_calls=%d tokens=%d",
            conversation_id, len(tool_log), tokens_used,
        )
        yield _event({"type": "done", "tokensUsed": tokens_used, "tokenCount": total})
