"""
common.py — plumbing shared by every CoverNow tool.

Tools are LangChain @tool coroutines. The per-turn context (user id, conversation
id, open AsyncSession) travels in RunnableConfig["configurable"], never in the
tool arguments the model sees.

@tool_payload turns the CoverNow exception taxonomy into the payload the model
reads, so nothing raises across the tool boundary:
    CoverNowError     → {success: False, error, errorKind}         logged at WARNING
    anything else     → {success: False, error, errorKind: internal} logged at ERROR,
                        and the session is rolled back so the partial write is dropped
"""
import functools
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from langchain_core.runnables import RunnableConfig
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from covernow.errors import CoverNowError

logger = logging.getLogger(__name__)

INTERNAL_ERROR = "Something went wrong while running this tool."


@dataclass
class ToolContext:
    user_id: str
    conversation_id: Optional[str]
    db: Optional[AsyncSession]


def tool_context(config: Optional[RunnableConfig]) -> ToolContext:
    configurable = (config or {}).get("configurable", {})
    user_id = configurable.get("user_id")
    if not user_id:
        raise CoverNowError("User not authenticated")
    return ToolContext(
        user_id=user_id,
        conversation_id=configurable.get("conversation_id"),
        db=configurable.get("db"),
    )


def require_db(ctx: ToolContext) -> AsyncSession:
    if ctx.db is None:
        raise CoverNowError("Database session not available")
    return ctx.db


def require_conversation(ctx: ToolContext) -> str:
    if not ctx.conversation_id:
        raise CoverNowError("No active conversation")
    return ctx.conversation_id


def failure(error: str, kind: str, **extra: Any) -> dict:
    return {"success": False, "error": error, "errorKind": kind, **extra}


def format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        field = ".".join(str(loc) for loc in err["loc"])
        msg = err["msg"].removeprefix("Value error, ")
        parts.append(f"{field}: {msg}" if field else msg)
    return f"Validation error: {', '.join(parts)}"


def tool_payload(name: str) -> Callable:
    """Wrap a tool coroutine so it always returns a payload dict."""

    def decorator(fn: Callable[..., Awaitable[dict]]) -> Callable[..., Awaitable[dict]]:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> dict:
            try:
                return await fn(*args, **kwargs)
            except CoverNowError as exc:
                logger.warning("Tool %s failed kind=%s: %s", name, exc.kind, exc.message)
                extra = {"partial": exc.partial} if getattr(exc, "partial", None) else {}
                return failure(exc.message, exc.kind, **extra)
            except ValidationError as exc:
                logger.warning("Tool %s rejected input: %d errors", name, exc.error_count())
                return failure(format_validation_error(exc), "validation")
            except Exception:
                logger.error("Tool %s raised unexpectedly", name, exc_info=True)
                db = (kwargs.get("config") or {}).get("configurable", {}).get("db")
                if db is not None:
                    await db.rollback()
                return failure(INTERNAL_ERROR, "internal")

        return wrapper

    return decorator


async def run_tool_call(tool: Any, args: dict, config: RunnableConfig) -> dict:
    """
    Invoke one tool with the model's arguments. Argument-schema violations are
    raised by LangChain before the tool body runs, so they are converted here.
    """
    try:
        return await tool.ainvoke(args, config=config)
    except ValidationError as exc:
        logger.warning("Tool %s arguments rejected: %d errors", tool.name, exc.error_count())
        return failure(format_validation_error(exc), "validation")
