"""
graph.py — CoverNow LangGraph agent ↔ tools loop.

Builds and compiles the chat turn graph:
  agent (chat model bound to every tool) → tools (sequential, commit per call) → agent …
The loop stops when the model answers without tool calls. After
settings.max_tool_steps tool rounds the model is called without tools, so
every tool call that reaches the stream also gets run.

Also acts as the singleton registry for shared resources (chat model, search
provider, research orchestrator) that are set at FastAPI startup and read by tools.

Usage:
    from covernow.graph.graph import build_graph, set_resources

    # At FastAPI startup:
    set_resources(chat_llm=llm, search=search, research_orchestrator=orchestrator)
    app.state.chat_graph = build_graph()

    # At request time (see chat_agent/chat_service.py):
    async for update in app.state.chat_graph.astream(state, config, stream_mode="updates"): ...
"""
import json
import logging
from typing import Any, Optional

from langchain_core.messages import AIMessage, ToolMessage
from langchain_core.runnables import RunnableConfig

from covernow.config import settings
from covernow.graph.state import ChatState
from covernow.graph.tools.common import failure, run_tool_call
from covernow.graph.tools.profile_tools import PROFILE_TOOLS
from covernow.graph.tools.research_tools import RESEARCH_TOOLS
from covernow.graph.tools.utility_tools import UTILITY_TOOLS

logger = logging.getLogger(__name__)

ALL_TOOLS = [*PROFILE_TOOLS, *RESEARCH_TOOLS, *UTILITY_TOOLS]
TOOLS_BY_NAME = {t.name: t for t in ALL_TOOLS}

STEP_LIMIT_REPLY = (
    "I've reached the limit of actions I can take in one turn. "
    "Let me know how you'd like to continue."
)

# ---------------------------------------------------------------------------
# Singleton resource registry: set during FastAPI lifespan, read by tools
# ---------------------------------------------------------------------------

_chat_llm: Any = None
_search: Any = None
_research_orchestrator: Any = None


def set_resources(
    chat_llm: Any = None,
    search: Any = None,
    research_orchestrator: Any = None,
) -> None:
    """
    Called at FastAPI startup (lifespan) to register shared resources.
    All tools access these via get_* functions below.
    """
    global _chat_llm, _search, _research_orchestrator
    _chat_llm = chat_llm
    _search = search
    _research_orchestrator = research_orchestrator
    logger.info(
        "Graph resources set: chat_llm=%s search=%s research=%s",
        "ok" if chat_llm else "none",
        "ok" if search else "none",
        "ok" if research_orchestrator else "none",
    )


def get_chat_llm() -> Any:
    return _chat_llm


def get_search() -> Any:
    return _search


def get_research_orchestrator() -> Any:
    return _research_orchestrator


def recursion_limit() -> int:
    """Two supersteps per tool round plus the final agent answer, with headroom."""
    return settings.max_tool_steps * 2 + 5


# ---------------------------------------------------------------------------
# Graph construction
# ---------------------------------------------------------------------------

def route_after_agent(state: ChatState) -> str:
    from langgraph.graph import END

    last = state["messages"][-1]
    if not isinstance(last, AIMessage) or not last.tool_calls:
        return END
    if state.get("tool_steps", 0) >= settings.max_tool_steps:
        logger.warning("Tool step limit reached steps=%d", state.get("tool_steps", 0))
        return END
    return "tools"


def build_graph(llm: Optional[Any] = None):
    """
    Builds and compiles the chat StateGraph.

    llm defaults to the registered chat model; tests pass a scripted fake.
    """
    from langgraph.graph import END, StateGraph

    model = llm if llm is not None else get_chat_llm()
    if model is None:
        raise RuntimeError("Chat model not registered; call set_resources() first")
    bound = model.bind_tools(ALL_TOOLS)

    async def agent_node(state: ChatState, config: RunnableConfig) -> dict:
        steps = state.get("tool_steps", 0)
        if steps < settings.max_tool_steps:
            reply = await bound.ainvoke(state["messages"], config)
        else:
            # Tool rounds used up: the model sees no tools and must answer in text
            reply = await model.ainvoke(state["messages"], config)
            if getattr(reply, "tool_calls", None):
                logger.warning("Tool calls dropped at step limit steps=%d", steps)
                reply = AIMessage(
                    content=reply.content or STEP_LIMIT_REPLY,
                    id=reply.id,
                    usage_metadata=reply.usage_metadata,
                )
        logger.info(
            "Agent replied tool_calls=%d chars=%d",
            len(getattr(reply, "tool_calls", None) or []),
            len(reply.content) if isinstance(reply.content, str) else 0,
        )
        return {"messages": [reply]}

    async def tools_node(state: ChatState, config: RunnableConfig) -> dict:
        """Run the last reply's tool calls one at a time, in order, committing after each."""
        last = state["messages"][-1]
        db = (config.get("configurable") or {}).get("db")
        tool_messages = []
        log = []
        for call in last.tool_calls:
            tool = TOOLS_BY_NAME.get(call["name"])
            if tool is None:
                result = failure(f"Unknown tool '{call['name']}'", "validation")
            else:
                result = await run_tool_call(tool, call["args"], config)
            if db is not None:
                await db.commit()
            tool_messages.append(
                ToolMessage(
                    content=json.dumps(result, default=str),
                    tool_call_id=call["id"],
                    name=call["name"],
                )
            )
            log.append({
                "toolCallId": call["id"],
                "toolName": call["name"],
                "args": call["args"],
                "result": result,
            })
        return {
            "messages": tool_messages,
            "tool_steps": state.get("tool_steps", 0) + 1,
            "tool_log": log,
        }

    workflow = StateGraph(ChatState)
    workflow.add_node("agent", agent_node)
    workflow.add_node("tools", tools_node)
    workflow.set_entry_point("agent")
    workflow.add_conditional_edges("agent", route_after_agent, {"tools": "tools", END: END})
    workflow.add_edge("tools", "agent")

    compiled = workflow.compile()
    logger.info("Chat graph compiled tools=%d max_steps=%d", len(ALL_TOOLS), settings.max_tool_steps)
    return compiled
