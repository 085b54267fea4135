"""
research_tools.py — the four deep research steps as LangChain tools.

  deepResearchInit        STEP 1 of 4  reconnaissance, returns sessionId
  deepResearchLevel1      STEP 2 of 4
  deepResearchLevel2      STEP 3 of 4
  deepResearchSynthesize  STEP 4 of 4  final report

The orchestrator is the process-wide singleton registered in graph.set_resources().
"""
import logging

from langchain_core.runnables import RunnableConfig
from langchain_core.tools import tool
from pydantic import BaseModel, Field

from covernow.agents.research_agent.search import MISSING_KEY
from covernow.config import settings
from covernow.errors import CoverNowError, UpstreamError
from covernow.graph.tools.common import tool_context, tool_payload

logger = logging.getLogger(__name__)


class DeepResearchInitArgs(BaseModel):
    query: str = Field(
        ...,
        min_length=1,
        description="The main research topic or question that needs comprehensive investigation",
    )
    breadth: int = Field(
        default=settings.research_default_breadth,
        ge=2,
        le=4,
        description="Number of search queries per level (2-4)",
    )


class DeepResearchContinueArgs(BaseModel):
    sessionId: str = Field(..., description="The research session ID from deepResearchInit")


def _orchestrator():
    from covernow.graph.graph import get_research_orchestrator

    orchestrator = get_research_orchestrator()
    if orchestrator is None:
        raise CoverNowError("Deep research is not available right now")
    return orchestrator


@tool("deepResearchInit", args_schema=DeepResearchInitArgs)
@tool_payload("deepResearchInit")
async def deep_research_init_tool(config: RunnableConfig, query: str, breadth: int = 3) -> dict:
    """STEP 1 of 4: Initialize a deep research session and perform reconnaissance. This MUST be called first before any other deep research tool. Returns a sessionId that MUST be used for the subsequent steps."""
    ctx = tool_context(config)
    orchestrator = _orchestrator()
    if not orchestrator.search.enabled:
        raise UpstreamError(MISSING_KEY)
    session_id, progress, recon_context = await orchestrator.init_research(query, breadth, user_id=ctx.user_id)
    logger.info("deepResearchInit user_id=%s session_id=%s", ctx.user_id, session_id)
    return {
        "success": True,
        "sessionId": session_id,
        "progress": progress.model_dump(mode="json"),
        "message": (
            f"Research initialized. Session ID: {session_id}. Reconnaissance complete with "
            f"{progress.totalSearches} searches. Now proceed with deepResearchLevel1 using this sessionId."
        ),
        "reconContext": recon_context,
    }


@tool("deepResearchLevel1", args_schema=DeepResearchContinueArgs)
@tool_payload("deepResearchLevel1")
async def deep_research_level1_tool(config: RunnableConfig, sessionId: str) -> dict:
    """STEP 2 of 4: Perform Level 1 research using the queries planned during reconnaissance. REQUIRES the sessionId from deepResearchInit and MUST run before deepResearchLevel2."""
    ctx = tool_context(config)
    progress = await _orchestrator().run_level1(sessionId, ctx.user_id)
    return {
        "success": True,
        "sessionId": sessionId,
        "progress": progress.model_dump(mode="json"),
        "message": (
            f"Level 1 research complete. Found {progress.insights} key insights from "
            f"{progress.totalSearches} total searches. Now proceed with deepResearchLevel2 "
            f"using the same sessionId."
        ),
    }


@tool("deepResearchLevel2", args_schema=DeepResearchContinueArgs)
@tool_payload("deepResearchLevel2")
async def deep_research_level2_tool(config: RunnableConfig, sessionId: str) -> dict:
    """STEP 3 of 4: Perform the Level 2 deep dive on follow-up questions from Level 1. REQUIRES the sessionId and MUST run after deepResearchLevel1 and before deepResearchSynthesize."""
    ctx = tool_context(config)
    progress = await _orchestrator().run_level2(sessionId, ctx.user_id)
    return {
        "success": True,
        "sessionId": sessionId,
        "progress": progress.model_dump(mode="json"),
        "message": (
            f"Level 2 research complete. Total {progress.insights} insights gathered from "
            f"{progress.totalSearches} searches. Now proceed with deepResearchSynthesize to "
            f"generate the final report."
        ),
    }


@tool("deepResearchSynthesize", args_schema=DeepResearchContinueArgs)
@tool_payload("deepResearchSynthesize")
async def deep_research_synthesize_tool(config: RunnableConfig, sessionId: str) -> dict:
    """STEP 4 of 4: Synthesize all research findings and generate the final report. REQUIRES the sessionId and MUST be called last, after every research phase is complete."""
    ctx = tool_context(config)
    report = await _orchestrator().synthesize(sessionId, ctx.user_id)
    payload = report.model_dump(mode="json", exclude_none=True)
    if not report.success:
        payload["errorKind"] = UpstreamError.kind
    return payload


RESEARCH_TOOLS = [
    deep_research_init_tool,
    deep_research_level1_tool,
    deep_research_level2_tool,
    deep_research_synthesize_tool,
]
