"""
utility_tools.py — general-purpose tools that never touch the profile store.

  webSearchFast  — single Tavily search with an LLM-ready answer
  calculator     — safe arithmetic (agents/chat_agent/calculator.py)

Both keep their own failure shapes (search results list / zeroed result) so the
model can render a partial answer, and still carry errorKind on failure.
"""
import logging
from typing import Literal, Optional

from langchain_core.tools import tool
from pydantic import BaseModel, Field

from covernow.agents.chat_agent.calculator import CalculationError, evaluate, format_number
from covernow.errors import CoverNowError

logger = logging.getLogger(__name__)


class WebSearchFastArgs(BaseModel):
    query: str = Field(..., min_length=1, description="The search query to find information on the web")
    searchDepth: Literal["basic", "advanced"] = Field(
        default="advanced",
        description="The depth of search - advanced provides more comprehensive results",
    )
    maxResults: int = Field(default=5, ge=1, le=10, description="Maximum number of search results to return")
    topic: Literal["general", "news"] = Field(default="general", description="The type of search - general or news")


class CalculatorArgs(BaseModel):
    expression: str = Field(
        ...,
        min_length=1,
        description=(
            "The mathematical expression to evaluate. Supports: +, -, *, /, ^, %, (), sqrt(), sin(), "
            "cos(), tan(), log(), ln(), abs(), round(), floor(), ceil(), min(), max(), pow(), PI, E"
        ),
    )
    variables: Optional[dict[str, float]] = Field(
        default=None,
        description='Optional variables used in the expression, e.g. {"x": 5, "y": 10} for "x + y"',
    )


@tool("webSearchFast", args_schema=WebSearchFastArgs)
async def web_search_fast_tool(
    query: str,
    searchDepth: str = "advanced",
    maxResults: int = 5,
    topic: str = "general",
) -> dict:
    """Search the web for current information, news, facts, or any topic. Use this when you need up-to-date information or the question is beyond your knowledge cutoff."""
    from covernow.graph.graph import get_search

    search = get_search()
    try:
        if search is None:
            raise CoverNowError("Web search is not available right now")
        response = await search.search(
            query,
            depth=searchDepth,
            max_results=maxResults,
            topic=topic,
            include_answer=True,
        )
    except CoverNowError as exc:
        logger.warning("webSearchFast failed kind=%s: %s", exc.kind, exc.message)
        return {
            "success": False,
            "query": query,
            "results": [],
            "error": exc.message,
            "errorKind": exc.kind,
        }
    return {
        "success": True,
        "query": query,
        "results": [r.model_dump() for r in response.results],
        "answer": response.answer,
    }


@tool("calculator", args_schema=CalculatorArgs)
async def calculator_tool(expression: str, variables: Optional[dict[str, float]] = None) -> dict:
    """Perform mathematical calculations including basic arithmetic, trigonometry, logarithms, and more."""
    try:
        result = evaluate(expression, variables)
    except CalculationError as exc:
        logger.info("calculator rejected expression: %s", exc)
        return {
            "expression": expression,
            "result": 0,
            "formattedResult": "0",
            "error": str(exc),
            "errorKind": "validation",
        }
    return {
        "expression": expression,
        "result": result,
        "formattedResult": format_number(result),
    }


UTILITY_TOOLS = [web_search_fast_tool, calculator_tool]
