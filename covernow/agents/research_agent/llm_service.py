"""
llm_service.py — Mistral structured-generation layer for deep research.

Components:
  QUERY_SYSTEM / EXTRACT_SYSTEM / REPORT_SYSTEM — locked prompt constraints
  FORMAT_GUIDANCE     — what each ReportFormat should look like
  ResearchLLM         — async wrapper around ChatMistralAI:
      generate_queries()   — exactly `breadth` queries from the recon context
      is_relevant()        — binary relevance classifier
      extract_learning()   — insight + 2-3 follow-ups + confidence
      recommend()          — 3-5 actionable recommendations
      choose_format()      — pick a ReportFormat from the query's phrasing
      write_report()       — markdown report in the chosen format

Every provider failure surfaces as UpstreamError. No HTTP concerns here.
"""
import logging
from datetime import date
from typing import Any, Optional, Type, TypeVar

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_mistralai import ChatMistralAI
from pydantic import BaseModel

from covernow.agents.research_agent.schemas import (
    ExtractedLearning,
    Learning,
    QueryPlan,
    RecommendationSet,
    RelevanceVerdict,
    ReportFormat,
    ReportFormatChoice,
    ResearchAccumulator,
    SearchResult,
)
from covernow.config import settings
from covernow.errors import UpstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


QUERY_SYSTEM = """You are an expert insurance research assistant. Generate {breadth} specific search queries based on the main query and context provided.
Focus on:
- Current year information
- Indian insurance market specifics
- Regulatory aspects (IRDAI)
- Practical consumer information
Each query should explore a different aspect of the topic."""

EXTRACT_SYSTEM = "You are an expert at extracting key insurance insights and generating follow-up questions."

FORMAT_SYSTEM = """Pick the output format that best answers the user's research question:
- comparison_table: the user asks to compare or contrast options
- pros_cons_list: the user asks about options or alternatives
- ranked_list: the user asks which is best or wants a recommendation
- step_by_step_guide: the user asks how to do something
- pricing_breakdown: the user asks about costs or premiums
- prose_report: anything else"""

REPORT_SYSTEM = """You are an expert insurance analyst creating a research output. Today is {today}.

Write the output as {format_guidance}

Use rich markdown formatting: tables for comparisons, bullet points for lists, bold for
important points, headers for sections, blockquotes for key insights.
Make the output visually appealing and easy to scan."""

FORMAT_GUIDANCE: dict[ReportFormat, str] = {
    ReportFormat.comparison_table: "a comparison table/matrix followed by a short verdict.",
    ReportFormat.pros_cons_list: "a structured list of options, each with pros and cons.",
    ReportFormat.ranked_list: "a ranked recommendation list with a one-line reason per entry.",
    ReportFormat.step_by_step_guide: "a numbered step-by-step guide.",
    ReportFormat.pricing_breakdown: "a pricing breakdown table with the factors that move premiums.",
    ReportFormat.prose_report: "a comprehensive report with sections and a summary.",
}


def _numbered(items: list[str]) -> str:
    return "\n".join(f"{i}. {item}" for i, item in enumerate(items, 1))


class ResearchLLM:
    """Structured LLM calls used by the research orchestrator."""

    def __init__(self, llm: Optional[Any] = None) -> None:
        self._llm = llm or ChatMistralAI(
            model=settings.research_model,
            mistral_api_key=settings.mistral_api_key,
            temperature=settings.llm_temperature,
        )

    async def _structured(self, schema: Type[T], prompt: str, system: Optional[str] = None) -> T:
        messages = []
        if system:
            messages.append(SystemMessage(content=system))
        messages.append(HumanMessage(content=prompt))
        try:
            result = await self._llm.with_structured_output(schema).ainvoke(messages)
        except Exception as exc:
            logger.warning("Research LLM call failed schema=%s: %s", schema.__name__, exc)
            raise UpstreamError(f"Research model call failed: {exc}") from exc
        if result is None:
            raise UpstreamError(f"Research model returned no {schema.__name__}")
        return result

    async def generate_queries(self, main_query: str, context: str, breadth: int) -> list[str]:
        plan = await self._structured(
            QueryPlan,
            system=QUERY_SYSTEM.format(breadth=breadth),
            prompt=(
                f"Main research topic: {main_query}\n\n"
                f"Context from initial search:\n{context}\n\n"
                f"Generate {breadth} targeted search queries that will help build "
                f"comprehensive knowledge about this topic."
            ),
        )
        queries = [q.strip() for q in plan.queries if q.strip()]
        if len(queries) < breadth:
            raise UpstreamError(
                f"Expected {breadth} search queries, model returned {len(queries)}"
            )
        return queries[:breadth]

    async def is_relevant(self, result: SearchResult, query: str) -> bool:
        verdict = await self._structured(
            RelevanceVerdict,
            prompt=(
                f'Evaluate if this search result is relevant for the query "{query}".\n\n'
                f"Title: {result.title}\n"
                f"URL: {result.url}\n"
                f"Content preview: {result.content[:500]}\n\n"
                "Consider:\n"
                "- Is it about insurance in India?\n"
                "- Is the information current and accurate?\n"
                "- Does it provide valuable insights for the query?"
            ),
        )
        return verdict.relevant

    async def extract_learning(self, result: SearchResult, query: str, main_topic: str) -> Learning:
        extracted = await self._structured(
            ExtractedLearning,
            system=EXTRACT_SYSTEM,
            prompt=(
                f'Extract key learning from this search result about "{query}" '
                f'(main topic: "{main_topic}").\n\n'
                f"Title: {result.title}\n"
                f"Content: {result.content}\n\n"
                "Provide:\n"
                "1. One key insight that directly helps answer the research question\n"
                "2. 2-3 follow-up questions that would deepen understanding\n"
                "3. Confidence score (0-1) based on source authority and content quality"
            ),
        )
        return Learning(
            insight=extracted.insight,
            followUpQuestions=list(extracted.followUpQuestions),
            confidence=extracted.confidence,
            source=result.url,
        )

    async def recommend(self, original_query: str, insights: list[str]) -> list[str]:
        recs = await self._structured(
            RecommendationSet,
            prompt=(
                f'Based on these research insights about "{original_query}", '
                f"provide 3-5 actionable recommendations:\n\n" + "\n".join(insights)
            ),
        )
        return list(recs.recommendations)

    async def choose_format(self, original_query: str) -> ReportFormat:
        choice = await self._structured(
            ReportFormatChoice,
            system=FORMAT_SYSTEM,
            prompt=f'User research question: "{original_query}"',
        )
        return choice.format

    async def write_report(self, accumulator: ResearchAccumulator, fmt: ReportFormat) -> str:
        details = "\n".join(
            f"- {node.query}: Found {len(node.results)} relevant results with key findings"
            for node in accumulator.research_nodes
        )
        messages = [
            SystemMessage(content=REPORT_SYSTEM.format(
                today=date.today().strftime("%d/%m/%Y"),
                format_guidance=FORMAT_GUIDANCE[fmt],
            )),
            HumanMessage(content=(
                f'Original User Query: "{accumulator.original_query}"\n\n'
                f"Key Insights Found:\n{_numbered(accumulator.key_insights)}\n\n"
                f"Recommendations:\n{_numbered(accumulator.recommendations)}\n\n"
                f"Research Details:\n{details}\n\n"
                f'Important: The user asked "{accumulator.original_query}" - make sure '
                f"your output directly addresses this specific need."
            )),
        ]
        try:
            reply = await self._llm.ainvoke(messages)
        except Exception as exc:
            logger.warning("Report generation failed: %s", exc)
            raise UpstreamError(f"Report generation failed: {exc}") from exc
        report = reply.content if isinstance(reply.content, str) else str(reply.content)
        logger.info("Report generated format=%s chars=%d", fmt.value, len(report))
        return report
