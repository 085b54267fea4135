"""
orchestrator.py — four-phase deep research state machine.

  init_research()  reconnaissance → level1   basic search, plan `breadth` queries
  run_level1()     level1 → level2           advanced search ×5 per query, extract insights
  run_level2()     level2 → synthesis        advanced search ×3 per follow-up question
  synthesize()     synthesis → completed     recommendations, report format, report

Each phase is a separate tool call so the model can narrate progress between
them. Calling a phase out of order raises PhaseOrderError; phases never run
concurrently within a session and every search/LLM call is awaited in turn.

A URL is evaluated for relevance at most once per session: reconnaissance URLs
are marked visited up front and every URL is marked visited as soon as it is
evaluated, whatever the verdict.
"""
import logging
import time
import uuid
from typing import Callable, Optional

from covernow.agents.research_agent.llm_service import ResearchLLM
from covernow.agents.research_agent.schemas import (
    NodeStatus,
    ResearchAccumulator,
    ResearchFindings,
    ResearchNode,
    ResearchPhase,
    ResearchProgress,
    ResearchReport,
    ResearchSession,
    ResearchSource,
)
from covernow.agents.research_agent.search import TavilySearch
from covernow.agents.research_agent.session_store import ResearchSessionRepository
from covernow.config import settings
from covernow.errors import (
    CoverNowError,
    InputValidationError,
    NotFoundError,
    PhaseOrderError,
    UpstreamError,
)

logger = logging.getLogger(__name__)

SESSION_NOT_FOUND = "Research session not found. Please start with deepResearchInit."
RESEARCH_PATH_ROOT = "Initial reconnaissance search"

RECON_RESULTS = 5
LEVEL1_RESULTS = 5
LEVEL2_RESULTS = 3
MAX_SOURCES = 10

PHASE_PROGRESS = {
    ResearchPhase.reconnaissance: 10,
    ResearchPhase.level1: 40,
    ResearchPhase.level2: 70,
    ResearchPhase.synthesis: 70,
    ResearchPhase.completed: 100,
}


def build_recon_context(results) -> str:
    return "\n\n".join(f"{r.title}: {r.content[:200]}" for r in results)


def _dedupe(items: list[str]) -> list[str]:
    seen: set[str] = set()
    unique = []
    for item in items:
        if item not in seen:
            seen.add(item)
            unique.append(item)
    return unique


def _top_sources(accumulator: ResearchAccumulator) -> list[ResearchSource]:
    sources = [
        ResearchSource(title=r.title, url=r.url, relevance=r.score)
        for node in accumulator.research_nodes
        for r in node.results
    ]
    sources.sort(key=lambda s: s.relevance, reverse=True)
    return sources[:MAX_SOURCES]


def _research_path(accumulator: ResearchAccumulator) -> list[str]:
    return [RESEARCH_PATH_ROOT, *(node.query for node in accumulator.research_nodes)]


class ResearchOrchestrator:
    """Runs research phases against a session repository, a search provider and an LLM."""

    def __init__(
        self,
        repository: ResearchSessionRepository,
        search: TavilySearch,
        llm: ResearchLLM,
        clock: Callable[[], float] = time.time,
        confidence_threshold: Optional[float] = None,
    ) -> None:
        self.repository = repository
        self.search = search
        self.llm = llm
        self._clock = clock
        self._threshold = (
            confidence_threshold
            if confidence_threshold is not None
            else settings.research_insight_confidence_threshold
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _duration(self, accumulator: ResearchAccumulator) -> int:
        return round(self._clock() - accumulator.start_time)

    def _progress(self, session: ResearchSession, phase: ResearchPhase, status: str) -> ResearchProgress:
        return ResearchProgress(
            sessionId=session.id,
            phase=phase,
            status=status,
            progress=PHASE_PROGRESS[phase],
            insights=len(session.accumulator.key_insights),
            totalSearches=session.accumulator.total_searches,
            duration=self._duration(session.accumulator),
        )

    async def _load(
        self,
        session_id: str,
        expected: ResearchPhase,
        user_id: Optional[str] = None,
    ) -> ResearchSession:
        """Fetch a session for the next phase. Another user's session reads as not found."""
        session = await self.repository.get(session_id)
        if session is None:
            raise NotFoundError(SESSION_NOT_FOUND)
        if user_id is not None and session.user_id != user_id:
            logger.warning("Research session owner mismatch session_id=%s", session_id)
            raise NotFoundError(SESSION_NOT_FOUND)
        if session.phase != expected:
            logger.warning(
                "Research phase mismatch session_id=%s expected=%s actual=%s",
                session_id, expected.value, session.phase.value,
            )
            raise PhaseOrderError(expected.value, session.phase.value)
        return session

    async def _research_queries(
        self,
        session: ResearchSession,
        queries: list[str],
        level: int,
        max_results: int,
    ) -> None:
        """Search → relevance → extraction for each query, appending one node per query."""
        acc = session.accumulator
        for i, query in enumerate(queries, 1):
            node = ResearchNode(query=query, level=level, timestamp=self._clock())
            node.status = NodeStatus.searching
            logger.info(
                "Level %d search %d/%d session_id=%s", level, i, len(queries), session.id
            )
            response = await self.search.search(query, depth="advanced", max_results=max_results)
            acc.total_searches += 1

            node.status = NodeStatus.analyzing
            evaluated = 0
            for result in response.results:
                if acc.has_visited(result.url):
                    continue
                acc.mark_visited(result.url)
                evaluated += 1
                if not await self.llm.is_relevant(result, query):
                    continue
                node.results.append(result)
                learning = await self.llm.extract_learning(result, query, acc.original_query)
                node.learnings.append(learning)
                if learning.confidence > self._threshold:
                    acc.key_insights.append(learning.insight)

            node.status = NodeStatus.completed
            acc.research_nodes.append(node)
            logger.info(
                "Level %d query %d done session_id=%s evaluated=%d relevant=%d",
                level, i, session.id, evaluated, len(node.results),
            )

    async def _run_level(
        self,
        session: ResearchSession,
        queries: list[str],
        level: int,
        max_results: int,
    ) -> None:
        try:
            await self._research_queries(session, queries, level, max_results)
        except Exception as exc:
            await self.repository.put(session)
            message = exc.message if isinstance(exc, CoverNowError) else str(exc)
            logger.error(
                "Level %d research failed session_id=%s after %ds: %s",
                level, session.id, self._duration(session.accumulator), message,
                exc_info=not isinstance(exc, CoverNowError),
            )
            raise UpstreamError(
                message,
                partial={
                    "insights": list(session.accumulator.key_insights),
                    "totalSearches": session.accumulator.total_searches,
                },
            ) from exc

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def init_research(
        self,
        query: str,
        breadth: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> tuple[str, ResearchProgress, str]:
        """
        Phase 1. Returns (session_id, progress, recon_context).
        On any failure the half-built session is deleted and the error propagates.
        """
        query = (query or "").strip()
        if not query:
            raise InputValidationError("Research query cannot be empty")
        breadth = settings.research_default_breadth if breadth is None else breadth
        if not 2 <= breadth <= 4:
            raise InputValidationError("breadth must be between 2 and 4")

        now = self._clock()
        session = ResearchSession(
            id=str(uuid.uuid4()),
            user_id=user_id,
            phase=ResearchPhase.reconnaissance,
            breadth=breadth,
            accumulator=ResearchAccumulator(original_query=query, start_time=now),
            created_at=now,
            last_updated=now,
        )
        await self.repository.put(session)
        logger.info("Research initialised session_id=%s breadth=%d", session.id, breadth)

        try:
            acc = session.accumulator
            response = await self.search.search(query, depth="basic", max_results=RECON_RESULTS)
            acc.reconnaissance = response.results
            acc.total_searches += 1
            for result in response.results:
                acc.mark_visited(result.url)

            recon_context = build_recon_context(response.results)
            session.level1_queries = await self.llm.generate_queries(query, recon_context, breadth)
            session.phase = ResearchPhase.level1
            await self.repository.put(session)
        except Exception:
            await self.repository.delete(session.id)
            logger.warning("Research init failed, session discarded session_id=%s", session.id)
            raise

        logger.info(
            "Reconnaissance done session_id=%s results=%d queries=%d",
            session.id, len(acc.reconnaissance), len(session.level1_queries),
        )
        progress = self._progress(
            session,
            ResearchPhase.reconnaissance,
            "Reconnaissance complete. Ready for Level 1 research.",
        )
        return session.id, progress, recon_context

    async def run_level1(self, session_id: str, user_id: Optional[str] = None) -> ResearchProgress:
        session = await self._load(session_id, ResearchPhase.level1, user_id)
        await self._run_level(session, session.level1_queries or [], 1, LEVEL1_RESULTS)

        follow_ups = [
            question
            for node in session.accumulator.research_nodes
            for learning in node.learnings
            for question in learning.followUpQuestions
        ]
        session.level2_queries = _dedupe(follow_ups)[: session.breadth]
        session.phase = ResearchPhase.level2
        await self.repository.put(session)
        logger.info(
            "Level 1 complete session_id=%s insights=%d level2_queries=%d",
            session_id, len(session.accumulator.key_insights), len(session.level2_queries),
        )
        return self._progress(
            session,
            ResearchPhase.level1,
            "Level 1 research complete. Ready for Level 2 deep dive.",
        )

    async def run_level2(self, session_id: str, user_id: Optional[str] = None) -> ResearchProgress:
        session = await self._load(session_id, ResearchPhase.level2, user_id)
        await self._run_level(session, session.level2_queries or [], 2, LEVEL2_RESULTS)

        session.phase = ResearchPhase.synthesis
        await self.repository.put(session)
        logger.info(
            "Level 2 complete session_id=%s insights=%d",
            session_id, len(session.accumulator.key_insights),
        )
        return self._progress(
            session,
            ResearchPhase.level2,
            "Level 2 research complete. Ready for synthesis.",
        )

    async def synthesize(self, session_id: str, user_id: Optional[str] = None) -> ResearchReport:
        """
        Phase 4. A synthesis failure is not raised: the report comes back with
        success=False, whatever was gathered so far and an error report, and the
        session stays in `synthesis` so the step can be retried.
        """
        session = await self._load(session_id, ResearchPhase.synthesis, user_id)
        acc = session.accumulator

        try:
            acc.recommendations = await self.llm.recommend(acc.original_query, acc.key_insights)
            fmt = await self.llm.choose_format(acc.original_query)
            report = await self.llm.write_report(acc, fmt)
        except Exception as exc:
            message = exc.message if isinstance(exc, CoverNowError) else str(exc) or "Synthesis failed"
            logger.error(
                "Synthesis failed session_id=%s: %s", session_id, message,
                exc_info=not isinstance(exc, CoverNowError),
            )
            await self.repository.put(session)
            return ResearchReport(
                success=False,
                query=acc.original_query,
                totalSearches=acc.total_searches,
                duration=self._duration(acc),
                findings=ResearchFindings(
                    keyInsights=list(acc.key_insights),
                    recommendations=list(acc.recommendations),
                    sources=_top_sources(acc),
                ),
                report=(
                    f"# Research Error\n\nAn error occurred during synthesis: {message}\n\n"
                    f"## Partial Results\n\nSearches completed: {acc.total_searches}\n"
                    f"Insights found: {len(acc.key_insights)}"
                ),
                researchPath=_research_path(acc),
                error=message,
            )

        session.phase = ResearchPhase.completed
        await self.repository.put(session)
        await self.repository.mark_completed(session_id)
        logger.info(
            "Research completed session_id=%s searches=%d insights=%d format=%s",
            session_id, acc.total_searches, len(acc.key_insights), fmt.value,
        )
        return ResearchReport(
            success=True,
            query=acc.original_query,
            totalSearches=acc.total_searches,
            duration=self._duration(acc),
            findings=ResearchFindings(
                keyInsights=list(acc.key_insights),
                recommendations=list(acc.recommendations),
                sources=_top_sources(acc),
            ),
            report=report,
            researchPath=_research_path(acc),
        )
