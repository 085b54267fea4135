"""
schemas.py — ResearchAgent Pydantic v2 data contracts.

Defines:
  - ResearchPhase, NodeStatus, ReportFormat   (enums)
  - SearchResult, Learning, ResearchNode      (per-query research tree)
  - ResearchAccumulator, ResearchSession      (session state; pydantic so the Redis
                                               repository can store it as JSON)
  - ResearchProgress, ResearchSource, ResearchFindings, ResearchReport   (tool payloads)
  - QueryPlan, RelevanceVerdict, ExtractedLearning, RecommendationSet,
    ReportFormatChoice                        (structured LLM outputs)

Field names on the payload models are camelCase because they are returned to the
model verbatim by the deepResearch* tools.
"""
import time
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class ResearchPhase(str, Enum):
    reconnaissance = "reconnaissance"
    level1 = "level1"
    level2 = "level2"
    synthesis = "synthesis"
    completed = "completed"


class NodeStatus(str, Enum):
    pending = "pending"
    searching = "searching"
    analyzing = "analyzing"
    completed = "completed"


class ReportFormat(str, Enum):
    comparison_table = "comparison_table"
    pros_cons_list = "pros_cons_list"
    ranked_list = "ranked_list"
    step_by_step_guide = "step_by_step_guide"
    pricing_breakdown = "pricing_breakdown"
    prose_report = "prose_report"


# ---------------------------------------------------------------------------
# Research tree
# ---------------------------------------------------------------------------

class SearchResult(BaseModel):
    title: str = ""
    url: str
    content: str = ""
    score: float = 0.0
    publishedDate: Optional[str] = None


class Learning(BaseModel):
    insight: str
    followUpQuestions: List[str] = Field(default_factory=list)
    confidence: float = Field(..., ge=0.0, le=1.0)
    source: str


class ResearchNode(BaseModel):
    query: str
    level: int = Field(..., ge=1, le=2)
    results: List[SearchResult] = Field(default_factory=list)
    learnings: List[Learning] = Field(default_factory=list)
    status: NodeStatus = NodeStatus.pending
    timestamp: float = Field(default_factory=time.time)


class ResearchAccumulator(BaseModel):
    original_query: str
    reconnaissance: List[SearchResult] = Field(default_factory=list)
    research_nodes: List[ResearchNode] = Field(default_factory=list)
    # list, not set: keeps JSON round-trips stable; membership goes through helpers
    visited_urls: List[str] = Field(default_factory=list)
    key_insights: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    total_searches: int = 0
    start_time: float = Field(default_factory=time.time)

    def has_visited(self, url: str) -> bool:
        return url in self.visited_urls

    def mark_visited(self, url: str) -> None:
        if url not in self.visited_urls:
            self.visited_urls.append(url)


class ResearchSession(BaseModel):
    id: str
    user_id: Optional[str] = None
    phase: ResearchPhase = ResearchPhase.reconnaissance
    breadth: int = Field(default=3, ge=2, le=4)
    accumulator: ResearchAccumulator
    level1_queries: Optional[List[str]] = None
    level2_queries: Optional[List[str]] = None
    created_at: float = Field(default_factory=time.time)
    last_updated: float = Field(default_factory=time.time)
    completed_at: Optional[float] = None


# ---------------------------------------------------------------------------
# Tool payloads
# ---------------------------------------------------------------------------

class ResearchProgress(BaseModel):
    sessionId: str
    phase: ResearchPhase
    status: str
    progress: int
    insights: int
    totalSearches: int
    duration: int


class ResearchSource(BaseModel):
    title: str
    url: str
    relevance: float


class ResearchFindings(BaseModel):
    keyInsights: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    sources: List[ResearchSource] = Field(default_factory=list)


class ResearchReport(BaseModel):
    success: bool
    query: str
    totalSearches: int
    duration: int
    findings: ResearchFindings
    report: str
    researchPath: List[str]
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Structured LLM outputs
# ---------------------------------------------------------------------------

class QueryPlan(BaseModel):
    """Targeted search queries derived from the reconnaissance context."""

    queries: List[str] = Field(..., description="Distinct search queries, one per aspect of the topic.")


class RelevanceVerdict(BaseModel):
    """Whether a search result is worth extracting insights from."""

    relevant: bool
    reason: str = ""


class ExtractedLearning(BaseModel):
    """One key insight from a search result, plus follow-up questions."""

    insight: str = Field(..., description="One key insight that directly helps answer the research question.")
    followUpQuestions: List[str] = Field(
        ..., min_length=2, max_length=3,
        description="2-3 follow-up questions that would deepen understanding.",
    )
    confidence: float = Field(
        ..., ge=0.0, le=1.0,
        description="0-1, based on source authority and content quality.",
    )


class RecommendationSet(BaseModel):
    """Actionable recommendations derived from the research insights."""

    recommendations: List[str] = Field(..., min_length=3, max_length=5)


class ReportFormatChoice(BaseModel):
    """Output format that best answers the user's original question."""

    format: ReportFormat
