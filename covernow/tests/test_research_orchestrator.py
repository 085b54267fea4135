"""
test_research_orchestrator.py — four-phase deep research with fake search/LLM.

Layout used by most tests (breadth 2):
  reconnaissance  → r1, r2                 (marked visited, never evaluated)
  level 1  "q1"   → r1, a1, a2             (a2 judged irrelevant)
           "q2"   → a1, b1                 (a1 already evaluated by q1)
  level 2  follow-ups from a1 and b1, deduplicated and cut to breadth
"""
import pytest

from covernow.agents.research_agent.orchestrator import (
    RESEARCH_PATH_ROOT,
    SESSION_NOT_FOUND,
    ResearchOrchestrator,
)
from covernow.agents.research_agent.schemas import ResearchAccumulator, ResearchPhase, ResearchSession
from covernow.agents.research_agent.session_store import InMemoryResearchSessionRepository
from covernow.errors import InputValidationError, NotFoundError, PhaseOrderError, UpstreamError
from covernow.tests.fakes import FakeSearch, ScriptedResearchLLM, result

QUERY = "best term insurance for smokers"


class TickingClock:
    def __init__(self) -> None:
        self.now = 5_000.0

    def __call__(self) -> float:
        self.now += 1
        return self.now


def _search(**overrides):
    responses = {
        QUERY: [result("r1"), result("r2")],
        "q1": [result("r1"), result("a1", score=0.9), result("a2", score=0.8)],
        "q2": [result("a1", score=0.9), result("b1", score=0.4)],
    }
    responses.update(overrides)
    return FakeSearch(responses)


def _llm(**kwargs):
    kwargs.setdefault("queries", ["q1", "q2", "q3"])
    kwargs.setdefault("irrelevant", {"a2"})
    kwargs.setdefault("learnings", {
        "a1": (["f1", "f2"], 0.9),
        "b1": (["f2", "f3"], 0.5),
    })
    return ScriptedResearchLLM(**kwargs)


def _orchestrator(search=None, llm=None):
    clock = TickingClock()
    repo = InMemoryResearchSessionRepository(clock=clock)
    return ResearchOrchestrator(
        repo, search or _search(), llm or _llm(), clock=clock, confidence_threshold=0.7
    )


@pytest.mark.asyncio
async def test_full_run():
    llm = _llm()
    orchestrator = _orchestrator(llm=llm)

    session_id, progress, recon = await orchestrator.init_research(QUERY, breadth=2)
    assert progress.phase == ResearchPhase.reconnaissance
    assert progress.progress == 10
    assert progress.totalSearches == 1
    assert "Title r1" in recon

    level1 = await orchestrator.run_level1(session_id)
    assert level1.progress == 40
    assert level1.totalSearches == 3
    assert level1.insights == 1  # only a1 clears the confidence threshold

    session = await orchestrator.repository.get(session_id)
    assert session.level1_queries == ["q1", "q2"]
    assert session.level2_queries == ["f1", "f2"]
    assert session.phase == ResearchPhase.level2

    level2 = await orchestrator.run_level2(session_id)
    assert level2.progress == 70
    assert level2.totalSearches == 5

    report = await orchestrator.synthesize(session_id)
    assert report.success is True
    assert report.query == QUERY
    assert report.report == f"# Report for {QUERY}"
    assert report.findings.keyInsights == ["Insight from a1"]
    assert len(report.findings.recommendations) == 3
    assert [s.url for s in report.findings.sources] == ["a1", "b1"]
    assert report.researchPath == [RESEARCH_PATH_ROOT, "q1", "q2", "f1", "f2"]

    final = await orchestrator.repository.get(session_id)
    assert final.phase == ResearchPhase.completed


@pytest.mark.asyncio
async def test_each_url_is_evaluated_once_per_session():
    llm = _llm()
    orchestrator = _orchestrator(llm=llm)
    session_id, _, _ = await orchestrator.init_research(QUERY, breadth=2)
    await orchestrator.run_level1(session_id)

    # r1 came from reconnaissance; a1 was already judged under q1; a2 was judged irrelevant once
    assert llm.relevance_checks == ["a1", "a2", "b1"]
    session = await orchestrator.repository.get(session_id)
    assert set(session.accumulator.visited_urls) == {"r1", "r2", "a1", "a2", "b1"}


@pytest.mark.asyncio
async def test_level1_uses_advanced_depth_and_five_results():
    search = _search()
    orchestrator = _orchestrator(search=search)
    session_id, _, _ = await orchestrator.init_research(QUERY, breadth=2)
    await orchestrator.run_level1(session_id)

    assert search.calls[0] == {"query": QUERY, "depth": "basic", "max_results": 5, "topic": "general"}
    assert all(c["depth"] == "advanced" and c["max_results"] == 5 for c in search.calls[1:])


@pytest.mark.asyncio
async def test_phase_out_of_order():
    orchestrator = _orchestrator()
    session_id, _, _ = await orchestrator.init_research(QUERY, breadth=2)

    with pytest.raises(PhaseOrderError) as excinfo:
        await orchestrator.run_level2(session_id)
    assert excinfo.value.message == (
        "Invalid phase transition. Expected level2, but session is in level1"
    )
    with pytest.raises(PhaseOrderError):
        await orchestrator.synthesize(session_id)


@pytest.mark.asyncio
async def test_unknown_session():
    orchestrator = _orchestrator()
    with pytest.raises(NotFoundError) as excinfo:
        await orchestrator.run_level1("does-not-exist")
    assert excinfo.value.message == SESSION_NOT_FOUND


@pytest.mark.asyncio
async def test_session_belongs_to_the_user_who_started_it():
    orchestrator = _orchestrator()
    session_id, _, _ = await orchestrator.init_research(QUERY, breadth=2, user_id="owner")

    with pytest.raises(NotFoundError) as excinfo:
        await orchestrator.run_level1(session_id, "intruder")
    assert excinfo.value.message == SESSION_NOT_FOUND
    session = await orchestrator.repository.get(session_id)
    assert session.user_id == "owner"
    assert session.phase == ResearchPhase.level1

    progress = await orchestrator.run_level1(session_id, "owner")
    assert progress.progress == 40


@pytest.mark.asyncio
@pytest.mark.parametrize("query, breadth", [("   ", 3), (QUERY, 1), (QUERY, 5)])
async def test_init_rejects_bad_input(query, breadth):
    orchestrator = _orchestrator()
    with pytest.raises(InputValidationError):
        await orchestrator.init_research(query, breadth=breadth)
    assert len(orchestrator.repository) == 0


@pytest.mark.asyncio
async def test_init_failure_discards_session():
    llm = _llm(fail={"generate_queries": UpstreamError("model down")})
    orchestrator = _orchestrator(llm=llm)

    with pytest.raises(UpstreamError):
        await orchestrator.init_research(QUERY, breadth=2)
    assert len(orchestrator.repository) == 0


@pytest.mark.asyncio
async def test_level_failure_keeps_session_and_reports_partial_progress():
    search = _search(q2=UpstreamError("Search failed: timeout"))
    orchestrator = _orchestrator(search=search)
    session_id, _, _ = await orchestrator.init_research(QUERY, breadth=2)

    with pytest.raises(UpstreamError) as excinfo:
        await orchestrator.run_level1(session_id)

    assert excinfo.value.message == "Search failed: timeout"
    assert excinfo.value.partial == {"insights": ["Insight from a1"], "totalSearches": 2}
    session = await orchestrator.repository.get(session_id)
    assert session.phase == ResearchPhase.level1


@pytest.mark.asyncio
async def test_synthesis_failure_returns_error_report_and_allows_retry():
    llm = _llm(fail={"recommend": UpstreamError("model down")})
    orchestrator = _orchestrator(llm=llm)
    session_id, _, _ = await orchestrator.init_research(QUERY, breadth=2)
    await orchestrator.run_level1(session_id)
    await orchestrator.run_level2(session_id)

    report = await orchestrator.synthesize(session_id)
    assert report.success is False
    assert report.error == "model down"
    assert report.report.startswith("# Research Error")
    assert report.findings.keyInsights == ["Insight from a1"]

    session = await orchestrator.repository.get(session_id)
    assert session.phase == ResearchPhase.synthesis

    llm.fail.clear()
    retry = await orchestrator.synthesize(session_id)
    assert retry.success is True


@pytest.mark.asyncio
async def test_completed_session_cannot_be_synthesized_again():
    orchestrator = _orchestrator()
    session_id, _, _ = await orchestrator.init_research(QUERY, breadth=2)
    await orchestrator.run_level1(session_id)
    await orchestrator.run_level2(session_id)
    await orchestrator.synthesize(session_id)

    with pytest.raises(PhaseOrderError):
        await orchestrator.synthesize(session_id)


@pytest.mark.asyncio
async def test_level1_while_still_in_reconnaissance():
    orchestrator = _orchestrator()
    session = ResearchSession(
        id="half-built",
        accumulator=ResearchAccumulator(original_query=QUERY),
    )
    await orchestrator.repository.put(session)

    with pytest.raises(PhaseOrderError) as excinfo:
        await orchestrator.run_level1("half-built")
    assert excinfo.value.expected == "level1"
    assert excinfo.value.actual == "reconnaissance"
