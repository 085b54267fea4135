"""
test_api.py — HTTP surface: /api/health, /api/profile, /api/conversations, /api/chat.

Uses httpx ASGITransport (no live server). get_db and the chat session factory are
pointed at the test SQLite engine, and app.state.chat_graph is built from a
ScriptedChatModel, since the lifespan (migrations, Mistral, Tavily) does not run
under ASGITransport.
"""
import json

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from covernow import store
from covernow.agents.chat_agent.chat_service import STREAM_ERROR
from covernow.agents.chat_agent.routes import get_session_factory
from covernow.config import settings
from covernow.database import get_db
from covernow.graph.graph import STEP_LIMIT_REPLY, build_graph
from covernow.main import app
from covernow.tests.fakes import USER_ID, ScriptedChatModel

HEADERS = {"X-User-Id": USER_ID}


def _usage(total: int) -> dict:
    return {"input_tokens": total - 5, "output_tokens": 5, "total_tokens": total}


def _lines(response) -> list[dict]:
    return [json.loads(line) for line in response.text.splitlines() if line.strip()]


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
    app.state.chat_graph = None


def _install_model(replies: list) -> ScriptedChatModel:
    model = ScriptedChatModel(replies)
    app.state.chat_graph = build_graph(llm=model)
    return model


# ---------------------------------------------------------------------------
# System / auth
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_missing_user_is_unauthorized(client):
    response = await client.get("/api/profile")
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "UNAUTHORIZED"


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_and_read_profile(client):
    created = await client.post("/api/profile", json={"firstName": "Asha"}, headers=HEADERS)
    assert created.status_code == 201
    assert created.json()["firstName"] == "Asha"
    assert created.json()["hasIssues"] is False

    duplicate = await client.post("/api/profile", json={"firstName": "Asha"}, headers=HEADERS)
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "CONFLICT"

    read = await client.get("/api/profile", headers=HEADERS)
    assert read.status_code == 200
    assert read.json()["firstName"] == "Asha"


@pytest.mark.asyncio
async def test_read_missing_profile(client):
    response = await client.get("/api/profile", headers={"X-User-Id": "nobody"})
    assert response.status_code == 404
    assert response.json()["error"]["message"] == store.PROFILE_NOT_FOUND


@pytest.mark.asyncio
async def test_create_profile_validation(client):
    response = await client.post("/api/profile", json={"firstName": ""}, headers=HEADERS)
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_conversation_and_list_messages(client):
    created = await client.post("/api/conversations", json={"title": "Term plans"}, headers=HEADERS)
    assert created.status_code == 201
    body = created.json()
    assert body["title"] == "Term plans"
    assert body["token_count"] == 0
    assert set(body) == {"id", "title", "token_count"}

    messages = await client.get(f"/api/conversations/{body['id']}/messages", headers=HEADERS)
    assert messages.status_code == 200
    assert messages.json() == []

    other_user = await client.get(
        f"/api/conversations/{body['id']}/messages", headers={"X-User-Id": "someone-else"}
    )
    assert other_user.status_code == 404


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_chat_runs_tools_streams_and_persists(client, session_factory, conversation_id):
    model = _install_model([
        AIMessage(
            content="",
            tool_calls=[{"name": "updateUserProfile", "args": {"city": "Pune"}, "id": "call-1"}],
            usage_metadata=_usage(100),
        ),
        AIMessage(content="Saved Pune as your city.", usage_metadata=_usage(40)),
    ])

    response = await client.post(
        "/api/chat",
        json={"messages": [{"role": "user", "content": "I live in Pune"}], "conversationId": conversation_id},
        headers=HEADERS,
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/x-ndjson")
    events = _lines(response)
    assert [e["type"] for e in events] == ["tool_call", "tool_result", "text", "done"]
    assert events[0]["toolName"] == "updateUserProfile"
    assert events[1]["result"]["success"] is True
    assert events[1]["result"]["updatedFields"] == ["city"]
    assert events[2]["content"] == "Saved Pune as your city."
    assert events[3] == {"type": "done", "tokensUsed": 140, "tokenCount": 140}

    # System prompt first, then the client's turn; the tool result went back to the model
    first_call = model.calls[0]
    assert isinstance(first_call[0], SystemMessage)
    assert "<first_name>Asha</first_name>" in first_call[0].content
    assert isinstance(first_call[1], HumanMessage)
    assert len(model.calls[1]) == 4
    assert len(model.tools) == 10

    history = await client.get(f"/api/conversations/{conversation_id}/messages", headers=HEADERS)
    rows = history.json()
    assert [r["role"] for r in rows] == ["user", "assistant"]
    assert rows[0]["content"] == "I live in Pune"
    assert rows[1]["content"] == "Saved Pune as your city."
    assert rows[1]["tool_calls"][0]["toolCallId"] == "call-1"
    assert rows[1]["tool_calls"][0]["result"]["success"] is True

    async with session_factory() as session:
        assert (await store.get_profile(session, USER_ID)).city == "Pune"
        assert (await store.get_conversation(session, conversation_id))["token_count"] == 140


@pytest.mark.asyncio
async def test_chat_tool_failure_is_reported_to_model(client, conversation_id):
    _install_model([
        AIMessage(
            content="",
            tool_calls=[{"name": "manageUserIssues", "args": {"operation": "explode"}, "id": "call-1"}],
        ),
        AIMessage(content="Could you tell me which condition you mean?"),
    ])

    response = await client.post(
        "/api/chat",
        json={"messages": [{"role": "user", "content": "update my issues"}], "conversationId": conversation_id},
        headers=HEADERS,
    )

    events = _lines(response)
    result = events[1]["result"]
    assert result["success"] is False
    assert result["errorKind"] == "validation"
    assert events[-1]["type"] == "done"
    assert events[-1]["tokensUsed"] == 0


@pytest.mark.asyncio
async def test_chat_unknown_tool(client, conversation_id):
    _install_model([
        AIMessage(content="", tool_calls=[{"name": "getLifeQuote", "args": {}, "id": "call-1"}]),
        AIMessage(content="Sorry about that."),
    ])

    response = await client.post(
        "/api/chat",
        json={"messages": [{"role": "user", "content": "quote me"}], "conversationId": conversation_id},
        headers=HEADERS,
    )
    events = _lines(response)
    assert events[1]["result"] == {
        "success": False,
        "error": "Unknown tool 'getLifeQuote'",
        "errorKind": "validation",
    }


def _calc_call(n: int) -> AIMessage:
    return AIMessage(
        content="",
        tool_calls=[{"name": "calculator", "args": {"expression": f"{n}+1"}, "id": f"c{n}"}],
    )


@pytest.mark.asyncio
async def test_chat_step_limit_runs_every_streamed_tool_call(client, conversation_id, monkeypatch):
    monkeypatch.setattr(settings, "max_tool_steps", 15)
    model = _install_model([_calc_call(n) for n in range(16)])

    response = await client.post(
        "/api/chat",
        json={"messages": [{"role": "user", "content": "keep adding"}], "conversationId": conversation_id},
        headers=HEADERS,
    )

    events = _lines(response)
    called = {e["toolCallId"] for e in events if e["type"] == "tool_call"}
    answered = {e["toolCallId"] for e in events if e["type"] == "tool_result"}
    assert called == answered == {f"c{n}" for n in range(15)}
    # 16th call goes out without tools; its stray tool call becomes a text answer
    assert model.with_tools == [True] * 15 + [False]
    assert events[-2] == {"type": "text", "content": STEP_LIMIT_REPLY}
    assert events[-1]["type"] == "done"


@pytest.mark.asyncio
async def test_chat_step_limit_model_answers_in_text(client, session_factory, conversation_id, monkeypatch):
    monkeypatch.setattr(settings, "max_tool_steps", 2)
    model = _install_model([
        _calc_call(0),
        _calc_call(1),
        AIMessage(content="1 + 1 is 2 and 2 + 1 is 3."),
    ])

    response = await client.post(
        "/api/chat",
        json={"messages": [{"role": "user", "content": "add"}], "conversationId": conversation_id},
        headers=HEADERS,
    )

    events = _lines(response)
    assert [e["type"] for e in events] == [
        "tool_call", "tool_result", "tool_call", "tool_result", "text", "done",
    ]
    assert events[4]["content"] == "1 + 1 is 2 and 2 + 1 is 3."
    assert model.with_tools == [True, True, False]

    async with session_factory() as session:
        rows = await store.get_messages(session, conversation_id)
    assistant = next(r for r in rows if r["role"] == "assistant")
    assert assistant["content"] == "1 + 1 is 2 and 2 + 1 is 3."
    assert [c["toolCallId"] for c in assistant["tool_calls"]] == ["c0", "c1"]


@pytest.mark.asyncio
async def test_chat_model_failure_streams_error(client, session_factory, conversation_id):
    _install_model([RuntimeError("mistral is down")])

    response = await client.post(
        "/api/chat",
        json={"messages": [{"role": "user", "content": "hello"}], "conversationId": conversation_id},
        headers=HEADERS,
    )

    assert response.status_code == 200
    assert _lines(response) == [{"type": "error", "message": STREAM_ERROR}]
    async with session_factory() as session:
        rows = await store.get_messages(session, conversation_id)
    assert [r["role"] for r in rows] == ["user"]


@pytest.mark.asyncio
async def test_chat_requires_user(client, conversation_id):
    response = await client.post(
        "/api/chat",
        json={"messages": [{"role": "user", "content": "hi"}], "conversationId": conversation_id},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"messages": [], "conversationId": "x"},
        {"messages": [{"role": "system", "content": "hi"}], "conversationId": "x"},
        {"messages": [{"role": "user", "content": "hi"}]},
    ],
)
async def test_chat_invalid_body(client, body):
    _install_model([])
    response = await client.post("/api/chat", json=body, headers=HEADERS)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "BAD_REQUEST"


@pytest.mark.asyncio
async def test_chat_unknown_conversation(client, profile):
    _install_model([])
    response = await client.post(
        "/api/chat",
        json={"messages": [{"role": "user", "content": "hi"}], "conversationId": "missing"},
        headers=HEADERS,
    )
    assert response.status_code == 404
    assert response.json()["error"]["message"] == store.CONVERSATION_NOT_FOUND


@pytest.mark.asyncio
async def test_chat_without_graph_is_unavailable(client, conversation_id):
    app.state.chat_graph = None
    response = await client.post(
        "/api/chat",
        json={"messages": [{"role": "user", "content": "hi"}], "conversationId": conversation_id},
        headers=HEADERS,
    )
    assert response.status_code == 503
    assert response.json()["error"]["code"] == "SERVICE_UNAVAILABLE"


async def _exhaust_tokens(session_factory, conversation_id):
    async with session_factory() as session:
        await store.add_token_usage(session, conversation_id, settings.token_limit)
        await session.commit()


@pytest.mark.asyncio
async def test_token_limit_blocks_turn(client, session_factory, conversation_id):
    await _exhaust_tokens(session_factory, conversation_id)
    model = _install_model([AIMessage(content="unused")])

    response = await client.post(
        "/api/chat",
        json={"messages": [{"role": "user", "content": "hi"}], "conversationId": conversation_id},
        headers=HEADERS,
    )

    assert response.status_code == 409
    error = response.json()["error"]
    assert error["code"] == "TOKEN_LIMIT_REACHED"
    assert error["details"] == [{"tokenCount": settings.token_limit, "tokenLimit": settings.token_limit}]
    assert model.calls == []


@pytest.mark.asyncio
async def test_rolling_mode_drops_oldest_pair(client, session_factory, conversation_id):
    await _exhaust_tokens(session_factory, conversation_id)
    model = _install_model([AIMessage(content="Sure.", usage_metadata=_usage(10))])

    response = await client.post(
        "/api/chat",
        json={
            "messages": [
                {"role": "user", "content": "first question"},
                {"role": "assistant", "content": "first answer"},
                {"role": "user", "content": "second question"},
            ],
            "conversationId": conversation_id,
        },
        headers={**HEADERS, "x-rolling-mode-acknowledged": "true"},
    )

    assert response.status_code == 200
    events = _lines(response)
    assert events[-1] == {"type": "done", "tokensUsed": 10, "tokenCount": settings.token_limit + 10}
    sent = model.calls[0]
    assert len(sent) == 2
    assert sent[1].content == "second question"
