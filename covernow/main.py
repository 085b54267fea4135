"""
main.py — CoverNow FastAPI application entry point.

Start with: uvicorn covernow.main:app --reload --port 8000
(run from the repository root)
"""
import logging
import os
import subprocess
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from covernow.config import settings
from covernow.errors import CoverNowError, TokenLimitError

# ---------------------------------------------------------------------------
# Logging: configured before anything else
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan: startup & shutdown hooks
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      1. Apply pending Alembic migrations before serving
      2. Redis pool (only when research sessions live in Redis)
      3. Chat model, Tavily search, research LLM
      4. Research session repository + its sweeper task
      5. Register resources and compile the chat graph
    Shutdown:
      1. Stop the sweeper
      2. Close Redis pool
    """
    # --- 1. Schema: alembic upgrade head ---
    package_dir = os.path.dirname(os.path.abspath(__file__))
    result = subprocess.run(
        [sys.executable, "-m", "alembic", "upgrade", "head"],
        capture_output=True,
        text=True,
        cwd=package_dir,
    )
    if result.returncode != 0:
        logger.error("Alembic migration failed:\n%s", result.stderr)
        raise RuntimeError(f"Alembic migration failed: {result.stderr}")
    msg = result.stdout.strip() or "No pending migrations"
    logger.info("Alembic: %s", msg)

    # --- 2. Redis ---
    app.state.redis = None
    if settings.research_session_backend == "redis":
        from covernow.cache import create_redis_pool
        app.state.redis = await create_redis_pool()

    # --- 3. Models and search ---
    from langchain_mistralai import ChatMistralAI
    from covernow.agents.research_agent.llm_service import ResearchLLM
    from covernow.agents.research_agent.search import TavilySearch

    chat_llm = ChatMistralAI(
        model=settings.chat_model,
        mistral_api_key=settings.mistral_api_key,
        temperature=settings.llm_temperature,
    )
    search = TavilySearch(api_key=settings.tavily_api_key)
    if not search.enabled:
        logger.warning("TAVILY_API_KEY not set — web search and deep research will report failures")
    logger.info("Chat model %s / research model %s initialized", settings.chat_model, settings.research_model)

    # --- 4. Research sessions ---
    from covernow.agents.research_agent.orchestrator import ResearchOrchestrator
    from covernow.agents.research_agent.session_store import build_session_repository

    repository = build_session_repository(app.state.redis)
    repository.start()
    app.state.research_sessions = repository

    # --- 5. LangGraph chat loop: register resources and compile graph ---
    from covernow.graph.graph import build_graph, set_resources
    set_resources(
        chat_llm=chat_llm,
        search=search,
        research_orchestrator=ResearchOrchestrator(repository, search, ResearchLLM()),
    )
    app.state.chat_graph = build_graph()
    logger.info("CoverNow chat graph compiled and ready")

    logger.info("CoverNow v%s starting up", settings.app_version)
    yield

    # --- Shutdown ---
    await repository.stop()
    if app.state.redis is not None:
        await app.state.redis.aclose()
        logger.info("Redis connection pool closed")
    logger.info("CoverNow shutting down")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(
    title="CoverNow API",
    version=settings.app_version,
    description=(
        "Conversational insurance-advisory backend. Streams chat turns from an LLM "
        "that reads and updates the user's profile, researches the Indian insurance "
        "market and runs calculations through tools."
    ),
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# ---------------------------------------------------------------------------
# CORS middleware: restricted to frontend origins from settings
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error response helper
# ---------------------------------------------------------------------------
def _make_error_response(
    code: str,
    message: str,
    details: list[dict[str, Any]] | None = None,
    status_code: int = 500,
) -> JSONResponse:
    """Wrap an error in the {error: {code, message, details}} envelope."""
    body = {
        "error": {
            "code": code,
            "message": message,
            "details": details or [],
        }
    }
    return JSONResponse(status_code=status_code, content=body)


# CoverNowError.kind → (HTTP status, error code)
_KIND_TO_HTTP: dict[str, tuple[int, str]] = {
    "validation": (422, "VALIDATION_ERROR"),
    "not_found": (404, "NOT_FOUND"),
    "expired": (410, "EXPIRED"),
    "phase_order": (409, "CONFLICT"),
    "token_limit": (409, "TOKEN_LIMIT_REACHED"),
    "upstream": (502, "UPSTREAM_ERROR"),
}


# ---------------------------------------------------------------------------
# Global exception handlers: registered BEFORE routers
# ---------------------------------------------------------------------------
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Request body or query failed pydantic validation: 422 with one detail
    entry per offending field.
    """
    details = []
    for error in exc.errors():
        # 'body' prefix dropped so details read like profile.dob
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        details.append({"field": field or None, "issue": error["msg"]})
    return _make_error_response(
        code="VALIDATION_ERROR",
        message="Request validation failed",
        details=details,
        status_code=422,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """
    HTTPException → envelope, status mapped to an upper-snake code.
    """
    code_map = {
        400: "BAD_REQUEST",
        401: "UNAUTHORIZED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
        422: "VALIDATION_ERROR",
        429: "RATE_LIMITED",
        503: "SERVICE_UNAVAILABLE",
    }
    code = code_map.get(exc.status_code, f"HTTP_{exc.status_code}")
    return _make_error_response(
        code=code,
        message=str(exc.detail),
        status_code=exc.status_code,
    )


@app.exception_handler(CoverNowError)
async def covernow_error_handler(
    request: Request, exc: CoverNowError
) -> JSONResponse:
    """
    Maps the domain taxonomy onto HTTP. InputValidationError lands here too
    (CoverNowError precedes ValueError in its MRO) and becomes 422.
    """
    status_code, code = _KIND_TO_HTTP.get(exc.kind, (500, "INTERNAL_ERROR"))
    details: list[dict[str, Any]] = []
    if isinstance(exc, TokenLimitError):
        details = [{"tokenCount": exc.token_count, "tokenLimit": settings.token_limit}]
    return _make_error_response(
        code=code,
        message=exc.message,
        details=details,
        status_code=status_code,
    )


@app.exception_handler(ValueError)
async def value_error_handler(
    request: Request, exc: ValueError
) -> JSONResponse:
    """
    Plain ValueError from a service layer: answered as 422 VALIDATION_ERROR.
    """
    return _make_error_response(
        code="VALIDATION_ERROR",
        message=str(exc),
        status_code=422,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """
    Anything else: 500 INTERNAL_ERROR, traceback logged.
    With settings.debug the exception type and text go into details.
    """
    logger.error(
        "Unhandled exception on %s %s",
        request.method,
        request.url.path,
        exc_info=True,
    )
    if settings.debug:
        details = [{"issue": f"{type(exc).__name__}: {exc}"}]
        message = "An unexpected error occurred (debug details included)"
    else:
        details = []
        message = "An unexpected error occurred"
    return _make_error_response(
        code="INTERNAL_ERROR",
        message=message,
        details=details,
        status_code=500,
    )


# ---------------------------------------------------------------------------
# Health (no X-User-Id needed)
# ---------------------------------------------------------------------------
@app.get("/api/health", tags=["System"])
async def health_check() -> dict:
    """Returns service health status."""
    return {
        "status": "ok",
        "version": settings.app_version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ---------------------------------------------------------------------------
# Agent routers
# ---------------------------------------------------------------------------
from covernow.agents.chat_agent.routes import router as chat_agent_router  # noqa: E402
from covernow.agents.profile_agent.routes import router as profile_agent_router  # noqa: E402

app.include_router(profile_agent_router)
app.include_router(chat_agent_router)
