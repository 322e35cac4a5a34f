"""
FastAPI Conflict Check API Server

Provides REST API endpoints for conflict-of-interest checks over the case
store, plus the name helpers used by the case intake screens.

Usage:
    uvicorn api.server:app --reload --port 8000
"""

import os
import time
import logging
from datetime import datetime, timezone
from typing import Generator, List, Optional

from fastapi import FastAPI, HTTPException, Depends, Security
from fastapi.security import APIKeyHeader
from sqlalchemy.orm import Session

from api.models import (
    ConflictSearchRequest,
    ConflictCheckRequest,
    ConflictReportResponse,
    ConflictHistoryItem,
    NameVariantsRequest,
    NameVariantsResponse,
    SimilarNamesRequest,
    SimilarNamesResponse,
    NameSuggestionResponse,
    CacheStatsResponse,
    CacheClearResponse,
    HealthResponse,
    ErrorResponse,
)
from api.middleware import (
    setup_cors,
    setup_exception_handlers,
    RequestLoggingMiddleware,
)
from config_manager import get_config, ConfigManager, ConfigurationError
from conflict_cache import ConflictCacheService
from conflict_models import ConflictReport
from conflict_service import ConflictCheckService
from database.connection import DatabaseSessionProvider, get_settings, init_db, close_db
from database.monitoring import get_db_metrics
from database.repositories import SqlCaseRepository, CaseNotFoundError
from log_utils import setup_logging, sanitize_for_logging
from matcher import rank_name_candidates
from transliterate import detect_script, generate_variants, normalize_party_name

logger = logging.getLogger(__name__)

# Environment variables with defaults
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))
CONFIG_PATH = os.getenv("CONFIG_PATH")  # None: search the default locations
CREATE_TABLES = os.getenv("DB_CREATE_TABLES", "false").lower() == "true"
API_KEY = os.getenv("API_KEY", "")  # Required for authenticated endpoints

# Global state
_config: Optional[ConfigManager] = None
_cache: Optional[ConflictCacheService] = None
_db_provider: Optional[DatabaseSessionProvider] = None
_startup_time: Optional[datetime] = None

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

AUTH_RESPONSES = {
    401: {"model": ErrorResponse, "description": "Missing API key"},
    403: {"model": ErrorResponse, "description": "Invalid API key"},
}


async def verify_api_key(api_key: Optional[str] = Security(api_key_header)) -> str:
    """Verify API key for protected endpoints.

    If API_KEY environment variable is not set, authentication is disabled.
    """
    if not API_KEY:
        # API key not configured - allow all requests (development mode)
        return "dev-mode"

    if not api_key:
        raise HTTPException(
            status_code=401, detail="Missing API key. Provide X-API-Key header."
        )

    if api_key != API_KEY:
        raise HTTPException(status_code=403, detail="Invalid API key")

    return api_key


def get_config_instance() -> ConfigManager:
    """Dependency to get the config instance."""
    global _config
    if _config is None:
        _config = get_config(CONFIG_PATH)
    return _config


def get_cache() -> ConflictCacheService:
    """Dependency to get the process-wide cache service."""
    if _cache is None:
        raise HTTPException(
            status_code=503, detail="Cache not initialized. Service is starting up."
        )
    return _cache


def get_db_session() -> Generator[Session, None, None]:
    """Dependency yielding a session from the global provider."""
    if _db_provider is None:
        raise HTTPException(
            status_code=503, detail="Database not initialized. Service is starting up."
        )
    yield from _db_provider.get_session()


# Create FastAPI application
app = FastAPI(
    title="Conflict Check API",
    description="API for detecting conflicts of interest between legal cases",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# Setup middleware
setup_cors(app)
app.add_middleware(RequestLoggingMiddleware)
setup_exception_handlers(app)


@app.on_event("startup")
async def startup():
    """Load configuration, start the caches and connect to the case store."""
    global _config, _cache, _db_provider, _startup_time

    start_time = time.time()

    try:
        _config = get_config(CONFIG_PATH)
        setup_logging(_config.logging)
        logger.info("Starting Conflict Check API...")
        logger.info(f"✓ Configuration loaded from {_config.config_path}")

        _cache = ConflictCacheService(_config.cache)
        _cache.start()
        logger.info(f"✓ Caches ready (enabled={_cache.enabled})")

        _db_provider = init_db()
        if CREATE_TABLES or get_settings().is_sqlite:
            _db_provider.create_tables()
        logger.info("✓ Case store connected")

        _startup_time = datetime.now(timezone.utc)
        logger.info("✓ API ready in %.2f seconds", time.time() - start_time)

    except ConfigurationError as e:
        logger.error(f"✗ Configuration error: {e}")
        raise
    except Exception as e:
        logger.error(f"✗ Startup error: {e}")
        raise


@app.on_event("shutdown")
async def shutdown():
    """Stop the cache sweep and release database connections."""
    global _db_provider
    logger.info("Shutting down Conflict Check API...")
    if _cache is not None:
        _cache.stop()
    close_db()
    _db_provider = None


def _report_response(report: ConflictReport, start_time: float,
                     case_id: Optional[int] = None) -> ConflictReportResponse:
    """Transform an engine report to the API response model."""
    return ConflictReportResponse(
        **report.to_dict(),
        case_id=case_id,
        processing_time_ms=int((time.time() - start_time) * 1000),
    )


@app.post(
    "/api/v1/conflicts/check/{case_id}",
    response_model=ConflictReportResponse,
    responses={
        **AUTH_RESPONSES,
        200: {"model": ConflictReportResponse, "description": "Check completed"},
        404: {"model": ErrorResponse, "description": "Case not found"},
        500: {"model": ErrorResponse, "description": "Internal server error"},
    },
    summary="Check a stored case",
    description="Check a stored case against every other case and record the result",
)
def check_case(
    case_id: int,
    request: Optional[ConflictCheckRequest] = None,
    session: Session = Depends(get_db_session),
    config: ConfigManager = Depends(get_config_instance),
    cache: ConflictCacheService = Depends(get_cache),
    api_key: str = Depends(verify_api_key),
):
    """Run a conflict check for a stored case.

    The outcome is appended to the case's check history, including
    error-level reports.
    """
    start_time = time.time()
    repository = SqlCaseRepository(session)

    snapshot = repository.get_case_snapshot(case_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"Case not found: {case_id}")

    service = ConflictCheckService(repository, config=config, cache=cache)
    report = service.check_conflicts(snapshot)

    checked_by = request.checked_by if request else None
    repository.record_check(case_id, report, checked_by=checked_by)
    session.commit()

    logger.info(
        "Manual conflict check: case_id=%d level=%s checked_by=%s",
        case_id, report.level.value, checked_by
    )
    return _report_response(report, start_time, case_id=case_id)


@app.post(
    "/api/v1/conflicts/search",
    response_model=ConflictReportResponse,
    responses={
        **AUTH_RESPONSES,
        200: {"model": ConflictReportResponse, "description": "Search completed"},
        422: {"model": ErrorResponse, "description": "Validation error"},
        500: {"model": ErrorResponse, "description": "Internal server error"},
    },
    summary="Search conflicts for a prospective case",
    description="Check a client/opponent pair that is not stored yet",
)
def search_conflicts(
    request: ConflictSearchRequest,
    session: Session = Depends(get_db_session),
    config: ConfigManager = Depends(get_config_instance),
    cache: ConflictCacheService = Depends(get_cache),
    api_key: str = Depends(verify_api_key),
):
    """Ad-hoc conflict search; nothing is recorded."""
    start_time = time.time()
    service = ConflictCheckService(SqlCaseRepository(session), config=config, cache=cache)

    report = service.search(
        client_name=request.client_name,
        client_type=request.client_type,
        client_company_id=request.client_inn,
        client_person_id=request.client_pinfl,
        opponent_name=request.opponent_name,
        opponent_type=request.opponent_type,
        opponent_company_id=request.opponent_inn,
        opponent_person_id=request.opponent_pinfl,
        affiliates=request.affiliates.to_raw() if request.affiliates else None,
        lawyer_ids=request.lawyer_ids,
    )

    logger.info(
        "Conflict search: client=%s level=%s",
        sanitize_for_logging(request.client_name or "N/A"),
        report.level.value,
    )
    return _report_response(report, start_time)


@app.get(
    "/api/v1/conflicts/history/{case_id}",
    response_model=List[ConflictHistoryItem],
    responses={
        **AUTH_RESPONSES,
        404: {"model": ErrorResponse, "description": "Case not found"},
    },
    summary="Conflict check history",
    description="Recorded checks of a stored case, newest first",
)
def conflict_history(
    case_id: int,
    session: Session = Depends(get_db_session),
    api_key: str = Depends(verify_api_key),
):
    try:
        history = SqlCaseRepository(session).get_check_history(case_id)
    except CaseNotFoundError:
        raise HTTPException(status_code=404, detail=f"Case not found: {case_id}")
    return [ConflictHistoryItem(**item) for item in history]


@app.post(
    "/api/v1/names/variants",
    response_model=NameVariantsResponse,
    summary="Name spellings",
    description="Cyrillic/Latin spellings and the comparison form of a name",
)
async def name_variants(
    request: NameVariantsRequest,
    config: ConfigManager = Depends(get_config_instance),
    api_key: str = Depends(verify_api_key),
):
    return NameVariantsResponse(
        name=request.name,
        script=detect_script(request.name),
        normalized=normalize_party_name(request.name, config.matching.strip_legal_forms),
        variants=sorted(generate_variants(request.name)),
    )


@app.post(
    "/api/v1/names/similar",
    response_model=SimilarNamesResponse,
    summary="Rank similar names",
    description="Rank candidate names against a query with fuzzy token matching",
)
async def similar_names(
    request: SimilarNamesRequest,
    config: ConfigManager = Depends(get_config_instance),
    api_key: str = Depends(verify_api_key),
):
    suggestions = rank_name_candidates(
        request.query, request.candidates, config=config, limit=request.limit
    )
    return SimilarNamesResponse(
        query=request.query,
        suggestions=[
            NameSuggestionResponse(name=s.name, score=s.score, tier=s.tier)
            for s in suggestions
        ],
    )


@app.get(
    "/api/v1/cache/stats",
    response_model=CacheStatsResponse,
    responses={
        **AUTH_RESPONSES,
    },
    summary="Cache statistics",
)
async def cache_stats(
    cache: ConflictCacheService = Depends(get_cache),
    api_key: str = Depends(verify_api_key),
):
    return CacheStatsResponse(cache=cache.stats(), database=get_db_metrics())


@app.post(
    "/api/v1/cache/clear",
    response_model=CacheClearResponse,
    responses={
        **AUTH_RESPONSES,
    },
    summary="Clear caches",
    description="Drop all cached conflict reports and lawyer names",
)
async def clear_cache(
    cache: ConflictCacheService = Depends(get_cache),
    api_key: str = Depends(verify_api_key),
):
    cleared = cache.clear()
    logger.info("Caches cleared: %s", cleared)
    return CacheClearResponse(**cleared)


@app.get(
    "/api/v1/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Service status, case store connectivity and uptime",
)
def health_check(config: ConfigManager = Depends(get_config_instance)):
    """Always returns HTTP 200; problems are reported in the body."""
    try:
        if _db_provider is None:
            database = "not_initialized"
        else:
            database = "connected" if _db_provider.health_check() else "unavailable"

        uptime_seconds = None
        if _startup_time:
            uptime = datetime.now(timezone.utc) - _startup_time
            uptime_seconds = int(uptime.total_seconds())

        return HealthResponse(
            status="healthy" if database == "connected" else "degraded",
            database=database,
            algorithm_version=config.algorithm.version,
            cache_enabled=bool(_cache and _cache.enabled),
            uptime_seconds=uptime_seconds,
        )
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return HealthResponse(
            status="error",
            database="unknown",
            algorithm_version="unknown",
            cache_enabled=False,
            error_message=str(e),
        )


# Root redirect to docs
@app.get("/", include_in_schema=False)
async def root():
    """Redirect root to API documentation."""
    from fastapi.responses import RedirectResponse

    return RedirectResponse(url="/api/docs")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=API_HOST, port=API_PORT)
