from __future__ import annotations

import os
import threading
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from fastapi import FastAPI, Header, HTTPException, Query, Request

from canopy_core.auth.identity import resolve_user_id
from canopy_core.config import get_config, parse_bool
from canopy_core.errors import SearchFailedError
from canopy_core.logging import configure_logging, get_logger
from canopy_core.search.retriever import MultiSourceRetriever
from canopy_core.services.fastapi_scaffolding import (
    HealthResponse,
    add_correlation_id_middleware,
    add_unhandled_error_handler,
    apply_cors_middleware,
    build_health_response,
    service_version,
)
from canopy_core.services.search_config import SearchServiceConfig
from canopy_core.services.search_service_core import (
    SearchEngine,
    SearchRequest,
    SearchValidationError,
    build_search_query,
    build_search_response,
    load_search_overview,
)
from canopy_core.storage.uri_signer import load_uri_signer
from canopy_core.stores.database import Database, get_database
from canopy_core.stores.history import SearchHistoryStore
from canopy_core.stores.workspace import WorkspaceStore

SERVICE_NAME = "canopy-search"

configure_logging(
    service=SERVICE_NAME,
    env=os.getenv("ENV", "local"),
    version=service_version(),
)
logger = get_logger(__name__)


@dataclass
class ServiceState:
    config: SearchServiceConfig
    database: Database
    workspace: WorkspaceStore
    history: SearchHistoryStore
    engine: SearchEngine


_STATE: ServiceState | None = None
_STATE_LOCK = threading.Lock()


def _build_state() -> ServiceState:
    config = get_config()
    search_config = SearchServiceConfig.from_env()
    database = get_database(config.database_path)
    workspace = WorkspaceStore(database)
    history = SearchHistoryStore(database)
    retriever = MultiSourceRetriever(
        workspace,
        timeout_s=search_config.source_timeout_s,
        max_workers=search_config.retriever_workers,
        signer_loader=load_uri_signer,
        signed_url_ttl_s=config.signed_url_ttl_s,
    )
    engine = SearchEngine(
        retriever=retriever,
        history=history,
        embedding_dim=config.embedding_dim,
        history_async=search_config.history_async,
    )
    return ServiceState(
        config=search_config,
        database=database,
        workspace=workspace,
        history=history,
        engine=engine,
    )


def get_state() -> ServiceState:
    global _STATE
    with _STATE_LOCK:
        if _STATE is None:
            _STATE = _build_state()
        return _STATE


def reset_state() -> None:
    global _STATE
    with _STATE_LOCK:
        if _STATE is not None:
            _STATE.engine.shutdown()
        _STATE = None


@asynccontextmanager
async def lifespan(_: FastAPI):
    state = get_state()
    logger.info(
        "Search service started",
        extra={"database_path": state.database.path},
    )
    yield
    reset_state()


app = FastAPI(lifespan=lifespan)
apply_cors_middleware(app)
add_correlation_id_middleware(app)
add_unhandled_error_handler(app, logger)


def _check_body_size(request: Request, max_bytes: int) -> None:
    raw = request.headers.get("content-length")
    if not raw:
        return
    try:
        content_length = int(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid content-length") from exc
    if content_length > max_bytes:
        raise HTTPException(status_code=413, detail="Request too large")


def _log_timings(
    *,
    state: ServiceState,
    trace_id: str,
    corr: str | None,
    workspace_id: str,
    duration_ms: int,
    timings: dict[str, float],
) -> None:
    slow = duration_ms >= state.config.slow_search_ms
    if not (slow or state.config.log_search_timings):
        return
    log_fn = logger.warning if slow else logger.info
    log_fn(
        "Slow search" if slow else "Search timings",
        extra={
            "request_id": trace_id,
            "correlation_id": corr,
            "workspace_id": workspace_id,
            "duration_ms": duration_ms,
            "timings": timings,
        },
    )


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return build_health_response(SERVICE_NAME)


@app.post("/search")
def search(
    request: Request,
    payload: SearchRequest,
    x_request_id: str | None = Header(default=None),
) -> dict[str, Any]:
    start_time = time.monotonic()
    state = get_state()
    _check_body_size(request, state.config.max_search_bytes)

    try:
        query = build_search_query(payload, state.config)
    except SearchValidationError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc

    trace_id = x_request_id or str(uuid.uuid4())
    corr = getattr(request.state, "correlation_id", None)
    user_id = resolve_user_id(request.headers)

    try:
        outcome = state.engine.search(query, user_id=user_id)
    except SearchFailedError as exc:
        logger.error(
            "Search failed",
            exc_info=True,
            extra={
                "request_id": trace_id,
                "correlation_id": corr,
                "workspace_id": query.workspace_id,
                "error_message": str(exc),
            },
        )
        raise HTTPException(status_code=500, detail="Search failed") from exc
    except Exception as exc:
        logger.error(
            "Search endpoint error",
            exc_info=True,
            extra={
                "request_id": trace_id,
                "correlation_id": corr,
                "workspace_id": query.workspace_id,
                "error_message": str(exc),
            },
        )
        raise HTTPException(status_code=500, detail="Internal server error") from exc

    duration_ms = int((time.monotonic() - start_time) * 1000)
    logger.info(
        "Search completed",
        extra={
            "request_id": trace_id,
            "correlation_id": corr,
            "workspace_id": query.workspace_id,
            "search_path": "fallback" if outcome.fallback else "primary",
            "search_types": ",".join(query.search_types),
            "has_semantic": outcome.has_semantic,
            "result_count": outcome.total,
            "limit": query.limit,
            "duration_ms": duration_ms,
        },
    )
    _log_timings(
        state=state,
        trace_id=trace_id,
        corr=corr,
        workspace_id=query.workspace_id,
        duration_ms=duration_ms,
        timings=outcome.timings,
    )
    return build_search_response(outcome, query)


@app.get("/search")
def search_overview(
    request: Request,
    workspace_id: str | None = Query(default=None, alias="workspaceId"),
) -> dict[str, Any]:
    if not workspace_id or not workspace_id.strip():
        raise HTTPException(status_code=400, detail="workspaceId is required")
    state = get_state()
    user_id = resolve_user_id(request.headers)
    try:
        return load_search_overview(
            state.history,
            workspace_id=workspace_id.strip(),
            user_id=user_id,
            config=state.config,
        )
    except Exception as exc:
        logger.error(
            "Search suggestions error",
            exc_info=True,
            extra={
                "correlation_id": getattr(request.state, "correlation_id", None),
                "workspace_id": workspace_id,
                "error_message": str(exc),
            },
        )
        raise HTTPException(status_code=500, detail="Internal server error") from exc


@app.delete("/search")
def delete_search_history(
    request: Request,
    entry_id: str | None = Query(default=None, alias="id"),
    workspace_id: str | None = Query(default=None, alias="workspaceId"),
    clear_all: str | None = Query(default=None, alias="clearAll"),
) -> dict[str, bool]:
    state = get_state()
    user_id = resolve_user_id(request.headers)
    try:
        if entry_id:
            state.history.delete(entry_id=entry_id, user_id=user_id)
        elif workspace_id and parse_bool(clear_all, False):
            state.history.clear(workspace_id=workspace_id, user_id=user_id)
        else:
            raise HTTPException(
                status_code=400,
                detail="id or workspaceId with clearAll=true is required",
            )
    except HTTPException:
        raise
    except Exception as exc:
        logger.error(
            "Search history delete error",
            exc_info=True,
            extra={
                "correlation_id": getattr(request.state, "correlation_id", None),
                "workspace_id": workspace_id,
                "error_message": str(exc),
            },
        )
        raise HTTPException(status_code=500, detail="Internal server error") from exc
    return {"success": True}
