from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Sequence

from pydantic import BaseModel, ConfigDict, Field

from canopy_core.errors import EmbeddingUnavailableError
from canopy_core.logging import get_logger
from canopy_core.providers.embeddings import embed_query
from canopy_core.search.keywords import extract_keywords
from canopy_core.search.ranking import (
    apply_precision_filter,
    deduplicate_candidates,
    drop_frames,
    fuse_streams,
)
from canopy_core.search.retriever import MultiSourceRetriever
from canopy_core.search.types import SEARCH_MODES, SearchOutcome, SearchQuery
from canopy_core.services.search_config import SearchServiceConfig
from canopy_core.stores.history import SearchHistoryStore

logger = get_logger(__name__)

ALLOWED_SEARCH_TYPES = frozenset(SEARCH_MODES)


class SearchValidationError(Exception):
    def __init__(
        self,
        detail: str,
        *,
        status_code: int = 400,
        code: str = "VALIDATION_ERROR",
    ) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code
        self.code = code


class SearchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    query: str | None = None
    workspace_id: str | None = Field(default=None, alias="workspaceId")
    search_types: list[str] | None = Field(default=None, alias="searchTypes")
    limit: int | None = Field(default=None, ge=1, le=100)
    include_frames: bool = Field(default=True, alias="includeFrames")


def resolve_search_types(payload: SearchRequest) -> tuple[str, ...]:
    if payload.search_types is None:
        return SEARCH_MODES
    resolved: list[str] = []
    for raw in payload.search_types:
        mode = str(raw).strip().lower()
        if mode not in ALLOWED_SEARCH_TYPES:
            raise SearchValidationError(
                f"Unsupported search type: {raw}",
                code="UNSUPPORTED_SEARCH_TYPE",
            )
        if mode not in resolved:
            resolved.append(mode)
    if not resolved:
        raise SearchValidationError(
            "searchTypes must not be empty",
            code="UNSUPPORTED_SEARCH_TYPE",
        )
    return tuple(resolved)


def build_search_query(
    payload: SearchRequest,
    config: SearchServiceConfig,
) -> SearchQuery:
    query_text = (payload.query or "").strip()
    workspace_id = (payload.workspace_id or "").strip()
    if not query_text or not workspace_id:
        raise SearchValidationError("query and workspaceId are required")
    limit = payload.limit if payload.limit is not None else config.default_limit
    if limit > config.max_limit:
        raise SearchValidationError(
            f"limit must be <= {config.max_limit}",
            code="LIMIT_TOO_LARGE",
        )
    return SearchQuery(
        query=query_text,
        workspace_id=workspace_id,
        search_types=resolve_search_types(payload),
        limit=limit,
        include_frames=payload.include_frames,
    )


def build_search_response(outcome: SearchOutcome, query: SearchQuery) -> dict[str, Any]:
    results = [item.to_payload() for item in outcome.results]
    if outcome.fallback:
        return {
            "results": results,
            "query": query.query,
            "search_type": outcome.history_search_type,
            "total": outcome.total,
            "has_semantic": False,
        }
    return {
        "results": results,
        "query": query.query,
        "search_types": list(outcome.search_types),
        "total": outcome.total,
        "has_semantic": outcome.has_semantic,
    }


class SearchEngine:
    """Runs one search end to end: embed, retrieve, rank, fuse, record."""

    def __init__(
        self,
        *,
        retriever: MultiSourceRetriever,
        history: SearchHistoryStore,
        embedding_dim: int,
        history_async: bool = False,
        embed: Callable[..., Sequence[float]] = embed_query,
    ) -> None:
        self.retriever = retriever
        self.history = history
        self.embedding_dim = embedding_dim
        self.history_async = history_async
        self.embed = embed
        self._history_executor = (
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="canopy-history")
            if history_async
            else None
        )

    def shutdown(self) -> None:
        if self._history_executor is not None:
            self._history_executor.shutdown(wait=True)
        self.retriever.shutdown()

    def _query_embedding(self, query: SearchQuery) -> list[float] | None:
        if not query.wants_vectors():
            return None
        try:
            return list(self.embed(query.query, dim=self.embedding_dim))
        except EmbeddingUnavailableError as exc:
            logger.warning(
                "Query embedding unavailable, continuing without it",
                extra={
                    "workspace_id": query.workspace_id,
                    "error_message": str(exc),
                },
            )
            return None

    def search(self, query: SearchQuery, *, user_id: str | None) -> SearchOutcome:
        timings: dict[str, float] = {}
        start = time.monotonic()
        keywords = extract_keywords(query.query)
        embedding = self._query_embedding(query)
        timings["embedding_ms"] = round((time.monotonic() - start) * 1000.0, 2)

        retrieval = self.retriever.retrieve(query, embedding)
        timings.update(retrieval.timings)

        documents = retrieval.documents
        if not retrieval.fallback:
            if not query.include_frames:
                documents = drop_frames(documents)
            documents = apply_precision_filter(
                deduplicate_candidates(documents), keywords
            )
        documents = self.retriever.attach_previews(documents)

        results = fuse_streams(
            documents,
            retrieval.scratches,
            retrieval.notes,
            retrieval.transcripts,
        )
        timings["total_ms"] = round((time.monotonic() - start) * 1000.0, 2)
        outcome = SearchOutcome(
            results=results,
            search_types=query.search_types,
            has_semantic=embedding is not None and not retrieval.fallback,
            fallback=retrieval.fallback,
            timings=timings,
        )
        self._record_history(query, user_id, outcome)
        return outcome

    def _record_history(
        self,
        query: SearchQuery,
        user_id: str | None,
        outcome: SearchOutcome,
    ) -> None:
        if not user_id:
            return
        kwargs = {
            "workspace_id": query.workspace_id,
            "user_id": user_id,
            "query": query.query,
            "result_count": outcome.total,
            "search_type": outcome.history_search_type,
        }
        if self._history_executor is not None:
            self._history_executor.submit(self.history.record, **kwargs)
            return
        self.history.record(**kwargs)


def load_search_overview(
    history: SearchHistoryStore,
    *,
    workspace_id: str,
    user_id: str | None,
    config: SearchServiceConfig,
) -> dict[str, Any]:
    return {
        "recentSearches": history.list_recent(
            workspace_id=workspace_id,
            user_id=user_id,
            limit=config.history_limit,
        ),
        "suggestedTags": history.suggested_tags(
            workspace_id=workspace_id,
            limit=config.suggested_tag_limit,
        ),
    }
