from __future__ import annotations

import os
from dataclasses import dataclass

from canopy_core.config import parse_bool


@dataclass(frozen=True)
class SearchServiceConfig:
    max_search_bytes: int
    slow_search_ms: int
    log_search_timings: bool
    source_timeout_s: float
    retriever_workers: int
    history_async: bool
    history_limit: int
    suggested_tag_limit: int
    default_limit: int
    max_limit: int

    @classmethod
    def from_env(cls) -> "SearchServiceConfig":
        def _parse_int(name: str, default: int, *, minimum: int | None = None) -> int:
            raw = os.getenv(name, str(default))
            try:
                value = int(raw)
            except ValueError:
                value = default
            if minimum is not None and value < minimum:
                return minimum
            return value

        def _parse_float(
            name: str,
            default: float,
            *,
            minimum: float | None = None,
        ) -> float:
            raw = os.getenv(name, str(default))
            try:
                value = float(raw)
            except ValueError:
                value = default
            if minimum is not None and value < minimum:
                return minimum
            return value

        max_limit = _parse_int("SEARCH_MAX_LIMIT", 100, minimum=1)
        default_limit = min(_parse_int("SEARCH_DEFAULT_LIMIT", 30, minimum=1), max_limit)
        return cls(
            max_search_bytes=_parse_int("MAX_SEARCH_BYTES", 64_000, minimum=1),
            slow_search_ms=_parse_int("SLOW_SEARCH_MS", 2000, minimum=0),
            log_search_timings=parse_bool(os.getenv("LOG_SEARCH_TIMINGS"), False),
            source_timeout_s=_parse_float("SEARCH_SOURCE_TIMEOUT_S", 3.0, minimum=0.1),
            retriever_workers=_parse_int("SEARCH_RETRIEVER_WORKERS", 8, minimum=1),
            history_async=parse_bool(os.getenv("SEARCH_HISTORY_ASYNC"), False),
            history_limit=_parse_int("SEARCH_HISTORY_LIMIT", 20, minimum=1),
            suggested_tag_limit=_parse_int("SEARCH_SUGGESTED_TAGS", 10, minimum=0),
            default_limit=default_limit,
            max_limit=max_limit,
        )
