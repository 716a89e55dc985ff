from __future__ import annotations

from canopy_core.search.types import (
    SOURCE_DOCUMENT,
    SOURCE_LINK_TRANSCRIPT,
    SOURCE_NOTE,
    SOURCE_SCRATCH,
)

PATH_PRIMARY = "primary"
PATH_FALLBACK = "fallback"

# Fixed similarity assigned to hits from sources that have no ranking signal
# of their own, keyed by retrieval path.
SOURCE_BASE_SIMILARITY: dict[str, dict[str, float]] = {
    SOURCE_DOCUMENT: {PATH_FALLBACK: 0.5},
    SOURCE_SCRATCH: {PATH_PRIMARY: 0.75, PATH_FALLBACK: 0.7},
    SOURCE_NOTE: {PATH_PRIMARY: 0.75, PATH_FALLBACK: 0.7},
    SOURCE_LINK_TRANSCRIPT: {PATH_PRIMARY: 0.8, PATH_FALLBACK: 0.7},
}

# Lexical hits inside the hybrid provider carry a flat score.
LEXICAL_MATCH_SIMILARITY = 0.5

# Precision ranker weights.
PDF_VISUAL_PENALTY = 0.3
MEDIA_VISUAL_BOOST = 1.1
CONTENT_MISMATCH_PENALTY = 0.6
MIN_SIMILARITY = 0.35


def base_similarity(source_kind: str, path: str) -> float:
    try:
        return SOURCE_BASE_SIMILARITY[source_kind][path]
    except KeyError as exc:
        raise ValueError(
            f"No base similarity configured for {source_kind} on {path} path"
        ) from exc
