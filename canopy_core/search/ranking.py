from __future__ import annotations

from dataclasses import replace
from typing import Iterable, Sequence, TypeVar

from canopy_core.search.evidence import matches_color, matches_content
from canopy_core.search.keywords import KeywordSet
from canopy_core.search.types import (
    Candidate,
    DocumentCandidate,
    TranscriptCandidate,
    clamp_similarity,
)
from canopy_core.search.weights import (
    CONTENT_MISMATCH_PENALTY,
    MEDIA_VISUAL_BOOST,
    MIN_SIMILARITY,
    PDF_VISUAL_PENALTY,
)

_C = TypeVar("_C", bound=Candidate)


def sort_by_similarity(candidates: Iterable[_C]) -> list[_C]:
    return sorted(candidates, key=lambda item: item.similarity, reverse=True)


def deduplicate_candidates(candidates: Iterable[_C]) -> list[_C]:
    """Keep the highest-similarity candidate per document id."""
    best: dict[str, _C] = {}
    for item in candidates:
        existing = best.get(item.document_id)
        if existing is None or item.similarity > existing.similarity:
            best[item.document_id] = item
    return sort_by_similarity(best.values())


def drop_frames(candidates: Iterable[DocumentCandidate]) -> list[DocumentCandidate]:
    return [item for item in candidates if not item.is_frame()]


def adjusted_similarity(candidate: DocumentCandidate, keywords: KeywordSet) -> float | None:
    """Return the precision-adjusted similarity, or None when excluded."""
    base = candidate.retrieval_similarity
    if base is None:
        base = candidate.similarity
    score = float(base)

    if keywords.is_visual_search():
        if candidate.is_pdf():
            score *= PDF_VISUAL_PENALTY
        if candidate.is_image_or_video():
            score *= MEDIA_VISUAL_BOOST

    if keywords.has_colors and not matches_color(
        candidate, keywords.colors, keywords.objects
    ):
        return None

    if keywords.has_objects and not matches_content(candidate, keywords.objects):
        score *= CONTENT_MISMATCH_PENALTY

    score = min(score, 1.0)
    if score < MIN_SIMILARITY:
        return None
    return score


def apply_precision_filter(
    candidates: Sequence[DocumentCandidate],
    keywords: KeywordSet,
) -> list[DocumentCandidate]:
    """Re-score primary candidates and drop those failing an explicit requirement.

    Adjustments always start from the retrieval similarity, so ranking an
    already-ranked list yields the same list.
    """
    ranked: list[DocumentCandidate] = []
    for item in candidates:
        score = adjusted_similarity(item, keywords)
        if score is None:
            continue
        ranked.append(replace(item, similarity=clamp_similarity(score)))
    return sort_by_similarity(ranked)


def unique_by_id(candidates: Iterable[_C]) -> list[_C]:
    seen: set[str] = set()
    unique: list[_C] = []
    for item in candidates:
        if item.id in seen:
            continue
        seen.add(item.id)
        unique.append(item)
    return unique


def fuse_streams(
    documents: Sequence[Candidate],
    scratches: Sequence[Candidate],
    notes: Sequence[Candidate],
    transcripts: Sequence[TranscriptCandidate],
) -> list[Candidate]:
    combined: list[Candidate] = [
        *documents,
        *scratches,
        *notes,
        *unique_by_id(transcripts),
    ]
    return sort_by_similarity(combined)
