from canopy_core.search.evidence import matches_color, matches_content
from canopy_core.search.keywords import KeywordSet, extract_keywords
from canopy_core.search.ranking import (
    apply_precision_filter,
    deduplicate_candidates,
    fuse_streams,
)
from canopy_core.search.types import (
    Candidate,
    DetailedAnalysis,
    DocumentCandidate,
    NoteCandidate,
    ScratchCandidate,
    SearchOutcome,
    SearchQuery,
    TranscriptCandidate,
)

__all__ = [
    "Candidate",
    "DetailedAnalysis",
    "DocumentCandidate",
    "KeywordSet",
    "NoteCandidate",
    "ScratchCandidate",
    "SearchOutcome",
    "SearchQuery",
    "TranscriptCandidate",
    "apply_precision_filter",
    "deduplicate_candidates",
    "extract_keywords",
    "fuse_streams",
    "matches_color",
    "matches_content",
]
