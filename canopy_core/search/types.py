from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from typing import Any, ClassVar, Iterable, Mapping

SOURCE_DOCUMENT = "document"
SOURCE_SCRATCH = "scratch"
SOURCE_NOTE = "note"
SOURCE_LINK_TRANSCRIPT = "link_transcript"

MODE_SEMANTIC = "semantic"
MODE_TEXT = "text"
MODE_VISUAL = "visual"
MODE_TRANSCRIPT = "transcript"

SEARCH_MODES = (MODE_SEMANTIC, MODE_TEXT, MODE_VISUAL)
VECTOR_MODES = frozenset({MODE_SEMANTIC, MODE_VISUAL})


def clamp_similarity(value: float) -> float:
    if value < 0.0:
        return 0.0
    if value > 1.0:
        return 1.0
    return float(value)


@dataclass(frozen=True)
class SearchQuery:
    query: str
    workspace_id: str
    search_types: tuple[str, ...] = SEARCH_MODES
    limit: int = 30
    include_frames: bool = True

    def wants_vectors(self) -> bool:
        return any(mode in VECTOR_MODES for mode in self.search_types)


@dataclass(frozen=True)
class ColorEvidence:
    color: str = ""
    shade: str = ""
    location: str = ""


@dataclass(frozen=True)
class ClothingEvidence:
    type: str = ""
    color: str = ""
    shade: str = ""


@dataclass(frozen=True)
class ObjectEvidence:
    name: str = ""


@dataclass(frozen=True)
class DetailedAnalysis:
    """Structured media metadata written by the offline media analyzer."""

    colors: tuple[ColorEvidence, ...] = ()
    clothing: tuple[ClothingEvidence, ...] = ()
    objects: tuple[ObjectEvidence, ...] = ()

    @classmethod
    def from_payload(cls, payload: Any) -> DetailedAnalysis | None:
        if payload is None:
            return None
        if isinstance(payload, DetailedAnalysis):
            return payload
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except (TypeError, ValueError):
                return None
        if not isinstance(payload, Mapping):
            return None
        return cls(
            colors=tuple(
                ColorEvidence(
                    color=_text(entry.get("color")),
                    shade=_text(entry.get("shade")),
                    location=_text(entry.get("location")),
                )
                for entry in _entries(payload.get("colors"))
            ),
            clothing=tuple(
                ClothingEvidence(
                    type=_text(entry.get("type")),
                    color=_text(entry.get("color")),
                    shade=_text(entry.get("shade")),
                )
                for entry in _entries(payload.get("clothing"))
            ),
            objects=tuple(
                ObjectEvidence(name=_text(entry.get("name")))
                for entry in _entries(payload.get("objects"))
            ),
        )


def _entries(value: Any) -> Iterable[Mapping[str, Any]]:
    if not isinstance(value, list):
        return ()
    return [item for item in value if isinstance(item, Mapping)]


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


@dataclass
class Candidate:
    """Common projection shared by every retrieval hit."""

    source_kind: ClassVar[str] = ""
    result_type: ClassVar[str] = ""

    id: str
    document_id: str
    title: str
    description: str | None
    similarity: float
    search_mode: str

    def __post_init__(self) -> None:
        self.similarity = clamp_similarity(self.similarity)

    def with_similarity(self, value: float) -> Candidate:
        return replace(self, similarity=clamp_similarity(value))

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "document_id": self.document_id,
            "title": self.title,
            "description": self.description,
            "similarity": round(self.similarity, 6),
            "search_type": self.search_mode,
            "result_type": self.result_type,
            "source_kind": self.source_kind,
        }
        payload.update(self._extra_payload())
        return payload

    def _extra_payload(self) -> dict[str, Any]:
        return {}


@dataclass
class DocumentCandidate(Candidate):
    source_kind: ClassVar[str] = SOURCE_DOCUMENT
    result_type: ClassVar[str] = "document"

    mime_type: str | None = None
    tags: tuple[str, ...] | None = None
    ai_summary: str | None = None
    searchable_text: str | None = None
    detailed_analysis: DetailedAnalysis | None = None
    storage_path: str | None = None
    thumbnail_path: str | None = None
    preview_url: str | None = None
    thumbnail_url: str | None = None
    start_time: float | None = None
    created_at: str | None = None
    # Similarity as returned by retrieval, before precision adjustments.
    retrieval_similarity: float | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.retrieval_similarity is None:
            self.retrieval_similarity = self.similarity

    def is_pdf(self) -> bool:
        return self.mime_type == "application/pdf"

    def is_image_or_video(self) -> bool:
        mime = self.mime_type or ""
        return mime.startswith("image/") or mime.startswith("video/")

    def is_frame(self) -> bool:
        return self.start_time is not None

    def _extra_payload(self) -> dict[str, Any]:
        return {
            "mime_type": self.mime_type,
            "tags": list(self.tags) if self.tags is not None else None,
            "ai_summary": self.ai_summary,
            "previewUrl": self.preview_url,
            "thumbnailUrl": self.thumbnail_url,
            "start_time": self.start_time,
            "created_at": self.created_at,
        }


@dataclass
class ScratchCandidate(Candidate):
    source_kind: ClassVar[str] = SOURCE_SCRATCH
    result_type: ClassVar[str] = "scratch"

    searchable_text: str | None = None
    thumbnail_url: str | None = None

    def _extra_payload(self) -> dict[str, Any]:
        return {"thumbnailUrl": self.thumbnail_url}


@dataclass
class NoteCandidate(Candidate):
    source_kind: ClassVar[str] = SOURCE_NOTE
    result_type: ClassVar[str] = "note"

    searchable_text: str | None = None


@dataclass
class TranscriptCandidate(Candidate):
    source_kind: ClassVar[str] = SOURCE_LINK_TRANSCRIPT
    result_type: ClassVar[str] = "link"

    segment_id: str | None = None
    url: str | None = None
    thumbnail_url: str | None = None
    video_url: str | None = None
    start_time: float | None = None
    end_time: float | None = None

    def _extra_payload(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "thumbnailUrl": self.thumbnail_url,
            "thumbnail_url": self.thumbnail_url,
            "video_url": self.video_url,
            "start_time": self.start_time,
        }


@dataclass(frozen=True)
class SearchOutcome:
    """Fused result of one executed search."""

    results: list[Candidate]
    search_types: tuple[str, ...]
    has_semantic: bool
    fallback: bool = False
    timings: dict[str, float] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def history_search_type(self) -> str:
        if self.fallback:
            return "text_fallback"
        return ",".join(self.search_types)
