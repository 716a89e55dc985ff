from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Sequence

from canopy_core.errors import EmbeddingUnavailableError, ValidationError
from canopy_core.logging import get_logger
from canopy_core.search.types import (
    MODE_SEMANTIC,
    MODE_TEXT,
    MODE_TRANSCRIPT,
    MODE_VISUAL,
    VECTOR_MODES,
    DetailedAnalysis,
    DocumentCandidate,
    NoteCandidate,
    ScratchCandidate,
    TranscriptCandidate,
)
from canopy_core.search.weights import LEXICAL_MATCH_SIMILARITY
from canopy_core.stores.database import Database

logger = get_logger(__name__)

_DOCUMENT_COLUMNS = (
    "d.id, d.title, d.description, d.mime_type, d.tags, d.ai_summary, "
    "d.searchable_text, d.detailed_analysis, d.storage_path, d.thumbnail_path, "
    "d.created_at"
)


def keyword_pattern(query_text: str) -> str:
    escaped = (
        query_text.strip()
        .replace("\\", "\\\\")
        .replace("%", "\\%")
        .replace("_", "\\_")
    )
    return f"%{escaped}%"


def format_time(seconds: float | None) -> str:
    total = max(0.0, float(seconds or 0.0))
    mins = int(total // 60)
    secs = int(total % 60)
    return f"{mins}:{secs:02d}"


def _iso(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _document_from_row(
    row: Sequence[Any],
    *,
    similarity: float,
    search_mode: str,
) -> DocumentCandidate:
    (
        doc_id,
        title,
        description,
        mime_type,
        tags,
        ai_summary,
        searchable_text,
        detailed_analysis,
        storage_path,
        thumbnail_path,
        created_at,
    ) = row[:11]
    return DocumentCandidate(
        id=str(doc_id),
        document_id=str(doc_id),
        title=title or "",
        description=description,
        similarity=float(similarity),
        search_mode=search_mode,
        mime_type=mime_type,
        tags=tuple(tags) if tags is not None else None,
        ai_summary=ai_summary,
        searchable_text=searchable_text,
        detailed_analysis=DetailedAnalysis.from_payload(detailed_analysis),
        storage_path=storage_path,
        thumbnail_path=thumbnail_path,
        created_at=_iso(created_at),
    )


class WorkspaceStore:
    """Workspace items plus the hybrid (vector + lexical) search over them."""

    def __init__(self, db: Database) -> None:
        self.db = db

    # Hybrid search

    def search_workspace(
        self,
        *,
        workspace_id: str,
        query: str,
        embedding: Sequence[float] | None,
        search_types: Sequence[str],
        limit: int,
    ) -> list[DocumentCandidate]:
        """Run every requested mode and return one list ordered by similarity.

        Vector modes require an embedding; without one the call fails so the
        caller can take its lexical fallback path.
        """
        modes = set(search_types)
        if modes & VECTOR_MODES and not embedding:
            raise EmbeddingUnavailableError(
                "Vector search requested without a query embedding"
            )
        results: list[DocumentCandidate] = []
        if MODE_SEMANTIC in modes and embedding:
            results.extend(self._semantic_documents(workspace_id, embedding, limit))
        if MODE_VISUAL in modes and embedding:
            results.extend(self._visual_documents(workspace_id, embedding, limit))
            results.extend(self._visual_frames(workspace_id, embedding, limit))
        if MODE_TEXT in modes:
            results.extend(
                self._lexical_documents(
                    workspace_id,
                    query,
                    limit,
                    similarity=LEXICAL_MATCH_SIMILARITY,
                    search_mode=MODE_TEXT,
                    include_summary=True,
                )
            )
        results.sort(key=lambda item: item.similarity, reverse=True)
        return results[: max(0, int(limit))]

    def _vector_rows(
        self,
        column: str,
        workspace_id: str,
        embedding: Sequence[float],
        limit: int,
        extra_filter: str = "",
    ) -> list[tuple]:
        vector = [float(value) for value in embedding]
        sql = f"""
            SELECT * FROM (
                SELECT {_DOCUMENT_COLUMNS},
                       list_cosine_similarity(d.{column}, ?::FLOAT[]) AS similarity
                FROM documents d
                WHERE d.workspace_id = ?
                  AND d.{column} IS NOT NULL
                  AND len(d.{column}) = ?{extra_filter}
            )
            WHERE similarity > 0
            ORDER BY similarity DESC
            LIMIT {int(limit)}
        """
        return self.db.query_rows(sql, [vector, workspace_id, len(vector)])

    def _semantic_documents(
        self,
        workspace_id: str,
        embedding: Sequence[float],
        limit: int,
    ) -> list[DocumentCandidate]:
        rows = self._vector_rows("text_embedding", workspace_id, embedding, limit)
        return [
            _document_from_row(row, similarity=row[11], search_mode=MODE_SEMANTIC)
            for row in rows
        ]

    def _visual_documents(
        self,
        workspace_id: str,
        embedding: Sequence[float],
        limit: int,
    ) -> list[DocumentCandidate]:
        rows = self._vector_rows("visual_embedding", workspace_id, embedding, limit)
        return [
            _document_from_row(row, similarity=row[11], search_mode=MODE_VISUAL)
            for row in rows
        ]

    def _visual_frames(
        self,
        workspace_id: str,
        embedding: Sequence[float],
        limit: int,
    ) -> list[DocumentCandidate]:
        vector = [float(value) for value in embedding]
        sql = f"""
            SELECT * FROM (
                SELECT {_DOCUMENT_COLUMNS},
                       list_cosine_similarity(f.visual_embedding, ?::FLOAT[]) AS similarity,
                       f.id, f.start_time, f.description, f.storage_path
                FROM document_frames f
                JOIN documents d ON f.document_id = d.id
                WHERE f.workspace_id = ?
                  AND f.visual_embedding IS NOT NULL
                  AND len(f.visual_embedding) = ?
            )
            WHERE similarity > 0
            ORDER BY similarity DESC
            LIMIT {int(limit)}
        """
        rows = self.db.query_rows(sql, [vector, workspace_id, len(vector)])
        frames: list[DocumentCandidate] = []
        for row in rows:
            candidate = _document_from_row(
                row, similarity=row[11], search_mode=MODE_VISUAL
            )
            frame_id, start_time, frame_description, frame_path = row[12:16]
            candidate.id = str(frame_id)
            candidate.start_time = float(start_time)
            if frame_description:
                candidate.description = frame_description
            if frame_path:
                candidate.thumbnail_path = frame_path
            frames.append(candidate)
        return frames

    def _lexical_documents(
        self,
        workspace_id: str,
        query: str,
        limit: int,
        *,
        similarity: float,
        search_mode: str,
        include_summary: bool,
    ) -> list[DocumentCandidate]:
        columns = ["d.title", "d.description", "d.searchable_text"]
        if include_summary:
            columns.append("d.ai_summary")
        predicate = " OR ".join(f"{column} ILIKE ? ESCAPE '\\'" for column in columns)
        pattern = keyword_pattern(query)
        sql = f"""
            SELECT {_DOCUMENT_COLUMNS}
            FROM documents d
            WHERE d.workspace_id = ? AND ({predicate})
            ORDER BY d.created_at DESC, d.id
            LIMIT {int(limit)}
        """
        rows = self.db.query_rows(sql, [workspace_id, *([pattern] * len(columns))])
        return [
            _document_from_row(row, similarity=similarity, search_mode=search_mode)
            for row in rows
        ]

    # Lexical sources

    def search_documents_text(
        self,
        *,
        workspace_id: str,
        query: str,
        limit: int,
        similarity: float,
    ) -> list[DocumentCandidate]:
        return self._lexical_documents(
            workspace_id,
            query,
            limit,
            similarity=similarity,
            search_mode=MODE_TEXT,
            include_summary=False,
        )

    def search_scratches(
        self,
        *,
        workspace_id: str,
        query: str,
        limit: int,
        similarity: float,
    ) -> list[ScratchCandidate]:
        pattern = keyword_pattern(query)
        rows = self.db.query_rows(
            f"""
            SELECT id, title, searchable_text, thumbnail_url
            FROM scratches
            WHERE workspace_id = ?
              AND (title ILIKE ? ESCAPE '\\' OR searchable_text ILIKE ? ESCAPE '\\')
            ORDER BY created_at DESC, id
            LIMIT {int(limit)}
            """,
            [workspace_id, pattern, pattern],
        )
        return [
            ScratchCandidate(
                id=str(scratch_id),
                document_id=str(scratch_id),
                title=title or "Scratch",
                description=_snippet(searchable_text),
                similarity=similarity,
                search_mode=MODE_TEXT,
                searchable_text=searchable_text,
                thumbnail_url=thumbnail_url,
            )
            for scratch_id, title, searchable_text, thumbnail_url in rows
        ]

    def search_notes(
        self,
        *,
        workspace_id: str,
        query: str,
        limit: int,
        similarity: float,
    ) -> list[NoteCandidate]:
        pattern = keyword_pattern(query)
        rows = self.db.query_rows(
            f"""
            SELECT id, title, content, searchable_text
            FROM notes
            WHERE workspace_id = ?
              AND (title ILIKE ? ESCAPE '\\'
                   OR searchable_text ILIKE ? ESCAPE '\\'
                   OR content ILIKE ? ESCAPE '\\')
            ORDER BY created_at DESC, id
            LIMIT {int(limit)}
            """,
            [workspace_id, pattern, pattern, pattern],
        )
        return [
            NoteCandidate(
                id=str(note_id),
                document_id=str(note_id),
                title=title or "Untitled note",
                description=_snippet(searchable_text or content),
                similarity=similarity,
                search_mode=MODE_TEXT,
                searchable_text=searchable_text or content,
            )
            for note_id, title, content, searchable_text in rows
        ]

    def search_link_transcripts(
        self,
        *,
        workspace_id: str,
        query: str,
        limit: int,
        similarity: float,
    ) -> list[TranscriptCandidate]:
        pattern = keyword_pattern(query)
        rows = self.db.query_rows(
            f"""
            SELECT t.id, t.text, t.start_time, t.end_time, t.link_id,
                   l.title, l.url, l.thumbnail_url, l.video_url
            FROM link_transcripts t
            JOIN links l ON t.link_id = l.id
            WHERE l.workspace_id = ? AND t.text ILIKE ? ESCAPE '\\'
            ORDER BY t.link_id, t.start_time
            LIMIT {int(limit)}
            """,
            [workspace_id, pattern],
        )
        return [
            TranscriptCandidate(
                id=str(link_id),
                document_id=str(link_id),
                title=title or "Video",
                description=f"[{format_time(start_time)}] {text or ''}",
                similarity=similarity,
                search_mode=MODE_TRANSCRIPT,
                segment_id=str(segment_id),
                url=url,
                thumbnail_url=thumbnail_url,
                video_url=video_url,
                start_time=float(start_time) if start_time is not None else None,
                end_time=float(end_time) if end_time is not None else None,
            )
            for (
                segment_id,
                text,
                start_time,
                end_time,
                link_id,
                title,
                url,
                thumbnail_url,
                video_url,
            ) in rows
        ]

    def document_tags(self, workspace_id: str) -> list[list[str]]:
        rows = self.db.query_rows(
            """
            SELECT tags FROM documents
            WHERE workspace_id = ? AND tags IS NOT NULL
            ORDER BY created_at, id
            """,
            [workspace_id],
        )
        return [list(tags) for (tags,) in rows]

    # Writes

    def add_document(self, workspace_id: str, document: Mapping[str, Any]) -> str:
        doc_id = str(document.get("id") or uuid.uuid4())
        analysis = document.get("detailed_analysis")
        if analysis is not None and not isinstance(analysis, str):
            analysis = json.dumps(analysis)
        tags = document.get("tags")
        self.db.execute(
            """
            INSERT OR REPLACE INTO documents (
                id, workspace_id, title, description, mime_type, tags, ai_summary,
                searchable_text, detailed_analysis, storage_path, thumbnail_path,
                text_embedding, visual_embedding, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                doc_id,
                workspace_id,
                document.get("title"),
                document.get("description"),
                document.get("mime_type"),
                list(tags) if tags is not None else None,
                document.get("ai_summary"),
                document.get("searchable_text"),
                analysis,
                document.get("storage_path"),
                document.get("thumbnail_path"),
                _vector(document.get("text_embedding")),
                _vector(document.get("visual_embedding")),
                _timestamp(document.get("created_at")),
            ],
        )
        return doc_id

    def add_frame(self, workspace_id: str, frame: Mapping[str, Any]) -> str:
        frame_id = str(frame.get("id") or uuid.uuid4())
        document_id = frame.get("document_id")
        if not document_id:
            raise ValidationError("Frame requires document_id")
        if frame.get("start_time") is None:
            raise ValidationError("Frame requires start_time")
        self.db.execute(
            """
            INSERT OR REPLACE INTO document_frames (
                id, document_id, workspace_id, start_time, description,
                storage_path, visual_embedding
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                frame_id,
                str(document_id),
                workspace_id,
                float(frame["start_time"]),
                frame.get("description"),
                frame.get("storage_path"),
                _vector(frame.get("visual_embedding")),
            ],
        )
        return frame_id

    def add_scratch(self, workspace_id: str, scratch: Mapping[str, Any]) -> str:
        scratch_id = str(scratch.get("id") or uuid.uuid4())
        self.db.execute(
            """
            INSERT OR REPLACE INTO scratches (
                id, workspace_id, title, searchable_text, thumbnail_url
            ) VALUES (?, ?, ?, ?, ?)
            """,
            [
                scratch_id,
                workspace_id,
                scratch.get("title"),
                scratch.get("searchable_text"),
                scratch.get("thumbnail_url"),
            ],
        )
        return scratch_id

    def add_note(self, workspace_id: str, note: Mapping[str, Any]) -> str:
        note_id = str(note.get("id") or uuid.uuid4())
        self.db.execute(
            """
            INSERT OR REPLACE INTO notes (
                id, workspace_id, title, content, searchable_text
            ) VALUES (?, ?, ?, ?, ?)
            """,
            [
                note_id,
                workspace_id,
                note.get("title"),
                note.get("content"),
                note.get("searchable_text"),
            ],
        )
        return note_id

    def add_link(self, workspace_id: str, link: Mapping[str, Any]) -> str:
        link_id = str(link.get("id") or uuid.uuid4())
        self.db.execute(
            """
            INSERT OR REPLACE INTO links (
                id, workspace_id, title, url, thumbnail_url, video_url
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                link_id,
                workspace_id,
                link.get("title"),
                link.get("url"),
                link.get("thumbnail_url"),
                link.get("video_url"),
            ],
        )
        for segment in link.get("transcript") or ():
            self.add_transcript_segment(link_id, segment)
        return link_id

    def add_transcript_segment(self, link_id: str, segment: Mapping[str, Any]) -> str:
        segment_id = str(segment.get("id") or uuid.uuid4())
        self.db.execute(
            """
            INSERT OR REPLACE INTO link_transcripts (
                id, link_id, text, start_time, end_time
            ) VALUES (?, ?, ?, ?, ?)
            """,
            [
                segment_id,
                link_id,
                segment.get("text"),
                segment.get("start_time"),
                segment.get("end_time"),
            ],
        )
        return segment_id

    def load_seed(
        self,
        payload: Mapping[str, Any],
        *,
        embed: Callable[[str], Sequence[float]] | None = None,
    ) -> dict[str, int]:
        """Load a seed document of the form {"workspace_id": ..., "documents": [...], ...}.

        When ``embed`` is given, documents without a text embedding get one
        computed from their title, description and searchable text.
        """
        workspace_id = payload.get("workspace_id")
        if not workspace_id:
            raise ValidationError("Seed payload requires workspace_id")
        counts = {"documents": 0, "frames": 0, "scratches": 0, "notes": 0, "links": 0}
        for document in payload.get("documents") or ():
            if embed is not None and not document.get("text_embedding"):
                document = dict(document)
                document["text_embedding"] = list(embed(_embedding_text(document)))
            self.add_document(workspace_id, document)
            counts["documents"] += 1
        for frame in payload.get("frames") or ():
            self.add_frame(workspace_id, frame)
            counts["frames"] += 1
        for scratch in payload.get("scratches") or ():
            self.add_scratch(workspace_id, scratch)
            counts["scratches"] += 1
        for note in payload.get("notes") or ():
            self.add_note(workspace_id, note)
            counts["notes"] += 1
        for link in payload.get("links") or ():
            self.add_link(workspace_id, link)
            counts["links"] += 1
        logger.info(
            "Workspace seed loaded",
            extra={"workspace_id": workspace_id, "result_count": sum(counts.values())},
        )
        return counts


def _vector(value: Iterable[float] | None) -> list[float] | None:
    if value is None:
        return None
    return [float(item) for item in value]


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _timestamp(value: object) -> datetime:
    """Normalize to a naive UTC datetime, the form stored in TIMESTAMP columns."""
    if value is None or value == "":
        return utc_now()
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValidationError(f"Invalid created_at timestamp: {value}") from exc
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _snippet(text: str | None, size: int = 200) -> str | None:
    if not text:
        return None
    return text if len(text) <= size else text[:size]


def _embedding_text(document: Mapping[str, Any]) -> str:
    parts = (
        document.get("title"),
        document.get("description"),
        document.get("searchable_text"),
    )
    return " ".join(str(part) for part in parts if part)
