from __future__ import annotations

import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field, replace
from typing import Callable, Sequence, TypeVar

from canopy_core.errors import SearchFailedError, SourceTimeoutError
from canopy_core.logging import get_logger
from canopy_core.search.types import (
    SOURCE_DOCUMENT,
    SOURCE_LINK_TRANSCRIPT,
    SOURCE_NOTE,
    SOURCE_SCRATCH,
    Candidate,
    DocumentCandidate,
    NoteCandidate,
    ScratchCandidate,
    SearchQuery,
    TranscriptCandidate,
)
from canopy_core.search.weights import PATH_FALLBACK, PATH_PRIMARY, base_similarity
from canopy_core.storage.uri_signer import UriSigner
from canopy_core.stores.workspace import WorkspaceStore

logger = get_logger(__name__)

_T = TypeVar("_T")
_C = TypeVar("_C", bound=Candidate)

PREVIEW_MIME_PREFIXES = ("image/", "video/")
PREVIEW_MIME_TYPES = {"application/pdf"}


@dataclass
class Retrieval:
    """Raw per-source hits for one query, before ranking and fusion."""

    documents: list[DocumentCandidate]
    scratches: list[ScratchCandidate]
    notes: list[NoteCandidate]
    transcripts: list[TranscriptCandidate]
    path: str = PATH_PRIMARY
    timings: dict[str, float] = field(default_factory=dict)

    @property
    def fallback(self) -> bool:
        return self.path == PATH_FALLBACK


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000.0, 2)


def wants_preview(candidate: DocumentCandidate) -> bool:
    if not candidate.storage_path:
        return False
    mime = candidate.mime_type or ""
    return mime in PREVIEW_MIME_TYPES or mime.startswith(PREVIEW_MIME_PREFIXES)


class MultiSourceRetriever:
    def __init__(
        self,
        store: WorkspaceStore,
        *,
        timeout_s: float,
        max_workers: int,
        signer_loader: Callable[[], UriSigner] | None = None,
        signed_url_ttl_s: int = 3600,
    ) -> None:
        self.store = store
        self.timeout_s = timeout_s
        self.signer_loader = signer_loader
        self.signed_url_ttl_s = signed_url_ttl_s
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers),
            thread_name_prefix="canopy-retriever",
        )

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)

    def _wait(self, future: Future[_T], deadline: float, source: str) -> _T:
        remaining = max(0.0, deadline - time.monotonic())
        try:
            return future.result(timeout=remaining)
        except FutureTimeoutError as exc:
            future.cancel()
            raise SourceTimeoutError(
                f"{source} search timed out after {self.timeout_s:.2f}s"
            ) from exc

    def _auxiliary(
        self,
        future: Future[list[_C]],
        deadline: float,
        source: str,
        workspace_id: str,
    ) -> list[_C]:
        try:
            return self._wait(future, deadline, source)
        except Exception as exc:
            logger.warning(
                "Auxiliary search failed",
                extra={
                    "source": source,
                    "workspace_id": workspace_id,
                    "error_message": str(exc),
                },
            )
            return []

    def retrieve(
        self,
        query: SearchQuery,
        embedding: Sequence[float] | None,
    ) -> Retrieval:
        """Fan out the primary and auxiliary searches and join them.

        A failed or timed-out primary search switches to the lexical
        document fallback; auxiliary failures only drop that source.
        """
        timings: dict[str, float] = {}
        start = time.monotonic()
        deadline = start + self.timeout_s
        aux_kwargs = {
            "workspace_id": query.workspace_id,
            "query": query.query,
            "limit": query.limit,
        }
        primary = self._executor.submit(
            self.store.search_workspace,
            workspace_id=query.workspace_id,
            query=query.query,
            embedding=embedding,
            search_types=query.search_types,
            limit=query.limit,
        )
        scratch_future = self._executor.submit(
            self.store.search_scratches,
            similarity=base_similarity(SOURCE_SCRATCH, PATH_PRIMARY),
            **aux_kwargs,
        )
        note_future = self._executor.submit(
            self.store.search_notes,
            similarity=base_similarity(SOURCE_NOTE, PATH_PRIMARY),
            **aux_kwargs,
        )
        transcript_future = self._executor.submit(
            self.store.search_link_transcripts,
            similarity=base_similarity(SOURCE_LINK_TRANSCRIPT, PATH_PRIMARY),
            **aux_kwargs,
        )

        path = PATH_PRIMARY
        try:
            documents: list[DocumentCandidate] = self._wait(
                primary, deadline, SOURCE_DOCUMENT
            )
        except Exception as exc:
            logger.warning(
                "Primary search failed, using text fallback",
                extra={
                    "workspace_id": query.workspace_id,
                    "search_path": PATH_FALLBACK,
                    "error_message": str(exc),
                },
            )
            path = PATH_FALLBACK
            documents = self._fallback_documents(query)
        timings["primary_ms"] = _elapsed_ms(start)

        scratches = self._auxiliary(
            scratch_future, deadline, SOURCE_SCRATCH, query.workspace_id
        )
        notes = self._auxiliary(note_future, deadline, SOURCE_NOTE, query.workspace_id)
        transcripts = self._auxiliary(
            transcript_future, deadline, SOURCE_LINK_TRANSCRIPT, query.workspace_id
        )
        timings["auxiliary_ms"] = _elapsed_ms(start)

        if path == PATH_FALLBACK:
            scratches = _reweight(scratches, SOURCE_SCRATCH)
            notes = _reweight(notes, SOURCE_NOTE)
            transcripts = _reweight(transcripts, SOURCE_LINK_TRANSCRIPT)

        return Retrieval(
            documents=documents,
            scratches=scratches,
            notes=notes,
            transcripts=transcripts,
            path=path,
            timings=timings,
        )

    def _fallback_documents(self, query: SearchQuery) -> list[DocumentCandidate]:
        future = self._executor.submit(
            self.store.search_documents_text,
            workspace_id=query.workspace_id,
            query=query.query,
            limit=query.limit,
            similarity=base_similarity(SOURCE_DOCUMENT, PATH_FALLBACK),
        )
        try:
            return self._wait(
                future, time.monotonic() + self.timeout_s, SOURCE_DOCUMENT
            )
        except Exception as exc:
            raise SearchFailedError("Search failed") from exc

    def attach_previews(
        self,
        candidates: Sequence[DocumentCandidate],
    ) -> list[DocumentCandidate]:
        """Sign preview and thumbnail URLs for document candidates in parallel."""
        if not candidates:
            return []
        if self.signer_loader is None:
            return list(candidates)
        return list(self._executor.map(self._sign_one, candidates))

    def _sign_one(self, candidate: DocumentCandidate) -> DocumentCandidate:
        preview_url = (
            self._sign(candidate.storage_path) if wants_preview(candidate) else None
        )
        thumbnail_url = (
            self._sign(candidate.thumbnail_path) if candidate.thumbnail_path else None
        )
        return replace(
            candidate,
            preview_url=preview_url,
            thumbnail_url=thumbnail_url or preview_url,
        )

    def _sign(self, path: str | None) -> str | None:
        if not path or self.signer_loader is None:
            return None
        try:
            signer = self.signer_loader()
            return signer(path, self.signed_url_ttl_s)
        except Exception as exc:
            logger.warning(
                "Preview URL signing failed",
                extra={"storage_path": path, "error_message": str(exc)},
            )
            return None


def _reweight(candidates: list[_C], source_kind: str) -> list[_C]:
    similarity = base_similarity(source_kind, PATH_FALLBACK)
    return [replace(item, similarity=similarity) for item in candidates]
