from __future__ import annotations

import uuid
from collections import Counter
from datetime import datetime
from typing import Any, Iterable

from canopy_core.logging import get_logger
from canopy_core.stores.database import Database
from canopy_core.stores.workspace import WorkspaceStore, utc_now

logger = get_logger(__name__)


def rank_tags(tag_lists: Iterable[Iterable[str]], limit: int) -> list[str]:
    """Most frequent tags first; ties keep first-seen order."""
    counts: Counter[str] = Counter()
    for tags in tag_lists:
        for tag in tags:
            if tag:
                counts[tag] += 1
    return [tag for tag, _ in counts.most_common(max(0, int(limit)))]


def _iso_utc(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat(timespec="milliseconds") + "Z"
    return str(value)


class SearchHistoryStore:
    """Per-user recent searches, at most one row per (workspace, user, query)."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def record(
        self,
        *,
        workspace_id: str,
        user_id: str | None,
        query: str,
        result_count: int,
        search_type: str,
    ) -> bool:
        if not user_id or not query.strip():
            return False
        try:
            cur = self.db.cursor()
            try:
                seq = cur.execute("SELECT nextval('search_history_seq')").fetchone()[0]
                cur.execute(
                    """
                    INSERT INTO search_history (
                        id, seq, workspace_id, user_id, query, result_count,
                        search_type, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (workspace_id, user_id, query) DO UPDATE SET
                        seq = excluded.seq,
                        result_count = excluded.result_count,
                        search_type = excluded.search_type,
                        created_at = excluded.created_at
                    """,
                    [
                        str(uuid.uuid4()),
                        seq,
                        workspace_id,
                        user_id,
                        query,
                        int(result_count),
                        search_type,
                        utc_now(),
                    ],
                )
            finally:
                cur.close()
        except Exception as exc:
            logger.warning(
                "Search history write failed",
                extra={"workspace_id": workspace_id, "error_message": str(exc)},
            )
            return False
        return True

    def list_recent(
        self,
        *,
        workspace_id: str,
        user_id: str | None,
        limit: int = 20,
    ) -> list[dict[str, Any]]:
        if not user_id:
            return []
        rows = self.db.query_rows(
            f"""
            SELECT id, query, result_count, search_type, created_at
            FROM search_history
            WHERE workspace_id = ? AND user_id = ?
            ORDER BY created_at DESC, seq DESC
            LIMIT {max(0, int(limit))}
            """,
            [workspace_id, user_id],
        )
        return [
            {
                "id": entry_id,
                "query": query,
                "result_count": result_count,
                "search_type": search_type,
                "created_at": _iso_utc(created_at),
            }
            for entry_id, query, result_count, search_type, created_at in rows
        ]

    def suggested_tags(self, *, workspace_id: str, limit: int = 10) -> list[str]:
        tag_lists = WorkspaceStore(self.db).document_tags(workspace_id)
        return rank_tags(tag_lists, limit)

    def delete(self, *, entry_id: str, user_id: str | None) -> bool:
        if not user_id:
            return False
        self.db.execute(
            "DELETE FROM search_history WHERE id = ? AND user_id = ?",
            [entry_id, user_id],
        )
        return True

    def clear(self, *, workspace_id: str, user_id: str | None) -> bool:
        if not user_id:
            return False
        self.db.execute(
            "DELETE FROM search_history WHERE workspace_id = ? AND user_id = ?",
            [workspace_id, user_id],
        )
        return True
