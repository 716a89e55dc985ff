import copy
import os
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from canopy_core.config import get_config
from canopy_core.providers.embeddings import reset_embedding_cache
from canopy_core.search.types import DetailedAnalysis, DocumentCandidate
from canopy_core.storage.uri_signer import reset_uri_signer
from canopy_core.stores.database import Database
from canopy_core.stores.history import SearchHistoryStore
from canopy_core.stores.workspace import WorkspaceStore

EMBEDDING_DIM = 4


def _unit(index: int) -> list[float]:
    vector = [0.0] * EMBEDDING_DIM
    vector[index] = 1.0
    return vector


SEED_PAYLOAD = {
    "workspace_id": "ws-1",
    "documents": [
        {
            "id": "d-airpods",
            "title": "Apple AirPods Max",
            "description": "Headphones review",
            "mime_type": "text/markdown",
            "tags": ["airpods", "apple", "audio"],
            "ai_summary": "Over-ear headphones from Apple",
            "text_embedding": _unit(0),
            "created_at": "2024-03-01T10:00:00Z",
        },
        {
            "id": "d-red",
            "title": "Red dress photo",
            "description": "A woman wearing a red dress at a party",
            "mime_type": "image/jpeg",
            "tags": ["red dress", "fashion", "audio"],
            "storage_path": "ws-1/red.jpg",
            "detailed_analysis": {
                "clothing": [{"type": "dress", "color": "red", "shade": "crimson"}],
                "colors": [{"color": "red", "shade": "crimson", "location": "dress"}],
                "objects": [{"name": "handbag"}],
            },
            "text_embedding": _unit(1),
            "created_at": "2024-03-02T10:00:00Z",
        },
        {
            "id": "d-catalogue",
            "title": "Lingerie catalogue",
            "description": "Seasonal product catalogue",
            "mime_type": "application/pdf",
            "tags": ["fashion"],
            "storage_path": "ws-1/catalogue.pdf",
            "thumbnail_path": "ws-1/catalogue-thumb.png",
            "created_at": "2024-03-03T10:00:00Z",
        },
        {
            "id": "d-video",
            "title": "Beach day",
            "description": "Holiday clip",
            "mime_type": "video/mp4",
            "storage_path": "ws-1/beach.mp4",
            "visual_embedding": [0.0, 0.0, 1.0, 1.0],
            "created_at": "2024-03-04T10:00:00Z",
        },
    ],
    "frames": [
        {
            "id": "f-beach-12",
            "document_id": "d-video",
            "start_time": 12.0,
            "description": "Waves at sunset",
            "storage_path": "ws-1/beach-12.jpg",
            "visual_embedding": _unit(2),
        }
    ],
    "scratches": [
        {"id": "s-1", "title": "AirPods sketch", "searchable_text": "case outline"},
    ],
    "notes": [
        {"id": "n-1", "title": "Shopping list", "content": "buy airpods case"},
    ],
    "links": [
        {
            "id": "l-1",
            "title": "AirPods unboxing",
            "url": "https://video.example/airpods",
            "thumbnail_url": "https://video.example/airpods.jpg",
            "video_url": "https://video.example/airpods.mp4",
            "transcript": [
                {"id": "t-1", "text": "these airpods sound great", "start_time": 75.0},
                {"id": "t-2", "text": "airpods battery life", "start_time": 130.0},
            ],
        },
        {
            "id": "l-2",
            "title": None,
            "url": "https://video.example/untitled",
            "transcript": [
                {"id": "t-3", "text": "unrelated chatter", "start_time": 5.0},
            ],
        },
    ],
}

OTHER_WORKSPACE_PAYLOAD = {
    "workspace_id": "ws-2",
    "documents": [
        {
            "id": "d-foreign",
            "title": "AirPods receipt",
            "tags": ["airpods"],
            "text_embedding": _unit(0),
        }
    ],
}


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    def set_default(name: str, value: str) -> None:
        if not os.getenv(name):
            monkeypatch.setenv(name, value)

    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("CANOPY_DB_PATH", str(tmp_path / "canopy.duckdb"))
    monkeypatch.setenv("EMBEDDING_DIM", str(EMBEDDING_DIM))
    monkeypatch.delenv("CANOPY_EMBEDDER", raising=False)
    monkeypatch.delenv("CANOPY_URI_SIGNER", raising=False)
    monkeypatch.delenv("USE_REAL_MODELS", raising=False)
    set_default("LOG_LEVEL", "INFO")
    set_default("SIGNING_SECRET", "test-signing-secret")
    set_default("AUTH_JWT_HS256_SECRET", "test-secret")
    set_default("SEARCH_SOURCE_TIMEOUT_S", "5")
    set_default("EMBEDDING_TIMEOUT_S", "5")

    get_config.cache_clear()
    reset_uri_signer()
    reset_embedding_cache()
    yield
    get_config.cache_clear()
    reset_uri_signer()
    reset_embedding_cache()


@pytest.fixture
def seed_payload():
    return copy.deepcopy(SEED_PAYLOAD)


@pytest.fixture
def database(tmp_path):
    db = Database(str(tmp_path / "store.duckdb"))
    yield db
    db.close()


@pytest.fixture
def workspace_store(database):
    return WorkspaceStore(database)


@pytest.fixture
def seeded_store(workspace_store, seed_payload):
    workspace_store.load_seed(seed_payload)
    workspace_store.load_seed(copy.deepcopy(OTHER_WORKSPACE_PAYLOAD))
    return workspace_store


@pytest.fixture
def history_store(database):
    return SearchHistoryStore(database)


@pytest.fixture
def unit_vector():
    return _unit


@pytest.fixture
def make_document():
    def _factory(
        doc_id: str = "d1",
        *,
        similarity: float = 0.8,
        title: str = "",
        description: str | None = None,
        mime_type: str | None = "image/jpeg",
        tags: list[str] | None = None,
        ai_summary: str | None = None,
        searchable_text: str | None = None,
        analysis: dict | None = None,
        document_id: str | None = None,
        search_mode: str = "semantic",
        start_time: float | None = None,
        storage_path: str | None = None,
        thumbnail_path: str | None = None,
    ) -> DocumentCandidate:
        return DocumentCandidate(
            id=doc_id,
            document_id=document_id or doc_id,
            title=title,
            description=description,
            similarity=similarity,
            search_mode=search_mode,
            mime_type=mime_type,
            tags=tuple(tags) if tags is not None else None,
            ai_summary=ai_summary,
            searchable_text=searchable_text,
            detailed_analysis=DetailedAnalysis.from_payload(analysis),
            start_time=start_time,
            storage_path=storage_path,
            thumbnail_path=thumbnail_path,
        )

    return _factory


@pytest.fixture
def jwt_factory():
    def _factory(subject: str | None = "user-1", **extra) -> str:
        now = datetime.now(timezone.utc)
        claims: dict[str, object] = {
            "exp": int((now + timedelta(minutes=5)).timestamp()),
            "iat": int(now.timestamp()),
        }
        if subject is not None:
            claims["sub"] = subject
        claims.update(extra)
        secret = os.getenv("AUTH_JWT_HS256_SECRET", "test-secret")
        return jwt.encode(claims, secret, algorithm="HS256")

    return _factory
