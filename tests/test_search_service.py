from __future__ import annotations

from dataclasses import replace

import pytest
from fastapi.testclient import TestClient

from canopy_core.providers import embeddings
from canopy_core.stores.database import close_databases
from local_adapter import search_service

USER = {"x-user-id": "u1"}


@pytest.fixture
def client(seed_payload, unit_vector):
    search_service.reset_state()
    state = search_service.get_state()
    state.workspace.load_seed(seed_payload)

    def _embed(text: str, *, dim: int):
        return unit_vector(0)

    state.engine.embed = _embed
    yield TestClient(search_service.app)
    search_service.reset_state()
    close_databases()


def _search(client, query: str, *, headers=None, **extra):
    body = {"query": query, "workspaceId": "ws-1", **extra}
    return client.post("/search", json=body, headers=headers or {})


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["service"] == "canopy-search"
    assert response.headers["x-correlation-id"]


def test_correlation_id_is_echoed(client):
    response = client.get("/health", headers={"x-correlation-id": "corr-1"})
    assert response.headers["x-correlation-id"] == "corr-1"


def test_search_fuses_all_sources(client):
    response = _search(client, "AirPods")
    assert response.status_code == 200
    payload = response.json()
    assert payload["query"] == "AirPods"
    assert payload["search_types"] == ["semantic", "text", "visual"]
    assert payload["has_semantic"] is True
    assert payload["total"] == 4

    results = payload["results"]
    assert [item["id"] for item in results] == ["d-airpods", "l-1", "s-1", "n-1"]
    document, link = results[0], results[1]
    assert document["result_type"] == "document"
    assert document["search_type"] == "semantic"
    assert document["similarity"] == pytest.approx(1.0, abs=1e-5)
    assert document["previewUrl"] is None
    assert link["result_type"] == "link"
    assert link["search_type"] == "transcript"
    assert link["description"] == "[1:15] these airpods sound great"
    assert link["similarity"] == 0.8
    assert link["video_url"] == "https://video.example/airpods.mp4"
    similarities = [item["similarity"] for item in results]
    assert similarities == sorted(similarities, reverse=True)


def test_color_query_ranks_and_signs_previews(client):
    response = _search(client, "red dress", searchTypes=["text"])
    assert response.status_code == 200
    payload = response.json()
    assert payload["has_semantic"] is False
    results = payload["results"]
    assert [item["id"] for item in results] == ["d-red"]
    red = results[0]
    assert red["similarity"] == pytest.approx(0.55)
    assert red["previewUrl"].startswith(
        "http://localhost:8090/storage/documents/ws-1/red.jpg?expires="
    )
    assert "signature=" in red["previewUrl"]
    assert red["thumbnailUrl"] == red["previewUrl"]


def test_pdf_without_color_evidence_is_excluded(client):
    response = _search(client, "red lingerie", searchTypes=["text"])
    assert response.status_code == 200
    assert all(item["id"] != "d-catalogue" for item in response.json()["results"])


def test_include_frames_false_drops_frame_hits(client, unit_vector):
    search_service.get_state().engine.embed = lambda text, *, dim: unit_vector(2)
    with_frames = _search(client, "beach", searchTypes=["visual"]).json()
    without_frames = _search(
        client, "beach", searchTypes=["visual"], includeFrames=False
    ).json()
    assert any(item.get("start_time") == 12.0 for item in with_frames["results"])
    assert all(item.get("start_time") is None for item in without_frames["results"])
    assert [item["document_id"] for item in without_frames["results"]] == ["d-video"]


def test_embedding_failure_returns_text_fallback(client, monkeypatch):
    class BrokenEmbedder:
        def encode(self, texts):
            raise RuntimeError("provider down")

    monkeypatch.setattr(embeddings, "get_text_embedder", lambda dim: BrokenEmbedder())
    search_service.get_state().engine.embed = embeddings.embed_query

    response = _search(client, "AirPods", headers=USER)
    assert response.status_code == 200
    payload = response.json()
    assert payload["search_type"] == "text_fallback"
    assert payload["has_semantic"] is False
    assert "search_types" not in payload
    results = payload["results"]
    document = next(item for item in results if item["id"] == "d-airpods")
    assert document["similarity"] == 0.5
    assert document["search_type"] == "text"
    assert {item["similarity"] for item in results if item["id"] != "d-airpods"} == {0.7}

    recent = client.get("/search", params={"workspaceId": "ws-1"}, headers=USER).json()
    assert recent["recentSearches"][0]["search_type"] == "text_fallback"


def test_blank_query_is_rejected_without_history(client):
    response = _search(client, "   ", headers=USER)
    assert response.status_code == 400

    overview = client.get("/search", params={"workspaceId": "ws-1"}, headers=USER)
    assert overview.status_code == 200
    assert overview.json()["recentSearches"] == []


def test_validation_errors(client):
    assert client.post("/search", json={"query": "x"}).status_code == 400
    assert _search(client, "x", searchTypes=["fuzzy"]).status_code == 400
    assert _search(client, "x", searchTypes=[]).status_code == 400
    assert _search(client, "x", limit=0).status_code == 422
    assert _search(client, "x", limit=101).status_code == 422


def test_oversized_body_is_rejected(client, monkeypatch):
    state = search_service.get_state()
    monkeypatch.setattr(
        state,
        "config",
        replace(state.config, max_search_bytes=10),
    )
    response = _search(client, "AirPods")
    assert response.status_code == 413


def test_repeated_search_keeps_one_history_row(client):
    _search(client, "AirPods", headers=USER)
    _search(client, "AirPods", headers=USER)
    overview = client.get("/search", params={"workspaceId": "ws-1"}, headers=USER).json()
    assert [entry["query"] for entry in overview["recentSearches"]] == ["AirPods"]
    assert overview["recentSearches"][0]["result_count"] == 4
    assert overview["recentSearches"][0]["search_type"] == "semantic,text,visual"
    assert overview["suggestedTags"][:2] == ["audio", "fashion"]


def test_anonymous_search_is_not_recorded(client):
    assert _search(client, "AirPods").status_code == 200
    overview = client.get("/search", params={"workspaceId": "ws-1"}).json()
    assert overview["recentSearches"] == []


def test_bearer_token_identifies_user(client, jwt_factory):
    headers = {"Authorization": f"Bearer {jwt_factory('u-token')}"}
    _search(client, "AirPods", headers=headers)
    mine = client.get("/search", params={"workspaceId": "ws-1"}, headers=headers).json()
    others = client.get("/search", params={"workspaceId": "ws-1"}, headers=USER).json()
    assert [entry["query"] for entry in mine["recentSearches"]] == ["AirPods"]
    assert others["recentSearches"] == []


def test_overview_requires_workspace(client):
    assert client.get("/search").status_code == 400


def test_delete_history_entry_and_clear(client):
    _search(client, "AirPods", headers=USER)
    _search(client, "dress", headers=USER)
    overview = client.get("/search", params={"workspaceId": "ws-1"}, headers=USER).json()
    entry_id = overview["recentSearches"][0]["id"]

    deleted = client.delete("/search", params={"id": entry_id}, headers=USER)
    assert deleted.status_code == 200
    assert deleted.json() == {"success": True}
    overview = client.get("/search", params={"workspaceId": "ws-1"}, headers=USER).json()
    assert [entry["query"] for entry in overview["recentSearches"]] == ["AirPods"]

    cleared = client.delete(
        "/search",
        params={"workspaceId": "ws-1", "clearAll": "true"},
        headers=USER,
    )
    assert cleared.json() == {"success": True}
    overview = client.get("/search", params={"workspaceId": "ws-1"}, headers=USER).json()
    assert overview["recentSearches"] == []


def test_delete_requires_target(client):
    assert client.delete("/search").status_code == 400
    assert client.delete("/search", params={"workspaceId": "ws-1"}).status_code == 400


def test_unexpected_failure_is_a_500(client, monkeypatch):
    state = search_service.get_state()

    def _boom(query, embedding):
        raise KeyError("unexpected")

    monkeypatch.setattr(state.engine.retriever, "retrieve", _boom)
    response = _search(client, "AirPods")
    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error"}


def test_primary_and_fallback_failure_is_search_failed(client, monkeypatch):
    state = search_service.get_state()

    def _fail(**kwargs):
        raise RuntimeError("db offline")

    monkeypatch.setattr(state.workspace, "search_workspace", _fail)
    monkeypatch.setattr(state.workspace, "search_documents_text", _fail)
    response = _search(client, "AirPods")
    assert response.status_code == 500
    assert response.json() == {"detail": "Search failed"}


def test_anonymous_caller_cannot_read_or_clear_others_history(client):
    _search(client, "private query", headers=USER)

    anonymous = client.get("/search", params={"workspaceId": "ws-1"}).json()
    assert anonymous["recentSearches"] == []
    assert anonymous["suggestedTags"][:2] == ["audio", "fashion"]

    cleared = client.delete("/search", params={"workspaceId": "ws-1", "clearAll": "true"})
    assert cleared.status_code == 200
    assert cleared.json() == {"success": True}

    mine = client.get("/search", params={"workspaceId": "ws-1"}, headers=USER).json()
    entry_id = mine["recentSearches"][0]["id"]
    assert [entry["query"] for entry in mine["recentSearches"]] == ["private query"]

    assert client.delete("/search", params={"id": entry_id}).status_code == 200
    mine = client.get("/search", params={"workspaceId": "ws-1"}, headers=USER).json()
    assert [entry["query"] for entry in mine["recentSearches"]] == ["private query"]
