import pytest

from canopy_core.errors import EmbeddingUnavailableError, ValidationError
from canopy_core.stores.workspace import format_time, keyword_pattern


def test_format_time():
    assert format_time(0) == "0:00"
    assert format_time(75.9) == "1:15"
    assert format_time(3605) == "60:05"
    assert format_time(None) == "0:00"


def test_keyword_pattern_escapes_wildcards():
    assert keyword_pattern(" 100% ") == "%100\\%%"
    assert keyword_pattern("snake_case") == "%snake\\_case%"


def test_semantic_search_scoped_to_workspace(seeded_store, unit_vector):
    results = seeded_store.search_workspace(
        workspace_id="ws-1",
        query="nothing lexical",
        embedding=unit_vector(0),
        search_types=["semantic"],
        limit=10,
    )
    assert [item.document_id for item in results] == ["d-airpods"]
    assert results[0].similarity == pytest.approx(1.0, abs=1e-5)
    assert results[0].search_mode == "semantic"
    assert results[0].tags == ("airpods", "apple", "audio")


def test_visual_search_returns_documents_and_frames(seeded_store, unit_vector):
    results = seeded_store.search_workspace(
        workspace_id="ws-1",
        query="beach",
        embedding=unit_vector(2),
        search_types=["visual"],
        limit=10,
    )
    by_id = {item.id: item for item in results}
    assert set(by_id) == {"d-video", "f-beach-12"}
    frame = by_id["f-beach-12"]
    assert frame.document_id == "d-video"
    assert frame.start_time == 12.0
    assert frame.description == "Waves at sunset"
    assert frame.thumbnail_path == "ws-1/beach-12.jpg"
    assert by_id["d-video"].start_time is None


def test_text_mode_uses_flat_lexical_score(seeded_store):
    results = seeded_store.search_workspace(
        workspace_id="ws-1",
        query="airpods",
        embedding=None,
        search_types=["text"],
        limit=10,
    )
    assert [item.document_id for item in results] == ["d-airpods"]
    assert results[0].similarity == 0.5
    assert results[0].search_mode == "text"


def test_hybrid_search_truncates_to_limit(seeded_store, unit_vector):
    results = seeded_store.search_workspace(
        workspace_id="ws-1",
        query="a",
        embedding=unit_vector(0),
        search_types=["semantic", "text"],
        limit=2,
    )
    assert len(results) == 2
    assert results[0].document_id == "d-airpods"
    assert results[0].similarity >= results[1].similarity


def test_vector_modes_require_embedding(seeded_store):
    with pytest.raises(EmbeddingUnavailableError):
        seeded_store.search_workspace(
            workspace_id="ws-1",
            query="airpods",
            embedding=None,
            search_types=["semantic", "text"],
            limit=10,
        )


def test_detailed_analysis_is_parsed(seeded_store):
    results = seeded_store.search_documents_text(
        workspace_id="ws-1", query="red dress", limit=5, similarity=0.5
    )
    assert [item.id for item in results] == ["d-red"]
    analysis = results[0].detailed_analysis
    assert analysis is not None
    assert analysis.clothing[0].type == "dress"
    assert analysis.objects[0].name == "handbag"


def test_auxiliary_sources(seeded_store):
    scratches = seeded_store.search_scratches(
        workspace_id="ws-1", query="AIRPODS", limit=5, similarity=0.75
    )
    notes = seeded_store.search_notes(
        workspace_id="ws-1", query="airpods", limit=5, similarity=0.75
    )
    transcripts = seeded_store.search_link_transcripts(
        workspace_id="ws-1", query="airpods", limit=5, similarity=0.8
    )
    assert [item.id for item in scratches] == ["s-1"]
    assert [item.id for item in notes] == ["n-1"]
    assert [item.id for item in transcripts] == ["l-1", "l-1"]
    first = transcripts[0]
    assert first.document_id == "l-1"
    assert first.title == "AirPods unboxing"
    assert first.description == "[1:15] these airpods sound great"
    assert first.video_url == "https://video.example/airpods.mp4"
    assert first.similarity == 0.8
    assert first.result_type == "link"


def test_untitled_link_uses_video_title(seeded_store):
    transcripts = seeded_store.search_link_transcripts(
        workspace_id="ws-1", query="chatter", limit=5, similarity=0.8
    )
    assert transcripts[0].title == "Video"
    assert transcripts[0].description == "[0:05] unrelated chatter"


def test_other_workspace_is_invisible(seeded_store):
    assert seeded_store.search_link_transcripts(
        workspace_id="ws-2", query="airpods", limit=5, similarity=0.8
    ) == []
    foreign = seeded_store.search_documents_text(
        workspace_id="ws-2", query="airpods", limit=5, similarity=0.5
    )
    assert [item.id for item in foreign] == ["d-foreign"]


def test_document_tags_in_creation_order(seeded_store):
    assert seeded_store.document_tags("ws-1") == [
        ["airpods", "apple", "audio"],
        ["red dress", "fashion", "audio"],
        ["fashion"],
    ]


def test_seed_requires_workspace(workspace_store):
    with pytest.raises(ValidationError):
        workspace_store.load_seed({"documents": []})


def test_seed_computes_missing_embeddings(workspace_store, unit_vector):
    seen: list[str] = []

    def _embed(text: str):
        seen.append(text)
        return unit_vector(3)

    counts = workspace_store.load_seed(
        {
            "workspace_id": "ws-9",
            "documents": [{"id": "d", "title": "Plan", "description": "Q3"}],
        },
        embed=_embed,
    )
    assert counts["documents"] == 1
    assert seen == ["Plan Q3"]
    results = workspace_store.search_workspace(
        workspace_id="ws-9",
        query="zzz",
        embedding=unit_vector(3),
        search_types=["semantic"],
        limit=5,
    )
    assert [item.id for item in results] == ["d"]


def test_frame_requires_start_time(workspace_store):
    with pytest.raises(ValidationError):
        workspace_store.add_frame("ws-1", {"document_id": "d-video"})
