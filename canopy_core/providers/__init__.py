from canopy_core.providers.embeddings import (
    StubTextEmbedder,
    TextEmbedder,
    embed_query,
    get_text_embedder,
    reset_embedding_cache,
)

__all__ = [
    "StubTextEmbedder",
    "TextEmbedder",
    "embed_query",
    "get_text_embedder",
    "reset_embedding_cache",
]
