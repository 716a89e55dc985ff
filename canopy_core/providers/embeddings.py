from __future__ import annotations

import hashlib
import importlib
import os
import random
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Callable, Iterable, Protocol

from canopy_core.errors import EmbeddingUnavailableError, RecoverableError
from canopy_core.logging import get_logger

logger = get_logger(__name__)


class TextEmbedder(Protocol):
    def encode(self, texts: Iterable[str]) -> list[list[float]]: ...


def _use_real_models() -> bool:
    return os.getenv("USE_REAL_MODELS") == "1"


def _model_dir() -> str:
    return os.getenv("MODEL_DIR", "/app/models")


def _text_model_name() -> str:
    return os.getenv("TEXT_MODEL_NAME", "sentence-transformers/all-MiniLM-L6-v2")


def _embedding_device() -> str:
    return os.getenv("EMBEDDING_DEVICE", "cpu")


def _seed_from_bytes(payload: bytes) -> int:
    digest = hashlib.sha256(payload).digest()
    return int.from_bytes(digest[:8], "big")


def _deterministic_vector(seed: int, dim: int) -> list[float]:
    rng = random.Random(seed)
    return [rng.uniform(-1.0, 1.0) for _ in range(dim)]


class StubTextEmbedder:
    def __init__(self, dim: int) -> None:
        self.dim = dim

    def encode(self, texts: Iterable[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for text in texts:
            seed = _seed_from_bytes(text.encode("utf-8"))
            vectors.append(_deterministic_vector(seed, self.dim))
        return vectors


class RealTextEmbedder:
    def __init__(self) -> None:
        from sentence_transformers import SentenceTransformer

        self.model = SentenceTransformer(
            _text_model_name(),
            cache_folder=_model_dir(),
            device=_embedding_device(),
        )

    def encode(self, texts: Iterable[str]) -> list[list[float]]:
        inputs = list(texts)
        vectors = self.model.encode(
            inputs,
            convert_to_numpy=True,
            normalize_embeddings=True,
        )
        return vectors.tolist()


_STUB_CACHE: dict[int, StubTextEmbedder] = {}
_REAL_TEXT: RealTextEmbedder | None = None
_CUSTOM: TextEmbedder | None = None


def _load_custom_embedder(spec: str) -> TextEmbedder:
    global _CUSTOM
    if _CUSTOM is not None:
        return _CUSTOM
    module_path, _, attr = spec.partition(":")
    if not module_path or not attr:
        raise RecoverableError("CANOPY_EMBEDDER must be in the form module.path:callable")
    try:
        module = importlib.import_module(module_path)
    except Exception as exc:
        raise RecoverableError(
            f"Failed to import embedder module '{module_path}': {exc}"
        ) from exc
    factory = getattr(module, attr, None)
    if factory is None or not callable(factory):
        raise RecoverableError(f"CANOPY_EMBEDDER target '{attr}' not found or not callable")
    _CUSTOM = factory()
    logger.info("Custom text embedder loaded", extra={"embedder": spec})
    return _CUSTOM


def get_text_embedder(dim: int) -> TextEmbedder:
    spec = os.getenv("CANOPY_EMBEDDER", "").strip()
    if spec:
        return _load_custom_embedder(spec)
    if _use_real_models():
        global _REAL_TEXT
        if _REAL_TEXT is None:
            _REAL_TEXT = RealTextEmbedder()
        return _REAL_TEXT
    embedder = _STUB_CACHE.get(dim)
    if embedder is None:
        embedder = StubTextEmbedder(dim)
        _STUB_CACHE[dim] = embedder
    return embedder


def reset_embedding_cache() -> None:
    global _REAL_TEXT, _CUSTOM
    _STUB_CACHE.clear()
    _REAL_TEXT = None
    _CUSTOM = None


def _worker_count() -> int:
    raw = os.getenv("EMBEDDING_WORKERS", "2")
    try:
        value = int(raw)
    except ValueError:
        value = 2
    return max(1, value)


_EXECUTOR = ThreadPoolExecutor(max_workers=_worker_count())


def embedding_timeout_seconds() -> float:
    raw = os.getenv("EMBEDDING_TIMEOUT_S", "5")
    try:
        return max(0.0, float(raw))
    except ValueError:
        return 5.0


def embed_query(
    text: str,
    *,
    dim: int,
    embedder_factory: Callable[[int], TextEmbedder] | None = None,
) -> list[float]:
    """Embed a query string, raising EmbeddingUnavailableError on any failure."""
    factory = embedder_factory or get_text_embedder
    timeout_s = embedding_timeout_seconds()

    def _encode() -> list[float]:
        vectors = factory(dim).encode([text])
        if not vectors or not vectors[0]:
            raise EmbeddingUnavailableError("Embedding provider returned no vector")
        return [float(value) for value in vectors[0]]

    try:
        if timeout_s <= 0:
            return _encode()
        return _EXECUTOR.submit(_encode).result(timeout=timeout_s)
    except EmbeddingUnavailableError:
        raise
    except FutureTimeoutError as exc:
        raise EmbeddingUnavailableError(
            f"Query embedding timed out after {timeout_s:.2f}s"
        ) from exc
    except Exception as exc:
        raise EmbeddingUnavailableError(f"Query embedding failed: {exc}") from exc
