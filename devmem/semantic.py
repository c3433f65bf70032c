from __future__ import annotations

import logging
import os
from collections.abc import Iterable

import sqlite_vec

DEFAULT_EMBEDDING_MODEL = "BAAI/bge-small-en-v1.5"

logger = logging.getLogger(__name__)


class _FastEmbedClient:
    def __init__(self, model: str) -> None:
        try:
            from fastembed import TextEmbedding
        except Exception as exc:  # pragma: no cover
            raise RuntimeError("fastembed is required for observation embeddings") from exc
        self.model = model
        self._embedder = TextEmbedding(model_name=model)

    def embed(self, texts: Iterable[str]) -> list[list[float]]:
        embeddings = self._embedder.embed(list(texts))
        return [list(vec) for vec in embeddings]


_CLIENT: _FastEmbedClient | None = None


def embeddings_disabled() -> bool:
    return os.getenv("DEVMEM_EMBEDDING_DISABLED", "").lower() in {"1", "true", "yes"}


def get_embedding_client() -> _FastEmbedClient | None:
    global _CLIENT
    if _CLIENT is not None:
        return _CLIENT
    if embeddings_disabled():
        return None
    model = os.getenv("DEVMEM_EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL)
    try:
        _CLIENT = _FastEmbedClient(model=model)
    except Exception as exc:
        # Records are still stored; duplicates fall back to title matching.
        logger.warning("embeddings unavailable (%s): %s", model, exc)
        _CLIENT = None
    return _CLIENT


def build_embedding_text(title: str | None, narrative: str | None) -> str:
    return f"{title or ''} {narrative or ''}".strip()


def embed_texts(texts: Iterable[str]) -> list[bytes]:
    client = get_embedding_client()
    if not client:
        return []
    embeddings = client.embed(texts)
    return [sqlite_vec.serialize_float32(list(vector)) for vector in embeddings]


def embed_text(text: str) -> bytes | None:
    if not text.strip():
        return None
    vectors = embed_texts([text])
    return vectors[0] if vectors else None
