import logging
import os
import threading
import time
from typing import Callable, List, Optional, Sequence

import numpy as np
import requests

from models import Subsidy

logger = logging.getLogger(__name__)

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_BASE = os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_TIMEOUT = float(os.getenv("EMBEDDING_TIMEOUT_SECONDS", "15"))
INDEX_RETRY_AFTER = float(os.getenv("INDEX_RETRY_AFTER_SECONDS", "60"))

EmbedFn = Callable[[List[str]], List[List[float]]]


class EmbeddingError(Exception):
    pass


def is_configured() -> bool:
    return bool(OPENAI_API_KEY)


def embed_texts(texts: List[str]) -> List[List[float]]:
    """
    Call the OpenAI embeddings endpoint and return one vector per input text,
    in input order.
    """
    if not OPENAI_API_KEY:
        raise EmbeddingError("OPENAI_API_KEY not set; cannot compute embeddings.")

    url = f"{OPENAI_BASE.rstrip('/')}/embeddings"
    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {OPENAI_API_KEY}",
    }
    payload = {"model": EMBEDDING_MODEL, "input": texts}

    try:
        resp = requests.post(url, headers=headers, json=payload, timeout=EMBEDDING_TIMEOUT)
    except requests.RequestException as exc:
        raise EmbeddingError(f"Embedding request failed: {exc}") from exc

    if resp.status_code == 429:
        raise EmbeddingError("Rate limited by embedding API (HTTP 429).")
    if resp.status_code >= 400:
        raise EmbeddingError(f"Embedding API error {resp.status_code}: {resp.text}")

    data = resp.json().get("data") or []
    if len(data) != len(texts):
        raise EmbeddingError(f"Expected {len(texts)} embeddings, got {len(data)}.")
    # the API may return items out of order; "index" is authoritative
    data = sorted(data, key=lambda item: item.get("index", 0))
    return [item["embedding"] for item in data]


class SemanticIndex:
    """
    In-memory vector index over a fixed catalog.

    Built lazily on the first search and reused for the life of the process.
    The build runs under a lock, so concurrent first callers embed the catalog
    once. After a failed build, searches raise EmbeddingError immediately until
    ``retry_after`` seconds have passed, then the next caller tries again.
    """

    def __init__(self, subsidies: Sequence[Subsidy], embed_fn: Optional[EmbedFn] = None,
                 retry_after: float = INDEX_RETRY_AFTER, clock: Callable[[], float] = time.monotonic):
        self._subsidies = list(subsidies)
        self._embed = embed_fn or embed_texts
        self._retry_after = retry_after
        self._clock = clock
        self._lock = threading.Lock()
        self._ids: List[str] = []
        self._matrix: Optional[np.ndarray] = None
        self._failed_at: Optional[float] = None

    @property
    def is_built(self) -> bool:
        return self._matrix is not None

    def _check_cooldown(self) -> None:
        if self._failed_at is None:
            return
        waited = self._clock() - self._failed_at
        if waited < self._retry_after:
            raise EmbeddingError(
                f"Semantic index build failed {waited:.1f}s ago; retrying after {self._retry_after:.0f}s."
            )

    def _ensure_built(self) -> np.ndarray:
        if self._matrix is not None:
            return self._matrix
        self._check_cooldown()
        with self._lock:
            if self._matrix is None:
                # callers queued behind a failed build must not start another one
                self._check_cooldown()
                if not self._subsidies:
                    raise EmbeddingError("No subsidy documents to create embeddings from.")
                logger.info("Building semantic index for %d subsidies", len(self._subsidies))
                try:
                    vectors = self._embed([s.to_text() for s in self._subsidies])
                    matrix = _normalize_rows(np.asarray(vectors, dtype=float))
                except Exception:
                    self._failed_at = self._clock()
                    raise
                self._ids = [s.id for s in self._subsidies]
                self._matrix = matrix
                self._failed_at = None
        return self._matrix

    def search(self, query: str, k: int = 5) -> List[str]:
        """Return up to k subsidy ids ranked by cosine similarity to the query."""
        matrix = self._ensure_built()
        query_vec = _normalize_rows(np.asarray(self._embed([query]), dtype=float))[0]
        scores = matrix @ query_vec
        order = np.argsort(-scores, kind="stable")[:k]
        return [self._ids[i] for i in order]


def _normalize_rows(matrix: np.ndarray) -> np.ndarray:
    if matrix.ndim != 2 or matrix.shape[0] == 0:
        raise EmbeddingError(f"Unexpected embedding shape {matrix.shape}.")
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms
