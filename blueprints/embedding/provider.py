"""Embedding provider contract shared by the local and remote backends."""
from __future__ import annotations
import math
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Sequence
from ..common.errors import EmbeddingError
from ..common.logging import get_logger

log = get_logger("embedding/provider")


class EmbeddingProvider(ABC):
    """
    Text -> fixed-dimension vector.

    Subclasses implement ``_generate`` (single text) and may override
    ``_generate_batch`` when the backend batches natively. ``embed`` wraps
    generation with the per-provider cache and the dimensionality check.
    """

    name: str = "base"

    def __init__(self, expected_dim: int | None = None, timeout: float | None = None, **options: Any):
        self.expected_dim = expected_dim
        self.timeout = timeout
        self.options = options
        self._cache: Dict[tuple, List[float]] = {}
        self._cache_lock = threading.Lock()
        self._stats = {"embeddings_generated": 0, "cache_hits": 0}

    # ---- contract -------------------------------------------------------
    @abstractmethod
    def _generate(self, text: str, **options: Any) -> List[float]:
        ...

    def _generate_batch(self, texts: Sequence[str], **options: Any) -> List[List[float]]:
        return [self._generate(t, **options) for t in texts]

    @abstractmethod
    def dimensions(self) -> int:
        ...

    def healthy(self) -> bool:
        return True

    def info(self) -> Dict[str, Any]:
        return {"name": self.name, "dimensions": self.dimensions(), "timeout": self.timeout}

    # ---- public API -----------------------------------------------------
    def embed(self, text: str, **options: Any) -> List[float]:
        if text is None or not text.strip():
            raise EmbeddingError("cannot embed empty text", provider=self.name)
        use_cache = options.pop("cache", True)
        key = self._cache_key(text, **options)
        if use_cache:
            with self._cache_lock:
                hit = self._cache.get(key)
                if hit is not None:
                    self._stats["cache_hits"] += 1
                    return list(hit)

        vec = self._finish(self._generate(text, **options), **options)

        with self._cache_lock:
            if use_cache:
                self._cache[key] = vec
            self._stats["embeddings_generated"] += 1
        return list(vec)

    def embed_batch(self, texts: Sequence[str], **options: Any) -> List[List[float]]:
        """Embed many texts; maps ``embed`` unless the backend batches natively."""
        if not texts:
            return []
        if any(t is None or not t.strip() for t in texts):
            raise EmbeddingError("cannot embed empty text", provider=self.name)
        options.pop("cache", None)
        vecs = [self._finish(v, **options) for v in self._generate_batch(list(texts), **options)]
        if len(vecs) != len(texts):
            raise EmbeddingError(f"expected {len(texts)} vectors, got {len(vecs)}", provider=self.name)
        with self._cache_lock:
            self._stats["embeddings_generated"] += len(vecs)
        return vecs

    def stats(self) -> Dict[str, int]:
        with self._cache_lock:
            return dict(self._stats)

    def cache_stats(self) -> Dict[str, float]:
        with self._cache_lock:
            generated = max(self._stats["embeddings_generated"], 1)
            return {"size": len(self._cache), "hit_rate": self._stats["cache_hits"] / generated}

    def clear_cache(self) -> int:
        with self._cache_lock:
            cleared = len(self._cache)
            self._cache.clear()
        return cleared

    # ---- helpers --------------------------------------------------------
    def _cache_key(self, text: str, **options: Any) -> tuple:
        return (text, options.get("model"), bool(options.get("normalize")))

    def _finish(self, vec: Sequence[float], **options: Any) -> List[float]:
        out = [float(x) for x in vec]
        if self.expected_dim is not None and len(out) != self.expected_dim:
            raise EmbeddingError(
                f"{self.name}: expected dim {self.expected_dim}, got {len(out)}", provider=self.name
            )
        if options.get("normalize"):
            out = normalize_vector(out)
        return out


def normalize_vector(vec: Sequence[float]) -> List[float]:
    magnitude = math.sqrt(sum(x * x for x in vec))
    if magnitude == 0:
        return list(vec)
    return [x / magnitude for x in vec]
