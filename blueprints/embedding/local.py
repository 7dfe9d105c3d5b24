"""In-process embedding provider backed by sentence-transformers."""
from __future__ import annotations
import threading
from typing import Any, Dict, List, Sequence
from ..common.constants import PROVIDER_LOCAL
from ..common.errors import EmbeddingError
from ..common.logging import get_logger
from .provider import EmbeddingProvider

log = get_logger("embedding/local")

DEFAULT_MODEL = "sentence-transformers/all-mpnet-base-v2"

MODEL_DIMENSIONS = {
    "sentence-transformers/all-MiniLM-L6-v2": 384,
    "sentence-transformers/all-MiniLM-L12-v2": 384,
    "sentence-transformers/all-mpnet-base-v2": 768,
    "sentence-transformers/multi-qa-MiniLM-L6-cos-v1": 384,
    "thenlper/gte-small": 384,
    "thenlper/gte-base": 768,
}


def truncate_text(text: str, max_length: int) -> str:
    """Cut ``text`` to ``max_length`` chars, preferring a word boundary."""
    if len(text) <= max_length:
        return text
    cut = text[:max_length]
    if " " in cut and not text[max_length].isspace():
        cut = cut.rsplit(" ", 1)[0]
    return cut.rstrip() or text[:max_length]


class LocalEmbeddingProvider(EmbeddingProvider):
    name = PROVIDER_LOCAL

    def __init__(self, model: str = DEFAULT_MODEL, device: str = "cpu", batch_size: int = 32,
                 max_length: int = 512, **options: Any):
        super().__init__(**options)
        self.model_name = model
        self.device = device
        self.batch_size = batch_size
        self.max_length = max_length
        self._model = None
        self._model_lock = threading.Lock()

    def _load_model(self):
        from sentence_transformers import SentenceTransformer
        return SentenceTransformer(self.model_name, device=self.device)

    def _ensure_model(self):
        if self._model is None:
            with self._model_lock:
                if self._model is None:
                    log.info(f"Loading local embedding model: {self.model_name} ({self.device})")
                    try:
                        self._model = self._load_model()
                    except Exception as e:
                        raise EmbeddingError(f"failed to load {self.model_name}: {e}", provider=self.name) from e
        return self._model

    def _encode(self, texts: List[str], normalize: bool) -> List[List[float]]:
        model = self._ensure_model()
        try:
            vecs = model.encode(
                [truncate_text(t, self.max_length) for t in texts],
                batch_size=self.batch_size,
                normalize_embeddings=normalize,
            )
        except Exception as e:
            raise EmbeddingError(f"local encode failed: {e}", provider=self.name) from e
        return [list(v) for v in vecs]

    def _generate(self, text: str, **options: Any) -> List[float]:
        return self._encode([text], bool(options.get("normalize")))[0]

    def _generate_batch(self, texts: Sequence[str], **options: Any) -> List[List[float]]:
        return self._encode(list(texts), bool(options.get("normalize")))

    def dimensions(self) -> int:
        if self.expected_dim is not None:
            return self.expected_dim
        known = MODEL_DIMENSIONS.get(self.model_name)
        if known:
            return known
        return int(self._ensure_model().get_sentence_embedding_dimension())

    def healthy(self) -> bool:
        try:
            self._ensure_model()
            return True
        except EmbeddingError as e:
            log.error(f"Health check failed: {e}")
            return False

    def info(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "model": self.model_name,
            "device": self.device,
            "batch_size": self.batch_size,
            "max_length": self.max_length,
            "dimensions": self.dimensions(),
            "model_loaded": self._model is not None,
        }
