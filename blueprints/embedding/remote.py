"""Remote embedding providers reached over HTTP (Ollama, OpenAI-compatible)."""
from __future__ import annotations
from abc import abstractmethod
from typing import Any, Dict, List, Sequence
import httpx
from tenacity import Retrying, stop_after_attempt, wait_exponential, retry_if_exception_type
from ..common.constants import PROVIDER_OLLAMA, PROVIDER_OPENAI
from ..common.errors import EmbeddingError
from ..common.logging import get_logger
from .provider import EmbeddingProvider

log = get_logger("embedding/remote")

MODEL_DIMENSIONS = {
    "nomic-embed-text": 768,
    "mxbai-embed-large": 1024,
    "all-minilm": 384,
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "text-embedding-004": 768,
}


class HTTPEmbeddingProvider(EmbeddingProvider):
    """Shared httpx plumbing: bounded timeout per attempt, retry on transport errors."""

    endpoint: str = ""

    def __init__(self, base_url: str, model: str, timeout: float = 30.0, retries: int = 3,
                 transport: httpx.BaseTransport | None = None, **options: Any):
        super().__init__(timeout=timeout, **options)
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.retries = max(1, retries)
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {}

    @abstractmethod
    def _payload(self, inputs: List[str], **options: Any) -> Dict[str, Any]:
        ...

    @abstractmethod
    def _parse(self, body: Dict[str, Any]) -> List[List[float]]:
        ...

    def _post(self, inputs: List[str], **options: Any) -> List[List[float]]:
        url = f"{self.base_url}{self.endpoint}"
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                for attempt in Retrying(
                    reraise=True,
                    stop=stop_after_attempt(self.retries),
                    wait=wait_exponential(multiplier=1, min=1, max=8),
                    retry=retry_if_exception_type(httpx.TransportError),
                ):
                    with attempt:
                        r = client.post(url, json=self._payload(inputs, **options), headers=self._headers())
                        r.raise_for_status()
                        body = r.json()
        except httpx.TimeoutException as e:
            raise EmbeddingError(f"{self.name}: request timed out after {self.timeout}s", provider=self.name) from e
        except httpx.HTTPError as e:
            raise EmbeddingError(f"{self.name}: {e}", provider=self.name) from e
        except ValueError as e:
            raise EmbeddingError(f"{self.name}: invalid JSON response: {e}", provider=self.name) from e

        try:
            vecs = self._parse(body)
        except (KeyError, TypeError, IndexError) as e:
            raise EmbeddingError(f"{self.name}: unexpected response shape: {e}", provider=self.name) from e
        if len(vecs) != len(inputs):
            raise EmbeddingError(f"{self.name}: expected {len(inputs)} vectors, got {len(vecs)}", provider=self.name)
        log.debug(f"{self.name} embedded {len(inputs)} text(s) with {self.model}")
        return vecs

    def _generate(self, text: str, **options: Any) -> List[float]:
        return self._post([text], **options)[0]

    def _generate_batch(self, texts: Sequence[str], **options: Any) -> List[List[float]]:
        return self._post(list(texts), **options)

    def dimensions(self) -> int:
        if self.expected_dim is not None:
            return self.expected_dim
        known = MODEL_DIMENSIONS.get(self.model)
        if known:
            return known
        return len(self.embed("dimension probe", cache=False))

    def healthy(self) -> bool:
        try:
            self.embed("health check", cache=False)
            return True
        except EmbeddingError as e:
            log.error(f"Health check failed for {self.name}: {e}")
            return False

    def info(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "base_url": self.base_url,
            "model": self.model,
            "timeout": self.timeout,
            "dimensions": self.expected_dim or MODEL_DIMENSIONS.get(self.model),
        }


class OllamaEmbeddingProvider(HTTPEmbeddingProvider):
    name = PROVIDER_OLLAMA
    endpoint = "/api/embed"

    def __init__(self, base_url: str = "http://localhost:11434", model: str = "nomic-embed-text", **options: Any):
        super().__init__(base_url=base_url, model=model, **options)

    def _payload(self, inputs: List[str], **options: Any) -> Dict[str, Any]:
        return {"model": options.get("model") or self.model, "input": inputs}

    def _parse(self, body: Dict[str, Any]) -> List[List[float]]:
        return body["embeddings"]


class OpenAIEmbeddingProvider(HTTPEmbeddingProvider):
    name = PROVIDER_OPENAI
    endpoint = "/embeddings"

    def __init__(self, base_url: str = "https://api.openai.com/v1", model: str = "text-embedding-3-small",
                 api_key: str = "", **options: Any):
        super().__init__(base_url=base_url, model=model, **options)
        self.api_key = api_key

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise EmbeddingError("openai: OPENAI_API_KEY is not set", provider=self.name)
        return {"Authorization": f"Bearer {self.api_key}"}

    def _payload(self, inputs: List[str], **options: Any) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"model": options.get("model") or self.model, "input": inputs}
        # text-embedding-3-* can shorten vectors server-side to match the column
        if self.expected_dim is not None:
            payload["dimensions"] = self.expected_dim
        return payload

    def _parse(self, body: Dict[str, Any]) -> List[List[float]]:
        rows = sorted(body["data"], key=lambda d: d.get("index", 0))
        return [row["embedding"] for row in rows]
