"""Embedding service: provider registry, fallback chain and usage accounting."""
from __future__ import annotations
import copy
import threading
import time
from typing import Any, Dict, Iterable, List, Sequence, Type
from ..common.config import SETTINGS, Settings
from ..common.errors import EmbeddingError
from ..common.logging import get_logger
from .provider import EmbeddingProvider
from .registry import PROVIDERS, create

log = get_logger("embedding/service")


def _empty_stats() -> Dict[str, Any]:
    return {
        "total_requests": 0,
        "successful_requests": 0,
        "failed_requests": 0,
        "provider_usage": {},
        "cache_hits": 0,
        "average_response_time": 0.0,
    }


class EmbeddingService:
    """
    One explicitly constructed instance is shared by the store.

    All mutable state (the instance registry and the statistics) sits behind
    ``self._lock``; provider calls themselves run outside it.
    """

    def __init__(self, default_provider: str, fallback_providers: Iterable[str] = (),
                 provider_options: Dict[str, Dict[str, Any]] | None = None,
                 registry: Dict[str, Type[EmbeddingProvider]] | None = None,
                 cache: bool = True):
        self.default_provider = default_provider
        self.fallback_providers = tuple(fallback_providers)
        self.cache = cache
        self._provider_options = provider_options or {}
        self._registry = PROVIDERS if registry is None else registry
        self._providers: Dict[str, EmbeddingProvider] = {}
        self._lock = threading.Lock()
        self._stats = _empty_stats()
        log.info(
            f"EmbeddingService ready: default={self.default_provider} "
            f"fallbacks={list(self.fallback_providers)}"
        )

    @classmethod
    def from_settings(cls, settings: Settings = SETTINGS) -> "EmbeddingService":
        return cls(
            default_provider=settings.EMBED_DEFAULT_PROVIDER,
            fallback_providers=settings.EMBED_FALLBACK_PROVIDERS,
            provider_options=settings.provider_options(),
            cache=settings.EMBED_CACHE,
        )

    # ---- providers ------------------------------------------------------
    def get_provider(self, name: str) -> EmbeddingProvider:
        provider = self._providers.get(name)
        if provider is not None:
            return provider
        with self._lock:
            provider = self._providers.get(name)
            if provider is None:
                provider = create(name, registry=self._registry, **self._provider_options.get(name, {}))
                self._providers[name] = provider
                log.info(f"Constructed embedding provider '{name}' ({type(provider).__name__})")
            return provider

    def available_providers(self) -> List[str]:
        return list(self._registry.keys())

    def attempt_order(self, provider: str | None = None,
                      fallback_providers: Sequence[str] | None = None) -> List[str]:
        """Ordered, de-duplicated provider ids to try for one ``embed`` call."""
        if provider:
            chain = [provider, *(fallback_providers or ()), *self.fallback_providers]
        else:
            chain = [self.default_provider, *self.fallback_providers]
        seen, order = set(), []
        for pid in chain:
            if pid and pid not in seen:
                seen.add(pid)
                order.append(pid)
        return order

    # ---- embedding ------------------------------------------------------
    def embed(self, text: str, provider: str | None = None,
              fallback_providers: Sequence[str] | None = None, **options: Any) -> List[float]:
        start = time.perf_counter()
        with self._lock:
            self._stats["total_requests"] += 1
        options.setdefault("cache", self.cache)

        order = self.attempt_order(provider, fallback_providers)
        last_error: BaseException | None = None
        for pid in order:
            try:
                instance = self.get_provider(pid)
                hits_before = instance.stats()["cache_hits"]
                vec = instance.embed(text, **dict(options))
            except Exception as e:
                last_error = e
                self._record_attempt(pid, ok=False)
                log.warning(f"Provider {pid} failed: {e}")
                continue
            cache_hits = instance.stats()["cache_hits"] - hits_before
            self._record_attempt(pid, ok=True)
            with self._lock:
                self._stats["successful_requests"] += 1
                self._stats["cache_hits"] += max(cache_hits, 0)
                self._update_response_time(time.perf_counter() - start)
            return vec

        with self._lock:
            self._stats["failed_requests"] += 1
            self._update_response_time(time.perf_counter() - start)
        log.error(f"Embedding generation failed: all providers failed ({', '.join(order)})")
        raise EmbeddingError(
            f"all providers failed ({', '.join(order)}): {last_error}", last_error=last_error
        ) from last_error

    def embed_batch(self, texts: Sequence[str], provider: str | None = None, **options: Any) -> List[List[float]]:
        if not texts:
            return []
        n = len(texts)
        start = time.perf_counter()
        with self._lock:
            self._stats["total_requests"] += n

        pid = provider or self.default_provider
        try:
            instance = self.get_provider(pid)
            vecs = instance.embed_batch(list(texts), **options)
        except Exception as e:
            self._record_attempt(pid, ok=False, count=n)
            with self._lock:
                self._stats["failed_requests"] += n
                self._update_response_time(time.perf_counter() - start)
            log.error(f"Batch embedding generation failed on {pid}: {e}")
            if isinstance(e, EmbeddingError):
                raise
            raise EmbeddingError(f"{pid}: batch embedding failed: {e}", provider=pid, last_error=e) from e

        self._record_attempt(pid, ok=True, count=n)
        with self._lock:
            self._stats["successful_requests"] += n
            self._update_response_time(time.perf_counter() - start)
        return vecs

    def dimensions(self, provider: str | None = None) -> int:
        return self.get_provider(provider or self.default_provider).dimensions()

    # ---- health & stats -------------------------------------------------
    def health_check(self) -> Dict[str, Dict[str, Any]]:
        results: Dict[str, Dict[str, Any]] = {}
        for pid in self.available_providers():
            try:
                instance = self.get_provider(pid)
                results[pid] = {
                    "healthy": instance.healthy(),
                    "info": instance.info(),
                    "stats": instance.stats(),
                }
            except Exception as e:
                log.warning(f"Health check for {pid} raised: {e}")
                results[pid] = {"healthy": False, "error": str(e)}
        return results

    def service_stats(self) -> Dict[str, Any]:
        with self._lock:
            stats = copy.deepcopy(self._stats)
            providers = list(self._providers.values())
        total = stats["total_requests"]
        stats["success_rate"] = round(stats["successful_requests"] / total * 100, 2) if total else 0.0
        stats["provider_count"] = len(providers)
        stats["cache_stats"] = self._aggregate_cache_stats(providers)
        return stats

    def reset_stats(self) -> None:
        with self._lock:
            self._stats = _empty_stats()
            providers = list(self._providers.values())
        for p in providers:
            p.clear_cache()

    def clear_caches(self) -> Dict[str, int]:
        with self._lock:
            providers = dict(self._providers)
        return {pid: p.clear_cache() for pid, p in providers.items()}

    # ---- internals ------------------------------------------------------
    def _record_attempt(self, pid: str, ok: bool, count: int = 1) -> None:
        with self._lock:
            usage = self._stats["provider_usage"].setdefault(
                pid, {"attempts": 0, "successes": 0, "failures": 0}
            )
            usage["attempts"] += count
            usage["successes" if ok else "failures"] += count

    def _update_response_time(self, duration: float) -> None:
        # caller holds self._lock
        n = self._stats["total_requests"]
        avg = self._stats["average_response_time"]
        self._stats["average_response_time"] = avg + (duration - avg) / n

    @staticmethod
    def _aggregate_cache_stats(providers: List[EmbeddingProvider]) -> Dict[str, float]:
        if not providers:
            return {"total_cache_size": 0, "average_hit_rate": 0.0}
        per = [p.cache_stats() for p in providers]
        return {
            "total_cache_size": sum(int(s["size"]) for s in per),
            "average_hit_rate": round(sum(s["hit_rate"] for s in per) / len(per), 3),
        }
