"""
Unit tests for EmbeddingService: fallback ordering, accounting, batching, health.
"""
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace

import pytest

from blueprints.common.errors import EmbeddingError
from blueprints.embedding import service as service_module
from blueprints.embedding.provider import EmbeddingProvider
from blueprints.embedding.service import EmbeddingService


class StaticProvider(EmbeddingProvider):
    name = "static"

    def __init__(self, value=1.0, dim=4, **options):
        super().__init__(**options)
        self.value = value
        self.dim = dim
        self.calls = 0

    def _generate(self, text, **options):
        self.calls += 1
        return [self.value] * self.dim

    def dimensions(self):
        return self.dim


class BrokenProvider(EmbeddingProvider):
    name = "broken"

    def _generate(self, text, **options):
        raise EmbeddingError("backend unreachable", provider=self.name)

    def dimensions(self):
        return 4

    def healthy(self):
        raise RuntimeError("probe exploded")


class NativeBatchProvider(StaticProvider):
    name = "batch"

    def __init__(self, **options):
        super().__init__(**options)
        self.batch_calls = 0

    def _generate_batch(self, texts, **options):
        self.batch_calls += 1
        return [[float(i)] * self.dim for i in range(len(texts))]


class SlowProvider(StaticProvider):
    constructed = 0
    _count_lock = threading.Lock()

    def __init__(self, **options):
        time.sleep(0.05)
        with SlowProvider._count_lock:
            SlowProvider.constructed += 1
        super().__init__(**options)


REGISTRY = {
    "a": BrokenProvider,
    "b": StaticProvider,
    "c": StaticProvider,
    "x": BrokenProvider,
    "batch": NativeBatchProvider,
}


def make_service(default="a", fallbacks=("b",), **kwargs):
    return EmbeddingService(
        default_provider=default,
        fallback_providers=fallbacks,
        provider_options={"c": {"value": 3.0}},
        registry=kwargs.pop("registry", REGISTRY),
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Attempt ordering
# ---------------------------------------------------------------------------

def test_default_chain_is_default_then_configured_fallbacks():
    svc = make_service(default="a", fallbacks=("b", "c"))
    assert svc.attempt_order() == ["a", "b", "c"]


def test_requested_provider_goes_first_and_duplicates_are_dropped():
    svc = make_service(default="a", fallbacks=("b", "c"))
    assert svc.attempt_order("c") == ["c", "b"]
    assert svc.attempt_order("c", ["a", "c"]) == ["c", "a", "b"]
    assert svc.attempt_order("b", ["b", "c"]) == ["b", "c"]


# ---------------------------------------------------------------------------
# embed
# ---------------------------------------------------------------------------

def test_fallback_success_counts_provider_failure_but_not_service_failure():
    svc = make_service(default="a", fallbacks=("b",))

    vec = svc.embed("hello")

    assert vec == [1.0] * 4
    stats = svc.service_stats()
    assert stats["total_requests"] == 1
    assert stats["successful_requests"] == 1
    assert stats["failed_requests"] == 0
    assert stats["provider_usage"]["a"] == {"attempts": 1, "successes": 0, "failures": 1}
    assert stats["provider_usage"]["b"] == {"attempts": 1, "successes": 1, "failures": 0}


def test_first_success_stops_the_chain():
    svc = make_service(default="b", fallbacks=("c",))
    assert svc.embed("hello") == [1.0] * 4
    assert "c" not in svc.service_stats()["provider_usage"]


def test_requested_provider_is_used_before_default():
    svc = make_service(default="b", fallbacks=())
    assert svc.embed("hello", provider="c") == [3.0] * 4


def test_all_providers_failing_raises_aggregate_error_with_last_cause():
    svc = make_service(default="a", fallbacks=("x",))

    with pytest.raises(EmbeddingError, match="all providers failed") as exc:
        svc.embed("hello")

    assert isinstance(exc.value.last_error, EmbeddingError)
    assert "backend unreachable" in str(exc.value.last_error)
    stats = svc.service_stats()
    assert stats["failed_requests"] == 1
    assert stats["successful_requests"] == 0
    assert stats["provider_usage"]["a"]["failures"] == 1
    assert stats["provider_usage"]["x"]["failures"] == 1


def test_unknown_provider_is_a_provider_level_failure():
    svc = make_service(default="missing", fallbacks=("b",))
    assert svc.embed("hello") == [1.0] * 4
    assert svc.service_stats()["provider_usage"]["missing"]["failures"] == 1


def test_repeated_text_is_served_from_provider_cache():
    svc = make_service(default="b", fallbacks=())
    svc.embed("same text")
    svc.embed("same text")

    assert svc.get_provider("b").calls == 1
    assert svc.service_stats()["cache_hits"] == 1


def test_cache_can_be_disabled_per_service():
    svc = make_service(default="b", fallbacks=(), cache=False)
    svc.embed("same text")
    svc.embed("same text")
    assert svc.get_provider("b").calls == 2
    assert svc.service_stats()["cache_hits"] == 0


def test_average_response_time_is_a_running_mean(monkeypatch):
    ticks = iter([0.0, 1.0, 10.0, 13.0])
    monkeypatch.setattr(service_module, "time", SimpleNamespace(perf_counter=lambda: next(ticks)))
    svc = make_service(default="b", fallbacks=(), cache=False)

    svc.embed("one")
    assert svc.service_stats()["average_response_time"] == pytest.approx(1.0)
    svc.embed("two")
    assert svc.service_stats()["average_response_time"] == pytest.approx(2.0)


# ---------------------------------------------------------------------------
# embed_batch
# ---------------------------------------------------------------------------

def test_batch_uses_native_batching_and_counts_items():
    svc = make_service(default="b", fallbacks=())

    vecs = svc.embed_batch(["x", "y", "z"], provider="batch")

    assert vecs == [[0.0] * 4, [1.0] * 4, [2.0] * 4]
    assert svc.get_provider("batch").batch_calls == 1
    stats = svc.service_stats()
    assert stats["total_requests"] == 3
    assert stats["successful_requests"] == 3
    assert stats["provider_usage"]["batch"]["attempts"] == 3


def test_batch_without_native_support_maps_embed():
    svc = make_service(default="b", fallbacks=())
    vecs = svc.embed_batch(["x", "y", "z"])
    assert len(vecs) == 3
    assert svc.get_provider("b").calls == 3


def test_batch_does_not_fall_back_across_providers():
    svc = make_service(default="a", fallbacks=("b",))

    with pytest.raises(EmbeddingError):
        svc.embed_batch(["x", "y"])

    stats = svc.service_stats()
    assert stats["total_requests"] == 2
    assert stats["failed_requests"] == 2
    assert "b" not in stats["provider_usage"]


def test_empty_batch_is_a_no_op():
    svc = make_service()
    assert svc.embed_batch([]) == []
    assert svc.service_stats()["total_requests"] == 0


# ---------------------------------------------------------------------------
# Providers, health and stats
# ---------------------------------------------------------------------------

def test_concurrent_first_use_constructs_one_instance():
    SlowProvider.constructed = 0
    svc = make_service(default="slow", fallbacks=(), registry={"slow": SlowProvider})

    with ThreadPoolExecutor(max_workers=8) as ex:
        instances = list(ex.map(lambda _: svc.get_provider("slow"), range(16)))

    assert SlowProvider.constructed == 1
    assert all(i is instances[0] for i in instances)


def test_health_check_reports_each_provider_independently():
    svc = make_service(registry={"a": BrokenProvider, "b": StaticProvider})

    report = svc.health_check()

    assert report["a"] == {"healthy": False, "error": "probe exploded"}
    assert report["b"]["healthy"] is True
    assert report["b"]["info"]["dimensions"] == 4
    assert "embeddings_generated" in report["b"]["stats"]


def test_service_stats_success_rate_and_reset():
    svc = make_service(default="a", fallbacks=("b",))
    svc.embed("hello")
    # "x" then "a" then configured "b": b answers from its cache
    assert svc.embed("hello", provider="x", fallback_providers=["a"]) == [1.0] * 4
    stats = svc.service_stats()
    assert stats["success_rate"] == 100.0
    assert stats["provider_count"] == 3
    assert stats["cache_hits"] == 1
    assert stats["cache_stats"]["total_cache_size"] == 1

    svc.reset_stats()
    stats = svc.service_stats()
    assert stats["total_requests"] == 0
    assert stats["provider_usage"] == {}
    assert stats["cache_stats"]["total_cache_size"] == 0


def test_dimensions_come_from_default_provider():
    svc = make_service(default="b")
    assert svc.dimensions() == 4


def test_clear_caches_reports_entries_per_provider():
    svc = make_service(default="b", fallbacks=("c",))
    svc.embed("one")
    svc.embed("two")
    svc.embed("three", provider="c")

    assert svc.clear_caches() == {"b": 2, "c": 1}
    svc.embed("one")
    assert svc.get_provider("b").calls == 3


def test_available_providers_lists_registry():
    assert make_service().available_providers() == ["a", "b", "c", "x", "batch"]
