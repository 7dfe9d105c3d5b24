"""
Shared fixtures for the blueprint store tests.

Store tests run on a file-backed SQLite database so no PostgreSQL is needed.
The pgvector column degrades to text there, and the ``<=>`` operator is not
available, so the cosine distance primitive is swapped for a SQLite function
registered on every connection.
"""
import hashlib
import json
import math
import re

import pytest
from sqlalchemy import create_engine, event, func

from blueprints.common.constants import EMBED_DIM
from blueprints.common.errors import EmbeddingError
from blueprints.db.init_db import init_schema
from blueprints.db.store import BlueprintStore
from blueprints.embedding.provider import EmbeddingProvider
from blueprints.embedding.service import EmbeddingService
from blueprints.retrieval import search


def keyword_vector(text, dim=EMBED_DIM):
    """Bag-of-words vector: one bucket per token, stable across runs."""
    vec = [0.0] * dim
    for tok in re.findall(r"[a-z0-9]+", text.lower()):
        bucket = int(hashlib.md5(tok.encode("utf-8")).hexdigest(), 16) % dim
        vec[bucket] += 1.0
    return vec


class KeywordProvider(EmbeddingProvider):
    name = "keyword"

    def __init__(self, **options):
        options.setdefault("expected_dim", EMBED_DIM)
        super().__init__(**options)
        self.calls = 0

    def _generate(self, text, **options):
        self.calls += 1
        return keyword_vector(text)

    def dimensions(self):
        return EMBED_DIM


class FailingProvider(EmbeddingProvider):
    name = "failing"

    def _generate(self, text, **options):
        raise EmbeddingError("model unreachable", provider=self.name)

    def dimensions(self):
        return EMBED_DIM


def _cosine_distance(a, b):
    if a is None or b is None:
        return None
    va, vb = json.loads(a), json.loads(b)
    na = math.sqrt(sum(x * x for x in va))
    nb = math.sqrt(sum(x * x for x in vb))
    if na == 0 or nb == 0:
        # pgvector yields NaN here, which sorts last
        return 2.0
    return 1.0 - sum(x * y for x, y in zip(va, vb)) / (na * nb)


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(
        f"sqlite:///{tmp_path / 'blueprints.db'}",
        future=True,
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(eng, "connect")
    def _register(dbapi_conn, _record):
        dbapi_conn.create_function("vec_cosine_distance", 2, _cosine_distance)
        dbapi_conn.execute("PRAGMA foreign_keys=ON")

    init_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture(autouse=True)
def sqlite_distance(monkeypatch):
    monkeypatch.setattr(
        search, "distance_expr", lambda column, qlit: func.vec_cosine_distance(column, qlit)
    )


@pytest.fixture
def service():
    return EmbeddingService(
        default_provider="keyword",
        registry={"keyword": KeywordProvider, "failing": FailingProvider},
    )


@pytest.fixture
def store(service, engine):
    return BlueprintStore(service, engine=engine)


@pytest.fixture
def embedding_down(store, monkeypatch):
    """Every embed call on the store's service fails."""
    def _fail(*args, **kwargs):
        raise EmbeddingError("all providers failed (keyword): model unreachable")
    monkeypatch.setattr(store.embedding_service, "embed", _fail)
    return store
