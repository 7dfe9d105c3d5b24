"""Transactional blueprint store: CRUD, category management and vector search."""
from __future__ import annotations
import functools
import json
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence
from sqlalchemy import delete, func, inspect, select, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from .models import Blueprint, Category, blueprint_categories
from .session import make_engine, make_session_factory, is_postgres
from ..common.config import SETTINGS
from ..common.constants import (
    EMBED_DIM, REQUIRED_TABLES, DEGRADED_EMBEDDING_KEY, DEFAULT_LIST_LIMIT,
    DEFAULT_LANGUAGE, DEFAULT_FILE_TYPE, DEFAULT_BLUEPRINT_TYPE, DEFAULT_PARSER_TYPE,
)
from ..common.errors import (
    EmbeddingError, ErrorKind, SchemaError, StoreConnectionError, StoreResult, redact_url,
)
from ..common.logging import get_logger
from ..embedding.service import EmbeddingService
from ..retrieval import search

log = get_logger("db/store")

def _utcnow():
    return datetime.now(timezone.utc)

def _insert(session: Session, table):
    """Dialect insert that supports ON CONFLICT DO NOTHING."""
    name = session.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert(table)
    if name == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"unsupported dialect for conflict-ignoring insert: {name}")

def _degraded_clause():
    return Blueprint.meta[DEGRADED_EMBEDDING_KEY].as_boolean() == True  # noqa: E712

def store_operation(name: str):
    """Convert any failure inside a public operation into a sentinel StoreResult."""
    def wrap(fn):
        @functools.wraps(fn)
        def inner(self, *args, **kwargs) -> StoreResult:
            try:
                return fn(self, *args, **kwargs)
            except IntegrityError as e:
                log.error(f"Error {name}: constraint violation: {e.orig}")
                return StoreResult.failure(ErrorKind.CONSTRAINT, str(e.orig))
            except SQLAlchemyError as e:
                log.error(f"Error {name}: {e}")
                return StoreResult.failure(ErrorKind.STORAGE, str(e))
            except Exception as e:
                log.exception(f"Unexpected error {name}: {e}")
                return StoreResult.failure(ErrorKind.STORAGE, str(e))
        return inner
    return wrap


class BlueprintStore:
    """
    Blueprints, categories and their associations in Postgres + pgvector.

    Construction failures (unreachable database, missing schema) raise
    ``StoreConnectionError`` / ``SchemaError``. Every public operation after
    that returns a ``StoreResult``; callers branch on it instead of catching.
    """

    def __init__(self, embedding_service: EmbeddingService, database_url: str | None = None, *,
                 engine: Engine | None = None, embed_dim: int = EMBED_DIM,
                 probes: int | None = None):
        self.embedding_service = embedding_service
        self.embed_dim = embed_dim
        self.probes = SETTINGS.IVFFLAT_PROBES if probes is None else probes
        if engine is None:
            self.database_url = database_url or SETTINGS.DATABASE_URL
            engine = self._create_engine()
        else:
            self.database_url = engine.url.render_as_string(hide_password=False)
        self.engine = engine
        self._check_connection()
        self._validate_schema()
        self.Session = make_session_factory(engine)
        log.info(f"BlueprintStore connected to {redact_url(self.database_url)}")

    # ---- construction ---------------------------------------------------
    def _create_engine(self) -> Engine:
        try:
            return make_engine(self.database_url)
        except Exception as e:
            log.critical(f"Invalid database URL {redact_url(self.database_url)}: {e}")
            raise StoreConnectionError(f"invalid database URL: {e}", redact_url(self.database_url)) from e

    def _check_connection(self):
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            url = redact_url(self.database_url)
            log.critical(f"Failed to connect to database {url}: {e}")
            raise StoreConnectionError(f"failed to connect to database {url}: {e}", url) from e

    def _validate_schema(self):
        url = redact_url(self.database_url)
        try:
            inspector = inspect(self.engine)
            missing = [t for t in REQUIRED_TABLES if not inspector.has_table(t)]
            has_vector = True
            if is_postgres(self.engine):
                with self.engine.connect() as conn:
                    has_vector = conn.execute(
                        text("SELECT 1 FROM pg_extension WHERE extname = 'vector'")
                    ).first() is not None
        except SQLAlchemyError as e:
            log.critical(f"Schema inspection failed for {url}: {e}")
            raise SchemaError(f"schema inspection failed: {e}", url) from e
        if missing:
            msg = f"Missing required table(s): {', '.join(missing)}. Run `python -m blueprints.db.init_db`."
            log.critical(msg)
            raise SchemaError(msg, url)
        if not has_vector:
            msg = "pgvector extension not installed (CREATE EXTENSION vector)."
            log.critical(msg)
            raise SchemaError(msg, url)

    # ---- blueprints -----------------------------------------------------
    @store_operation("creating blueprint")
    def create_blueprint(self, code: str, name: str | None = None, description: str | None = None,
                         categories: Iterable[str] = (), language: str = DEFAULT_LANGUAGE,
                         file_type: str = DEFAULT_FILE_TYPE, blueprint_type: str = DEFAULT_BLUEPRINT_TYPE,
                         parser_type: str = DEFAULT_PARSER_TYPE, tags: Sequence[str] | None = None,
                         metadata: Dict[str, Any] | None = None) -> StoreResult:
        if code is None or not str(code).strip():
            return StoreResult.failure(ErrorKind.CONSTRAINT, "code is required")

        meta = dict(metadata or {})
        vec = self._embed(self._embedding_text(name, description))
        if vec is None:
            # availability over completeness: keep the blueprint, mark it for reembed
            vec = [0.0] * self.embed_dim
            meta[DEGRADED_EMBEDDING_KEY] = True

        with self.Session.begin() as session:
            now = _utcnow()
            bp = Blueprint(
                code=code, name=name, description=description,
                language=language, file_type=file_type,
                blueprint_type=blueprint_type, parser_type=parser_type,
                embedding=vec, tags=list(tags or []), meta=meta,
                created_at=now, updated_at=now,
            )
            session.add(bp)
            session.flush()
            self._link_categories(session, bp.id, categories)
            record = self._assemble(session, bp)

        log.info(f"Created blueprint {record['id']} ({len(record['categories'])} categories)")
        return StoreResult.success(record)

    @store_operation("fetching blueprint")
    def get_blueprint(self, blueprint_id: int) -> StoreResult:
        with self.Session() as session:
            bp = session.get(Blueprint, blueprint_id)
            if bp is None:
                return StoreResult.failure(ErrorKind.NOT_FOUND, f"blueprint {blueprint_id} not found")
            return StoreResult.success(self._assemble(session, bp))

    @store_operation("listing blueprints")
    def list_blueprints(self, limit: int = DEFAULT_LIST_LIMIT, offset: int = 0) -> StoreResult:
        with self.Session() as session:
            rows = session.scalars(
                select(Blueprint)
                .order_by(Blueprint.created_at.desc(), Blueprint.id.desc())
                .limit(limit)
                .offset(offset)
            ).all()
            return StoreResult.success([self._assemble(session, bp) for bp in rows])

    @store_operation("updating blueprint")
    def update_blueprint(self, blueprint_id: int, code: str | None = None, name: str | None = None,
                         description: str | None = None,
                         categories: Optional[Iterable[str]] = None) -> StoreResult:
        if code is not None and not code.strip():
            return StoreResult.failure(ErrorKind.CONSTRAINT, "code is required")

        # code-only edits never touch the embedding
        vec = None
        if name is not None or description is not None:
            with self.Session() as session:
                current = session.get(Blueprint, blueprint_id)
                if current is None:
                    return StoreResult.failure(ErrorKind.NOT_FOUND, f"blueprint {blueprint_id} not found")
                text_ = self._embedding_text(
                    name if name is not None else current.name,
                    description if description is not None else current.description,
                )
            vec = self._embed(text_)
            if vec is None:
                log.warning(f"Skipping embedding update for blueprint {blueprint_id}")

        with self.Session.begin() as session:
            bp = session.get(Blueprint, blueprint_id)
            if bp is None:
                return StoreResult.failure(ErrorKind.NOT_FOUND, f"blueprint {blueprint_id} not found")
            if code is not None:
                bp.code = code
            if name is not None:
                bp.name = name
            if description is not None:
                bp.description = description
            if vec is not None:
                if self._embedding_text(bp.name, bp.description) != text_:
                    # name/description changed by another writer since the embed
                    log.warning(f"Blueprint {blueprint_id} changed while embedding; marked for reembed")
                    bp.meta = {**(bp.meta or {}), DEGRADED_EMBEDDING_KEY: True}
                else:
                    bp.embedding = vec
                    bp.meta = {k: v for k, v in (bp.meta or {}).items() if k != DEGRADED_EMBEDDING_KEY}
            bp.updated_at = _utcnow()

            if categories is not None:
                session.execute(
                    delete(blueprint_categories).where(blueprint_categories.c.blueprint_id == blueprint_id)
                )
                self._link_categories(session, blueprint_id, categories)
            session.flush()
            record = self._assemble(session, bp)

        return StoreResult.success(record)

    @store_operation("deleting blueprint")
    def delete_blueprint(self, blueprint_id: int) -> StoreResult:
        with self.Session.begin() as session:
            session.execute(
                delete(blueprint_categories).where(blueprint_categories.c.blueprint_id == blueprint_id)
            )
            removed = session.execute(delete(Blueprint).where(Blueprint.id == blueprint_id)).rowcount
        if not removed:
            return StoreResult.failure(ErrorKind.NOT_FOUND, f"blueprint {blueprint_id} not found", value=False)
        log.info(f"Deleted blueprint {blueprint_id}")
        return StoreResult.success(True)

    # ---- search ---------------------------------------------------------
    @store_operation("searching blueprints")
    def search_blueprints(self, query: str, limit: int | None = None) -> StoreResult:
        limit = SETTINGS.SEARCH_LIMIT if limit is None else limit
        try:
            qvec = self.embedding_service.embed(query)
        except EmbeddingError as e:
            log.warning(f"Search embedding failed: {e}")
            return StoreResult.failure(ErrorKind.EMBEDDING, str(e), value=[])
        if len(qvec) != self.embed_dim:
            msg = f"query embedding has {len(qvec)} dimensions, column expects {self.embed_dim}"
            log.warning(f"Search embedding rejected: {msg}")
            return StoreResult.failure(ErrorKind.EMBEDDING, msg, value=[])

        with self.Session.begin() as session:
            return StoreResult.success(self._ranked(session, qvec, limit))

    @store_operation("finding similar blueprints")
    def find_similar_blueprints(self, blueprint_id: int, limit: int | None = None) -> StoreResult:
        """Nearest neighbours of a stored blueprint, the blueprint itself excluded."""
        limit = SETTINGS.SEARCH_LIMIT if limit is None else limit
        with self.Session.begin() as session:
            bp = session.get(Blueprint, blueprint_id)
            if bp is None:
                return StoreResult.failure(ErrorKind.NOT_FOUND, f"blueprint {blueprint_id} not found", value=[])
            if bp.embedding is None or (bp.meta or {}).get(DEGRADED_EMBEDDING_KEY):
                log.info(f"Blueprint {blueprint_id} has no usable embedding; no neighbours")
                return StoreResult.success([])
            qvec = [float(x) for x in bp.embedding]
            return StoreResult.success(self._ranked(session, qvec, limit, exclude_id=blueprint_id))

    # ---- categories -----------------------------------------------------
    @store_operation("creating category")
    def find_or_create_category(self, title: str, description: str | None = None,
                                color: str | None = None) -> StoreResult:
        title = (title or "").strip()
        if not title:
            return StoreResult.failure(ErrorKind.CONSTRAINT, "category title is required")
        with self.Session.begin() as session:
            category_id = self._find_or_create_category(session, title, description, color)
        return StoreResult.success(category_id)

    @store_operation("listing categories")
    def get_categories(self) -> StoreResult:
        with self.Session() as session:
            rows = session.scalars(select(Category).order_by(Category.title)).all()
            return StoreResult.success([self._category_dict(c) for c in rows])

    # ---- maintenance ----------------------------------------------------
    @store_operation("gathering stats")
    def stats(self) -> StoreResult:
        with self.Session() as session:
            total_blueprints = session.scalar(select(func.count()).select_from(Blueprint))
            total_categories = session.scalar(select(func.count()).select_from(Category))
            degraded = session.scalar(select(func.count()).select_from(Blueprint).where(_degraded_clause()))
        return StoreResult.success({
            "total_blueprints": total_blueprints,
            "total_categories": total_categories,
            "degraded_embeddings": degraded,
            "database_url": redact_url(self.database_url),
            "embedding": self.embedding_service.service_stats(),
        })

    @store_operation("re-embedding degraded blueprints")
    def reembed_degraded(self, limit: int | None = None) -> StoreResult:
        with self.Session() as session:
            stmt = select(Blueprint.id, Blueprint.name, Blueprint.description).where(_degraded_clause()).order_by(Blueprint.id)
            if limit is not None:
                stmt = stmt.limit(limit)
            pending = session.execute(stmt).all()

        repaired = 0
        for bid, name, description in pending:
            vec = self._embed(self._embedding_text(name, description))
            if vec is None:
                continue
            with self.Session.begin() as session:
                bp = session.get(Blueprint, bid)
                if bp is None:
                    continue
                bp.embedding = vec
                bp.meta = {k: v for k, v in (bp.meta or {}).items() if k != DEGRADED_EMBEDDING_KEY}
                bp.updated_at = _utcnow()
            repaired += 1
        log.info(f"Re-embedded {repaired}/{len(pending)} degraded blueprint(s)")
        return StoreResult.success(repaired)

    # ---- internals ------------------------------------------------------
    @staticmethod
    def _embedding_text(name: str | None, description: str | None) -> str:
        return json.dumps({"name": name, "description": description})

    def _embed(self, text_: str) -> List[float] | None:
        try:
            vec = self.embedding_service.embed(text_)
        except EmbeddingError as e:
            log.warning(f"Embedding generation failed: {e}")
            return None
        if len(vec) != self.embed_dim:
            log.warning(f"Embedding has {len(vec)} dimensions, column expects {self.embed_dim}")
            return None
        return vec

    def _ranked(self, session: Session, qvec: Sequence[float], limit: int,
                exclude_id: int | None = None) -> List[Dict[str, Any]]:
        results: List[Dict[str, Any]] = []
        hits = search.vector_search(session, qvec, limit, probes=self.probes, exclude_id=exclude_id)
        for bp, distance in hits:
            # one category lookup per hit
            record = self._assemble(session, bp)
            record["distance"] = distance
            record["similarity"] = search.similarity_percentage(distance)
            results.append(record)
        return results

    def _find_or_create_category(self, session: Session, title: str, description: str | None = None,
                                 color: str | None = None) -> int:
        now = _utcnow()
        session.execute(
            _insert(session, Category.__table__)
            .values(title=title, description=description, color=color, created_at=now, updated_at=now)
            .on_conflict_do_nothing(index_elements=["title"])
        )
        return session.execute(select(Category.id).where(Category.title == title)).scalar_one()

    def _link_categories(self, session: Session, blueprint_id: int, titles: Iterable[str] | None):
        for raw in titles or ():
            title = (raw or "").strip()
            if not title:
                continue
            category_id = self._find_or_create_category(session, title)
            session.execute(
                _insert(session, blueprint_categories)
                .values(blueprint_id=blueprint_id, category_id=category_id)
                .on_conflict_do_nothing()
            )

    def _categories_for(self, session: Session, blueprint_id: int) -> List[Category]:
        return session.scalars(
            select(Category)
            .join(blueprint_categories, Category.id == blueprint_categories.c.category_id)
            .where(blueprint_categories.c.blueprint_id == blueprint_id)
            .order_by(Category.title)
        ).all()

    @staticmethod
    def _category_dict(c: Category) -> Dict[str, Any]:
        return {
            "id": c.id,
            "title": c.title,
            "description": c.description,
            "color": c.color,
            "created_at": c.created_at,
            "updated_at": c.updated_at,
        }

    def _assemble(self, session: Session, bp: Blueprint) -> Dict[str, Any]:
        return {
            "id": bp.id,
            "name": bp.name,
            "description": bp.description,
            "code": bp.code,
            "language": bp.language,
            "file_type": bp.file_type,
            "blueprint_type": bp.blueprint_type,
            "parser_type": bp.parser_type,
            "embedding": None if bp.embedding is None else [float(x) for x in bp.embedding],
            "tags": list(bp.tags or []),
            "metadata": dict(bp.meta or {}),
            "created_at": bp.created_at,
            "updated_at": bp.updated_at,
            "categories": [self._category_dict(c) for c in self._categories_for(session, bp.id)],
        }
