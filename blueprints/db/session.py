"""SQLAlchemy engine/session factories and pgvector extension bootstrap."""
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from ..common.config import SETTINGS
from ..common.logging import get_logger

log = get_logger("db/session")

_engine: Engine | None = None

def make_engine(database_url: str) -> Engine:
    return create_engine(database_url, future=True, pool_pre_ping=True)

def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False, future=True)

def is_postgres(engine: Engine) -> bool:
    return engine.dialect.name == "postgresql"

def init_extensions(engine: Engine):
    if not is_postgres(engine):
        return
    with engine.connect() as conn:
        try:
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
            conn.commit()
            log.info("pgvector extension ensured.")
        except Exception as e:
            log.error(f"Error ensuring pgvector extension: {e}")
            raise

def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = make_engine(SETTINGS.DATABASE_URL)
    return _engine
