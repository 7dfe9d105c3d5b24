"""Create the pgvector extension, tables and the ANN index."""
import sys
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from .session import get_engine, init_extensions, is_postgres
from .models import Base
from ..common.constants import ANN_INDEX_NAME
from ..common.errors import redact_url
from ..common.logging import get_logger

log = get_logger("db/init")

def create_ivfflat_index_if_missing(engine: Engine):
    """Create ANN index for cosine distance (vector_cosine_ops) if not present."""
    if not is_postgres(engine):
        return
    sql = f"""
    DO $$
    BEGIN
        IF NOT EXISTS (
            SELECT 1 FROM pg_indexes WHERE schemaname = 'public' AND indexname = '{ANN_INDEX_NAME}'
        ) THEN
            CREATE INDEX {ANN_INDEX_NAME}
            ON blueprints USING ivfflat (embedding vector_cosine_ops)
            WITH (lists = 100);
        END IF;
    END$$;
    """
    with engine.begin() as conn:
        conn.execute(text(sql))
    log.info("IVFFLAT cosine index ensured on blueprints.embedding.")

def init_schema(engine: Engine):
    init_extensions(engine)
    Base.metadata.create_all(engine)
    create_ivfflat_index_if_missing(engine)
    log.info("Database initialized with tables and ANN index.")

def init_db() -> int:
    engine = get_engine()
    try:
        init_schema(engine)
    except SQLAlchemyError as e:
        log.error(f"Schema bootstrap failed for {redact_url(str(engine.url))}: {e}")
        return 1
    return 0

if __name__ == "__main__":
    sys.exit(init_db())
