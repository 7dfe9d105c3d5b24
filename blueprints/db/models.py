"""ORM models for Blueprint, Category and their association (with pgvector)."""
from datetime import datetime, timezone
from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy import (
    Column, String, Text, Integer, DateTime, ForeignKey, Index, Table, JSON, CheckConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from pgvector.sqlalchemy import Vector
from ..common.constants import (
    EMBED_DIM, DEFAULT_LANGUAGE, DEFAULT_FILE_TYPE, DEFAULT_BLUEPRINT_TYPE, DEFAULT_PARSER_TYPE,
)

Base = declarative_base()

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

def _utcnow():
    return datetime.now(timezone.utc)

blueprint_categories = Table(
    "blueprint_categories",
    Base.metadata,
    Column("blueprint_id", ForeignKey("blueprints.id", ondelete="CASCADE"), primary_key=True),
    Column("category_id", ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True),
    Index("idx_blueprint_categories_category", "category_id"),
)

class Blueprint(Base):
    __tablename__ = "blueprints"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=True)
    code: Mapped[str] = mapped_column(Text, nullable=False)
    language: Mapped[str] = mapped_column(String, nullable=False, default=DEFAULT_LANGUAGE)
    file_type: Mapped[str] = mapped_column(String, nullable=False, default=DEFAULT_FILE_TYPE)
    blueprint_type: Mapped[str] = mapped_column(String, nullable=False, default=DEFAULT_BLUEPRINT_TYPE)
    parser_type: Mapped[str] = mapped_column(String, nullable=False, default=DEFAULT_PARSER_TYPE)

    embedding: Mapped[list[float] | None] = mapped_column(Vector(EMBED_DIM), nullable=True)

    tags: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict] = mapped_column("metadata", JSONType, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint("length(code) > 0", name="ck_blueprints_code_not_empty"),
        Index("idx_blueprints_language", "language"),
        Index("idx_blueprints_blueprint_type", "blueprint_type"),
        Index("idx_blueprints_parser_type", "parser_type"),
        Index("idx_blueprints_created_at", "created_at"),
    )

class Category(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    description: Mapped[str] = mapped_column(Text, nullable=True)
    color: Mapped[str] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
