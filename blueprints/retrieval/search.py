"""Vector search: query literal formatting, distance-ordered lookup, display scores."""
from __future__ import annotations
import math
from typing import List, Sequence, Tuple
from sqlalchemy import Float, String, cast, literal, select, text
from sqlalchemy.orm import Session
from ..db.models import Blueprint
from ..db.session import is_postgres
from ..common.logging import get_logger

log = get_logger("retrieval/search")

def to_vector_literal(vec: Sequence[float]) -> str:
    """pgvector text form: '[0.01,-0.23,...]'."""
    return "[" + ",".join(repr(float(x)) for x in vec) + "]"

def distance_expr(column, qlit: str):
    """Cosine distance between ``column`` and the vector literal (pgvector ``<=>``)."""
    return column.op("<=>", return_type=Float)(cast(literal(qlit, String), column.type))

def vector_search(session: Session, qvec: Sequence[float], limit: int, probes: int | None = None,
                  exclude_id: int | None = None) -> List[Tuple[Blueprint, float]]:
    """
    Rank stored embeddings by distance to ``qvec``:
    1) one distance expression per row, ascending,
    2) rows without an embedding are skipped,
    3) at most ``limit`` rows, each paired with its distance.
    ``exclude_id`` drops one row (the source of a similar-to lookup).
    """
    if limit <= 0:
        return []
    if probes and is_postgres(session.get_bind()):
        # Tune probes for better recall on the ivfflat index
        session.execute(text(f"SET LOCAL ivfflat.probes = {int(probes)}"))

    distance = distance_expr(Blueprint.embedding, to_vector_literal(qvec)).label("distance")
    stmt = (
        select(Blueprint, distance)
        .where(Blueprint.embedding.is_not(None))
        .order_by(distance.asc(), Blueprint.id.asc())
        .limit(limit)
    )
    if exclude_id is not None:
        stmt = stmt.where(Blueprint.id != exclude_id)
    rows = session.execute(stmt).all()
    log.debug(f"vector_search returned {len(rows)} row(s) (limit={limit})")
    return [(bp, None if d is None else float(d)) for bp, d in rows]

def similarity_percentage(distance: float | None) -> float:
    """Display-only score: clamp(100 - distance*100, 0, 100), one decimal."""
    if distance is None or math.isnan(distance):
        return 0.0
    return round(max(0.0, min(100.0, 100.0 - distance * 100.0)), 1)
