"""Regenerate embeddings for blueprints stored with the zero-vector fallback."""
from __future__ import annotations
import argparse
import sys
from ..common.errors import BlueprintsError
from ..common.logging import get_logger
from ..db.store import BlueprintStore
from ..embedding.service import EmbeddingService

log = get_logger("tools/reembed")

def run(database_url: str | None, limit: int | None) -> int:
    try:
        store = BlueprintStore(EmbeddingService.from_settings(), database_url)
    except BlueprintsError as e:
        log.critical(f"Cannot open blueprint store: {e}")
        return 1
    result = store.reembed_degraded(limit=limit)
    if not result:
        log.error(f"reembed failed ({result.error.value}): {result.message}")
        return 1
    print(result.value)
    return 0

if __name__ == "__main__":
    ap = argparse.ArgumentParser(description="Repair degraded blueprint embeddings")
    ap.add_argument("--database-url", default=None)
    ap.add_argument("--limit", type=int, default=None, help="Max blueprints to repair in this run")
    args = ap.parse_args()
    sys.exit(run(args.database_url, args.limit))
