"""Print store statistics and embedding provider health as JSON."""
from __future__ import annotations
import argparse
import json
import sys
from ..common.errors import BlueprintsError
from ..common.logging import get_logger
from ..db.store import BlueprintStore
from ..embedding.service import EmbeddingService

log = get_logger("tools/stats")

def run(database_url: str | None, health: bool) -> int:
    service = EmbeddingService.from_settings()
    try:
        store = BlueprintStore(service, database_url)
    except BlueprintsError as e:
        log.critical(f"Cannot open blueprint store: {e}")
        return 1

    result = store.stats()
    if not result:
        log.error(f"stats failed ({result.error.value}): {result.message}")
        return 1
    out = {"store": result.value}
    if health:
        out["providers"] = service.health_check()
    print(json.dumps(out, indent=2, default=str))
    return 0

if __name__ == "__main__":
    ap = argparse.ArgumentParser(description="Blueprint store statistics")
    ap.add_argument("--database-url", default=None, help="Override BLUEPRINT_DATABASE_URL / DATABASE_URL")
    ap.add_argument("--health", action="store_true", help="Also run an embedding provider health check")
    args = ap.parse_args()
    sys.exit(run(args.database_url, args.health))
