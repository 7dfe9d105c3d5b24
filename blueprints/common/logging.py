"""
loguru sinks for the blueprint store.

Every record carries a ``component`` extra ("db/store", "embedding/service", ...)
so store and provider lines can be told apart in the shared file. Level,
directory and JSON output come from the environment:

- ``LOG_LEVEL`` (default INFO)
- ``LOG_DIR`` (default ``logs``)
- ``LOG_JSON`` set to 1/true writes the file sink as JSON lines
"""
import os
import sys
from pathlib import Path
from loguru import logger
from .constants import LOGS_DIR

LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = Path(os.getenv("LOG_DIR", LOGS_DIR)) / "blueprints.log"
_JSON = os.getenv("LOG_JSON", "").lower() in ("1", "true", "yes")

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> | {message}"
)

LOG_FILE.parent.mkdir(parents=True, exist_ok=True)

logger.remove()
logger.configure(extra={"component": "blueprints"})
logger.add(sys.stdout, level=LEVEL, format=CONSOLE_FORMAT, enqueue=True, backtrace=False, diagnose=False)
logger.add(LOG_FILE, level=LEVEL, rotation="5 MB", retention="14 days", enqueue=True, serialize=_JSON)

def get_logger(name: str):
    """Logger bound to ``name`` as its component."""
    return logger.bind(component=name)
