"""Error types and the result envelope returned by store operations."""
from __future__ import annotations
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError


class BlueprintsError(Exception):
    """Base exception for construction-time store failures."""

    def __init__(self, message: str, database_url: str | None = None):
        super().__init__(message)
        self.database_url = database_url


class StoreConnectionError(BlueprintsError):
    """Backing store unreachable while the store is being constructed."""


class SchemaError(BlueprintsError):
    """A required table or the vector extension is missing."""


class EmbeddingError(Exception):
    """
    Embedding generation failed.

    Raised when:
    - The backing model is unreachable or times out
    - The returned vector has an unexpected dimensionality
    - Every provider in a fallback chain failed (``last_error`` holds the final cause)
    """

    def __init__(self, message: str, provider: str | None = None, last_error: BaseException | None = None):
        super().__init__(message)
        self.provider = provider
        self.last_error = last_error


class UnknownProviderError(EmbeddingError):
    """No provider registered under the requested id."""


class ErrorKind(str, Enum):
    CONNECTION = "connection"
    SCHEMA = "schema"
    EMBEDDING = "embedding"
    CONSTRAINT = "constraint"
    STORAGE = "storage"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class StoreResult:
    """Outcome of a public store operation; falsy when ``error`` is set."""
    value: Any = None
    error: Optional[ErrorKind] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    def __bool__(self) -> bool:
        return self.ok

    def unwrap_or(self, default: Any) -> Any:
        return self.value if self.ok else default

    @classmethod
    def success(cls, value: Any) -> "StoreResult":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str = "", value: Any = None) -> "StoreResult":
        return cls(value=value, error=kind, message=message)


_PASSWORD_RE = re.compile(r":[^:@/]*@")

def redact_url(url: str) -> str:
    """Hide the password component of a database URL."""
    try:
        return make_url(url).render_as_string(hide_password=True)
    except ArgumentError:
        return _PASSWORD_RE.sub(":***@", url)
