"""Error hierarchy for tagindex.

Every error carries an ErrorCode. The thousands digit names the area:

    2xxx  configuration
    30xx  extraction of one path (recorded, the run continues)
    31xx  planner/store contract violations (the run stops)
    32xx  transaction failures (the run stops, nothing acknowledged)
    9xxx  internal
"""

from dataclasses import FrozenInstanceError, dataclass, field, fields
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Config (2xxx)
    CONFIG_PARSE_ERROR = 2001
    CONFIG_INVALID_VALUE = 2002
    CONFIG_FILE_NOT_FOUND = 2003

    # Index - extraction (30xx)
    EXTRACTION_FAILED = 3001
    EXTRACTION_MALFORMED = 3002
    EXTRACTION_UNREADABLE = 3003

    # Index - integrity (31xx)
    INTEGRITY_MISSING_ARTIFACT = 3101
    INTEGRITY_CONSTRAINT = 3102

    # Index - persistence (32xx)
    PERSISTENCE_COMMIT_FAILED = 3201

    # Internal (9xxx)
    INTERNAL_ERROR = 9001


@dataclass(eq=False)
class TagIndexError(Exception):
    """Root of all tagindex errors.

    Fields are write-once. Attributes the interpreter manages on exceptions
    (``__traceback__``, ``__context__``, ``__notes__``) stay assignable, so
    these errors propagate unchanged through ``@contextmanager`` blocks.
    """

    code: ErrorCode
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    def __setattr__(self, name: str, value: Any) -> None:
        if name in self.__dict__ and name in _FIELD_NAMES:
            raise FrozenInstanceError(f"cannot assign to field {name!r}")
        super().__setattr__(name, value)

    def __delattr__(self, name: str) -> None:
        if name in _FIELD_NAMES:
            raise FrozenInstanceError(f"cannot delete field {name!r}")
        super().__delattr__(name)

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'CONFIG_PARSE_ERROR')."""
        return self.code.name

    def to_dict(self) -> dict[str, Any]:
        """Plain-dict form for structured log fields."""
        return {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


_FIELD_NAMES = frozenset(f.name for f in fields(TagIndexError))


class ConfigError(TagIndexError):
    """A config file or value could not be used."""

    @classmethod
    def parse_error(cls, path: str, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message=f"Failed to parse config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid value for '{field}': {reason}",
            details={"field": field, "value": str(value), "reason": reason},
        )

    @classmethod
    def file_not_found(cls, path: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_FILE_NOT_FOUND,
            message=f"Config file not found: {path}",
            details={"path": path},
        )


class ExtractionError(TagIndexError):
    """Snippet extraction failed for a single path.

    Isolated per path: the reconciler records it and moves on.
    """

    @property
    def path(self) -> str | None:
        value = self.details.get("path")
        return str(value) if value is not None else None

    @classmethod
    def failed(cls, path: str, reason: str) -> "ExtractionError":
        return cls(
            code=ErrorCode.EXTRACTION_FAILED,
            message=f"Failed to extract snippets from {path}: {reason}",
            retryable=True,
            details={"path": path, "reason": reason},
        )

    @classmethod
    def malformed(cls, path: str, reason: str) -> "ExtractionError":
        return cls(
            code=ErrorCode.EXTRACTION_MALFORMED,
            message=f"Extractor returned malformed snippet for {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def unreadable(cls, path: str, reason: str) -> "ExtractionError":
        return cls(
            code=ErrorCode.EXTRACTION_UNREADABLE,
            message=f"Cannot read {path}: {reason}",
            retryable=True,
            details={"path": path, "reason": reason},
        )


class IntegrityError(TagIndexError):
    """Planner/engine contract violation. Fatal to the current run, never retried."""

    @classmethod
    def missing_artifact(cls, path: str, cache_key: str, tag: str) -> "IntegrityError":
        return cls(
            code=ErrorCode.INTEGRITY_MISSING_ARTIFACT,
            message=f"No artifact for {path}@{cache_key}; cannot tag it with {tag}",
            details={"path": path, "cache_key": cache_key, "tag": tag},
        )

    @classmethod
    def constraint(cls, reason: str, **details: Any) -> "IntegrityError":
        return cls(
            code=ErrorCode.INTEGRITY_CONSTRAINT,
            message=f"Integrity constraint violated: {reason}",
            details=details,
        )


class PersistenceError(TagIndexError):
    """Transaction or commit failure. Entries stay unacknowledged."""

    @classmethod
    def commit_failed(cls, reason: str, **details: Any) -> "PersistenceError":
        return cls(
            code=ErrorCode.PERSISTENCE_COMMIT_FAILED,
            message=f"Store transaction failed: {reason}",
            retryable=True,
            details=details,
        )


class InternalError(TagIndexError):
    """Misuse of the API or a state that should be unreachable."""

    @classmethod
    def unexpected(cls, reason: str, **details: Any) -> "InternalError":
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Internal error: {reason}",
            details=details,
        )
