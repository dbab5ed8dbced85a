"""Custom exception hierarchy for pairview."""

from typing import Any


class PairViewError(Exception):
    """Base exception for all pairview errors.

    All exceptions carry an optional `context` dict for structured error
    metadata that can be logged or serialized without parsing the message.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigurationInvalid(PairViewError):
    """Invalid or missing configuration.

    Raised before any I/O is attempted (equal price/volume columns, empty
    storage connection, unparseable config file). Surfaced synchronously to
    the caller and never retried.

    Context keys:
        field: str - the config field that failed validation
        value: Any - the invalid value
    """


class SourceUnavailable(PairViewError):
    """The file root or the store connection could not be opened.

    Policy: tolerated by the scheduler (retried on the next tick), fatal to
    a one-shot fetch or an import run.

    Context keys:
        source: str - "file" or "database"
        location: str - the root path or connection descriptor
    """


class MalformedRecord(PairViewError):
    """A row could not be parsed under the configured CSV format.

    Policy: a single bad row is skipped and counted. Raised out of a fetch
    only when a whole file is unreadable.

    Context keys:
        path: str - the file being parsed
        line: int - 1-based line number (row errors only)
    """


class PersistenceFailure(PairViewError):
    """A write to the store failed (conflict, connectivity loss).

    Policy: aborts the rest of an import run; the scheduler's persist line
    logs it and retries on the next tick.

    Context keys:
        operation: str - "upsert" or "append"
        code: str - the instrument being written
    """
