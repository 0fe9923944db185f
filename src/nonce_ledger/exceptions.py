# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Exception hierarchy for the nonce ledger.

Three classes of failure reach callers:

- InvalidArgumentError: malformed input to a public operation. Raised
  synchronously, before any storage call.
- TimestampError / NonceError: policy rejections. These are never raised by
  the ledger itself; AdmissionResult.to_error() builds them for callers that
  need an exception object (e.g. a completion-signal binding).
- StorageError: anything that went wrong in the persistence layer. The ledger
  delivers these through the result channel instead of raising them.
"""

from __future__ import annotations

from typing import Any


class NonceLedgerError(Exception):
    """Base exception for all nonce ledger errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class InvalidArgumentError(NonceLedgerError, TypeError):
    """Exception for malformed arguments.

    Raised when:
    - A nonce is not a non-empty string
    - A timestamp is not a positive whole number
    - A window is not a number of the expected sign
    - A store handle does not implement the store protocol
    """

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        details: dict[str, Any] = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = repr(value)
        super().__init__(message, details)
        self.field = field
        self.value = value


class TimestampError(NonceLedgerError):
    """The presented timestamp is outside the freshness window."""

    def __init__(self, timestamp: Any):
        super().__init__(f"Timestamp '{timestamp}' is too old.", {"timestamp": str(timestamp)})
        self.timestamp = timestamp


class NonceError(NonceLedgerError):
    """The presented nonce has already been consumed."""

    def __init__(self, nonce: str):
        super().__init__(f"Nonce '{nonce}' already used.", {"nonce": nonce})
        self.nonce = nonce


class StorageError(NonceLedgerError):
    """Exception for persistence failures.

    Raised when:
    - The database is unreachable or the pool is exhausted
    - The nonce table does not exist
    - A query fails
    - A constraint is violated (see ConflictError)
    """


class ConflictError(StorageError):
    """A record with the same nonce value already exists."""

    def __init__(self, message: str, value: str | None = None):
        details: dict[str, Any] = {}
        if value:
            details["value"] = value
        super().__init__(message, details)
        self.value = value


class ConfigError(NonceLedgerError):
    """Exception for configuration errors.

    Raised when:
    - Required environment variables are missing
    - Configuration values are inconsistent
    """

    def __init__(self, message: str, missing_vars: list[str] | None = None):
        details: dict[str, Any] = {}
        if missing_vars:
            details["missing_vars"] = missing_vars
        super().__init__(message, details)
        self.missing_vars = missing_vars or []
