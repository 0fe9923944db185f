"""Admission outcomes.

Every admit/record call produces exactly one AdmissionResult. Policy
rejections and storage failures travel through this value; only malformed
arguments are raised.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from .exceptions import NonceError, NonceLedgerError, StorageError, TimestampError


class AdmissionStatus(StrEnum):
    """Overall outcome of an admission attempt."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"
    FAILED = "failed"


class RejectionReason(StrEnum):
    """Why a well-formed request was refused."""

    TIMESTAMP_EXPIRED = "timestamp_expired"
    NONCE_REPLAYED = "nonce_replayed"


@dataclass(frozen=True)
class AdmissionResult:
    """Outcome of NonceLedger.admit() or NonceLedger.record()."""

    status: AdmissionStatus
    nonce: str
    timestamp: str
    reason: RejectionReason | None = None
    error: StorageError | None = None

    @classmethod
    def accept(cls, nonce: str, timestamp: str) -> AdmissionResult:
        return cls(AdmissionStatus.ACCEPTED, nonce, timestamp)

    @classmethod
    def reject(cls, nonce: str, timestamp: str, reason: RejectionReason) -> AdmissionResult:
        return cls(AdmissionStatus.REJECTED, nonce, timestamp, reason=reason)

    @classmethod
    def fail(cls, nonce: str, timestamp: str, error: StorageError) -> AdmissionResult:
        return cls(AdmissionStatus.FAILED, nonce, timestamp, error=error)

    @property
    def accepted(self) -> bool:
        return self.status is AdmissionStatus.ACCEPTED

    @property
    def rejected(self) -> bool:
        return self.status is AdmissionStatus.REJECTED

    @property
    def failed(self) -> bool:
        return self.status is AdmissionStatus.FAILED

    def to_error(self) -> NonceLedgerError | None:
        """Build the exception describing a non-accepted outcome.

        Returns None for accepted results, a TimestampError or NonceError for
        rejections, and the underlying StorageError for failures.
        """
        if self.status is AdmissionStatus.ACCEPTED:
            return None
        if self.status is AdmissionStatus.FAILED:
            return self.error
        if self.reason is RejectionReason.TIMESTAMP_EXPIRED:
            return TimestampError(self.timestamp)
        return NonceError(self.nonce)

    def as_completion(self) -> tuple[NonceLedgerError | None, bool]:
        """Return the ``(error, accepted)`` pair of a completion-signal binding.

        ``error`` is None exactly when ``accepted`` is True.
        """
        return self.to_error(), self.accepted

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data: dict[str, Any] = {
            "status": self.status.value,
            "nonce": self.nonce,
            "timestamp": self.timestamp,
        }
        if self.reason is not None:
            data["reason"] = self.reason.value
        if self.error is not None:
            data["error"] = self.error.to_dict()
        return data
