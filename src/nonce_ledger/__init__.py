"""lti-nonce-ledger: replay protection for OAuth 1.0a / LTI 1.x launches."""

__version__ = "0.1.0"

# Configuration
from .config import LedgerSettings, clear_config_cache, get_config, set_config

# Eviction
from .eviction import EvictionScheduler, Sweeper

# Exceptions
from .exceptions import (
    ConfigError,
    ConflictError,
    InvalidArgumentError,
    NonceError,
    NonceLedgerError,
    StorageError,
    TimestampError,
)

# Admission
from .ledger import DEFAULT_RETENTION_WINDOW, DEFAULT_TABLE_NAME, AdmissionGate, NonceLedger
from .results import AdmissionResult, AdmissionStatus, RejectionReason

# Storage
from .storage import MemoryNonceStore, NonceRecord, NonceStore, PostgresNonceStore

# Timestamps
from .timestamps import DEFAULT_FRESHNESS_WINDOW, current_timestamp, is_fresh, is_timestamp, to_timestamp

__all__ = [
    "__version__",
    # Config
    "LedgerSettings",
    "get_config",
    "set_config",
    "clear_config_cache",
    # Exceptions
    "NonceLedgerError",
    "InvalidArgumentError",
    "TimestampError",
    "NonceError",
    "StorageError",
    "ConflictError",
    "ConfigError",
    # Timestamps
    "DEFAULT_FRESHNESS_WINDOW",
    "current_timestamp",
    "is_timestamp",
    "is_fresh",
    "to_timestamp",
    # Admission
    "AdmissionGate",
    "AdmissionResult",
    "AdmissionStatus",
    "RejectionReason",
    "NonceLedger",
    "DEFAULT_RETENTION_WINDOW",
    "DEFAULT_TABLE_NAME",
    # Eviction
    "EvictionScheduler",
    "Sweeper",
    # Storage
    "NonceRecord",
    "NonceStore",
    "MemoryNonceStore",
    "PostgresNonceStore",
]
