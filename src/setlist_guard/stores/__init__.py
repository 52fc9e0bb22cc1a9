# Stores module: collaborator protocols and the bundled implementations.

from .memory import InMemoryAuditSink, InMemoryCredentialStore, InMemoryOwnershipStore
from .protocols import AuditSink, CredentialStore, OwnershipStore
from .sqlite_store import (
    ChainVerification,
    SqliteAuditSink,
    SqliteCredentialStore,
    SqliteOwnershipStore,
)

__all__ = [
    # Protocols
    "AuditSink",
    "CredentialStore",
    "OwnershipStore",
    # In-memory
    "InMemoryAuditSink",
    "InMemoryCredentialStore",
    "InMemoryOwnershipStore",
    # SQLite
    "ChainVerification",
    "SqliteAuditSink",
    "SqliteCredentialStore",
    "SqliteOwnershipStore",
]
