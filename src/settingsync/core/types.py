"""Shared types for settingsync.

This module defines the enums used by configuration, providers and the
orchestrator.
"""

from __future__ import annotations

from enum import Enum


class SyncState(str, Enum):
    """Run-time state of the sync orchestrator.

    Transitions: IDLE -> SYNCING -> SUCCESS | ERROR, and SUCCESS/ERROR go
    back through SYNCING on the next round.
    """

    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


class ProviderKind(str, Enum):
    """Kind of sync target."""

    REMOTE = "remote"  # WebDAV-compatible file store
    LOCAL = "local"  # Flat file on this machine


class ResolutionMode(str, Enum):
    """Policy used to reconcile two conflicting snapshots."""

    LATEST = "latest"
    MERGE = "merge"
    MANUAL = "manual"


class HistoryAction(str, Enum):
    """Operation recorded in the history log."""

    EXPORT = "export"
    IMPORT = "import"
    SYNC = "sync"


class ErrorKind(str, Enum):
    """Classification of a failed operation."""

    NETWORK = "network"
    AUTH = "auth"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    LOCKED = "locked"
    SERVER = "server"
    TIMEOUT = "timeout"
    VALIDATION = "validation"
    SERIALIZATION = "serialization"

    @property
    def transient(self) -> bool:
        """Whether a failure of this kind may go away on its own.

        SERVER is only transient for 5xx statuses; callers holding the status
        code should use ``WebDAVError.retryable`` instead.
        """
        return self in (
            ErrorKind.NETWORK,
            ErrorKind.TIMEOUT,
            ErrorKind.LOCKED,
            ErrorKind.SERVER,
        )
