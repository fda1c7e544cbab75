"""
Exception hierarchy for the Esplora sync engine.

Every failure a caller is expected to handle derives from ``EsploraError``.
``InvariantViolation`` is not an ``EsploraError``. It signals a defect in
the sync driver or its sync plan, and handlers for network or persistence
failures must not catch it.
"""

from __future__ import annotations


class EsploraError(Exception):
    """Base class for errors surfaced by the sync engine."""


class TransportError(EsploraError):
    """Network or connection-level failure talking to the Esplora service."""


class ApiError(EsploraError):
    """The Esplora service answered with a non-success HTTP status."""

    def __init__(self, status: int, message: str = "") -> None:
        self.status = status
        self.message = message
        super().__init__(f"HTTP {status}: {message}" if message else f"HTTP {status}")


class CommitError(EsploraError):
    """The wallet database failed to commit a finished sync batch."""


class SyncProtocolError(EsploraError):
    """A sync stage was satisfied with a payload that does not match its request."""


class InvariantViolation(RuntimeError):
    """A transaction id expected in the sync-scoped index is missing."""
