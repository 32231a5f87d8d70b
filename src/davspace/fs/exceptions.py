"""Custom exception hierarchy for the davspace filesystem layer."""


class DavspaceError(Exception):
    """Base exception for all davspace errors."""


class NotFoundError(DavspaceError):
    """Raised when a folder or file row does not exist for the user."""


class ConflictError(DavspaceError):
    """Raised when a name clashes with an existing item (unique constraint)."""


class MountNotFoundError(DavspaceError):
    """Raised when no mount folder or mount config matches an item."""


class CrossMountError(DavspaceError):
    """Raised when a move would cross two different backends."""


class PhysicalBackendError(DavspaceError):
    """Raised when a storage backend call fails (network, auth, disk I/O)."""


class LogicalTransactionError(DavspaceError):
    """Raised when the metadata transaction fails after physical changes.

    The backend may already be missing data that the remaining rows
    still point at; this needs manual reconciliation.
    """


class ConsistencyError(DavspaceError):
    """Raised when the folder tree is corrupt (cycles, runaway depth)."""
