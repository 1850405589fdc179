"""Exceptions raised by the content repository.

Every error carries the path and workspace it concerns where known, so a
failure inside a subtree operation can be located.
"""

from typing import Optional


class RepositoryError(Exception):
    """Generic repository failure; base of all crepo errors."""

    def __init__(self, message: str = "", path: Optional[str] = None,
                 workspace: Optional[str] = None):
        super().__init__(message)
        self.path = path
        self.workspace = workspace


class InvalidPathError(RepositoryError):
    """Path is malformed or contains invalid characters."""
    pass


class ItemNotFoundError(RepositoryError):
    """No node or property at the requested path or identifier."""
    pass


class PathNotFoundError(RepositoryError):
    """A path a structural operation depends on does not exist."""
    pass


class ItemExistsError(RepositoryError):
    """Destination of a copy or move is already taken."""
    pass


class NoSuchWorkspaceError(RepositoryError):
    """Workspace does not exist."""
    pass


class ReferentialIntegrityError(RepositoryError):
    """Delete refused because a strong reference points at the node."""
    pass


class ValueFormatError(RepositoryError):
    """Property value does not fit the grammar of its type."""
    pass


class NamespaceError(RepositoryError):
    """Namespace prefix is reserved or unknown."""
    pass


class UnsupportedRepositoryOperationError(RepositoryError):
    """The repository descriptors say this operation is not supported."""
    pass


class NotImplementedCapability(RepositoryError, NotImplementedError):
    """Part of the contract that this backend does not implement yet.

    Callers must treat this as a missing capability, never as success.
    """
    pass
