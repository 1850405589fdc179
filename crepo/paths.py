"""Path helpers for the content tree.

Node paths are absolute, ``/``-separated strings. The document store has
no tree index, so whole subtrees are selected by path prefix; the helpers
here keep that prefix match segment-aware.
"""

import re
from typing import List

from .exceptions import InvalidPathError

SEPARATOR = "/"
ROOT_PATH = "/"

# Stored as the parent of the root document
NO_PARENT = "-1"

_VALID_PATH = re.compile(r"^[\w{}/#%&;:^+~*\[\]. -]*$", re.UNICODE)


def parent_of(path: str) -> str:
    """Return the parent path of ``path``.

    The root is its own parent here; the stored sentinel for "no parent"
    is :data:`NO_PARENT`.

    Examples:
        >>> parent_of("/a/b")
        '/a'
        >>> parent_of("/a")
        '/'
    """
    parent = SEPARATOR.join(path.split(SEPARATOR)[:-1])
    return parent if parent != "" else ROOT_PATH


def stored_parent_of(path: str) -> str:
    """Parent value written into a node document."""
    if path == ROOT_PATH:
        return NO_PARENT
    return parent_of(path)


def validate(path: str) -> str:
    """Check path syntax and return the path unchanged.

    Raises:
        InvalidPathError: on doubled separators, ``/../`` segments or
            characters outside the allowed set
    """
    if (
        not isinstance(path, str)
        or "//" in path
        or "/../" in path
        or not _VALID_PATH.match(path)
    ):
        raise InvalidPathError(
            f"Path is not well-formed or contains invalid characters: {path}",
            path=path if isinstance(path, str) else None,
        )
    return path


def segments(path: str) -> List[str]:
    """Split a path into its non-empty segments."""
    return [part for part in path.split(SEPARATOR) if part]


def name_of(path: str) -> str:
    """Last segment of a path ('' for the root)."""
    parts = segments(path)
    return parts[-1] if parts else ""


def depth(path: str) -> int:
    """Number of segments below the root."""
    return len(segments(path))


def join(parent: str, name: str) -> str:
    if parent == ROOT_PATH:
        return ROOT_PATH + name
    return parent + SEPARATOR + name


def is_under_subtree(candidate: str, root: str) -> bool:
    """True if ``candidate`` is ``root`` or lies below it.

    Compared segment by segment, so ``/ab`` is not under ``/a``.
    """
    if candidate == root:
        return True
    root_parts = segments(root)
    candidate_parts = segments(candidate)
    if len(candidate_parts) <= len(root_parts):
        return False
    return candidate_parts[:len(root_parts)] == root_parts


def rebase(path: str, src_root: str, dst_root: str) -> str:
    """Rewrite ``path`` from the ``src_root`` subtree into ``dst_root``.

    Only the leading prefix is replaced, never a later occurrence.
    """
    if not is_under_subtree(path, src_root):
        raise ValueError(f"{path} is not under {src_root}")
    if path == src_root:
        return dst_root
    rest = segments(path)[len(segments(src_root)):]
    result = dst_root
    for part in rest:
        result = join(result, part)
    return result


def like_pattern(root: str) -> str:
    """SQL LIKE pattern matching every descendant of ``root`` (escape char ``\\``)."""
    escaped = root.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    if root == ROOT_PATH:
        return escaped + "%"
    return escaped + SEPARATOR + "%"
