"""Path utilities, name validation, and small helpers."""

from __future__ import annotations

import mimetypes
import posixpath
import time

# Reserved filenames (Windows compatibility)
RESERVED_NAMES = {
    "CON", "PRN", "AUX", "NUL",
    "COM1", "COM2", "COM3", "COM4", "COM5", "COM6", "COM7", "COM8", "COM9",
    "LPT1", "LPT2", "LPT3", "LPT4", "LPT5", "LPT6", "LPT7", "LPT8", "LPT9",
}


# =============================================================================
# Path Utilities
# =============================================================================


def normalize_path(path: str) -> str:
    """Normalize a virtual or physical POSIX path.

    - Ensures leading /
    - Resolves .. and . references
    - Removes double slashes
    - Removes trailing slash (except for root)

    Examples:
        normalize_path("foo.txt") -> "/foo.txt"
        normalize_path("/foo//bar.txt") -> "/foo/bar.txt"
        normalize_path("/foo/../bar.txt") -> "/bar.txt"
        normalize_path("/foo/") -> "/foo"
        normalize_path("") -> "/"
    """
    if not path:
        return "/"

    path = path.strip().replace("\\", "/")

    if not path.startswith("/"):
        path = "/" + path

    path = posixpath.normpath(path)

    # posixpath keeps a leading "//" as-is
    if path.startswith("//"):
        path = "/" + path.lstrip("/")

    if path != "/" and path.endswith("/"):
        path = path[:-1]

    return path


def split_path(path: str) -> tuple[str, str]:
    """Split path into (parent_dir, name).

    Examples:
        split_path("/foo/bar.txt") -> ("/foo", "bar.txt")
        split_path("/foo.txt") -> ("/", "foo.txt")
        split_path("/") -> ("/", "")
    """
    path = normalize_path(path)
    if path == "/":
        return "/", ""
    return posixpath.split(path)


def join_path(*parts: str) -> str:
    """Join path segments into a normalized absolute POSIX path.

    Examples:
        join_path("/docs", "a.txt") -> "/docs/a.txt"
        join_path("/", "a") -> "/a"
        join_path("", "a", "b") -> "/a/b"
    """
    return normalize_path(posixpath.join("/", *[p.strip("/") for p in parts if p]))


def join_relative(prefix: str, name: str) -> str:
    """Join a relative prefix and a name without adding a leading slash.

    Used for the keys of a move's resolution map, which are relative to
    the folder being moved into (``"photos/2024"``).
    """
    if not prefix:
        return name
    return posixpath.join(prefix, name).replace("\\", "/")


def path_parts(path: str, sep: str = "/") -> list[str]:
    """Split a delimited virtual path into non-empty segments.

    Examples:
        path_parts("/docs//reports/") -> ["docs", "reports"]
        path_parts("docs.reports", sep=".") -> ["docs", "reports"]
    """
    if not path:
        return []
    if sep == "/":
        path = path.replace("\\", "/")
    return [p for p in path.split(sep) if p]


def replace_prefix(path: str, old_prefix: str, new_prefix: str) -> str | None:
    """Swap *old_prefix* for *new_prefix* when *path* lives under it.

    Matches only at a directory boundary: ``/a`` is a prefix of ``/a/b``
    but not of ``/ab``.  Returns ``None`` when *path* is not under
    *old_prefix*.
    """
    path = normalize_path(path)
    old_prefix = normalize_path(old_prefix)
    new_prefix = normalize_path(new_prefix)
    if path == old_prefix:
        return new_prefix
    if old_prefix == "/":
        return join_path(new_prefix, path)
    if path.startswith(old_prefix + "/"):
        return join_path(new_prefix, path[len(old_prefix):])
    return None


def validate_name(name: str) -> tuple[bool, str]:
    """Validate a single folder or file name.

    Returns:
        (is_valid, error_message) - error_message is empty if valid
    """
    if not name or not name.strip():
        return False, "Name cannot be empty"

    if "\x00" in name:
        return False, "Name contains null bytes"

    for ch in name:
        if 0x01 <= ord(ch) <= 0x1F:
            return False, f"Name contains control character: 0x{ord(ch):02x}"

    if "/" in name or "\\" in name:
        return False, f"Name cannot contain slashes: {name}"

    if name in (".", ".."):
        return False, f"Invalid name: {name}"

    if len(name) > 255:
        return False, "Name too long (max 255 characters)"

    name_upper = name.upper()
    base_name = name_upper.split(".")[0] if "." in name_upper else name_upper
    if base_name in RESERVED_NAMES:
        return False, f"Reserved filename: {name}"

    return True, ""


def suffixed_name(name: str, counter: int, is_folder: bool) -> str:
    """Return *name* with a `` (counter)`` suffix.

    Files keep their extension after the suffix; folders do not.

    Examples:
        suffixed_name("report.pdf", 1, False) -> "report (1).pdf"
        suffixed_name("photos.2024", 2, True) -> "photos.2024 (2)"
    """
    if is_folder:
        return f"{name} ({counter})"
    stem, ext = posixpath.splitext(name)
    return f"{stem} ({counter}){ext}"


def guess_mime_type(filename: str) -> str:
    """Guess the MIME type of a file based on its name."""
    mime_type, _ = mimetypes.guess_type(filename)
    return mime_type or "application/octet-stream"


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)
