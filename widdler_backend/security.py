from __future__ import annotations

from pathlib import Path

from .config import CREDENTIAL_STORE_NAME
from .errors import PathEscape, PathRejected


def is_safe_basename(name: str) -> bool:
    """Allow only simple names (no directories, no dot segments)."""
    if not isinstance(name, str) or not name:
        return False
    if name in {".", ".."}:
        return False
    if name != Path(name).name:
        return False
    if "/" in name or "\\" in name:
        return False
    return True


def has_traversal_segment(request_path: str) -> bool:
    return ".." in request_path.replace("\\", "/").split("/")


def check_request_path(request_path: str, forbidden_names: tuple[str, ...] = ()) -> None:
    """Reject a raw request path before any directory resolution happens.

    Raises PathRejected if the path mentions ``.htpasswd`` anywhere, has a
    segment equal to one of ``forbidden_names`` (a custom credential store
    name), contains a NUL byte or a ``..`` segment.
    """
    if CREDENTIAL_STORE_NAME in request_path:
        raise PathRejected(f"forbidden name {CREDENTIAL_STORE_NAME!r} in request path")
    segments = request_path.replace("\\", "/").split("/")
    for name in forbidden_names:
        if name and name in segments:
            raise PathRejected(f"forbidden name {name!r} in request path")
    if "\x00" in request_path:
        raise PathRejected("NUL byte in request path")
    if has_traversal_segment(request_path):
        raise PathRejected("parent directory segment in request path")


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Join paths and ensure the result stays within base_dir.

    Canonicalization runs first and the prefix check is done on the result,
    so ``a/../../b`` style tricks and sibling directories sharing a name
    prefix (``/wikis/alice2`` for ``/wikis/alice``) are both rejected.
    """
    base_dir = base_dir.resolve()
    candidate = base_dir
    for part in parts:
        # Request paths are absolute URL paths; keep them relative to base_dir.
        candidate = candidate / part.lstrip("/")
    try:
        resolved = candidate.resolve()
    except ValueError as exc:
        # embedded null byte
        raise PathEscape(f"unresolvable path: {exc}") from exc
    if resolved == base_dir:
        return resolved
    if base_dir not in resolved.parents:
        raise PathEscape("Path traversal attempt")
    return resolved
