"""Relative path canonicalization and traversal guards"""

import os
import re
from pathlib import Path


_DRIVE_RE = re.compile(r'^[A-Za-z]:')
_SLASH_RUN_RE = re.compile(r'/+')


class PathTraversalError(ValueError):
    """Raised when an externally supplied path could escape the document folder."""


def normalize_path(path: str) -> str:
    """Canonicalize a relative path for equality comparison (slashes, ./ prefix, // runs)."""
    p = path.replace("\\", "/")
    if p.startswith("./"):
        p = p[2:]
    return _SLASH_RUN_RE.sub("/", p)


def has_traversal(path: str) -> bool:
    """True for paths containing '..', starting with '/', or with a drive-letter prefix."""
    return ".." in path or path.startswith("/") or bool(_DRIVE_RE.match(path))


def is_within(resolved_path: str | Path, base_dir: str | Path) -> bool:
    """True iff resolved_path is base_dir or lies below it after resolution."""
    target = os.path.realpath(resolved_path)
    base = os.path.realpath(base_dir)
    return target == base or target.startswith(base.rstrip(os.sep) + os.sep)


def ensure_relative(path: str) -> str:
    """Return path unchanged, or raise PathTraversalError if it is not a safe relative path."""
    if not path or has_traversal(path):
        raise PathTraversalError(f"Invalid path: path traversal detected in {path!r}")
    return path


def folder_of(path: str) -> str:
    """Folder part of a normalized path ('' for bare filenames)."""
    p = normalize_path(path)
    idx = p.rfind("/")
    return p[:idx] if idx > 0 else ""


def filename_of(path: str) -> str:
    """Filename part of a normalized path."""
    return normalize_path(path).rsplit("/", 1)[-1]
