"""Unit tests for core/paths.py"""

import pytest

from mdsync.core.paths import (
    PathTraversalError,
    ensure_relative,
    filename_of,
    folder_of,
    has_traversal,
    is_within,
    normalize_path,
)


@pytest.mark.parametrize("raw, expected", [
    ("./images/a.png", "images/a.png"),
    ("images\\sub\\a.png", "images/sub/a.png"),
    ("images//sub///a.png", "images/sub/a.png"),
    ("a.png", "a.png"),
])
def test_normalize_path(raw, expected):
    """normalize_path unifies slashes, drops ./ and collapses slash runs."""
    assert normalize_path(raw) == expected


@pytest.mark.parametrize("path", ["../a.png", "images/../../a.png", "/etc/passwd", "C:/x.png", "c:\\x.png"])
def test_has_traversal_true(path):
    """Parent segments, absolute and drive-letter paths are unsafe."""
    assert has_traversal(path)


@pytest.mark.parametrize("path", ["a.png", "images/a.png", "./images/a.png"])
def test_has_traversal_false(path):
    """Plain relative paths are safe."""
    assert not has_traversal(path)


def test_is_within(tmp_path):
    """is_within accepts the base itself and descendants, rejects siblings sharing a prefix."""
    base = tmp_path / "docs"
    base.mkdir()
    assert is_within(base, base)
    assert is_within(base / "images" / "a.png", base)
    assert not is_within(tmp_path / "docs-other" / "a.png", base)
    assert not is_within(base / ".." / "a.png", base)


def test_is_within_follows_symlinks(tmp_path):
    """A symlinked folder pointing outside the base is not inside it."""
    base = tmp_path / "docs"
    outside = tmp_path / "outside"
    base.mkdir()
    outside.mkdir()
    (base / "link").symlink_to(outside, target_is_directory=True)
    assert not is_within(base / "link" / "a.png", base)


def test_ensure_relative():
    """ensure_relative returns safe paths and raises PathTraversalError otherwise."""
    assert ensure_relative("images/a.png") == "images/a.png"
    with pytest.raises(PathTraversalError):
        ensure_relative("../a.png")
    with pytest.raises(PathTraversalError):
        ensure_relative("")


def test_folder_and_filename():
    """folder_of is empty for bare names; both work on normalized paths."""
    assert folder_of("a.png") == ""
    assert folder_of("./images/a.png") == "images"
    assert folder_of("images\\sub\\a.png") == "images/sub"
    assert filename_of("images/sub/a.png") == "a.png"
    assert filename_of("a.png") == "a.png"
