"""Unit tests for core/operations.py and the LocalFileSystem adapter"""

import base64

import pytest

from mdsync.core.images import InvalidFilenameError
from mdsync.core.models import DeleteOp, RenameOp
from mdsync.core.operations import (
    execute_deletes,
    execute_renames,
    find_files_using_image,
    save_image,
    update_references,
)
from mdsync.core.paths import PathTraversalError
from mdsync.core.ports import LocalFileSystem


@pytest.fixture(name="fs")
def fs_fixture(tmp_path):
    return LocalFileSystem(tmp_path)


def _op(root, old, new):
    return RenameOp(old_relative=old, new_relative=new,
                    old_absolute=str(root / old), new_absolute=str(root / new))


# --- renames ---

async def test_execute_renames_moves_files(tmp_path, fs, ui):
    """A rename into a new folder creates it and moves the file."""
    (tmp_path / "a.png").write_bytes(b"A")
    result = await execute_renames([_op(tmp_path, "a.png", "sub/b.png")], fs, ui)
    assert len(result.succeeded) == 1 and not result.failed
    assert (tmp_path / "sub" / "b.png").read_bytes() == b"A"
    assert not (tmp_path / "a.png").exists()


async def test_execute_renames_skips_existing_target(tmp_path, fs, ui):
    """Declining the overwrite prompt records a skip and leaves both files."""
    (tmp_path / "a.png").write_bytes(b"A")
    (tmp_path / "b.png").write_bytes(b"B")
    ui.overwrite = False
    result = await execute_renames([_op(tmp_path, "a.png", "b.png")], fs, ui)
    assert result.failed[0].error == "Skipped - target exists"
    assert (tmp_path / "b.png").read_bytes() == b"B"
    assert (tmp_path / "a.png").exists()


async def test_execute_renames_overwrites_when_confirmed(tmp_path, fs, ui):
    """Accepting the overwrite prompt replaces the target."""
    (tmp_path / "a.png").write_bytes(b"A")
    (tmp_path / "b.png").write_bytes(b"B")
    ui.overwrite = True
    result = await execute_renames([_op(tmp_path, "a.png", "b.png")], fs, ui)
    assert len(result.succeeded) == 1
    assert (tmp_path / "b.png").read_bytes() == b"A"


async def test_execute_renames_partial_failure(tmp_path, fs, ui):
    """A failing op does not stop the ones after it."""
    (tmp_path / "c.png").write_bytes(b"C")
    ops = [_op(tmp_path, "missing.png", "x.png"), _op(tmp_path, "c.png", "d.png")]
    result = await execute_renames(ops, fs, ui)
    assert [f.op.old_relative for f in result.failed] == ["missing.png"]
    assert [op.new_relative for op in result.succeeded] == ["d.png"]
    assert (tmp_path / "d.png").exists()


# --- deletes ---

def test_execute_deletes_moves_to_trash(tmp_path, fs):
    """Deleted images land in the trash with their relative layout."""
    (tmp_path / "images").mkdir()
    (tmp_path / "images" / "a.png").write_bytes(b"A")
    op = DeleteOp(relative_path="images/a.png", absolute_path=str(tmp_path / "images" / "a.png"))
    missing = DeleteOp(relative_path="gone.png", absolute_path=str(tmp_path / "gone.png"))

    result = execute_deletes([missing, op], fs)

    assert result.succeeded == ["images/a.png"]
    assert [f.path for f in result.failed] == ["gone.png"]
    assert not (tmp_path / "images" / "a.png").exists()
    assert (tmp_path / ".mdsync-trash" / "images" / "a.png").read_bytes() == b"A"


def test_trash_keeps_earlier_copies(tmp_path, fs):
    """Trashing the same path twice keeps both copies."""
    for payload in (b"1", b"2"):
        (tmp_path / "a.png").write_bytes(payload)
        fs.move_to_trash(tmp_path / "a.png")
    assert len(list((tmp_path / ".mdsync-trash").iterdir())) == 2


# --- reference updates and scans ---

def test_update_references_skips_current_document(tmp_path, fs):
    """Other Markdown files are rewritten; the excluded one and node_modules are not."""
    current = tmp_path / "current.md"
    current.write_text("![](images/a.png)")
    other = tmp_path / "notes" / "other.md"
    other.parent.mkdir()
    other.write_text("![](images/a.png) and ![](images/a.png)")
    untouched = tmp_path / "plain.md"
    untouched.write_text("no images")
    vendored = tmp_path / "node_modules" / "pkg" / "readme.md"
    vendored.parent.mkdir(parents=True)
    vendored.write_text("![](images/a.png)")

    count = update_references([_op(tmp_path, "images/a.png", "images/b.png")], fs, exclude=current)

    assert count == 1
    assert other.read_text() == "![](images/b.png) and ![](images/b.png)"
    assert current.read_text() == "![](images/a.png)"
    assert vendored.read_text() == "![](images/a.png)"


def test_update_references_no_renames(fs):
    """Nothing to do means nothing scanned."""
    assert update_references([], fs) == 0


def test_find_files_using_image(tmp_path, fs):
    """Files mentioning the image filename are listed relative to the root."""
    (tmp_path / "a.md").write_text("![](images/logo.png)")
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "b.md").write_text("![](../assets/logo.png)")
    (tmp_path / "c.md").write_text("nothing")
    found = find_files_using_image("images/logo.png", fs, tmp_path, exclude=tmp_path / "a.md")
    assert found == ["sub/b.md"]


# --- image saves ---

PNG = "data:image/png;base64," + base64.b64encode(b"\x89PNG").decode()


def test_save_image_writes_under_save_folder(tmp_path, fs, uri):
    """The image is written under the folder next to the document."""
    doc = tmp_path / "docs" / "note.md"
    doc.parent.mkdir()
    saved = save_image(PNG, "shot.png", doc, "images", fs, uri)
    assert saved.relative_path == "images/shot.png"
    assert (tmp_path / "docs" / "images" / "shot.png").read_bytes() == b"\x89PNG"
    assert saved.display_uri == uri(tmp_path / "docs" / "images" / "shot.png")


def test_save_image_into_document_folder(tmp_path, fs, uri):
    """Save folder '.' writes beside the document."""
    saved = save_image(PNG, "shot.png", tmp_path / "note.md", ".", fs, uri)
    assert saved.relative_path == "shot.png"
    assert (tmp_path / "shot.png").exists()


@pytest.mark.parametrize("name", ["../evil.png", "sub/evil.png", "NUL.png"])
def test_save_image_rejects_bad_filenames(tmp_path, fs, uri, name):
    """Unsafe filenames are rejected before anything is written."""
    with pytest.raises(InvalidFilenameError):
        save_image(PNG, name, tmp_path / "note.md", "images", fs, uri)
    assert not (tmp_path / "images").exists()


def test_save_image_rejects_escaping_folder(tmp_path, fs, uri):
    """A save folder outside the document folder is rejected."""
    with pytest.raises(PathTraversalError):
        save_image(PNG, "a.png", tmp_path / "note.md", "../out", fs, uri)
