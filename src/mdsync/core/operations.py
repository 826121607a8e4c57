"""File-system side of image changes: renames, trash deletes, reference updates, image saves"""

import logging
import os
import re
from pathlib import Path

from mdsync.core.images import UriFactory, decode_data_uri, validate_image_filename, validate_save_folder
from mdsync.core.models import DeleteFailure, DeleteOp, DeleteResult, RenameFailure, RenameOp, RenameResult, SavedImage
from mdsync.core.paths import PathTraversalError, filename_of, is_within
from mdsync.core.ports import FileSystem, HostUI


LOGGER = logging.getLogger(__name__)

DEFAULT_PATTERN = "**/*.md"
DEFAULT_EXCLUDE = "**/node_modules/**"


def _same_file(a: Path, b: Path) -> bool:
    return Path(a).resolve() == Path(b).resolve()


async def execute_renames(ops: list[RenameOp], fs: FileSystem, ui: HostUI) -> RenameResult:
    """Move each source to its target, asking before overwriting. Failures never stop later ops."""
    result = RenameResult()
    for op in ops:
        target = Path(op.new_absolute)
        try:
            fs.create_dir(target.parent)
            if fs.exists(target) and not await ui.confirm_overwrite(target):
                result.failed.append(RenameFailure(op=op, error="Skipped - target exists"))
                continue
            fs.move(Path(op.old_absolute), target, overwrite=True)
            result.succeeded.append(op)
        except OSError as e:
            LOGGER.warning("Rename %s -> %s failed: %s", op.old_relative, op.new_relative, e)
            result.failed.append(RenameFailure(op=op, error=str(e)))
    return result


def execute_deletes(ops: list[DeleteOp], fs: FileSystem) -> DeleteResult:
    """Move each file to the trash; never a hard delete."""
    result = DeleteResult()
    for op in ops:
        try:
            fs.move_to_trash(Path(op.absolute_path))
            result.succeeded.append(op.relative_path)
        except OSError as e:
            LOGGER.warning("Delete of %s failed: %s", op.relative_path, e)
            result.failed.append(DeleteFailure(path=op.relative_path, error=str(e)))
    return result


def update_references(
    renames: list[RenameOp],
    fs: FileSystem,
    exclude: Path | None = None,
    pattern: str = DEFAULT_PATTERN,
    exclude_pattern: str | None = DEFAULT_EXCLUDE,
    ) -> int:
    """Rewrite old relative paths to new ones in every other Markdown file. Returns files changed."""
    if not renames:
        return 0
    updated = 0
    for path in fs.glob_text(pattern, exclude_pattern):
        if exclude is not None and _same_file(path, exclude):
            continue
        try:
            text = fs.read_file(path).decode("utf-8")
            new_text = text
            for op in renames:
                if op.old_relative in new_text:
                    new_text = re.sub(re.escape(op.old_relative), lambda _m, r=op.new_relative: r, new_text)
            if new_text != text:
                fs.write_file(path, new_text.encode("utf-8"))
                updated += 1
        except (OSError, UnicodeDecodeError) as e:
            LOGGER.error("Failed to update references in %s: %s", path, e)
    return updated


def find_files_using_image(
    image_path: str,
    fs: FileSystem,
    root: Path,
    exclude: Path | None = None,
    pattern: str = DEFAULT_PATTERN,
    exclude_pattern: str | None = DEFAULT_EXCLUDE,
    ) -> list[str]:
    """Workspace-relative Markdown files that mention the image's filename."""
    name = filename_of(image_path)
    found = []
    for path in fs.glob_text(pattern, exclude_pattern):
        if exclude is not None and _same_file(path, exclude):
            continue
        try:
            text = fs.read_file(path).decode("utf-8")
        except (OSError, UnicodeDecodeError):
            continue
        if name in text:
            found.append(Path(os.path.relpath(path, root)).as_posix())
    return found


def save_image(
    data: str,
    filename: str,
    document_path: Path,
    save_folder: str,
    fs: FileSystem,
    uri_factory: UriFactory,
    ) -> SavedImage:
    """Write a base64 image next to the document. Raises ValueError for unsafe names or data."""
    filename = validate_image_filename(filename)
    folder = validate_save_folder(save_folder)

    doc_dir = Path(document_path).parent
    image_dir = doc_dir if folder == "." else doc_dir / folder
    if not is_within(image_dir, doc_dir):
        raise PathTraversalError("Image save folder resolves outside document folder")

    fs.create_dir(image_dir)
    target = image_dir / filename
    fs.write_file(target, decode_data_uri(data))

    relative = filename if folder == "." else f"{folder}/{filename}"
    return SavedImage(relative_path=relative, absolute_path=str(target), display_uri=uri_factory(target))
