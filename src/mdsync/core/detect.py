"""Image rename and delete detection from before/after path snapshots"""

import logging
import os
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path

from mdsync.core.models import DeleteOp, RenameOp
from mdsync.core.paths import filename_of, folder_of, has_traversal, is_within, normalize_path


LOGGER = logging.getLogger(__name__)

Exists = Callable[[str], bool]


def detect_renames(
    original: Mapping[str, str],
    current: Sequence[str],
    document_dir: Path,
    exists: Exists = os.path.exists,
    ) -> list[RenameOp]:
    """Pair newly introduced paths with removed originals in the same folder.

    Only originals that vanished from the document can be rename sources, so adding
    a second image next to an untouched one never renames anything. Each source and
    each target is used at most once; the first eligible source wins.
    """
    current_set = {normalize_path(p) for p in current}
    original_set = {normalize_path(k) for k in original}
    removed = {rel: abs_ for rel, abs_ in original.items() if normalize_path(rel) not in current_set}
    if not removed:
        return []

    renames: list[RenameOp] = []
    used_sources: set[str] = set()
    claimed_targets: set[str] = set()
    doc_dir = os.path.abspath(document_dir)

    for path in current:
        if normalize_path(path) in original_set:
            continue
        if has_traversal(path):
            LOGGER.debug("Skipping rename candidate with traversal: %s", path)
            continue

        folder, name = folder_of(path), filename_of(path)
        for old_rel, old_abs in removed.items():
            if old_abs in used_sources:
                continue
            if folder_of(old_rel) != folder or filename_of(old_rel) == name:
                continue
            if not exists(old_abs):
                continue

            new_abs = os.path.normpath(os.path.join(doc_dir, path))
            if not is_within(new_abs, doc_dir):
                continue
            if new_abs in claimed_targets:
                continue

            renames.append(RenameOp(old_relative=old_rel, new_relative=path, old_absolute=old_abs, new_absolute=new_abs))
            used_sources.add(old_abs)
            claimed_targets.add(new_abs)
            break

    LOGGER.debug("Detected %d rename(s) from %d removed path(s)", len(renames), len(removed))
    return renames


def detect_deletes(
    original: Mapping[str, str],
    current: Sequence[str],
    exists: Exists = os.path.exists,
    ) -> list[DeleteOp]:
    """Originals that vanished from the document and still exist on disk.

    A vanished path whose filename (case-insensitive) is still referenced from
    another folder counts as a move and is never reported.
    """
    current_set = {normalize_path(p) for p in current}
    current_names = {filename_of(p).lower() for p in current}

    deletes = []
    for rel, abs_ in original.items():
        if normalize_path(rel) in current_set:
            continue
        if filename_of(rel).lower() in current_names:
            LOGGER.debug("Same filename referenced elsewhere, treating as move: %s", rel)
            continue
        if exists(abs_):
            deletes.append(DeleteOp(relative_path=rel, absolute_path=abs_))
    return deletes
