"""Collaborator interfaces (file system, editing surface, host UI) and the local filesystem adapter"""

import fnmatch
import logging
import shutil
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Protocol

from mdsync.core.models import DeleteOp


LOGGER = logging.getLogger(__name__)


class FileSystem(Protocol):
    def read_file(self, path: Path) -> bytes: ...
    def write_file(self, path: Path, data: bytes) -> None: ...
    def exists(self, path: Path) -> bool: ...
    def move(self, src: Path, dst: Path, *, overwrite: bool = False) -> None: ...
    def move_to_trash(self, path: Path) -> None: ...
    def create_dir(self, path: Path) -> None: ...
    def glob_text(self, pattern: str, exclude: str | None = None) -> list[Path]: ...


class EditingSurface(Protocol):
    def get_body(self) -> str: ...
    def set_body(self, text: str) -> None: ...
    def on_body_changed(self, callback: Callable[[str], None]) -> None: ...


class HostUI(Protocol):
    async def confirm_overwrite(self, target: Path) -> bool: ...
    async def confirm_deletes(self, ops: list[DeleteOp]) -> list[DeleteOp] | None: ...
    async def prompt_url(self, current: str, prompt: str) -> str | None: ...
    async def confirm_large_file(self, size: int) -> bool: ...
    def notify(self, level: str, message: str) -> None: ...


class LocalFileSystem:
    """FileSystem backed by the local disk, rooted at a workspace directory.

    Trashed files are moved under trash_dir (relative to root) keeping their
    workspace-relative layout, so they can be restored by hand.
    """

    def __init__(self, root: Path, trash_dir: str | Path = ".mdsync-trash") -> None:
        self.root = Path(root)
        self.trash_dir = self.root / trash_dir

    def read_file(self, path: Path) -> bytes:
        return Path(path).read_bytes()

    def write_file(self, path: Path, data: bytes) -> None:
        Path(path).write_bytes(data)

    def exists(self, path: Path) -> bool:
        return Path(path).exists()

    def create_dir(self, path: Path) -> None:
        Path(path).mkdir(parents=True, exist_ok=True)

    def move(self, src: Path, dst: Path, *, overwrite: bool = False) -> None:
        """Move src to dst. Raises FileExistsError when dst exists and overwrite is False."""
        src, dst = Path(src), Path(dst)
        if dst.exists() and not overwrite:
            raise FileExistsError(f"Target already exists: {dst}")
        shutil.move(str(src), str(dst))

    def move_to_trash(self, path: Path) -> None:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"No such file: {path}")
        try:
            rel = path.resolve().relative_to(self.root.resolve())
        except ValueError:
            rel = Path(path.name)
        target = self.trash_dir / rel
        if target.exists():
            stamp = datetime.now().strftime("%Y%m%d%H%M%S%f")
            target = target.with_name(f"{target.stem}.{stamp}{target.suffix}")
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(path), str(target))
        LOGGER.debug("Trashed %s -> %s", path, target)

    def glob_text(self, pattern: str, exclude: str | None = None) -> list[Path]:
        """Sorted files under root matching pattern, minus the exclude glob and the trash."""
        results = []
        for p in self.root.glob(pattern):
            if not p.is_file():
                continue
            rel = "/" + p.relative_to(self.root).as_posix()
            if exclude and fnmatch.fnmatch(rel, exclude):
                continue
            if self.trash_dir in p.parents:
                continue
            results.append(p)
        return sorted(results)
