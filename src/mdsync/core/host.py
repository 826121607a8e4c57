"""Host-side document session: owns the file text and performs image file operations"""

import asyncio
import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

from mdsync.config import Settings
from mdsync.core.detect import detect_deletes, detect_renames
from mdsync.core.images import (
    ImageMap,
    ResourceUriFactory,
    UriFactory,
    build_image_map,
    build_original_paths,
    extract_image_paths,
    replace_image_path,
)
from mdsync.core.messages import (
    Edit,
    ImageRenameResponse,
    ImageSaved,
    ImageUrlEditResponse,
    Message,
    Ready,
    RequestImageRename,
    RequestImageUrlEdit,
    SaveImage,
    Update,
    parse_message,
)
from mdsync.core.models import RenameOp
from mdsync.core.operations import (
    execute_deletes,
    execute_renames,
    find_files_using_image,
    save_image,
    update_references,
)
from mdsync.core.paths import PathTraversalError, ensure_relative, is_within, normalize_path
from mdsync.core.ports import FileSystem, HostUI


LOGGER = logging.getLogger(__name__)

Send = Callable[[Message], None]


class DocumentHost:
    """The file owner's side of one open document.

    Holds the authoritative text, pushes debounced updates to the editor, and turns
    changes in the set of referenced images into renames, trash deletes and
    reference updates across the workspace.
    """

    def __init__(
        self,
        document_path: Path,
        send: Send,
        fs: FileSystem,
        ui: HostUI,
        settings: Settings | None = None,
        workspace_root: Path | None = None,
        uri_factory: UriFactory | None = None,
        on_text_changed: Callable[[str], None] | None = None,
        ) -> None:
        self.document_path = Path(document_path)
        self.workspace_root = Path(workspace_root) if workspace_root else self.document_path.parent
        self.send = send
        self.fs = fs
        self.ui = ui
        self.settings = settings or Settings()
        self.uri_factory = uri_factory or ResourceUriFactory(self.settings.uri_scheme)
        self.on_text_changed = on_text_changed

        self.text = ""
        self.original_paths: dict[str, str] = {}
        self.image_map = ImageMap()

        self._pending_edit = False
        self._rename_in_progress = False
        self._update_handle: asyncio.TimerHandle | None = None
        self._closed = False

    @property
    def document_dir(self) -> Path:
        return self.document_path.parent

    def _exists(self, path: str) -> bool:
        return self.fs.exists(Path(path))

    def _rebuild_snapshot(self) -> None:
        self.original_paths = build_original_paths(
            self.text, self.document_path, self.workspace_root, self.settings.max_file_size)
        LOGGER.debug("Tracking %d image path(s) in %s", len(self.original_paths), self.document_path.name)

    def _set_text(self, text: str) -> None:
        self._pending_edit = True
        try:
            self.text = text
            if self.on_text_changed is not None:
                self.on_text_changed(text)
        finally:
            self._pending_edit = False

    # --- lifecycle ---

    async def open(self) -> bool:
        """Load the document. Returns False if the user declines to open a large file."""
        data = self.fs.read_file(self.document_path)
        if len(data) > self.settings.max_file_size and not await self.ui.confirm_large_file(len(data)):
            LOGGER.info("Not opening %s (%d bytes)", self.document_path, len(data))
            return False
        self.text = data.decode("utf-8")
        self._rebuild_snapshot()
        return True

    async def save(self) -> None:
        """Write the text to disk, trash images no longer referenced, then re-snapshot."""
        self.fs.write_file(self.document_path, self.text.encode("utf-8"))
        if self.settings.auto_delete_images:
            await self._handle_deletes()
        self._rebuild_snapshot()

    def close(self) -> None:
        self._closed = True
        if self._update_handle is not None:
            self._update_handle.cancel()
            self._update_handle = None

    # --- updates to the editor ---

    def build_update(self) -> Update:
        self.image_map = build_image_map(
            self.text, self.document_path, self.uri_factory, self.workspace_root, self.settings.max_file_size)
        return Update(content=self.text, image_map=self.image_map.to_dict())

    def schedule_update(self) -> None:
        if self._closed:
            return
        if self._update_handle is not None:
            self._update_handle.cancel()
        loop = asyncio.get_running_loop()
        self._update_handle = loop.call_later(self.settings.update_debounce_ms / 1000, self._send_update)

    def _send_update(self) -> None:
        self._update_handle = None
        if not self._closed:
            self.send(self.build_update())

    def on_external_change(self, text: str) -> None:
        """The document changed outside the editor (another view, a file watcher)."""
        if self._pending_edit or self._closed or text == self.text:
            return
        self.text = text
        self.schedule_update()

    # --- messages ---

    async def handle_message(self, data: Any) -> None:
        msg = parse_message(data)
        if msg is None or self._closed:
            return
        if isinstance(msg, Ready):
            self.send(self.build_update())
        elif isinstance(msg, Edit):
            await self.apply_edit(msg.content)
        elif isinstance(msg, SaveImage):
            self._handle_save_image(msg)
        elif isinstance(msg, RequestImageUrlEdit):
            await self._handle_url_edit(msg)
        elif isinstance(msg, RequestImageRename):
            await self._handle_rename_request(msg)
        else:
            LOGGER.debug("Ignoring %s message", msg.type)

    async def apply_edit(self, content: str) -> None:
        """Accept a full-document edit, renaming image files whose references changed name."""
        if self._closed:
            return
        renamed = False
        if self.settings.auto_rename_images and not self._rename_in_progress:
            renamed = await self._handle_renames(content)
        if content != self.text:
            self._set_text(content)
        if renamed:
            self.schedule_update()

    async def _handle_renames(self, content: str) -> bool:
        current = extract_image_paths(content, self.settings.max_file_size)
        ops = detect_renames(self.original_paths, current, self.document_dir, exists=self._exists)
        if not ops:
            return False

        self._rename_in_progress = True
        try:
            for op in ops:
                self.original_paths.pop(normalize_path(op.old_relative), None)
                self.original_paths[normalize_path(op.new_relative)] = op.new_absolute

            result = await execute_renames(ops, self.fs, self.ui)

            for failure in result.failed:
                self.original_paths.pop(normalize_path(failure.op.new_relative), None)
                self.original_paths[normalize_path(failure.op.old_relative)] = failure.op.old_absolute

            if result.succeeded:
                self.ui.notify("info", f"Renamed {len(result.succeeded)} image file(s)")
                updated = update_references(
                    result.succeeded, self.fs,
                    exclude=self.document_path,
                    pattern=self.settings.markdown_glob,
                    exclude_pattern=self.settings.exclude_glob,
                )
                if updated:
                    self.ui.notify("info", f"Updated image references in {updated} other file(s)")
            if result.failed:
                details = "; ".join(f"{f.op.old_relative}: {f.error}" for f in result.failed)
                self.ui.notify("warning", f"Failed to rename {len(result.failed)} image(s): {details}")
            return bool(result.succeeded)
        finally:
            self._rename_in_progress = False

    async def _handle_deletes(self) -> None:
        current = extract_image_paths(self.text, self.settings.max_file_size)
        ops = detect_deletes(self.original_paths, current, exists=self._exists)
        if not ops:
            return

        for op in ops:
            op.used_in_files = find_files_using_image(
                op.relative_path, self.fs, self.workspace_root,
                exclude=self.document_path,
                pattern=self.settings.markdown_glob,
                exclude_pattern=self.settings.exclude_glob,
            )
        chosen = await self.ui.confirm_deletes(ops)
        if not chosen:
            LOGGER.debug("No image deletions confirmed")
            return

        result = execute_deletes(chosen, self.fs)
        for rel in result.succeeded:
            self.original_paths.pop(normalize_path(rel), None)
        if result.succeeded:
            self.ui.notify("info", f"Moved {len(result.succeeded)} unused image(s) to trash")
        if result.failed:
            details = "; ".join(f"{f.path}: {f.error}" for f in result.failed)
            self.ui.notify("warning", f"Failed to delete {len(result.failed)} image(s): {details}")

    def _handle_save_image(self, msg: SaveImage) -> None:
        try:
            saved = save_image(
                msg.data, msg.filename, self.document_path,
                self.settings.image_save_folder, self.fs, self.uri_factory,
            )
        except (ValueError, OSError) as e:
            LOGGER.error("Failed to save image %r: %s", msg.filename, e)
            self.ui.notify("error", f"Failed to save image: {e}")
            return
        self.image_map.add(saved.relative_path, saved.display_uri)
        self.send(ImageSaved(blob_url=msg.blob_url, saved_path=saved.relative_path, webview_uri=saved.display_uri))

    async def _handle_url_edit(self, msg: RequestImageUrlEdit) -> None:
        prompt = "Edit image path" if msg.is_local_image and not msg.is_base64 else "Edit image URL"
        new_url = await self.ui.prompt_url(msg.current_url, prompt)
        self.send(ImageUrlEditResponse(edit_id=msg.edit_id, new_url=new_url))

    def _resolve_request_path(self, path: str) -> Path:
        resolved = Path(os.path.normpath(self.document_dir / normalize_path(ensure_relative(path))))
        if not is_within(resolved, self.document_dir):
            raise PathTraversalError(f"Invalid path: {path!r} resolves outside the document folder")
        return resolved

    async def _handle_rename_request(self, msg: RequestImageRename) -> None:
        def reply(success: bool, uri: str | None = None) -> None:
            self.send(ImageRenameResponse(rename_id=msg.rename_id, success=success, new_path=msg.new_path, webview_uri=uri))

        try:
            old_abs = self._resolve_request_path(msg.old_path)
            new_abs = self._resolve_request_path(msg.new_path)
        except PathTraversalError as e:
            LOGGER.warning("Rejected rename request %s: %s", msg.rename_id, e)
            self.ui.notify("error", str(e))
            reply(False)
            return

        self._rename_in_progress = True
        try:
            self.fs.create_dir(new_abs.parent)
            self.fs.move(old_abs, new_abs, overwrite=False)
        except OSError as e:
            LOGGER.warning("Rename %s -> %s failed: %s", msg.old_path, msg.new_path, e)
            self.ui.notify("error", f"Failed to rename image: {e}")
            reply(False)
            return
        finally:
            self._rename_in_progress = False

        self._set_text(replace_image_path(self.text, msg.old_path, msg.new_path))
        self.original_paths.pop(normalize_path(msg.old_path), None)
        self.original_paths[normalize_path(msg.new_path)] = str(new_abs)
        uri = self.uri_factory(new_abs)
        self.image_map.rename(msg.old_path, msg.new_path, uri)
        reply(True, uri)

        op = RenameOp(old_relative=msg.old_path, new_relative=msg.new_path,
                      old_absolute=str(old_abs), new_absolute=str(new_abs))
        updated = update_references(
            [op], self.fs,
            exclude=self.document_path,
            pattern=self.settings.markdown_glob,
            exclude_pattern=self.settings.exclude_glob,
        )
        if updated:
            self.ui.notify("info", f"Updated image references in {updated} other file(s)")
