"""Editor-side document session: display transforms, debounced emission, image round trips"""

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any, Generic, Protocol, TypeVar

from mdsync.config import Settings
from mdsync.core import frontmatter
from mdsync.core.echo import EchoGuard
from mdsync.core.images import (
    ImageMap,
    clean_reference,
    find_inline_images,
    generate_image_filename,
    is_remote_url,
    mime_type_of,
    replace_image_path,
    replace_inline_image,
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
from mdsync.core.models import ParsedContent, SyncState, YamlValidation
from mdsync.core.paths import filename_of, folder_of, has_traversal
from mdsync.core.pending import PendingRequests, RequestTimeoutError
from mdsync.core.ports import EditingSurface


LOGGER = logging.getLogger(__name__)

Send = Callable[[Message], None]
MetadataListener = Callable[[ParsedContent], None]


class EditorSession:
    """One open document on the editor side.

    Inbound updates are split, transformed for display and pushed into the editing
    surface. Surface changes are mapped back to on-disk paths, debounced, and sent
    to the host as full-document edits stamped with the echo guard.
    """

    def __init__(
        self,
        surface: EditingSurface,
        send: Send,
        settings: Settings | None = None,
        on_metadata: MetadataListener | None = None,
        ) -> None:
        self.surface = surface
        self.send = send
        self.settings = settings or Settings()
        self.on_metadata = on_metadata

        self.image_map = ImageMap()
        self.echo = EchoGuard()
        self.state = SyncState.IDLE
        self.frontmatter: str | None = None
        self.body = ""

        self.pending_images: PendingRequests[str] = PendingRequests("image", self.settings.pending_image_timeout)
        self.uploads: PendingRequests[str] = PendingRequests("upload", self.settings.upload_timeout)
        self.renames: PendingRequests[ImageRenameResponse] = PendingRequests("rename", self.settings.rename_timeout)
        self.url_edits: PendingRequests[str | None] = PendingRequests("url-edit", self.settings.url_edit_timeout)

        self._blobs: dict[str, str] = {}
        self._applying = False
        self._closed = False
        self._debounce: asyncio.TimerHandle | None = None
        self._flush_task: asyncio.Task | None = None

        surface.on_body_changed(self._on_body_changed)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def document(self) -> str:
        """Current document text in its on-disk form."""
        return frontmatter.reconstruct(self.frontmatter, self.body)

    def ready(self) -> None:
        self.send(Ready())

    # --- inbound ---

    def apply_update(self, content: str, image_map: Mapping[str, str] | None = None) -> bool:
        """Show an inbound document. Returns False when it is an echo of our own edit."""
        if self._closed:
            return False
        self.image_map.replace(image_map or {})
        if self.echo.is_echo(content, self.image_map.keys()):
            LOGGER.debug("Skipping echo of last edit")
            return False

        self.state = SyncState.AWAITING_DISPLAY_TRANSFORM
        self._applying = True
        try:
            parsed = frontmatter.split(content, self.settings.max_frontmatter_scan)
            self.frontmatter, self.body = parsed.metadata, parsed.body
            if self.on_metadata is not None:
                self.on_metadata(parsed)
            self.surface.set_body(self.image_map.transform_for_display(parsed.body))
        except Exception:
            LOGGER.exception("Failed to apply update, showing raw text")
            self.frontmatter, self.body = None, content
            self.surface.set_body(content)
        finally:
            self._applying = False
        self.state = SyncState.IDLE
        return True

    def handle_message(self, data: Any) -> None:
        """Dispatch one host message. Unknown or malformed messages are dropped."""
        msg = parse_message(data)
        if msg is None or self._closed:
            return
        if isinstance(msg, Update):
            self.apply_update(msg.content, msg.image_map)
        elif isinstance(msg, ImageSaved):
            self._on_image_saved(msg)
        elif isinstance(msg, ImageRenameResponse):
            if self.renames.resolve(msg.rename_id, msg) is None:
                LOGGER.debug("Late rename response %s ignored", msg.rename_id)
        elif isinstance(msg, ImageUrlEditResponse):
            if self.url_edits.resolve(msg.edit_id, msg.new_url) is None:
                LOGGER.debug("Late URL edit response %s ignored", msg.edit_id)
        else:
            LOGGER.debug("Ignoring %s message", msg.type)

    # --- outbound ---

    def _on_body_changed(self, text: str) -> None:
        if self._applying or self._closed:
            return
        self.body = self.image_map.transform_for_save(text)
        self.state = SyncState.EDITING
        self._schedule_flush()

    def update_metadata(self, text: str) -> YamlValidation:
        """Replace the metadata block; blank text removes it. Returns the YAML check for display."""
        self.frontmatter = text if text and text.strip() else None
        self._schedule_flush()
        return frontmatter.validate_yaml(text)

    def _schedule_flush(self) -> None:
        if self._closed:
            return
        if self._debounce is not None:
            self._debounce.cancel()
        loop = asyncio.get_running_loop()
        self._debounce = loop.call_later(self.settings.debounce_ms / 1000, self._start_flush)

    def _start_flush(self) -> None:
        self._debounce = None
        if self._flush_task is not None and not self._flush_task.done():
            self._flush_task.cancel()
        self._flush_task = asyncio.ensure_future(self._flush())

    async def flush(self) -> None:
        """Emit the current document now instead of waiting for the debounce."""
        if self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None
        if self._flush_task is not None and not self._flush_task.done():
            self._flush_task.cancel()
        await self._flush()

    async def _flush(self) -> None:
        self.state = SyncState.PENDING_SAVE
        limit = self.settings.image_retry_limit
        attempt = 0
        while True:
            inline = find_inline_images(self.document)
            if not inline:
                break
            waiters = [f for f in (self._request_image_save(url) for url in inline) if f is not None]
            if attempt >= limit or not waiters:
                LOGGER.warning("Emitting edit with %d unsaved inline image(s) after %d attempt(s)", len(inline), attempt)
                break
            await asyncio.wait(waiters, timeout=self.settings.image_retry_base_delay * 2 ** attempt)
            attempt += 1

        if self._closed:
            return
        content = self.document
        self.echo.stamp(content, self.image_map.keys())
        self.send(Edit(content=content))
        self.state = SyncState.IDLE

    # --- images ---

    def register_blob(self, blob_url: str, data_uri: str) -> None:
        """Provide the base64 data behind a blob: URL the surface inserted."""
        self._blobs[blob_url] = data_uri

    def _request_image_save(self, url: str) -> asyncio.Future | None:
        existing = self.pending_images.get(url)
        if existing is not None:
            return existing.future
        data = url if url.startswith("data:") else self._blobs.get(url)
        if data is None:
            LOGGER.warning("No data registered for inline image %s", url[:64])
            return None
        request = self.pending_images.register(request_id=url)
        self.send(SaveImage(data=data, filename=generate_image_filename(mime_type_of(data)), blob_url=url))
        return request.future

    def _on_image_saved(self, msg: ImageSaved) -> None:
        if msg.webview_uri:
            self.image_map.add(msg.saved_path, msg.webview_uri)
        body = replace_inline_image(self.body, msg.blob_url, msg.saved_path)
        changed = body != self.body
        self.body = body
        self._refresh_surface()
        self._blobs.pop(msg.blob_url, None)
        self.pending_images.resolve(msg.blob_url, msg.saved_path)
        self.uploads.resolve(msg.blob_url, msg.webview_uri or msg.saved_path)
        # A flush still waiting on images re-reads the body itself.
        if changed and (self._flush_task is None or self._flush_task.done()):
            self._schedule_flush()

    async def upload_image(self, data: str, filename: str | None = None) -> str:
        """Ask the host to store an image; returns its display URI (or saved path)."""
        request = self.uploads.register()
        name = filename or generate_image_filename(mime_type_of(data))
        self.send(SaveImage(data=data, filename=name, blob_url=request.id))
        return await request.future

    async def edit_image_url(self, current_url: str) -> str | None:
        """Let the host prompt for a new image URL. Returns the applied URL, or None if unchanged."""
        relative = self.image_map.relative_for(current_url) or current_url
        is_local = not is_remote_url(relative)
        request = self.url_edits.register()
        self.send(RequestImageUrlEdit(
            edit_id=request.id,
            current_url=relative,
            is_local_image=is_local,
            is_base64=relative.startswith("data:"),
        ))
        try:
            answer = await request.future
        except RequestTimeoutError:
            return None
        new_url = clean_reference(answer or "")
        if not new_url or new_url == relative:
            return None

        if (
            is_local
            and not is_remote_url(new_url)
            and not has_traversal(new_url)
            and folder_of(new_url) == folder_of(relative)
            and filename_of(new_url) != filename_of(relative)
        ):
            return new_url if await self.request_image_rename(relative, new_url) else None

        self._substitute_path(relative, new_url)
        return new_url

    async def request_image_rename(self, old_path: str, new_path: str) -> bool:
        """Rename an image file through the host; the map and body change only on success."""
        request = self.renames.register()
        self.send(RequestImageRename(rename_id=request.id, old_path=old_path, new_path=new_path))
        try:
            response = await request.future
        except RequestTimeoutError:
            return False
        if not response.success:
            LOGGER.info("Host refused rename %s -> %s", old_path, new_path)
            return False
        new_path = response.new_path or new_path
        self.image_map.rename(old_path, new_path, response.webview_uri or self.image_map.get(old_path, new_path))
        self._substitute_path(old_path, new_path)
        return True

    def _substitute_path(self, old_path: str, new_path: str) -> None:
        self.body = replace_image_path(self.body, old_path, new_path)
        self._refresh_surface()
        self._schedule_flush()

    def _refresh_surface(self) -> None:
        self._applying = True
        try:
            self.surface.set_body(self.image_map.transform_for_display(self.body))
        finally:
            self._applying = False

    # --- lifecycle ---

    def close(self) -> None:
        """Cancel timers and in-flight work. Later messages are ignored."""
        self._closed = True
        if self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None
        if self._flush_task is not None:
            self._flush_task.cancel()
            self._flush_task = None
        for registry in (self.pending_images, self.uploads, self.renames, self.url_edits):
            registry.clear()
        self._blobs.clear()
        self.echo.reset()
        self.state = SyncState.IDLE


class Closeable(Protocol):
    def close(self) -> None: ...


S = TypeVar("S", bound=Closeable)


class SessionRegistry(Generic[S]):
    """Per-document sessions keyed by document id."""

    def __init__(self) -> None:
        self._sessions: dict[str, S] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, doc_id: str) -> bool:
        return doc_id in self._sessions

    def open(self, doc_id: str, factory: Callable[[], S]) -> S:
        """Return the session for doc_id, creating it with factory on first use."""
        session = self._sessions.get(doc_id)
        if session is None:
            session = factory()
            self._sessions[doc_id] = session
            LOGGER.debug("Opened session for %s", doc_id)
        return session

    def get(self, doc_id: str) -> S | None:
        return self._sessions.get(doc_id)

    def close(self, doc_id: str) -> bool:
        session = self._sessions.pop(doc_id, None)
        if session is None:
            return False
        session.close()
        LOGGER.debug("Closed session for %s", doc_id)
        return True

    def close_all(self) -> None:
        for doc_id in list(self._sessions):
            self.close(doc_id)
