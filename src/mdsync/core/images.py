"""Image reference extraction, resolution, and display/save path mapping"""

import base64
import binascii
import os
import re
import secrets
import time
from collections.abc import Callable, Iterable, Iterator, Mapping
from pathlib import Path
from urllib.parse import quote, unquote, urlparse

from markdown_it import MarkdownIt
from markdown_it.token import Token

from mdsync.core.models import ImagePathEntry
from mdsync.core.paths import PathTraversalError, normalize_path


MAX_SCAN_SIZE = 500 * 1024

REMOTE_URL_RE = re.compile(r'^(https?://|data:)', re.IGNORECASE)
HTML_IMG_RE = re.compile(r'<img\s[^>]*?src=["\']([^"\']+)["\']', re.IGNORECASE)
INLINE_IMAGE_RE = re.compile(r'!\[([^\]]*)\]\(((?:blob:|data:image/)[^)]+)\)')
TITLE_SEPARATOR_RE = re.compile(r'\s+["\']')
DRIVE_ABS_RE = re.compile(r'^[A-Za-z]:[\\/]')
DATA_URI_RE = re.compile(r'^data:(image/[^;]+);base64,', re.IGNORECASE)
INVALID_FILENAME_RE = re.compile(r'[<>:"|?*\x00-\x1f\u202e]')
RESERVED_NAME_RE = re.compile(r'^(CON|PRN|AUX|NUL|COM\d|LPT\d)(\.|$)', re.IGNORECASE)

# A match must not be glued to further path characters on either side.
_TOKEN_START = r'(?<![\w\-./~%+@:])'
_TOKEN_END = r'(?![\w\-/~%+@]|\.\w)'

UriFactory = Callable[[Path], str]


class InvalidFilenameError(ValueError):
    """Raised for image filenames that are unsafe to write."""


def is_remote_url(url: str) -> bool:
    """True for http(s) URLs and data: URIs."""
    return bool(REMOTE_URL_RE.match(url))


def clean_reference(raw_path: str) -> str:
    """Strip a trailing title or surrounding angle brackets from an image destination."""
    p = raw_path.strip()
    if p.startswith("<"):
        end = p.find(">")
        if end != -1:
            p = p[1:end]
        return p.strip()
    m = TITLE_SEPARATOR_RE.search(p)
    if m:
        p = p[:m.start()]
    return p.strip()


# --- text transforms ---

def _alternation(keys: Iterable[str]) -> re.Pattern | None:
    """One pattern matching any key as a whole path token, longest key first."""
    ordered = sorted({k for k in keys if k}, key=len, reverse=True)
    if not ordered:
        return None
    return re.compile(_TOKEN_START + "(?:" + "|".join(map(re.escape, ordered)) + ")" + _TOKEN_END)


def _substitute(body: str, pattern: re.Pattern | None, table: Mapping[str, str]) -> str:
    if not body or pattern is None:
        return body
    return pattern.sub(lambda m: table[m.group(0)], body)


def transform_for_display(body: str, image_map: Mapping[str, str]) -> str:
    """Replace relative image paths with display URIs in a single pass."""
    return _substitute(body, _alternation(image_map.keys()), image_map)


def transform_for_save(body: str, image_map: Mapping[str, str]) -> str:
    """Replace display URIs with their relative image paths in a single pass."""
    reverse = {uri: rel for rel, uri in image_map.items()}
    return _substitute(body, _alternation(reverse.keys()), reverse)


class ImageMap(Mapping[str, str]):
    """Relative image path (as written) -> display URI for one document session.

    Compiled substitution patterns are cached and dropped on every mutation, so a
    transform always reflects the latest map state.
    """

    def __init__(self, entries: Mapping[str, str] | None = None) -> None:
        self._entries: dict[str, str] = dict(entries or {})
        self._reverse: dict[str, str] | None = None
        self._display_re: re.Pattern | None = None
        self._save_re: re.Pattern | None = None
        self._compiled = False

    def __getitem__(self, key: str) -> str:
        return self._entries[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"ImageMap({self._entries!r})"

    def _invalidate(self) -> None:
        self._compiled = False
        self._reverse = None

    def _compile(self) -> None:
        if self._compiled:
            return
        self._reverse = {uri: rel for rel, uri in self._entries.items()}
        self._display_re = _alternation(self._entries)
        self._save_re = _alternation(self._reverse)
        self._compiled = True

    def add(self, relative: str, uri: str) -> None:
        self._entries[relative] = uri
        self._invalidate()

    def remove(self, relative: str) -> str | None:
        uri = self._entries.pop(relative, None)
        self._invalidate()
        return uri

    def rename(self, old: str, new: str, uri: str) -> None:
        """Drop the old key and register the new one in one step."""
        self._entries.pop(old, None)
        self._entries[new] = uri
        self._invalidate()

    def replace(self, entries: Mapping[str, str]) -> None:
        self._entries = dict(entries)
        self._invalidate()

    def relative_for(self, uri: str) -> str | None:
        """Reverse lookup of a display URI."""
        self._compile()
        return self._reverse.get(uri)

    def to_dict(self) -> dict[str, str]:
        return dict(self._entries)

    def transform_for_display(self, body: str) -> str:
        self._compile()
        return _substitute(body, self._display_re, self._entries)

    def transform_for_save(self, body: str) -> str:
        self._compile()
        return _substitute(body, self._save_re, self._reverse)


# --- extraction and resolution ---

def _make_parser() -> MarkdownIt:
    """MarkdownIt instance that reports link destinations exactly as written."""
    md = MarkdownIt("gfm-like", options_update={"linkify": False})
    md.normalizeLink = lambda url: url
    md.validateLink = lambda url: True
    return md


_PARSER = _make_parser()


def _walk(tokens: list[Token]) -> Iterator[Token]:
    for tok in tokens:
        yield tok
        if tok.children:
            yield from _walk(tok.children)


def extract_image_paths(content: str, max_size: int = MAX_SCAN_SIZE) -> list[str]:
    """Return unique image destinations (Markdown and HTML <img>) in document order."""
    if not content or len(content) > max_size:
        return []

    paths = []
    for tok in _walk(_PARSER.parse(content)):
        if tok.type == "image":
            src = clean_reference(str(tok.attrGet("src") or ""))
            if src:
                paths.append(src)
        elif tok.type in ("html_inline", "html_block"):
            for raw in HTML_IMG_RE.findall(tok.content):
                src = clean_reference(raw)
                if src:
                    paths.append(src)
    return list(dict.fromkeys(paths))


def resolve_image_path(image_path: str, document_path: Path, workspace_root: Path | None = None) -> Path | None:
    """Resolve an image destination to a file path; None for remote URLs."""
    if is_remote_url(image_path):
        return None
    if image_path.startswith("file://"):
        return Path(unquote(urlparse(image_path).path))
    if DRIVE_ABS_RE.match(image_path):
        return Path(image_path)
    if image_path.startswith("/"):
        if workspace_root is not None:
            return Path(os.path.normpath(Path(workspace_root) / image_path.lstrip("/")))
        return Path(image_path)
    return Path(os.path.normpath(Path(document_path).parent / image_path))


def collect_image_entries(
    content: str,
    document_path: Path,
    workspace_root: Path | None = None,
    max_size: int = MAX_SCAN_SIZE,
    ) -> list[ImagePathEntry]:
    """One ImagePathEntry per local image reference in content."""
    entries = []
    for rel in extract_image_paths(content, max_size):
        resolved = resolve_image_path(rel, document_path, workspace_root)
        if resolved is not None:
            entries.append(ImagePathEntry(relative_path=rel, absolute_path=str(resolved)))
    return entries


def build_original_paths(
    content: str,
    document_path: Path,
    workspace_root: Path | None = None,
    max_size: int = MAX_SCAN_SIZE,
    ) -> dict[str, str]:
    """Snapshot of normalized relative path -> absolute path, used for change detection."""
    return {
        normalize_path(e.relative_path): e.absolute_path
        for e in collect_image_entries(content, document_path, workspace_root, max_size)
    }


def build_image_map(
    content: str,
    document_path: Path,
    uri_factory: UriFactory,
    workspace_root: Path | None = None,
    max_size: int = MAX_SCAN_SIZE,
    ) -> ImageMap:
    """Map each local image reference, as written, to its display URI."""
    return ImageMap({
        e.relative_path: uri_factory(Path(e.absolute_path))
        for e in collect_image_entries(content, document_path, workspace_root, max_size)
    })


class ResourceUriFactory:
    """Session-local display URIs: <scheme>://<token>/<percent-encoded absolute path>."""

    def __init__(self, scheme: str = "mdsync-resource", token: str | None = None) -> None:
        self.scheme = scheme
        self.token = token or secrets.token_hex(8)

    def __call__(self, path: Path) -> str:
        posix = Path(path).as_posix()
        if not posix.startswith("/"):
            posix = "/" + posix
        return f"{self.scheme}://{self.token}{quote(posix)}"


# --- inline (pasted) images ---

def find_inline_images(content: str) -> list[str]:
    """Unique data:/blob: image URLs that still need to be written to disk."""
    return list(dict.fromkeys(m.group(2) for m in INLINE_IMAGE_RE.finditer(content or "")))


def replace_inline_image(body: str, image_url: str, saved_path: str) -> str:
    """Swap every ](image_url) for ](saved_path) by plain string search."""
    return body.replace(f"]({image_url})", f"]({saved_path})")


def replace_image_path(text: str, old_path: str, new_path: str) -> str:
    """Rewrite one image destination where it appears as ](path) or src="path"."""
    pattern = re.compile(r'(\]\(<?|src=["\'])' + re.escape(old_path) + r'(>?[)\s"\'])')
    return pattern.sub(lambda m: m.group(1) + new_path + m.group(2), text)


def validate_image_filename(filename: str) -> str:
    """Return filename, or raise InvalidFilenameError for separators, traversal, or reserved names."""
    if (
        not filename
        or ".." in filename
        or "/" in filename
        or "\\" in filename
        or INVALID_FILENAME_RE.search(filename)
        or RESERVED_NAME_RE.match(filename)
        or len(filename) > 255
    ):
        raise InvalidFilenameError(f"Invalid filename: {filename!r}")
    return filename


def validate_save_folder(folder: str | None) -> str:
    """Return the configured save folder ('images' when blank), rejecting escapes."""
    folder = (folder or "").strip() or "images"
    if folder == ".":
        return folder
    is_absolute = folder.startswith("/") or bool(DRIVE_ABS_RE.match(folder))
    if is_absolute or ".." in re.split(r'[\\/]', folder):
        raise PathTraversalError("Image save folder must be a relative path (or '.') within the document folder")
    return normalize_path(folder).rstrip("/")


def generate_image_filename(mime_type: str) -> str:
    """image-<ms>-<random>.<ext> derived from an image MIME type."""
    ext = mime_type.split("/")[1].split(";")[0] if "/" in mime_type else ""
    ext = {"svg+xml": "svg", "jpeg": "jpg"}.get(ext, ext) or "png"
    return f"image-{int(time.time() * 1000)}-{secrets.token_hex(3)}.{ext}"


def mime_type_of(data_uri: str) -> str:
    m = DATA_URI_RE.match(data_uri)
    return m.group(1) if m else "image/png"


def decode_data_uri(data: str) -> bytes:
    """Decode a base64 image data URI (or bare base64). Raises ValueError on bad input."""
    payload = DATA_URI_RE.sub("", data, count=1)
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid image data: {e}") from e
