"""Frontmatter splitting, reconstruction, and YAML validation"""

import re

import yaml

from mdsync.core.models import ParsedContent, YamlValidation


MAX_CONTENT_SIZE = 1024 * 1024

FRONTMATTER_RE = re.compile(r'^---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|$)', re.DOTALL)
RAW_FRONTMATTER_RE = re.compile(r'^---\n([\s\S]*?)\n---\n?')
EMPTY_FRONTMATTER_RE = re.compile(r'^---\s*\n---[ \t]*(?:\r?\n|$)')


def _load_block(text: str) -> tuple[dict | None, str]:
    """Return (data, body) for a leading YAML block, or (None, text) when there is none.

    Raises yaml.YAMLError or ValueError when the block exists but is not a mapping.
    """
    m = FRONTMATTER_RE.match(text)
    if not m:
        return None, text
    data = yaml.safe_load(m.group(1))
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML frontmatter: expected a mapping, got {type(data).__name__}")
    return data, text[m.end():]


def split(markdown: str, max_size: int = MAX_CONTENT_SIZE) -> ParsedContent:
    """Split markdown into metadata and body, preserving the body on any metadata error."""
    if not markdown or not isinstance(markdown, str):
        return ParsedContent(metadata=None, body="")

    if len(markdown) > max_size:
        return ParsedContent(metadata=None, body=markdown, error="Content too large for frontmatter parsing")

    try:
        data, body = _load_block(markdown)
    except (yaml.YAMLError, ValueError) as e:
        m = RAW_FRONTMATTER_RE.match(markdown)
        if m:
            return ParsedContent(
                metadata=m.group(1),
                body=markdown[m.end():],
                is_valid=False,
                error=str(e) or "Invalid YAML",
            )
        return ParsedContent(metadata=None, body=markdown)

    if not data:
        empty = EMPTY_FRONTMATTER_RE.match(markdown)
        if empty:
            return ParsedContent(metadata="", body=markdown[empty.end():])
        return ParsedContent(metadata=None, body=markdown)

    # Block delimiters are followed by one blank line on reconstruct; drop it here.
    if body.startswith("\n"):
        body = body[1:]
    raw = yaml.safe_dump(data, default_flow_style=False, allow_unicode=True, sort_keys=False)
    return ParsedContent(metadata=raw.strip(), body=body)


def reconstruct(metadata: str | None, body: str | None) -> str:
    """Rebuild a document from metadata and body; blank metadata yields the body alone."""
    body = body or ""
    if metadata is None or metadata.strip() == "":
        return body
    body = body.lstrip("\n")
    return f"---\n{metadata.strip()}\n---\n\n{body}"


def has_frontmatter(markdown: str) -> bool:
    """Quick check for a leading '---' delimited block."""
    if not markdown or not isinstance(markdown, str):
        return False
    return bool(FRONTMATTER_RE.match(markdown) or EMPTY_FRONTMATTER_RE.match(markdown))


def validate_yaml(text: str) -> YamlValidation:
    """Validate metadata text. Blank text is valid (the block will be removed)."""
    if not text or not text.strip():
        return YamlValidation(is_valid=True)
    try:
        yaml.safe_load(text)
    except yaml.MarkedYAMLError as e:
        line = e.problem_mark.line + 1 if e.problem_mark is not None else None
        return YamlValidation(is_valid=False, error=e.problem or "Invalid YAML syntax", line=line)
    except yaml.YAMLError:
        return YamlValidation(is_valid=False, error="Invalid YAML")
    return YamlValidation(is_valid=True)
