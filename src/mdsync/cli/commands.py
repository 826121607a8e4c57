"""CLI command implementations"""

import asyncio
import logging
from pathlib import Path
from typing import Annotated, Optional

import typer

from mdsync.cli.console import ConsoleUI
from mdsync.config import Settings, load_config
from mdsync.core import frontmatter
from mdsync.core.detect import detect_deletes, detect_renames
from mdsync.core.images import build_original_paths, collect_image_entries
from mdsync.core.operations import execute_deletes, execute_renames, find_files_using_image, update_references
from mdsync.core.paths import normalize_path
from mdsync.core.ports import LocalFileSystem


Verbose = Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")]
Root = Annotated[str, typer.Option("--root", help="Workspace root directory")]


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _fail(msg: str, cause: Exception = None) -> None:
    """Print a user-friendly error to stderr and exit 1."""
    typer.echo(f"Error: {msg}", err=True)
    if cause:
        typer.echo(f"  {cause}", err=True)
    raise typer.Exit(1)


def _settings(overrides: dict = None) -> Settings:
    """Load config with standard CLI error handling."""
    try:
        return load_config(overrides=overrides)
    except ValueError as e:
        _fail(str(e))


def _read(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        _fail(f"Cannot read {path}", e)


def split_cmd(
    path: Annotated[str, typer.Argument(help="Markdown file")],
    body: Annotated[bool, typer.Option("--body", help="Also print the body")] = False,
    verbose: Verbose = False,
    ):
    """Show the metadata block (and optionally the body) of a document."""
    _setup_logging(verbose)
    settings = _settings()
    parsed = frontmatter.split(_read(Path(path)), settings.max_frontmatter_scan)

    if parsed.metadata is None:
        typer.echo("(no metadata)")
    else:
        typer.echo(parsed.metadata or "(empty metadata block)")
    if not parsed.is_valid:
        typer.echo(f"Warning: invalid metadata: {parsed.error}", err=True)
    if body:
        typer.echo("---")
        typer.echo(parsed.body)


def images_cmd(
    path: Annotated[str, typer.Argument(help="Markdown file")],
    root: Root = ".",
    verbose: Verbose = False,
    ):
    """List local image references with their resolved paths."""
    _setup_logging(verbose)
    settings = _settings()
    doc = Path(path)
    entries = collect_image_entries(_read(doc), doc, Path(root), settings.max_file_size)
    if not entries:
        typer.echo("No local images referenced.")
        return
    for e in entries:
        status = "ok" if Path(e.absolute_path).exists() else "missing"
        typer.echo(f"  {e.relative_path} -> {e.absolute_path} [{status}]")
    typer.echo(f"{len(entries)} image reference(s)")


def detect_cmd(
    old: Annotated[str, typer.Argument(help="Previous version of the document")],
    new: Annotated[str, typer.Argument(help="Current version of the document")],
    apply: Annotated[bool, typer.Option("--apply", help="Rename and trash files, update references")] = False,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Accept every confirmation")] = False,
    root: Root = ".",
    verbose: Verbose = False,
    ):
    """Detect image renames and deletions between two versions of a document."""
    _setup_logging(verbose)
    settings = _settings()
    old_doc, new_doc = Path(old), Path(new)
    if old_doc.resolve().parent != new_doc.resolve().parent:
        _fail("Both versions must live in the same folder")

    original = build_original_paths(_read(old_doc), new_doc, Path(root), settings.max_file_size)
    current = [e.relative_path for e in collect_image_entries(_read(new_doc), new_doc, Path(root), settings.max_file_size)]

    renames = detect_renames(original, current, new_doc.parent)
    renamed = {normalize_path(op.old_relative) for op in renames}
    deletes = [op for op in detect_deletes(original, current) if normalize_path(op.relative_path) not in renamed]

    for op in renames:
        typer.echo(f"  rename: {op.old_relative} -> {op.new_relative}")
    for op in deletes:
        typer.echo(f"  delete: {op.relative_path}")
    typer.echo(f"{len(renames)} rename(s), {len(deletes)} delete(s)")
    if not apply or not (renames or deletes):
        return

    fs = LocalFileSystem(Path(root), settings.trash_dir)
    ui = ConsoleUI(assume_yes=yes)

    result = asyncio.run(execute_renames(renames, fs, ui))
    for failure in result.failed:
        typer.echo(f"  failed: {failure.op.old_relative}: {failure.error}", err=True)
    updated = update_references(
        result.succeeded, fs,
        exclude=new_doc,
        pattern=settings.markdown_glob,
        exclude_pattern=settings.exclude_glob,
    )
    typer.echo(f"Renamed {len(result.succeeded)} image(s), updated {updated} other file(s)")

    if deletes:
        for op in deletes:
            op.used_in_files = find_files_using_image(
                op.relative_path, fs, Path(root), exclude=new_doc,
                pattern=settings.markdown_glob, exclude_pattern=settings.exclude_glob,
            )
        chosen = asyncio.run(ui.confirm_deletes(deletes)) or []
        trashed = execute_deletes(chosen, fs)
        for failure in trashed.failed:
            typer.echo(f"  failed: {failure.path}: {failure.error}", err=True)
        typer.echo(f"Moved {len(trashed.succeeded)} image(s) to {settings.trash_dir}/")

    if result.failed:
        raise typer.Exit(1)


def refs_cmd(
    image: Annotated[str, typer.Argument(help="Image path or filename")],
    exclude: Annotated[Optional[str], typer.Option("--exclude", help="Document to leave out of the scan")] = None,
    root: Root = ".",
    verbose: Verbose = False,
    ):
    """List Markdown files in the workspace that mention an image's filename."""
    _setup_logging(verbose)
    settings = _settings()
    fs = LocalFileSystem(Path(root), settings.trash_dir)
    files = find_files_using_image(
        image, fs, Path(root),
        exclude=Path(exclude) if exclude else None,
        pattern=settings.markdown_glob,
        exclude_pattern=settings.exclude_glob,
    )
    if not files:
        typer.echo("No references found.")
        raise typer.Exit(1)
    for f in files:
        typer.echo(f)
