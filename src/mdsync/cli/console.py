"""Terminal implementation of the host UI prompts"""

from pathlib import Path

import typer

from mdsync.core.models import DeleteOp


class ConsoleUI:
    """HostUI that asks on the terminal. With assume_yes every confirmation is accepted."""

    def __init__(self, assume_yes: bool = False) -> None:
        self.assume_yes = assume_yes

    async def confirm_overwrite(self, target: Path) -> bool:
        if self.assume_yes:
            return True
        return typer.confirm(f"{target} already exists. Overwrite?", default=False)

    async def confirm_deletes(self, ops: list[DeleteOp]) -> list[DeleteOp] | None:
        chosen = []
        for op in ops:
            note = f" (also used in: {', '.join(op.used_in_files)})" if op.used_in_files else ""
            if self.assume_yes or typer.confirm(f"Move unused image {op.relative_path} to trash?{note}", default=True):
                chosen.append(op)
        return chosen or None

    async def prompt_url(self, current: str, prompt: str) -> str | None:
        answer = typer.prompt(prompt, default=current)
        return answer if answer != current else None

    async def confirm_large_file(self, size: int) -> bool:
        if self.assume_yes:
            return True
        return typer.confirm(f"File is large ({size // 1024} KB). Open anyway?", default=False)

    def notify(self, level: str, message: str) -> None:
        typer.echo(f"[{level}] {message}", err=level in ("warning", "error"))
