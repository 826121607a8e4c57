"""CLI entrypoint: Typer app definition and command registration"""

import typer

from mdsync.cli.commands import detect_cmd, images_cmd, refs_cmd, split_cmd


app = typer.Typer(name="mdsync", no_args_is_help=True, help="Markdown document sync and image reference tools")

app.command(name="split")(split_cmd)
app.command(name="images")(images_cmd)
app.command(name="detect")(detect_cmd)
app.command(name="refs")(refs_cmd)
