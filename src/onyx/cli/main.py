"""Onyx CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from onyx.cli.add import add_cmd
from onyx.cli.ingest import ingest_cmd
from onyx.cli.init import init_cmd
from onyx.cli.remove import remove_cmd
from onyx.cli.search import pack_cmd, search_cmd
from onyx.cli.status import status_cmd
from onyx.cli.worker import worker_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("onyx")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"onyx {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="onyx",
    help=(
        "Onyx: project knowledge base.\n\n"
        "  onyx add / ingest   Store documents and web sources.\n"
        "  onyx worker         Chunk, embed and fetch in the background.\n"
        "  onyx search / pack  Hybrid search and token-bounded context packs."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """Onyx: project knowledge base."""


app.command("init")(init_cmd)
app.command("add")(add_cmd)
app.command("ingest")(ingest_cmd)
app.command("worker")(worker_cmd)
app.command("search")(search_cmd)
app.command("pack")(pack_cmd)
app.command("status")(status_cmd)
app.command("remove")(remove_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed Onyx version."""
    typer.echo(f"onyx {_installed_version()}")


if __name__ == "__main__":
    app()
