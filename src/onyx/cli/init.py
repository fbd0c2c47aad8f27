"""onyx init: create the knowledge base in a project directory.

Creates:
  .onyx.db    knowledge base with schema (documents, chunks, sources)
  onyx.yaml   project config with defaults (left untouched if present)

Appends ``.onyx.db`` to an existing .gitignore.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from onyx.cli.common import DEFAULT_DB, open_db
from onyx.config import ensure_project_config

console = Console()

_GITIGNORE_ENTRIES = [".onyx.db", ".onyx.db-wal", ".onyx.db-shm"]


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = Path("."),
) -> None:
    """Initialize an Onyx knowledge base."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)
    db_path = project_dir / DEFAULT_DB.name

    existed = db_path.exists()
    conn = open_db(db_path)
    conn.close()
    if existed:
        console.print(f"  [yellow]⚠[/] {db_path.name} already exists; schema is up to date.")
    else:
        console.print(f"  [green]✓[/] {db_path.name}")

    cfg_path = ensure_project_config(project_dir)
    console.print(f"  [green]✓[/] {cfg_path.name}")

    _update_gitignore(project_dir)

    console.print(f"\n[bold green]✓ Knowledge base initialized in {project_dir}.[/]")
    console.print("\nNext steps:")
    console.print("  1. onyx add <file.md> --project <id>     (store a document)")
    console.print("  2. onyx ingest <url> --project <id>      (snapshot a web source)")
    console.print("  3. onyx worker                           (chunk + embed)")
    console.print("  4. onyx search '<query>' --project <id>")


def _update_gitignore(project_dir: Path) -> None:
    """Add Onyx entries to .gitignore if it already exists."""
    gitignore = project_dir / ".gitignore"
    if not gitignore.exists():
        return
    existing = gitignore.read_text(encoding="utf-8").splitlines()
    to_add = [e for e in _GITIGNORE_ENTRIES if e not in existing]
    if to_add:
        with gitignore.open("a", encoding="utf-8") as f:
            f.write("\n# Onyx\n")
            for entry in to_add:
                f.write(f"{entry}\n")
        console.print("  [green]✓[/] .gitignore (updated with Onyx entries)")
