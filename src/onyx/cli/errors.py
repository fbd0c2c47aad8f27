"""Onyx rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from onyx.cli.errors import err_no_db
    console.print(err_no_db(".onyx.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from pydantic import ValidationError


def err_no_db(db_path: str = ".onyx.db") -> str:
    """No .onyx.db found."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  onyx init"
    )


def err_config(message: str) -> str:
    """Config file is invalid."""
    return f"[red]Error:[/] Invalid configuration.\n  {message}"


def err_invalid_request(exc: ValidationError) -> str:
    """Search / pack arguments failed validation."""
    lines = []
    for issue in exc.errors():
        field = ".".join(str(p) for p in issue["loc"]) or "request"
        lines.append(f"  {field}: {issue['msg']}")
    return "[red]Error:[/] Invalid request.\n" + "\n".join(lines)


def err_embedding_unavailable(model: str, api_base: str | None, detail: str) -> str:
    """Embedding service call failed."""
    target = api_base or "provider default"
    return (
        f"[red]Error:[/] Embedding model '{model}' is not reachable ({target}).\n"
        f"  {detail}\n"
        "  Start the embedding service (e.g.  ollama serve  and  ollama pull nomic-embed-text)\n"
        "  or set OLLAMA_URL / ONYX_EMBEDDING_MODEL."
    )


def err_ssrf_blocked(url: str) -> str:
    """URL resolves to a private/reserved address."""
    return (
        f"[red]Error:[/] URL resolves to private address (SSRF protection): '{url}'\n"
        "  Use a publicly reachable URL, or set  fetch.allow_private: true  in onyx.yaml."
    )


def err_document_not_found(document: str) -> str:
    return (
        f"[yellow]Document not found:[/] '{document}' is not in the knowledge base.\n"
        "  Run:  onyx status  to see stored documents."
    )


def err_source_not_found(source: str) -> str:
    return (
        f"[yellow]Source not found:[/] '{source}' is not in the knowledge base.\n"
        "  Run:  onyx status  to see all sources."
    )


def err_queue_unavailable(redis_url: str, exc: Exception) -> str:
    """Redis holding the arq job queues is not reachable."""
    return (
        f"[red]Error:[/] Job queue not reachable at '{redis_url}'.\n"
        f"  {exc}\n"
        "  Start Redis (e.g.  redis-server ) or set  queue.redis_url  in onyx.yaml (or REDIS_URL)."
    )
