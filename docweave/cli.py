from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from docweave.config.settings import load_settings
from docweave.core.errors import DocweaveError
from docweave.logging_config import init_logging
from docweave.storage import FileStore
from docweave.versioning import RESOLUTIONS, VersionStore

app = typer.Typer(add_completion=False, help="docweave document versioning utilities.")
logger = logging.getLogger(__name__)

_STATE: Dict[str, Any] = {"data_dir": None}


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _store() -> VersionStore:
    settings = load_settings()
    data_dir = _STATE["data_dir"] or settings.data_dir
    return VersionStore(FileStore(data_dir), lock_ttl=settings.lock_ttl)


def _read_content(content: Optional[str], file: Optional[Path]) -> str:
    if file is not None:
        return file.read_text(encoding="utf-8")
    return content or ""


def _fail(exc: Exception) -> None:
    code = getattr(exc, "code", "invalid_request")
    _emit({"ok": False, "code": code, "message": str(exc)})
    raise typer.Exit(code=1)


@app.callback()
def main(
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", help="Durable store directory."),
    log_level: str = typer.Option("WARNING", help="Log level for CLI commands."),
) -> None:
    _STATE["data_dir"] = data_dir
    init_logging(level=log_level, to_file=False)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind host (defaults to settings)."),
    port: Optional[int] = typer.Option(None, help="Bind port (defaults to settings)."),
) -> None:
    """Run the HTTP/WebSocket server with uvicorn."""
    import uvicorn

    from docweave.server.app import create_app

    overrides: Dict[str, Any] = {}
    if _STATE["data_dir"] is not None:
        overrides["data_dir"] = _STATE["data_dir"]
    settings = load_settings(overrides)
    application = create_app(settings, configure_logging=True)
    uvicorn.run(
        application,
        host=host or settings.host,
        port=port or settings.port,
        log_level=settings.log_level.lower(),
    )


@app.command()
def init(
    document_id: str,
    content: Optional[str] = typer.Option(None, help="Initial content."),
    file: Optional[Path] = typer.Option(None, exists=True, dir_okay=False, help="Read initial content from file."),
    author: str = typer.Option("system", help="Author recorded on the root version."),
) -> None:
    """Create a document with its root version on 'main'."""
    try:
        node = _store().initialize_document(document_id, _read_content(content, file), author=author)
    except (DocweaveError, ValueError) as exc:
        _fail(exc)
    logger.info("Initialized %s", document_id)
    _emit({"ok": True, "documentId": document_id, "version": node.as_dict(include_content=False)})


@app.command()
def commit(
    document_id: str,
    content: Optional[str] = typer.Option(None, help="New content."),
    file: Optional[Path] = typer.Option(None, exists=True, dir_okay=False, help="Read content from file."),
    branch: Optional[str] = typer.Option(None, help="Branch to commit on (defaults to current)."),
    author: str = typer.Option("system"),
    message: Optional[str] = typer.Option(None, "--message", "-m"),
) -> None:
    """Record a new version of a document."""
    metadata = {"message": message} if message else {}
    try:
        node = _store().create_version(
            document_id, _read_content(content, file), metadata, branch=branch, author=author
        )
    except (DocweaveError, ValueError) as exc:
        _fail(exc)
    _emit({"ok": True, "version": node.as_dict(include_content=False)})


@app.command()
def history(
    document_id: str,
    branch: Optional[str] = typer.Option(None),
    full: bool = typer.Option(False, help="List every ancestor, not only first parents."),
) -> None:
    """Print the version history of a branch."""
    try:
        nodes = _store().get_history(document_id, branch, first_parent=not full)
    except (DocweaveError, ValueError) as exc:
        _fail(exc)
    _emit({"ok": True, "history": [node.as_dict(include_content=False) for node in nodes]})


@app.command()
def diff(
    document_id: str,
    from_id: str,
    to_id: str,
    edits: bool = typer.Option(False, help="Print the edit script instead of patch text."),
) -> None:
    """Show differences between two versions."""
    store = _store()
    try:
        if edits:
            _emit([{"op": op, "text": text} for op, text in store.compare_versions(document_id, from_id, to_id)])
        else:
            print(store.get_diff(document_id, from_id, to_id).text, end="")
    except (DocweaveError, ValueError) as exc:
        _fail(exc)


@app.command()
def merge(
    document_id: str,
    source: str,
    target: str,
    resolution: str = typer.Option("auto", help=f"One of: {', '.join(RESOLUTIONS)}."),
    author: str = typer.Option("system"),
) -> None:
    """Merge SOURCE branch into TARGET branch."""
    try:
        result = _store().merge_branches(document_id, source, target, resolution, author=author)
    except (DocweaveError, ValueError) as exc:
        _fail(exc)
    _emit({"ok": True, **result.as_dict()})


if __name__ == "__main__":  # pragma: no cover
    app()
