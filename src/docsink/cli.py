"""Typer CLI for docsink."""

from __future__ import annotations

import json
import queue
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from docsink.config.loader import load_sink_config
from docsink.config.models import AppbaseConfig
from docsink.errors import AdaptorError
from docsink.observability.health import Status, check_sink_health
from docsink.pipeline.message import Message
from docsink.pipeline.pipe import Pipe
from docsink.sinks.appbase import AppbaseSink

console = Console()
app = typer.Typer(name="docsink", help="Bulk document sink CLI")


def _load(config_path: str) -> AppbaseConfig:
    path = Path(config_path)
    if not path.exists():
        console.print(f"[red]Config file not found: {path}[/red]")
        raise typer.Exit(1)
    return load_sink_config(path)


def _read_messages(input_path: Path) -> list[Message]:
    messages: list[Message] = []
    with input_path.open() as f:
        for lineno, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                messages.append(Message.from_dict(json.loads(line)))
            except (ValueError, TypeError) as exc:
                msg = f"{input_path}:{lineno}: {exc}"
                raise ValueError(msg) from exc
    return messages


@app.command()
def validate(
    config_path: str = typer.Argument(..., help="Path to sink YAML"),
) -> None:
    """Validate a sink configuration file."""
    try:
        config = _load(config_path)
        console.print(f"[green]Valid[/green] — namespace={config.namespace}")
        console.print(f"  uri:       {config.uri}")
        console.print(f"  app:       {config.app_name}")
        console.print(f"  type:      {config.type_name}")
        console.print(f"  bulk size: {config.bulk_size} bytes")
        console.print(f"  debug:     {config.debug}")
    except typer.Exit:
        raise
    except Exception as exc:
        console.print(f"[red]Validation error:[/red] {exc}")
        raise typer.Exit(1) from exc


@app.command()
def health(
    config_path: str = typer.Argument(..., help="Path to sink YAML"),
) -> None:
    """Check that the document store endpoint answers."""
    config = _load(config_path)
    result = check_sink_health(config)

    table = Table(title="Sink Health")
    table.add_column("Component", style="cyan")
    table.add_column("Status")
    table.add_column("Detail")

    for c in result.components:
        style = "green" if c.status == Status.HEALTHY else "red"
        table.add_row(c.name, f"[{style}]{c.status}[/{style}]", c.detail)

    console.print(table)
    if not result.healthy:
        raise typer.Exit(1)


@app.command()
def load(
    config_path: str = typer.Argument(..., help="Path to sink YAML"),
    input_path: str = typer.Argument(..., help="NDJSON file of messages"),
) -> None:
    """Write the messages in an NDJSON file to the document store."""
    config = _load(config_path)
    try:
        messages = _read_messages(Path(input_path))
    except (OSError, ValueError) as exc:
        console.print(f"[red]Cannot read input:[/red] {exc}")
        raise typer.Exit(1) from exc

    pipe = Pipe("docsink")
    sink = AppbaseSink(pipe, "docsink/appbase", config)
    for msg in messages:
        pipe.send(msg)
    pipe.close()

    console.print(
        f"[yellow]Loading {len(messages)} message(s) into:[/yellow] {config.namespace}"
    )
    failed = False
    try:
        sink.listen()
    except AdaptorError as exc:
        console.print(f"[red]{exc}[/red]")
        failed = True

    while True:
        try:
            err = pipe.err.get_nowait()
        except queue.Empty:
            break
        console.print(f"[red]{err}[/red]")
        failed = True

    console.print(f"Documents sent: {sink.documents_sent}")
    if failed:
        raise typer.Exit(1)
