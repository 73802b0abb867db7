#!/usr/bin/env python3
"""Runnable demo: stream a few changes into an appbase application.

Prerequisites:
    export APPBASE_USERNAME=... APPBASE_PASSWORD=... APPBASE_NAMESPACE=app.type
    uv run python examples/appbase_demo.py
"""

from __future__ import annotations

import queue
import sys
from pathlib import Path

from rich.console import Console

from docsink.config.loader import load_sink_config
from docsink.observability.health import check_sink_health
from docsink.pipeline.message import Message, Op
from docsink.pipeline.pipe import Pipe
from docsink.sinks.appbase import AppbaseSink

console = Console()


def main() -> None:
    # 1. Load config (env vars resolved by the loader)
    config = load_sink_config(Path(__file__).parent / "sink.yaml")
    console.print("[bold]Sink config loaded[/bold]", config.namespace)

    # 2. Health check
    health = check_sink_health(config)
    if not health.healthy:
        console.print("[red]Endpoint not healthy:[/red]", health.summary)
        sys.exit(1)

    # 3. Queue a few changes, then end the stream
    pipe = Pipe("demo")
    ns = config.namespace
    pipe.send(Message(Op.INSERT, ns, {"_id": "1", "name": "Alice"}))
    pipe.send(Message(Op.INSERT, ns, {"_id": "2", "name": "Bob"}))
    pipe.send(Message(Op.UPDATE, ns, {"_id": "1", "name": "Alice B."}))
    pipe.send(Message(Op.DELETE, ns, {"_id": "2"}))
    pipe.close()

    # 4. Listen until the pipe is drained; stop() flushes the remainder
    sink = AppbaseSink(pipe, "demo/appbase", config)
    sink.listen()

    try:
        err = pipe.err.get_nowait()
        console.print(f"[red]{err}[/red]")
        sys.exit(1)
    except queue.Empty:
        console.print(f"[green]Documents sent:[/green] {sink.documents_sent}")


if __name__ == "__main__":
    main()
