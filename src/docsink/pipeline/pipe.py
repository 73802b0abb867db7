"""In-process producer/consumer pipe.

A pipe carries messages from an upstream producer to one listening
adaptor, forwards whatever the listener returns to chained downstream
pipes, and exposes an error channel through which adaptors report
failures back to whoever supervises the pipeline.
"""

from __future__ import annotations

import queue
import re
import threading
from collections.abc import Callable

import structlog

from docsink.errors import AdaptorError
from docsink.pipeline.message import Message

logger = structlog.get_logger()

MessageHandler = Callable[[Message], Message | None]

# Marks end of input; queued by close()
_EOF = object()


class Pipe:
    """Delivers messages one at a time to a single listener."""

    def __init__(self, name: str, *, poll_interval: float = 0.1) -> None:
        self.name = name
        self.err: queue.Queue[AdaptorError] = queue.Queue()
        self._inbox: queue.Queue[object] = queue.Queue()
        self._downstream: list[Pipe] = []
        self._stopped = threading.Event()
        self._poll_interval = poll_interval

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def add_downstream(self, pipe: Pipe) -> None:
        self._downstream.append(pipe)

    def send(self, msg: Message) -> None:
        """Queue *msg* for delivery. Messages sent after stop() are dropped."""
        if self.stopped:
            logger.debug("pipe.send_after_stop", pipe=self.name, op=msg.op)
            return
        self._inbox.put(msg)

    def close(self) -> None:
        """Signal end of input; listen() returns once queued messages are handled."""
        self._inbox.put(_EOF)

    def stop(self) -> None:
        """Halt delivery. Idempotent; safe to call from any thread."""
        if not self._stopped.is_set():
            self._stopped.set()
            logger.info("pipe.stopped", pipe=self.name)

    def listen(self, handler: MessageHandler, type_match: re.Pattern[str]) -> None:
        """Deliver messages to *handler* until closed or stopped (blocking).

        Messages whose namespace does not match *type_match* bypass the
        handler and go straight downstream. An exception raised by the
        handler aborts delivery and propagates to the caller.
        """
        logger.info("pipe.listening", pipe=self.name, type_match=type_match.pattern)
        while not self._stopped.is_set():
            try:
                item = self._inbox.get(timeout=self._poll_interval)
            except queue.Empty:
                continue
            if item is _EOF:
                break
            assert isinstance(item, Message)
            if self._stopped.is_set():
                logger.debug("pipe.dropped_after_stop", pipe=self.name, op=item.op)
                break

            out: Message | None = item
            if type_match.match(item.namespace):
                try:
                    out = handler(item)
                except Exception as exc:
                    logger.error(
                        "pipe.handler_error",
                        pipe=self.name,
                        namespace=item.namespace,
                        error=str(exc),
                    )
                    raise
            if out is not None:
                for pipe in self._downstream:
                    pipe.send(out)
