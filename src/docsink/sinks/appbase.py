"""Appbase sink adaptor.

Listens on a pipe, turns each message into a bulk request and writes
batches to an appbase (Elasticsearch-compatible) application. Appbase
adaptors cannot be used as a source.
"""

from __future__ import annotations

import re
import threading
from collections.abc import Callable
from enum import StrEnum
from typing import Any

import structlog
from pydantic import ValidationError

from docsink.config.models import AppbaseConfig
from docsink.errors import AdaptorError, ErrorLevel
from docsink.pipeline.message import Message
from docsink.pipeline.pipe import Pipe
from docsink.sinks.accumulator import (
    MAX_OPERATION_COUNT,
    BatchAccumulator,
    FlushExecutor,
    Thresholds,
)
from docsink.sinks.base import SinkClient
from docsink.sinks.bulk import HttpBulkClient
from docsink.sinks.operations import operation_from_message

logger = structlog.get_logger()

ClientFactory = Callable[[AppbaseConfig], SinkClient]


class SessionState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class AppbaseSink:
    """Sink-only adaptor writing pipe messages to an appbase application."""

    def __init__(
        self,
        pipe: Pipe,
        path: str,
        config: AppbaseConfig,
        *,
        client_factory: ClientFactory = HttpBulkClient.from_config,
    ) -> None:
        self._pipe = pipe
        self._path = path
        self._config = config
        self._client_factory = client_factory
        self._app_name, self._type_name = config.split_namespace()
        self._type_match = re.compile(".*")
        self._thresholds = Thresholds(
            max_byte_size=config.bulk_size,
            max_operation_count=MAX_OPERATION_COUNT,
        )

        self._state = SessionState.IDLE
        self._state_lock = threading.Lock()
        self._halted = threading.Event()
        self._client: SinkClient | None = None
        self._accumulator = BatchAccumulator(
            self._app_name, self._type_name, self._thresholds
        )
        self._executor: FlushExecutor | None = None

        if config.debug:
            logger.info(
                "appbase_sink.config",
                path=path,
                uri=config.uri,
                namespace=config.namespace,
                bulk_size=config.bulk_size,
            )

    @property
    def sink_id(self) -> str:
        return self._path

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def accumulator(self) -> BatchAccumulator:
        return self._accumulator

    @property
    def documents_sent(self) -> int:
        return self._executor.documents_sent if self._executor else 0

    def start(self) -> None:
        """Start the adaptor as a source (not supported)."""
        msg = "appbase can't function as a source"
        raise AdaptorError(ErrorLevel.ERROR, msg, path=self._path)

    def listen(self) -> None:
        """Connect to the sink and consume the pipe until it ends (blocking).

        If the client cannot be created the failure is reported on the
        pipe's error channel and the adaptor stops without listening.
        """
        with self._state_lock:
            if self._state != SessionState.IDLE:
                msg = f"appbase adaptor cannot listen from state {self._state}"
                raise AdaptorError(ErrorLevel.ERROR, msg, path=self._path)
            try:
                self._client = self._client_factory(self._config)
            except Exception as exc:
                self._state = SessionState.STOPPED
                logger.error(
                    "appbase_sink.connect_failed", path=self._path, error=str(exc)
                )
                self._pipe.err.put(
                    AdaptorError(
                        ErrorLevel.CRITICAL,
                        f"appbase error ({exc})",
                        path=self._path,
                    )
                )
                return
            self._executor = FlushExecutor(
                self._accumulator,
                self._client,
                on_fatal=self._halt,
                path=self._path,
                debug=self._config.debug,
            )
            self._state = SessionState.RUNNING

        logger.info(
            "appbase_sink.started",
            path=self._path,
            app_name=self._app_name,
            type_name=self._type_name,
        )
        try:
            self._pipe.listen(self._handle, self._type_match)
        finally:
            self.stop()

    def stop(self) -> None:
        """Stop listening and drain the pending batch. Idempotent."""
        # An in-flight message is either in the final drain or sees STOPPED.
        with self._accumulator.lock:
            with self._state_lock:
                if self._state != SessionState.RUNNING:
                    return
                self._state = SessionState.STOPPED

            self._pipe.stop()
            assert self._executor is not None
            self._executor.flush(force=True)
        if self._client is not None:
            self._client.close()
        logger.info(
            "appbase_sink.stopped",
            path=self._path,
            documents_sent=self._executor.documents_sent,
        )

    def _halt(self, error: AdaptorError) -> None:
        """Report a fatal flush error and stop accepting input."""
        self._halted.set()
        self._pipe.err.put(error)
        self._pipe.stop()

    def _handle(self, msg: Message) -> Message:
        assert self._executor is not None
        op = operation_from_message(msg)
        with self._accumulator.lock:
            if self._halted.is_set():
                text = "appbase adaptor is no longer accepting messages"
                raise AdaptorError(ErrorLevel.ERROR, text, path=self._path, record=msg)
            if self._state != SessionState.RUNNING:
                # stop() already drained and closed the client.
                logger.warning(
                    "appbase_sink.rejected_after_stop",
                    path=self._path,
                    namespace=msg.namespace,
                )
                self._pipe.err.put(
                    AdaptorError(
                        ErrorLevel.ERROR,
                        "appbase adaptor stopped before the message was written",
                        path=self._path,
                        record=msg,
                    )
                )
                return msg
            self._accumulator.enqueue(op)
            self._executor.flush(force=False)
        return msg

    def _status(self) -> str:
        if self._halted.is_set():
            return "failed"
        return "running" if self._state == SessionState.RUNNING else "stopped"

    def health(self) -> dict[str, Any]:
        return {
            "sink_id": self.sink_id,
            "type": "appbase",
            "status": self._status(),
            "namespace": self._config.namespace,
            "pending": self._accumulator.metrics.operation_count,
            "documents_sent": self.documents_sent,
        }


def create_appbase_sink(
    pipe: Pipe,
    path: str,
    extra: dict[str, Any],
    *,
    client_factory: ClientFactory = HttpBulkClient.from_config,
) -> AppbaseSink:
    """Validate raw adaptor settings and build an AppbaseSink.

    Any configuration problem is raised as a CRITICAL AdaptorError before a
    session exists.
    """
    try:
        config = AppbaseConfig.model_validate(extra)
    except ValidationError as exc:
        msg = f"bad config ({exc})"
        raise AdaptorError(ErrorLevel.CRITICAL, msg, path=path) from exc
    return AppbaseSink(pipe, path, config, client_factory=client_factory)
