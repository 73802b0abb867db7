"""Bulk write accumulation and flushing.

``BatchAccumulator`` holds the bulk requests that have been enqueued but
not yet sent, together with their operation count and wire size.
``FlushExecutor`` hands the whole batch to the sink in one call once a
threshold is crossed (or when forced) and escalates a failed send to a
fatal error.

Both share the accumulator's re-entrant lock, so append, flush and reset
form one critical section even when a forced flush arrives from another
thread.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, replace

import structlog

from docsink.config.models import DEFAULT_BULK_SIZE
from docsink.errors import AdaptorError, ErrorLevel
from docsink.sinks.base import BulkableRequest, SinkClient
from docsink.sinks.bulk import BulkResponse
from docsink.sinks.operations import Operation, build_request

logger = structlog.get_logger()

MAX_OPERATION_COUNT = 2000

FatalHandler = Callable[[AdaptorError], None]


@dataclass(frozen=True)
class Thresholds:
    max_byte_size: int = DEFAULT_BULK_SIZE
    max_operation_count: int = MAX_OPERATION_COUNT


@dataclass
class BatchMetrics:
    operation_count: int = 0
    byte_size: int = 0


@dataclass
class RunningTotals:
    documents_sent: int = 0


def request_size(request: BulkableRequest) -> int:
    """Best-effort wire size of *request*: ``len(line) + 1`` bytes per line.

    A request that cannot be serialized counts as zero bytes. It stays in
    the batch, so the byte total under-counts until the next reset.
    """
    try:
        return sum(len(line.encode()) + 1 for line in request.source())
    except (TypeError, ValueError, RecursionError) as exc:
        logger.debug("accumulator.size_unknown", error=str(exc))
        return 0


class BatchAccumulator:
    """Ordered pending batch for one index/type namespace."""

    def __init__(
        self,
        index: str,
        type_name: str,
        thresholds: Thresholds | None = None,
    ) -> None:
        self.index = index
        self.type_name = type_name
        self.thresholds = thresholds or Thresholds()
        self.lock = threading.RLock()
        self._pending: list[BulkableRequest] = []
        self._metrics = BatchMetrics()

    @property
    def pending(self) -> tuple[BulkableRequest, ...]:
        with self.lock:
            return tuple(self._pending)

    @property
    def metrics(self) -> BatchMetrics:
        with self.lock:
            return replace(self._metrics)

    def enqueue(self, op: Operation) -> BulkableRequest:
        request = build_request(op, self.index, self.type_name)
        size = request_size(request)
        with self.lock:
            self._pending.append(request)
            self._metrics.operation_count = len(self._pending)
            self._metrics.byte_size += size
        return request

    def should_flush(self, force: bool = False) -> bool:
        with self.lock:
            return (
                force
                or self._metrics.byte_size >= self.thresholds.max_byte_size
                or self._metrics.operation_count
                >= self.thresholds.max_operation_count
            )

    def reset(self) -> None:
        with self.lock:
            self._pending.clear()
            self._metrics = BatchMetrics()


class FlushExecutor:
    """Sends an accumulator's batch to the sink and keeps running totals.

    A failed send is reported once through *on_fatal* and the batch is
    discarded, never retried.
    """

    def __init__(
        self,
        accumulator: BatchAccumulator,
        client: SinkClient,
        *,
        on_fatal: FatalHandler,
        path: str = "",
        debug: bool = False,
    ) -> None:
        self._accumulator = accumulator
        self._client = client
        self._on_fatal = on_fatal
        self._path = path
        self._debug = debug
        self.totals = RunningTotals()

    @property
    def documents_sent(self) -> int:
        return self.totals.documents_sent

    def flush(self, force: bool = False) -> int:
        """Flush if a threshold is crossed or *force* is set; return documents sent."""
        acc = self._accumulator
        with acc.lock:
            if not acc.should_flush(force):
                return 0
            metrics = acc.metrics
            if metrics.operation_count == 0:
                return 0

            if self._debug:
                logger.info(
                    "appbase_sink.sending",
                    path=self._path,
                    documents=metrics.operation_count,
                    request_bytes=metrics.byte_size,
                )

            service = self._client.bulk(acc.index, acc.type_name)
            service.add(*acc.pending)
            try:
                response = service.do()
            except Exception as exc:
                acc.reset()
                logger.error(
                    "appbase_sink.flush_failed",
                    path=self._path,
                    documents=metrics.operation_count,
                    error=str(exc),
                )
                self._on_fatal(
                    AdaptorError(
                        ErrorLevel.CRITICAL,
                        f"appbase error ({exc})",
                        path=self._path,
                    )
                )
                return 0

            acc.reset()
            self.totals.documents_sent += metrics.operation_count

        if isinstance(response, BulkResponse) and response.errors:
            for item in response.failed():
                logger.warning(
                    "appbase_sink.bulk_item_failed",
                    path=self._path,
                    action=item.action,
                    doc_id=item.doc_id,
                    status=item.status,
                    error=item.error,
                )
        logger.debug(
            "appbase_sink.flushed",
            path=self._path,
            documents=metrics.operation_count,
            request_bytes=metrics.byte_size,
            forced=force,
        )
        return metrics.operation_count
