"""Unit tests for the batch accumulator and flush executor."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from unittest.mock import MagicMock, patch

from docsink.errors import AdaptorError, ErrorLevel
from docsink.sinks.accumulator import (
    MAX_OPERATION_COUNT,
    BatchAccumulator,
    BatchMetrics,
    FlushExecutor,
    Thresholds,
    request_size,
)
from docsink.sinks.bulk import BulkDeleteRequest, BulkIndexRequest
from docsink.sinks.operations import Operation, OperationKind


@dataclass
class _SizedRequest:
    """Request whose single wire line is exactly ``size`` bytes with its newline."""

    size: int

    def source(self) -> list[str]:
        return ["x" * (self.size - 1)]


def _nested(depth: int) -> dict:
    doc: dict = {}
    for _ in range(depth):
        doc = {"n": doc}
    return doc


def _insert(doc_id: str, **payload) -> Operation:
    return Operation(OperationKind.INSERT, doc_id, {"_id": doc_id, **payload})


def _make(client, thresholds: Thresholds | None = None):
    acc = BatchAccumulator("myapp", "docs", thresholds)
    on_fatal = MagicMock()
    executor = FlushExecutor(acc, client, on_fatal=on_fatal, path="test/appbase")
    return acc, executor, on_fatal


def _ids(batch) -> list[str]:
    return [req.doc_id for req in batch]


class TestRequestSize:
    def test_counts_each_line_plus_newline(self):
        req = BulkIndexRequest("myapp", "docs", "1", {"a": 1})
        expected = sum(len(line) + 1 for line in req.source())
        assert request_size(req) == expected

    def test_counts_utf8_bytes(self):
        ascii_req = BulkIndexRequest("myapp", "docs", "1", {"a": "e"})
        accented = BulkIndexRequest("myapp", "docs", "1", {"a": "é"})
        assert request_size(accented) == request_size(ascii_req) + 1

    def test_unserializable_request_counts_zero(self):
        req = BulkIndexRequest("myapp", "docs", "1", {"when": object()})
        assert request_size(req) == 0

    def test_too_deeply_nested_request_counts_zero(self):
        req = BulkIndexRequest("myapp", "docs", "1", _nested(100_000))
        assert request_size(req) == 0

    def test_unencodable_request_counts_zero(self):
        req = BulkIndexRequest("myapp", "docs", "1", {"a": "\ud800"})
        assert request_size(req) == 0

    def test_delete_counts_metadata_only(self):
        req = BulkDeleteRequest("myapp", "docs", "1")
        assert request_size(req) == len(req.source()[0]) + 1


class TestBatchAccumulator:
    def test_defaults(self):
        acc = BatchAccumulator("myapp", "docs")
        assert acc.thresholds.max_byte_size == 512_000
        assert acc.thresholds.max_operation_count == MAX_OPERATION_COUNT == 2000
        assert acc.metrics == BatchMetrics()

    def test_enqueue_preserves_order_and_counts(self):
        acc = BatchAccumulator("myapp", "docs")
        for doc_id in ("a", "b", "c"):
            acc.enqueue(_insert(doc_id))
        assert _ids(acc.pending) == ["a", "b", "c"]
        assert acc.metrics.operation_count == 3
        assert acc.metrics.byte_size == sum(request_size(r) for r in acc.pending)

    def test_serialization_failure_still_enqueued(self):
        acc = BatchAccumulator("myapp", "docs")
        acc.enqueue(Operation(OperationKind.INSERT, "bad", {"when": object()}))
        assert acc.metrics.operation_count == 1
        assert acc.metrics.byte_size == 0

    def test_deeply_nested_payload_still_enqueued(self):
        acc = BatchAccumulator("myapp", "docs")
        acc.enqueue(Operation(OperationKind.INSERT, "deep", _nested(100_000)))
        assert acc.metrics.operation_count == 1
        assert acc.metrics.byte_size == 0

    def test_should_flush_on_count(self):
        acc = BatchAccumulator("myapp", "docs", Thresholds(max_operation_count=2))
        acc.enqueue(_insert("a"))
        assert acc.should_flush() is False
        acc.enqueue(_insert("b"))
        assert acc.should_flush() is True

    def test_should_flush_on_bytes(self):
        acc = BatchAccumulator("myapp", "docs", Thresholds(max_byte_size=10))
        acc.enqueue(_insert("a"))
        assert acc.should_flush() is True

    def test_should_flush_when_forced(self):
        acc = BatchAccumulator("myapp", "docs")
        assert acc.should_flush() is False
        assert acc.should_flush(force=True) is True

    def test_reset_clears_batch_and_metrics(self):
        acc = BatchAccumulator("myapp", "docs")
        acc.enqueue(_insert("a"))
        acc.reset()
        assert acc.pending == ()
        assert acc.metrics == BatchMetrics()


class TestFlushExecutor:
    def test_no_flush_below_thresholds(self, sink_client):
        acc, executor, _ = _make(sink_client)
        acc.enqueue(_insert("a"))
        assert executor.flush() == 0
        assert sink_client.batches == []
        assert acc.metrics.operation_count == 1

    def test_flushes_exactly_at_count_threshold(self, sink_client):
        acc, executor, _ = _make(sink_client, Thresholds(max_operation_count=3))
        sent = []
        for doc_id in ("a", "b", "c", "d"):
            acc.enqueue(_insert(doc_id))
            sent.append(executor.flush())
        assert sent == [0, 0, 3, 0]
        assert [_ids(b) for b in sink_client.batches] == [["a", "b", "c"]]
        assert _ids(acc.pending) == ["d"]

    def test_size_threshold_triggers_on_third_enqueue(self, sink_client):
        acc, executor, _ = _make(sink_client, Thresholds(max_byte_size=500))
        requests = [_SizedRequest(100), _SizedRequest(150), _SizedRequest(260)]
        with patch(
            "docsink.sinks.accumulator.build_request", side_effect=requests
        ):
            acc.enqueue(_insert("a"))
            assert executor.flush() == 0
            acc.enqueue(_insert("b"))
            assert acc.metrics.byte_size == 250
            assert executor.flush() == 0
            acc.enqueue(_insert("c"))
            assert acc.metrics.byte_size == 510
            assert executor.flush() == 3
        assert sink_client.batches == [requests]

    def test_success_resets_and_counts(self, sink_client):
        acc, executor, on_fatal = _make(sink_client, Thresholds(max_operation_count=2))
        for doc_id in ("a", "b", "c", "d"):
            acc.enqueue(_insert(doc_id))
            executor.flush()
        assert acc.metrics == BatchMetrics()
        assert executor.documents_sent == 4
        on_fatal.assert_not_called()

    def test_batch_preserves_arrival_order(self, sink_client):
        acc, executor, _ = _make(sink_client)
        acc.enqueue(_insert("a"))
        acc.enqueue(Operation(OperationKind.DELETE, "b"))
        acc.enqueue(Operation(OperationKind.UPDATE, "c", {"v": 1}))
        executor.flush(force=True)
        assert _ids(sink_client.batches[0]) == ["a", "b", "c"]

    def test_forced_flush_drains_small_batch(self, sink_client):
        acc, executor, _ = _make(sink_client)
        acc.enqueue(_insert("a"))
        acc.enqueue(_insert("b"))
        assert executor.flush(force=True) == 2
        assert len(sink_client.batches) == 1
        assert _ids(sink_client.batches[0]) == ["a", "b"]

    def test_forced_flush_of_empty_batch_sends_nothing(self, sink_client):
        _, executor, _ = _make(sink_client)
        assert executor.flush(force=True) == 0
        assert sink_client.batches == []

    def test_failure_reports_one_fatal_error_and_discards(self, failing_client):
        acc, executor, on_fatal = _make(failing_client)
        acc.enqueue(_insert("a"))
        acc.enqueue(_insert("b"))

        assert executor.flush(force=True) == 0

        on_fatal.assert_called_once()
        error = on_fatal.call_args.args[0]
        assert isinstance(error, AdaptorError)
        assert error.level == ErrorLevel.CRITICAL
        assert error.fatal
        assert "cluster unavailable" in error.message
        assert error.path == "test/appbase"
        assert acc.metrics == BatchMetrics()
        assert acc.pending == ()
        assert executor.documents_sent == 0

    def test_failed_batch_is_not_resent(self, failing_client):
        acc, executor, _ = _make(failing_client)
        acc.enqueue(_insert("a"))
        executor.flush(force=True)
        executor.flush(force=True)
        assert len(failing_client.batches) == 1

    def test_concurrent_forced_flush_never_splits_or_loses(self, sink_client):
        acc, executor, _ = _make(sink_client, Thresholds(max_operation_count=7))
        total = 300
        done = threading.Event()

        def deliver() -> None:
            for i in range(total):
                with acc.lock:
                    acc.enqueue(_insert(str(i)))
                    executor.flush()
            done.set()

        writer = threading.Thread(target=deliver)
        writer.start()
        while not done.is_set():
            executor.flush(force=True)
        writer.join()
        executor.flush(force=True)

        flushed = [doc_id for batch in sink_client.batches for doc_id in _ids(batch)]
        assert flushed == [str(i) for i in range(total)]
        assert executor.documents_sent == total
