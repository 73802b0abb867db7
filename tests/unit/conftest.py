"""Shared fakes for sink unit tests."""

from __future__ import annotations

from typing import Any

import pytest

from docsink.sinks.bulk import BulkError, BulkResponse


class RecordingService:
    """Bulk service fake that records each executed batch on its client."""

    def __init__(self, client: RecordingClient, index: str, type_name: str) -> None:
        self._client = client
        self.index = index
        self.type_name = type_name
        self._requests: list[Any] = []

    def add(self, *requests: Any) -> RecordingService:
        self._requests.extend(requests)
        return self

    def number_of_actions(self) -> int:
        return len(self._requests)

    def do(self) -> BulkResponse:
        self._client.batches.append(list(self._requests))
        if self._client.fail is not None:
            raise self._client.fail
        self._requests.clear()
        return BulkResponse(took=1)


class RecordingClient:
    def __init__(self, fail: Exception | None = None) -> None:
        self.fail = fail
        self.batches: list[list[Any]] = []
        self.closed = False

    def bulk(self, index: str, type_name: str) -> RecordingService:
        return RecordingService(self, index, type_name)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def sink_client() -> RecordingClient:
    return RecordingClient()


@pytest.fixture
def failing_client() -> RecordingClient:
    return RecordingClient(fail=BulkError("cluster unavailable"))
