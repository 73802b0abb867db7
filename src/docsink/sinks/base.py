"""Bulk sink capability protocols.

The accumulator only talks to the remote store through these protocols,
so alternative clients (or test fakes) plug in without touching core code.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class BulkableRequest(Protocol):
    """A single index, update or delete intent."""

    def source(self) -> list[str]:
        """Wire lines for this request, without trailing newlines."""
        ...


@runtime_checkable
class BulkService(Protocol):
    """One bulk call being assembled against a namespace."""

    def add(self, *requests: BulkableRequest) -> BulkService:
        """Append requests, preserving order."""
        ...

    def number_of_actions(self) -> int:
        """Number of requests added so far."""
        ...

    def do(self) -> Any:
        """Send all added requests in one call; raise on failure."""
        ...


@runtime_checkable
class SinkClient(Protocol):
    """Connection handle to the remote document store."""

    def bulk(self, index: str, type_name: str) -> BulkService:
        """Start a bulk call targeting *index*/*type_name*."""
        ...

    def close(self) -> None:
        """Release the underlying connection."""
        ...
