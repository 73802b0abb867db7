"""Pipeline message envelope.

Every upstream producer hands the pipe a ``Message``; sinks read the op,
namespace and document data from it.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class Op(StrEnum):
    """Operation carried by a pipeline message."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    COMMAND = "command"
    NOOP = "noop"


@dataclass(slots=True)
class Message:
    """A single change flowing through a pipe."""

    op: Op
    namespace: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: int = field(default_factory=lambda: int(time.time()))

    def id_string(self, key: str = "_id") -> str:
        """Return ``data[key]`` as a string.

        Raises KeyError if the document has no such key.
        """
        if key not in self.data:
            msg = f"no key {key} found in data"
            raise KeyError(msg)
        value = self.data[key]
        if isinstance(value, str):
            return value
        if isinstance(value, bytes):
            return value.hex()
        return str(value)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Message:
        """Build a message from ``{"op", "ns", "data", "ts"}``.

        ``op`` defaults to insert; an unknown op raises ValueError.
        """
        data = raw.get("data") or {}
        if not isinstance(data, dict):
            msg = f"message data must be a mapping, got {type(data).__name__}"
            raise ValueError(msg)
        op = Op(str(raw.get("op", Op.INSERT)).lower())
        kwargs: dict[str, Any] = {}
        if "ts" in raw:
            kwargs["timestamp"] = int(raw["ts"])
        return cls(op=op, namespace=str(raw.get("ns", "")), data=data, **kwargs)
