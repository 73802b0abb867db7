"""Operation model and per-kind bulk request builders."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from docsink.pipeline.message import Message, Op
from docsink.sinks.base import BulkableRequest
from docsink.sinks.bulk import BulkDeleteRequest, BulkIndexRequest, BulkUpdateRequest


class OperationKind(StrEnum):
    """Write intents understood by the document store."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class Operation:
    """One pending change to a document identified by ``id``."""

    kind: OperationKind
    id: str
    payload: dict[str, Any] | None = None


def operation_from_message(msg: Message) -> Operation:
    """Translate a pipeline message; anything but update/delete indexes."""
    try:
        doc_id = msg.id_string("_id")
    except KeyError:
        doc_id = ""

    if msg.op == Op.DELETE:
        return Operation(OperationKind.DELETE, doc_id)
    if msg.op == Op.UPDATE:
        return Operation(OperationKind.UPDATE, doc_id, msg.data)
    return Operation(OperationKind.INSERT, doc_id, msg.data)


RequestBuilder = Callable[[Operation, str, str], BulkableRequest]


def _build_index(op: Operation, index: str, type_name: str) -> BulkableRequest:
    return BulkIndexRequest(index, type_name, op.id, op.payload)


def _build_update(op: Operation, index: str, type_name: str) -> BulkableRequest:
    return BulkUpdateRequest(index, type_name, op.id, op.payload)


def _build_delete(op: Operation, index: str, type_name: str) -> BulkableRequest:
    return BulkDeleteRequest(index, type_name, op.id)


_REQUEST_BUILDERS: dict[OperationKind, RequestBuilder] = {
    OperationKind.INSERT: _build_index,
    OperationKind.UPDATE: _build_update,
    OperationKind.DELETE: _build_delete,
}


def build_request(op: Operation, index: str, type_name: str) -> BulkableRequest:
    """Build the sink request for *op* targeting *index*/*type_name*."""
    return _REQUEST_BUILDERS[op.kind](op, index, type_name)
