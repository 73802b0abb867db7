"""HTTP bulk client for Elasticsearch-compatible document stores.

Speaks the ``_bulk`` NDJSON protocol: every request contributes an action
metadata line, optionally followed by a document line, each terminated by
a newline.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from docsink.config.models import AppbaseConfig, RetryConfig

logger = structlog.get_logger()


class SinkError(Exception):
    """Base class for failures talking to the document store."""


class BulkError(SinkError):
    """A bulk call could not be sent or was rejected as a whole."""


class SinkConnectionError(SinkError):
    """The document store could not be reached during client setup."""


def _dumps(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def _action_line(action: str, index: str, type_name: str, doc_id: str) -> str:
    meta: dict[str, str] = {}
    if index:
        meta["_index"] = index
    if type_name:
        meta["_type"] = type_name
    if doc_id:
        meta["_id"] = doc_id
    return _dumps({action: meta})


@dataclass(slots=True)
class BulkIndexRequest:
    """Index (create or overwrite) a whole document."""

    index: str
    type_name: str
    doc_id: str
    doc: dict[str, Any] | None

    def source(self) -> list[str]:
        if self.doc is None:
            msg = "index request requires a document"
            raise ValueError(msg)
        return [
            _action_line("index", self.index, self.type_name, self.doc_id),
            _dumps(self.doc),
        ]


@dataclass(slots=True)
class BulkUpdateRequest:
    """Partially update an existing document."""

    index: str
    type_name: str
    doc_id: str
    doc: dict[str, Any] | None

    def source(self) -> list[str]:
        if self.doc is None:
            msg = "update request requires a document"
            raise ValueError(msg)
        return [
            _action_line("update", self.index, self.type_name, self.doc_id),
            _dumps({"doc": self.doc}),
        ]


@dataclass(slots=True)
class BulkDeleteRequest:
    """Delete a document by id."""

    index: str
    type_name: str
    doc_id: str

    def source(self) -> list[str]:
        return [_action_line("delete", self.index, self.type_name, self.doc_id)]


@dataclass
class BulkResponseItem:
    action: str
    doc_id: str
    status: int
    error: Any = None

    @property
    def failed(self) -> bool:
        return self.error is not None or self.status >= 300


@dataclass
class BulkResponse:
    took: int = 0
    errors: bool = False
    items: list[BulkResponseItem] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> BulkResponse:
        items: list[BulkResponseItem] = []
        for entry in data.get("items", []):
            for action, result in entry.items():
                items.append(
                    BulkResponseItem(
                        action=action,
                        doc_id=str(result.get("_id", "")),
                        status=int(result.get("status", 0)),
                        error=result.get("error"),
                    )
                )
        return cls(
            took=int(data.get("took", 0)),
            errors=bool(data.get("errors", False)),
            items=items,
        )

    def failed(self) -> list[BulkResponseItem]:
        return [item for item in self.items if item.failed]


class HttpBulkService:
    """Collects bulk requests and sends them in a single ``_bulk`` POST."""

    def __init__(self, http: httpx.Client, index: str, type_name: str) -> None:
        self._http = http
        self._index = index
        self._type_name = type_name
        self._requests: list[Any] = []

    def add(self, *requests: Any) -> HttpBulkService:
        self._requests.extend(requests)
        return self

    def number_of_actions(self) -> int:
        return len(self._requests)

    def reset(self) -> None:
        self._requests.clear()

    def body(self) -> str:
        """NDJSON body; every line, including the last, ends with a newline."""
        lines: list[str] = []
        for request in self._requests:
            lines.extend(request.source())
        return "".join(f"{line}\n" for line in lines)

    def do(self) -> BulkResponse:
        if not self._requests:
            msg = "no bulk actions to commit"
            raise BulkError(msg)

        try:
            content = self.body().encode()
        except (TypeError, ValueError, RecursionError) as exc:
            msg = f"failed to serialize bulk body: {exc}"
            raise BulkError(msg) from exc

        try:
            response = self._http.post(
                f"/{self._index}/{self._type_name}/_bulk",
                content=content,
                headers={"Content-Type": "application/x-ndjson"},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            msg = (
                f"bulk request rejected with status {exc.response.status_code}: "
                f"{exc.response.text[:200]}"
            )
            raise BulkError(msg) from exc
        except httpx.HTTPError as exc:
            msg = f"bulk request failed: {exc}"
            raise BulkError(msg) from exc
        except ValueError as exc:
            msg = f"bulk response is not valid JSON: {exc}"
            raise BulkError(msg) from exc

        self._requests.clear()
        return BulkResponse.from_json(data)


class HttpBulkClient:
    """Connection to an Elasticsearch-compatible endpoint.

    Credentials embedded in *url* are stripped and sent as HTTP basic auth.
    With ``healthcheck`` enabled the constructor pings the endpoint and
    raises SinkConnectionError when no node answers.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 30.0,
        retry_config: RetryConfig | None = None,
        healthcheck: bool = True,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        parsed = httpx.URL(url)
        auth: httpx.BasicAuth | None = None
        if parsed.username or parsed.password:
            auth = httpx.BasicAuth(parsed.username, parsed.password)
        self._base_url = httpx.URL(
            scheme=parsed.scheme,
            host=parsed.host,
            port=parsed.port,
            path=parsed.path,
        )
        self._retry = retry_config or RetryConfig()
        self._http = httpx.Client(
            base_url=self._base_url,
            auth=auth,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )
        if healthcheck:
            try:
                self.ping()
            except SinkConnectionError:
                self._http.close()
                raise

    @classmethod
    def from_config(
        cls,
        config: AppbaseConfig,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> HttpBulkClient:
        return cls(
            config.endpoint_url(),
            timeout=config.timeout_seconds,
            retry_config=config.retry,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return str(self._base_url)

    def ping(self) -> int:
        """GET the endpoint root, retrying transient failures; return the status."""
        retry_cfg = self._retry

        @retry(
            stop=stop_after_attempt(retry_cfg.max_attempts),
            wait=wait_exponential_jitter(
                initial=retry_cfg.initial_wait_seconds,
                max=retry_cfg.max_wait_seconds,
                jitter=retry_cfg.multiplier if retry_cfg.jitter else 0,
            ),
            retry=retry_if_exception_type(httpx.HTTPError),
            reraise=True,
        )
        def _ping() -> int:
            response = self._http.get("/")
            response.raise_for_status()
            return response.status_code

        try:
            return _ping()
        except httpx.HTTPError as exc:
            logger.warning(
                "bulk_client.ping_failed", url=self.base_url, error=str(exc)
            )
            msg = f"no document store node available at {self.base_url}: {exc}"
            raise SinkConnectionError(msg) from exc

    def bulk(self, index: str, type_name: str) -> HttpBulkService:
        return HttpBulkService(self._http, index, type_name)

    def close(self) -> None:
        self._http.close()
