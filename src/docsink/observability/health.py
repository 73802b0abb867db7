"""Health probes for the document store endpoint."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

import structlog

from docsink.config.models import AppbaseConfig, RetryConfig
from docsink.sinks.bulk import HttpBulkClient, SinkConnectionError

logger = structlog.get_logger()


class Status(StrEnum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class ComponentHealth:
    name: str
    status: Status = Status.UNKNOWN
    detail: str = ""


@dataclass
class SinkHealth:
    components: list[ComponentHealth] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return all(c.status == Status.HEALTHY for c in self.components)

    @property
    def summary(self) -> dict[str, str]:
        return {c.name: c.status.value for c in self.components}


def check_endpoint(config: AppbaseConfig) -> ComponentHealth:
    """Probe the bulk endpoint with a single authenticated ping."""
    client = HttpBulkClient(
        config.endpoint_url(),
        timeout=config.timeout_seconds,
        retry_config=RetryConfig(max_attempts=1),
        healthcheck=False,
    )
    try:
        status_code = client.ping()
        return ComponentHealth(
            name="appbase",
            status=Status.HEALTHY,
            detail=f"{client.base_url} answered {status_code}",
        )
    except SinkConnectionError as exc:
        logger.warning("health.endpoint_unhealthy", url=client.base_url)
        return ComponentHealth(name="appbase", status=Status.UNHEALTHY, detail=str(exc))
    finally:
        client.close()


def check_sink_health(config: AppbaseConfig) -> SinkHealth:
    """Run all health checks for a sink config and return the aggregate."""
    return SinkHealth(components=[check_endpoint(config)])
