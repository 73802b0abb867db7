"""Pydantic configuration models for document store sinks."""

from __future__ import annotations

from typing import Self

import httpx
from pydantic import (
    AliasChoices,
    BaseModel,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)

DEFAULT_URI = "https://scalr.api.appbase.io"
DEFAULT_BULK_SIZE = 512_000  # 500kb


class RetryConfig(BaseModel):
    """Retry / backoff configuration for the connection-setup ping."""

    max_attempts: int = Field(default=3, ge=1)
    initial_wait_seconds: float = Field(default=0.5, gt=0)
    max_wait_seconds: float = Field(default=10.0, gt=0)
    multiplier: float = Field(default=2.0, ge=1.0)
    jitter: bool = True


class AppbaseConfig(BaseModel):
    """Configuration for an appbase (Elasticsearch-compatible) bulk sink."""

    uri: str = DEFAULT_URI
    username: str = ""
    password: SecretStr = SecretStr("")
    # "<app name>.<type name>"
    namespace: str = ""
    debug: bool = False
    bulk_size: int = Field(
        default=DEFAULT_BULK_SIZE,
        ge=0,
        validation_alias=AliasChoices("bulk_size", "bulksize"),
    )
    timeout_seconds: float = Field(default=30.0, gt=0)
    retry: RetryConfig = RetryConfig()

    @field_validator("uri")
    @classmethod
    def validate_uri(cls, v: str) -> str:
        if not v:
            return DEFAULT_URI
        try:
            url = httpx.URL(v)
        except httpx.InvalidURL as exc:
            msg = f"malformed uri '{v}': {exc}"
            raise ValueError(msg) from exc
        if url.scheme not in ("http", "https") or not url.host:
            msg = f"malformed uri '{v}', expected http(s)://host[:port]"
            raise ValueError(msg)
        return v

    @field_validator("bulk_size")
    @classmethod
    def default_bulk_size(cls, v: int) -> int:
        return v or DEFAULT_BULK_SIZE

    @model_validator(mode="after")
    def check_required(self) -> Self:
        """Namespace and both credentials must be present."""
        if not self.namespace:
            msg = "namespace required, but missing"
            raise ValueError(msg)
        if not self.username or not self.password.get_secret_value():
            msg = "both username and password required, but missing"
            raise ValueError(msg)
        self.split_namespace()
        return self

    def split_namespace(self) -> tuple[str, str]:
        """Split the namespace into (app name, type name) on the first dot."""
        fields = self.namespace.split(".", 1)
        if len(fields) != 2 or not fields[0] or not fields[1]:
            msg = (
                f"malformed namespace '{self.namespace}', "
                "expected a '.' delimited string"
            )
            raise ValueError(msg)
        return fields[0], fields[1]

    @property
    def app_name(self) -> str:
        return self.split_namespace()[0]

    @property
    def type_name(self) -> str:
        return self.split_namespace()[1]

    def endpoint_url(self) -> str:
        """The URI with the credentials embedded as userinfo."""
        url = httpx.URL(self.uri).copy_with(
            username=self.username,
            password=self.password.get_secret_value(),
        )
        return str(url)
