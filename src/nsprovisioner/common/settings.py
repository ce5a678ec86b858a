"""Application configuration models shared by services."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


LOG_LEVELS = ("all", "debug", "info", "warn", "error", "none")

_PREFIX_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
_LABEL_KEY_PATTERN = re.compile(r"^([a-z0-9]([-a-z0-9.]*[a-z0-9])?/)?[A-Za-z0-9]([-A-Za-z0-9_.]*[A-Za-z0-9])?$")
_LABEL_VALUE_PATTERN = re.compile(r"^([A-Za-z0-9]([-A-Za-z0-9_.]*[A-Za-z0-9])?)?$")


def env_field(default, env_name: str):
    return Field(default, validation_alias=env_name)


def parse_selector_labels(selector: str) -> dict[str, str]:
    """Convert an equality-based label selector into a label map.

    Only ``key=value`` and ``key==value`` terms are accepted because the same
    labels are stamped on every created namespace.
    """

    labels: dict[str, str] = {}
    for term in selector.split(","):
        term = term.strip()
        if not term:
            continue
        if "!=" in term or "=" not in term:
            raise ValueError(f"selector term {term!r} is not an equality requirement")
        key, _, value = term.partition("==") if "==" in term else term.partition("=")
        key = key.strip()
        value = value.strip()
        if not _LABEL_KEY_PATTERN.match(key):
            raise ValueError(f"invalid label key {key!r}")
        if len(value) > 63 or not _LABEL_VALUE_PATTERN.match(value):
            raise ValueError(f"invalid label value {value!r}")
        if key in labels and labels[key] != value:
            raise ValueError(f"conflicting values for label {key!r}")
        labels[key] = value
    return labels


class ProvisionerSettings(BaseSettings):
    """Runtime settings for the namespace provisioner API service."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    api_host: str = env_field("0.0.0.0", "NSP_API_HOST")
    api_port: int = env_field(8080, "NSP_API_PORT")
    internal_host: str = env_field("0.0.0.0", "NSP_INTERNAL_HOST")
    internal_port: int = env_field(9090, "NSP_INTERNAL_PORT")
    kubeconfig: Optional[Path] = env_field(None, "NSP_KUBECONFIG")
    master: Optional[str] = env_field(None, "NSP_MASTER")
    log_level: str = env_field("info", "NSP_LOG_LEVEL")
    prefix: str = env_field("np", "NSP_PREFIX")
    selector: str = env_field("controller.observatorium.io=namespace-selector", "NSP_SELECTOR")
    token: Optional[SecretStr] = env_field(None, "NSP_TOKEN")
    ttl_seconds: int = env_field(3600, "NSP_TTL_SECONDS")
    cluster_role: Optional[str] = env_field(None, "NSP_CLUSTER_ROLE")
    role_path: Optional[Path] = env_field(None, "NSP_ROLE_PATH")
    identity_name: str = env_field("np", "NSP_IDENTITY_NAME")
    request_timeout_seconds: float = env_field(30.0, "NSP_REQUEST_TIMEOUT")
    expiry_delete_timeout_seconds: float = env_field(120.0, "NSP_EXPIRY_DELETE_TIMEOUT")
    token_read_attempts: int = env_field(5, "NSP_TOKEN_READ_ATTEMPTS")
    token_read_interval_seconds: float = env_field(0.5, "NSP_TOKEN_READ_INTERVAL")
    cache_watch_timeout_seconds: int = env_field(60, "NSP_CACHE_WATCH_TIMEOUT")
    drain_timeout_seconds: float = env_field(30.0, "NSP_DRAIN_TIMEOUT")
    metrics_token: Optional[SecretStr] = env_field(None, "NSP_METRICS_TOKEN")
    otel_exporter_endpoint: Optional[str] = env_field(None, "NSP_OTEL_EXPORTER_ENDPOINT")
    otel_exporter_headers: Optional[str] = env_field(None, "NSP_OTEL_EXPORTER_HEADERS")
    otel_sampler_ratio: float = env_field(0.1, "NSP_OTEL_SAMPLER_RATIO")

    @field_validator("log_level", mode="before")
    @classmethod
    def _validate_log_level(cls, value):
        normalized = str(value).strip().lower()
        if normalized not in LOG_LEVELS:
            raise ValueError(
                f"log level {value} unknown; possible values are: {', '.join(LOG_LEVELS)}"
            )
        return normalized

    @field_validator("prefix")
    @classmethod
    def _validate_prefix(cls, value: str) -> str:
        # uuid suffix is 36 characters plus the separator
        if len(value) > 26 or not _PREFIX_PATTERN.match(value):
            raise ValueError("prefix must be a lowercase DNS label of at most 26 characters")
        return value

    @field_validator("selector")
    @classmethod
    def _validate_selector(cls, value: str) -> str:
        if not parse_selector_labels(value):
            raise ValueError("selector must contain at least one label")
        return value

    @field_validator("ttl_seconds", "token_read_attempts")
    @classmethod
    def _require_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("value must be positive")
        return value

    @property
    def labels(self) -> dict[str, str]:
        return parse_selector_labels(self.selector)

    @property
    def api_token(self) -> Optional[str]:
        if self.token is None:
            return None
        return self.token.get_secret_value() or None
