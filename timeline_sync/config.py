"""
Configuration for the timeline sync engine.

Uses pydantic-settings for environment variable loading. Every setting
can be overridden with a TIMELINE_-prefixed environment variable, e.g.
TIMELINE_APP_SCOPE or TIMELINE_RETRY_MAX_ATTEMPTS.

Invariants:
    - All settings have sensible defaults for local development
    - Remote backends require their connection settings
    - Tokens are never logged
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Engine configuration loaded from environment."""

    # Storage addressing
    namespace: str = Field(default="artifacts", description="Root namespace of all paths")
    app_scope: str = Field(default="default-app-id", description="Application scope segment")
    asset_prefix: str = Field(default="images", description="Prefix for uploaded asset paths")

    # Identity
    initial_auth_token: str | None = Field(
        default=None, description="Token used for sign-in (anonymous when unset)"
    )

    # Retry policy
    retry_max_attempts: int = Field(default=5, ge=0, description="Retries after the first try")
    retry_initial_delay_ms: int = Field(default=1000, ge=0, description="First retry delay")

    # Backends
    document_backend: Literal["memory", "http"] = Field(default="memory")
    asset_backend: Literal["memory", "s3"] = Field(default="memory")

    # REST document service
    http_base_url: str | None = Field(default=None, description="REST document service URL")
    http_timeout: float = Field(default=10.0, description="Per-request timeout seconds")
    http_poll_interval: float = Field(default=2.0, description="Live listener poll seconds")

    # S3 asset store
    s3_bucket: str | None = Field(default=None)
    s3_region: str = Field(default="us-east-1")
    s3_endpoint_url: str | None = Field(default=None, description="Custom endpoint (MinIO)")
    s3_public_base_url: str | None = Field(
        default=None, description="Public URL prefix; presigned URLs are used when unset"
    )

    # Observability
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="text")

    model_config = {"env_prefix": "TIMELINE_"}

    @model_validator(mode="after")
    def _check_backends(self) -> Settings:
        if self.document_backend == "http" and not self.http_base_url:
            raise ValueError("TIMELINE_HTTP_BASE_URL is required when document_backend=http")
        if self.asset_backend == "s3" and not self.s3_bucket:
            raise ValueError("TIMELINE_S3_BUCKET is required when asset_backend=s3")
        return self

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Timeline configuration loaded",
            extra={
                "namespace": self.namespace,
                "app_scope": self.app_scope,
                "has_auth_token": self.initial_auth_token is not None,
                "retry_max_attempts": self.retry_max_attempts,
                "retry_initial_delay_ms": self.retry_initial_delay_ms,
                "document_backend": self.document_backend,
                "asset_backend": self.asset_backend,
                "http_base_url": self.http_base_url
                if self.document_backend == "http"
                else None,
                "s3_bucket": self.s3_bucket if self.asset_backend == "s3" else None,
                "log_level": self.log_level,
            },
        )
