"""
ClickPesa gateway settings using pydantic-settings v2 with nested env keys.

Every key is read with the ``CLICKPESA_`` prefix, nested groups use ``__``,
e.g. ``CLICKPESA_API_KEY``, ``CLICKPESA_CACHE__TTL``,
``CLICKPESA_WEBHOOK__LOCK_BACKEND``.
"""
from __future__ import annotations

from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, field_validator


class GatewayTimeouts(BaseModel):
    connect: float = 5.0
    read: float = 30.0
    write: float = 30.0
    total: float = 30.0


class GatewayCacheSettings(BaseModel):
    enabled: bool = True
    # memory | redis | default (redis when a Redis URL is configured)
    driver: Literal["memory", "redis", "default"] = "default"
    ttl: int = 3600
    preview_enabled: bool = True
    preview_ttl: int = 300


class GatewayLoggingSettings(BaseModel):
    enabled: bool = True
    channel: str = "clickpesa"


class WebhookSettings(BaseModel):
    duplicate_window_seconds: int = 300
    # memory: single process only; redis: shared across workers
    lock_backend: Literal["memory", "redis"] = "memory"
    lock_timeout_seconds: float = 30.0
    lock_blocking_timeout_seconds: float = 10.0
    storage_timeout_seconds: Optional[float] = 10.0


class GatewaySettings(BaseSettings):
    api_key: Optional[str] = None
    client_id: Optional[str] = None
    environment: Literal["sandbox", "live"] = "sandbox"
    callback_url: Optional[str] = None
    currency: str = "TZS"
    verify_signature: bool = False
    route_prefix: str = "clickpesa"

    timeouts: GatewayTimeouts = Field(default_factory=GatewayTimeouts)
    cache: GatewayCacheSettings = Field(default_factory=GatewayCacheSettings)
    logging: GatewayLoggingSettings = Field(default_factory=GatewayLoggingSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CLICKPESA_",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    @field_validator("environment", mode="before")
    @classmethod
    def _normalize_environment(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("currency", mode="before")
    @classmethod
    def _normalize_currency(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v


gateway_settings = GatewaySettings()
