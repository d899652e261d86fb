"""
Factory for ClickPesa clients and their caches.
"""
from __future__ import annotations

from typing import Optional, Tuple

import httpx

from core.settings import GatewaySettings, gateway_settings
from infrastructure.external.cache.redis_client import RedisClient
from infrastructure.external.cache.stores import CacheStore, MemoryCacheStore, RedisCacheStore
from infrastructure.external.clickpesa.collections_client import CollectionsClient
from infrastructure.external.clickpesa.exceptions import GatewayConfigurationError
from infrastructure.external.clickpesa.payouts_client import PayoutsClient, TokenInvalidator, TokenSource
from infrastructure.external.clickpesa.signature import SIGNATURE_HEADER, SignatureVerifier
from infrastructure.external.clickpesa.token_cache import PreviewCache, TokenCache


def build_cache_store(
    cfg: GatewaySettings = gateway_settings,
    redis: Optional[RedisClient] = None,
) -> CacheStore:
    driver = cfg.cache.driver
    if driver == "redis":
        if redis is None:
            raise GatewayConfigurationError("ClickPesa cache driver 'redis' requires a Redis client")
        return RedisCacheStore(redis)
    if driver == "default" and redis is not None:
        return RedisCacheStore(redis)
    return MemoryCacheStore()


def build_gateway_caches(
    cfg: GatewaySettings = gateway_settings,
    redis: Optional[RedisClient] = None,
) -> Tuple[TokenCache, PreviewCache]:
    store = build_cache_store(cfg, redis)
    token_cache = TokenCache(store, enabled=cfg.cache.enabled, ttl=cfg.cache.ttl)
    preview_cache = PreviewCache(
        store,
        enabled=cfg.cache.enabled and cfg.cache.preview_enabled,
        ttl=cfg.cache.preview_ttl,
    )
    return token_cache, preview_cache


def _client_kwargs(cfg: GatewaySettings, http_client: Optional[httpx.AsyncClient]) -> dict:
    return {
        "environment": cfg.environment,
        "timeouts": cfg.timeouts.model_dump(),
        "http_client": http_client,
        "logging_enabled": cfg.logging.enabled,
        "log_channel": cfg.logging.channel,
    }


def create_collections_client(
    token_cache: TokenCache,
    preview_cache: Optional[PreviewCache] = None,
    cfg: GatewaySettings = gateway_settings,
    http_client: Optional[httpx.AsyncClient] = None,
) -> CollectionsClient:
    return CollectionsClient(
        api_key=cfg.api_key,
        client_id=cfg.client_id,
        token_cache=token_cache,
        preview_cache=preview_cache,
        **_client_kwargs(cfg, http_client),
    )


def create_payouts_client(
    token_source: Optional[TokenSource] = None,
    token_invalidator: Optional[TokenInvalidator] = None,
    preview_cache: Optional[PreviewCache] = None,
    cfg: GatewaySettings = gateway_settings,
    http_client: Optional[httpx.AsyncClient] = None,
) -> PayoutsClient:
    return PayoutsClient(
        token_source=token_source,
        token_invalidator=token_invalidator,
        preview_cache=preview_cache,
        **_client_kwargs(cfg, http_client),
    )


__all__ = [
    "CollectionsClient",
    "PayoutsClient",
    "TokenCache",
    "PreviewCache",
    "SignatureVerifier",
    "SIGNATURE_HEADER",
    "build_cache_store",
    "build_gateway_caches",
    "create_collections_client",
    "create_payouts_client",
]
