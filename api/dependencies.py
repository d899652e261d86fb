"""
API依赖项 - ClickPesa 网关服务与 Webhook 对账器的装配
"""
from datetime import timedelta
from typing import Optional

from application.ports.locks import KeyedLockPort
from application.services.gateway_service import GatewayService
from application.services.webhook_reconciler import WebhookReconciler
from core.config import settings
from core.logging_config import get_logger
from core.settings import gateway_settings
from infrastructure.events import get_event_dispatcher
from infrastructure.external.cache import RedisClient, get_redis_client
from infrastructure.external.clickpesa import (
    SIGNATURE_HEADER,
    SignatureVerifier,
    build_gateway_caches,
    create_collections_client,
    create_payouts_client,
)
from infrastructure.locks import InProcessKeyedLock, RedisKeyedLock
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


logger = get_logger(__name__)

# 进程内锁必须是单例，否则同一订单号的并发回调无法互斥
_in_process_lock = InProcessKeyedLock()
_gateway_service: Optional[GatewayService] = None


async def _optional_redis() -> Optional[RedisClient]:
    if not settings.redis.url:
        return None
    return await get_redis_client()


async def get_keyed_lock() -> KeyedLockPort:
    cfg = gateway_settings.webhook
    if cfg.lock_backend == "redis":
        return RedisKeyedLock(
            await get_redis_client(),
            timeout=cfg.lock_timeout_seconds,
            blocking_timeout=cfg.lock_blocking_timeout_seconds,
        )
    return _in_process_lock


async def get_webhook_reconciler() -> WebhookReconciler:
    cfg = gateway_settings
    return WebhookReconciler(
        uow_factory=SQLAlchemyUnitOfWork,
        verifier=SignatureVerifier(),
        locks=await get_keyed_lock(),
        publisher=get_event_dispatcher(),
        secret=cfg.api_key,
        enforce_signature=cfg.verify_signature,
        signature_header=SIGNATURE_HEADER,
        duplicate_window=timedelta(seconds=cfg.webhook.duplicate_window_seconds),
        storage_timeout=cfg.webhook.storage_timeout_seconds,
        default_currency=cfg.currency,
    )


async def get_gateway_service() -> GatewayService:
    """
    商户代码发起收款/付款的入口（进程级单例）

    token 缓存与 HTTP 连接池在调用之间复用；与回调对账共用同一把按订单号的锁。
    """
    global _gateway_service
    if _gateway_service is None:
        redis = await _optional_redis()
        token_cache, preview_cache = build_gateway_caches(gateway_settings, redis)
        collections = create_collections_client(token_cache, preview_cache, gateway_settings)
        payouts = create_payouts_client(
            token_source=collections.get_token,
            token_invalidator=collections.invalidate_token,
            preview_cache=preview_cache,
            cfg=gateway_settings,
        )
        _gateway_service = GatewayService(
            collections,
            payouts,
            uow_factory=SQLAlchemyUnitOfWork,
            locks=await get_keyed_lock(),
            default_currency=gateway_settings.currency,
        )
        logger.info(
            "gateway_service_initialized",
            environment=gateway_settings.environment,
            cache_driver=gateway_settings.cache.driver,
        )
    return _gateway_service


async def shutdown_gateway_service() -> None:
    global _gateway_service
    if _gateway_service is not None:
        await _gateway_service.aclose()
        _gateway_service = None
