"""
FastAPI 应用入口

对外只有两个端点：``POST /{route_prefix}/callback`` 接收 ClickPesa 回调，``GET /health``。
出站网关调用（收款/付款）通过 application.services.gateway_service 在进程内使用。
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.dependencies import shutdown_gateway_service
from api.middleware import LoggingMiddleware, RequestIDMiddleware
from api.routes import clickpesa as clickpesa_routes
from core.config import settings
from core.exceptions import register_exception_handlers
from core.logging_config import configure_logging, get_logger
from core.response import success_response
from core.settings import gateway_settings
from infrastructure.database import create_tables
from infrastructure.events import get_event_dispatcher
from infrastructure.external.cache import init_redis_client, shutdown_redis_client


configure_logging()
logger = get_logger(__name__)

CALLBACK_PREFIX = "/" + gateway_settings.route_prefix.strip("/")


async def _startup() -> None:
    if settings.DEBUG or settings.AUTO_CREATE_TABLES:
        await create_tables()
        logger.info("database_initialized")

    if settings.redis.url:
        try:
            await init_redis_client()
        except Exception as exc:
            # 缓存回退到进程内存储；redis 锁后端会在首次回调时报错
            logger.error("redis_cache_init_failed", error=str(exc))

    logger.info(
        "clickpesa_configured",
        environment=gateway_settings.environment,
        verify_signature=gateway_settings.verify_signature,
        lock_backend=gateway_settings.webhook.lock_backend,
        callback_path=f"{CALLBACK_PREFIX}/callback",
    )


async def _shutdown() -> None:
    await shutdown_gateway_service()
    await get_event_dispatcher().aclose()
    if settings.redis.url:
        await shutdown_redis_client()
    logger.info("application_shutdown")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await _startup()
    yield
    await _shutdown()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="ClickPesa 支付网关集成与回调对账服务",
)

# 后注册的中间件先执行：RequestID 需要先于访问日志绑定 request_id
app.add_middleware(LoggingMiddleware)
app.add_middleware(RequestIDMiddleware)

register_exception_handlers(app)
app.include_router(clickpesa_routes.router, prefix=CALLBACK_PREFIX)


@app.get("/health", tags=["Health"])
async def health_check():
    return success_response(data={"status": "healthy"}, message="OK")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info",
    )
