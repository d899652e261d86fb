"""
Structlog 日志配置

标准库 logging 与 structlog 共用同一条处理链；每条事件在渲染前经过 ``redact_event``，
API Key、Client ID、令牌等字段不会以明文出现在日志里。
"""
import json
import logging
from typing import Any, List, Mapping

import structlog
from structlog.contextvars import merge_contextvars
from structlog.dev import ConsoleRenderer
from structlog.processors import JSONRenderer, TimeStamper, add_log_level
from structlog.stdlib import ProcessorFormatter

from core.config import settings


REDACTED = "***REDACTED***"

# 键名归一化（小写、去掉 - 和 _）后做子串匹配
SENSITIVE_KEY_PARTS = ("apikey", "clientid", "token", "authorization", "password", "secret")

_RESERVED_EVENT_KEYS = frozenset({"event", "level", "timestamp", "logger", "exc_info", "stack_info"})

# httpx 自带的请求行日志与网关客户端日志重复
_QUIET_LOGGERS = ("httpx", "httpcore")


def is_sensitive_key(key: Any) -> bool:
    if not isinstance(key, str):
        return False
    normalized = key.lower().replace("-", "").replace("_", "")
    return any(part in normalized for part in SENSITIVE_KEY_PARTS)


def redact(data: Any) -> Any:
    """递归脱敏，返回新对象，不修改入参"""
    if isinstance(data, Mapping):
        return {k: REDACTED if is_sensitive_key(k) else redact(v) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [redact(item) for item in data]
    return data


def redact_event(logger: Any, method_name: str, event_dict: dict) -> dict:
    """structlog 处理器"""
    for key, value in list(event_dict.items()):
        if key not in _RESERVED_EVENT_KEYS:
            event_dict[key] = REDACTED if is_sensitive_key(key) else redact(value)
    return event_dict


def _json_dumps(obj: Any, default: Any = None, **kwargs: Any) -> str:
    # structlog 会透传 default/sort_keys 等参数
    return json.dumps(obj, ensure_ascii=False, default=default, **kwargs)


def get_renderer() -> Any:
    """DEBUG 下输出彩色控制台格式，其余环境输出 JSON 行"""
    if settings.DEBUG:
        return ConsoleRenderer(colors=True)
    return JSONRenderer(serializer=_json_dumps)


def _pre_chain() -> List[Any]:
    return [
        merge_contextvars,
        add_log_level,
        TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        redact_event,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def configure_logging() -> None:
    pre_chain = _pre_chain()
    structlog.configure(
        processors=[*pre_chain, ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[ProcessorFormatter.remove_processors_meta, get_renderer()],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


configure_logging()
