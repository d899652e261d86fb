"""
Business codes carried in the unified response envelope.

Generic codes live here; ClickPesa and webhook codes live in
``shared.codes.gateway_codes`` (6xxxx / 7xxxx).
"""
from enum import IntEnum


class BusinessCode(IntEnum):
    SUCCESS = 0

    # 请求参数 (1xxxx)
    PARAM_ERROR = 10000
    PARAM_VALIDATION_ERROR = 10003

    # 资源 (2xxxx)
    NOT_FOUND = 20006

    # 认证授权 (3xxxx)
    UNAUTHORIZED = 30001
    FORBIDDEN = 30002

    # 系统 (4xxxx)
    SYSTEM_ERROR = 40000
    DATABASE_ERROR = 40001
    SERVICE_UNAVAILABLE = 40003


__all__ = ["BusinessCode"]
