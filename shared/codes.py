"""
业务状态码（各层共用的单一来源）

按区段划分：1xxxx 参数，2xxxx 业务，3xxxx 权限与安全，4xxxx 系统，5xxxx 限流。
"""
from enum import IntEnum


class BusinessCode(IntEnum):

    SUCCESS = 0

    # 参数错误 (1xxxx)
    PARAM_VALIDATION_ERROR = 10003

    # 业务错误 (2xxxx)
    USER_NOT_FOUND = 20001
    USER_ALREADY_EXISTS = 20002
    NOT_FOUND = 20006

    # 权限与安全 (3xxxx)
    UNAUTHORIZED = 30001
    FORBIDDEN = 30002
    ACCOUNT_LOCKED = 30003
    FRAUD_BLOCKED = 30004

    # 系统错误 (4xxxx)
    SYSTEM_ERROR = 40000
    SERVICE_UNAVAILABLE = 40003

    # 限流 (5xxxx)
    TOO_MANY_REQUESTS = 50001


__all__ = ["BusinessCode"]
