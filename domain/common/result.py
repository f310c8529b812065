"""
显式结果类型

预期内的失败（校验、锁定、限流）用 ``Err`` 返回而不是抛异常；
fail-open 的辅助检查（泄露查询、欺诈评分）在数据不可用时返回 ``Degraded``，
使“降级后的放行”在日志里与“干净的放行”可区分。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    ok: bool = field(default=True, init=False)
    degraded: bool = field(default=False, init=False)


@dataclass(frozen=True)
class Err(Generic[E]):
    error: E
    ok: bool = field(default=False, init=False)


@dataclass(frozen=True)
class Degraded(Generic[T]):
    """检查未能完整执行，value 为 fail-open 的兜底结果，failures 记录失败的环节"""
    value: T
    failures: tuple[str, ...] = ()
    ok: bool = field(default=True, init=False)
    degraded: bool = field(default=True, init=False)


Result = Union[Ok[T], Err[E]]
Checked = Union[Ok[T], Degraded[T]]


__all__ = ["Ok", "Err", "Degraded", "Result", "Checked"]
