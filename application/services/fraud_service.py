"""
欺诈检测服务 - 采集行为信号并交给 FraudRiskScorer 打分

信号采集失败或超时时，该信号记为不可用（计 0 分），整体评估照常完成。
"""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Awaitable, Optional, TypeVar

from application.ports.counter_store import CounterStorePort
from core.config import FraudSettings
from core.logging_config import get_logger
from domain.common.result import Checked, Degraded
from domain.security.fraud import FraudAssessment, FraudPolicy, FraudRiskScorer, FraudSignals
from shared.clock import Clock, ensure_utc, utc_now


logger = get_logger(__name__)

T = TypeVar("T")


def policy_from_settings(config: FraudSettings) -> FraudPolicy:
    return FraudPolicy(
        risky_threshold=config.risky_threshold,
        block_threshold=config.block_threshold,
        velocity_threshold=config.velocity_threshold,
        rapid_attempt_seconds=config.rapid_attempt_seconds,
        suspicious_ips=frozenset(config.suspicious_ips),
        bot_user_agent_pattern=config.bot_user_agent_pattern,
    )


class _SignalUnavailable(Exception):
    pass


class FraudDetectionService:

    def __init__(
        self,
        scorer: FraudRiskScorer,
        store: CounterStorePort,
        config: FraudSettings,
        clock: Clock = utc_now,
    ):
        self._scorer = scorer
        self._store = store
        self._config = config
        self._clock = clock

    async def _bounded(self, name: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._config.signal_timeout_seconds)
        except Exception as exc:
            logger.warning("fraud_signal_unavailable", signal=name, error=type(exc).__name__)
            raise _SignalUnavailable(name) from exc

    async def collect_signals(self, identity: str, ip: Optional[str], user_agent: Optional[str]) -> FraudSignals:
        now = self._clock()
        unavailable: list[str] = []
        ip_key = ip or "unknown"

        request_count: Optional[int] = None
        try:
            counted = await self._bounded(
                "request_count",
                self._store.incr_window(
                    f"fraud:velocity:{ip_key}", self._config.velocity_window_seconds * 1000
                ),
            )
            request_count = counted.count
        except _SignalUnavailable:
            unavailable.append("request_count")

        previous_at: Optional[datetime] = None
        seconds_since: Optional[float] = None
        last_key = f"fraud:last:{identity}"
        try:
            raw = await self._bounded("seconds_since_last_attempt", self._store.get(last_key))
            if raw:
                previous_at = ensure_utc(datetime.fromisoformat(raw))
                seconds_since = max(0.0, (now - previous_at).total_seconds())
            await self._bounded(
                "seconds_since_last_attempt",
                self._store.set(last_key, now.isoformat(), self._config.flag_ttl_hours * 3600 * 1000),
            )
        except (_SignalUnavailable, ValueError):
            unavailable.append("seconds_since_last_attempt")

        ip_flagged: Optional[bool] = None
        try:
            ip_flagged = await self._bounded("ip_flagged", self._store.exists(f"fraud:flagged:{ip_key}"))
        except _SignalUnavailable:
            unavailable.append("ip_flagged")

        return FraudSignals(
            ip=ip,
            user_agent=user_agent,
            request_count=request_count,
            seconds_since_last_attempt=seconds_since,
            ip_flagged=ip_flagged,
            current_attempt_at=now,
            previous_attempt_at=previous_at,
            unavailable=tuple(unavailable),
        )

    async def assess(self, identity: str, ip: Optional[str], user_agent: Optional[str]) -> Checked[FraudAssessment]:
        """评估一次请求的风险；需要拦截时标记该 IP"""
        signals = await self.collect_signals(identity, ip, user_agent)
        result = self._scorer.score(signals)
        assessment = result.value

        if isinstance(result, Degraded):
            logger.warning(
                "fraud_assessment_degraded",
                identity=identity,
                risk_score=assessment.risk_score,
                failures=list(result.failures),
            )
        elif assessment.is_risky:
            logger.info(
                "fraud_assessment_risky",
                identity=identity,
                risk_score=assessment.risk_score,
                reasons=assessment.reasons,
            )

        if assessment.should_block and ip:
            await self.flag_ip(ip)
        return result

    async def flag_ip(self, ip: str) -> None:
        try:
            await self._bounded(
                "flag_ip",
                self._store.set(f"fraud:flagged:{ip}", "1", self._config.flag_ttl_hours * 3600 * 1000),
            )
            logger.warning("fraud_ip_flagged", ip=ip, ttl_hours=self._config.flag_ttl_hours)
        except _SignalUnavailable:
            pass
