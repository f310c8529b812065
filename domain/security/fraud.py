"""
欺诈风险评分 - 启发式加分规则（非 ML）

每条规则独立计分并给出可解释的原因；单条规则的数据缺失或计算异常只让该规则
记 0 分，不会中断整体评估（fail open）。若出现此类情况，结果以 ``Degraded``
返回，便于在日志中与正常评估区分。
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from domain.common.result import Checked, Degraded, Ok
from domain.security.events import Severity, severity_for_score


MAX_SCORE = 100


@dataclass(frozen=True)
class FraudSignals:
    """一次请求的行为信号；None 表示该信号不可用"""
    ip: Optional[str]
    user_agent: Optional[str]
    request_count: Optional[int] = None
    seconds_since_last_attempt: Optional[float] = None
    ip_flagged: Optional[bool] = None
    current_attempt_at: Optional[datetime] = None
    previous_attempt_at: Optional[datetime] = None
    unavailable: tuple[str, ...] = ()


@dataclass(frozen=True)
class FraudAssessment:
    risk_score: int
    is_risky: bool
    should_block: bool
    reasons: list[str] = field(default_factory=list)
    flags: list[str] = field(default_factory=list)

    @property
    def severity(self) -> Severity:
        return severity_for_score(self.risk_score)


@dataclass(frozen=True)
class FraudPolicy:
    risky_threshold: int = 50
    block_threshold: int = 80
    velocity_threshold: int = 10
    rapid_attempt_seconds: float = 2.0
    suspicious_ips: frozenset[str] = frozenset({"127.0.0.1", "0.0.0.0"})
    bot_user_agent_pattern: str = r"bot|crawler|spider|scraper|curl|wget"


@dataclass(frozen=True)
class _Rule:
    name: str
    points: int
    flag: str
    reason: str
    signal: str
    check: Callable[[FraudSignals], Optional[bool]]


class FraudRiskScorer:
    """根据配置的阈值对 FraudSignals 打分"""

    def __init__(self, policy: FraudPolicy):
        self._policy = policy
        self._bot_re = re.compile(policy.bot_user_agent_pattern, re.IGNORECASE)
        self._rules = (
            _Rule("velocity", 30, "high_request_frequency",
                  "High request frequency detected", "request_count", self._check_velocity),
            _Rule("rapid_attempts", 20, "rapid_login_attempts",
                  "Rapid successive attempts detected", "seconds_since_last_attempt", self._check_rapid),
            _Rule("suspicious_ip", 25, "suspicious_ip",
                  "Suspicious IP address detected", "ip", self._check_suspicious_ip),
            _Rule("missing_user_agent", 20, "missing_user_agent",
                  "Missing user agent", "user_agent", self._check_missing_ua),
            _Rule("bot_user_agent", 20, "bot_detected",
                  "Suspicious user agent detected", "user_agent", self._check_bot_ua),
            _Rule("flagged_ip", 40, "flagged_ip",
                  "IP previously flagged for fraud", "ip_flagged", self._check_flagged_ip),
        )

    @property
    def policy(self) -> FraudPolicy:
        return self._policy

    # 规则返回 None 表示信号不可用
    def _check_velocity(self, s: FraudSignals) -> Optional[bool]:
        if s.request_count is None:
            return None
        return s.request_count > self._policy.velocity_threshold

    def _check_rapid(self, s: FraudSignals) -> Optional[bool]:
        if s.seconds_since_last_attempt is None:
            if "seconds_since_last_attempt" in s.unavailable:
                return None
            return False  # 首次尝试
        return s.seconds_since_last_attempt < self._policy.rapid_attempt_seconds

    def _check_suspicious_ip(self, s: FraudSignals) -> Optional[bool]:
        if not s.ip:
            return False
        return s.ip in self._policy.suspicious_ips

    def _check_missing_ua(self, s: FraudSignals) -> Optional[bool]:
        return not (s.user_agent or "").strip()

    def _check_bot_ua(self, s: FraudSignals) -> Optional[bool]:
        if not s.user_agent:
            return False
        return self._bot_re.search(s.user_agent) is not None

    def _check_flagged_ip(self, s: FraudSignals) -> Optional[bool]:
        if s.ip_flagged is None:
            return None
        return s.ip_flagged

    def score(self, signals: FraudSignals) -> Checked[FraudAssessment]:
        total = 0
        reasons: list[str] = []
        flags: list[str] = []
        failures: list[str] = [f"{name}:unavailable" for name in signals.unavailable]

        for rule in self._rules:
            try:
                hit = rule.check(signals)
            except Exception as exc:  # 单条规则异常只影响自身
                failures.append(f"{rule.name}:{type(exc).__name__}")
                continue
            if hit is None:
                if f"{rule.signal}:unavailable" not in failures:
                    failures.append(f"{rule.signal}:unavailable")
                continue
            if hit:
                total += rule.points
                reasons.append(rule.reason)
                flags.append(rule.flag)

        risk_score = max(0, min(MAX_SCORE, total))
        assessment = FraudAssessment(
            risk_score=risk_score,
            is_risky=risk_score > self._policy.risky_threshold,
            should_block=risk_score > self._policy.block_threshold,
            reasons=reasons,
            flags=flags,
        )
        if failures:
            return Degraded(assessment, tuple(failures))
        return Ok(assessment)


__all__ = ["FraudSignals", "FraudAssessment", "FraudPolicy", "FraudRiskScorer"]
