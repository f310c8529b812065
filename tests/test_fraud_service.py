import pytest

from application.services.fraud_service import FraudDetectionService, policy_from_settings
from core.config import FraudSettings
from domain.common.result import Degraded, Ok
from domain.security.events import Severity
from domain.security.fraud import FraudPolicy, FraudRiskScorer, FraudSignals


BROWSER_UA = "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) AppleWebKit/605.1.15"


@pytest.fixture
def scorer() -> FraudRiskScorer:
    return FraudRiskScorer(FraudPolicy())


def test_clean_request_scores_zero(scorer):
    result = scorer.score(FraudSignals(ip="203.0.113.5", user_agent=BROWSER_UA, request_count=1, ip_flagged=False))
    assert isinstance(result, Ok)
    assert result.value.risk_score == 0
    assert not result.value.is_risky
    assert result.value.severity is Severity.LOW


def test_rules_add_up_and_explain(scorer):
    result = scorer.score(
        FraudSignals(
            ip="127.0.0.1",
            user_agent="curl/8.4.0",
            request_count=11,
            seconds_since_last_attempt=0.5,
            ip_flagged=False,
        )
    )
    assessment = result.value
    # velocity 30 + rapid 20 + suspicious ip 25 + bot 20
    assert assessment.risk_score == 95
    assert assessment.should_block
    assert set(assessment.flags) == {
        "high_request_frequency", "rapid_login_attempts", "suspicious_ip", "bot_detected",
    }
    assert len(assessment.reasons) == 4


def test_score_is_clamped_to_100(scorer):
    result = scorer.score(
        FraudSignals(
            ip="127.0.0.1",
            user_agent="",
            request_count=50,
            seconds_since_last_attempt=0.1,
            ip_flagged=True,
        )
    )
    assert result.value.risk_score == 100
    assert result.value.severity is Severity.CRITICAL


def test_thresholds_are_strict(scorer):
    # 25 + 20 + 20 = 65 > 50 -> risky; not > 80
    result = scorer.score(
        FraudSignals(ip="127.0.0.1", user_agent="", request_count=1, seconds_since_last_attempt=0.1, ip_flagged=False)
    )
    assert result.value.risk_score == 65
    assert result.value.is_risky
    assert not result.value.should_block


def test_missing_signal_degrades_but_still_scores(scorer):
    result = scorer.score(
        FraudSignals(
            ip="203.0.113.5",
            user_agent="python-requests spider",
            request_count=None,
            ip_flagged=None,
            unavailable=("request_count", "ip_flagged"),
        )
    )
    assert isinstance(result, Degraded)
    assert result.ok and result.degraded
    assert result.value.risk_score == 20
    assert "request_count:unavailable" in result.failures
    assert "ip_flagged:unavailable" in result.failures


class _BrokenStore:
    """计数存储全部失败"""

    async def incr_window(self, key, window_ms):
        raise ConnectionError("down")

    async def get(self, key):
        raise ConnectionError("down")

    async def set(self, key, value, ttl_ms):
        raise ConnectionError("down")

    async def exists(self, key):
        raise ConnectionError("down")


@pytest.mark.asyncio
async def test_assess_fails_open_when_store_down(clock):
    service = FraudDetectionService(
        FraudRiskScorer(policy_from_settings(FraudSettings())), _BrokenStore(), FraudSettings(), clock
    )
    result = await service.assess("ip:ana@example.com", "203.0.113.5", BROWSER_UA)
    assert isinstance(result, Degraded)
    assert not result.value.should_block
    assert "request_count:unavailable" in result.failures


@pytest.mark.asyncio
async def test_assess_tracks_rapid_attempts_and_flags_blocked_ip(counter_store, clock):
    settings = FraudSettings()
    service = FraudDetectionService(FraudRiskScorer(policy_from_settings(settings)), counter_store, settings, clock)

    first = await service.assess("id", "203.0.113.5", BROWSER_UA)
    assert first.value.risk_score == 0
    clock.advance(seconds=1)
    second = await service.assess("id", "203.0.113.5", BROWSER_UA)
    assert "rapid_login_attempts" in second.value.flags

    blocked = await service.assess("bot", "127.0.0.1", None)
    for _ in range(11):
        blocked = await service.assess("bot", "127.0.0.1", "wget")
    assert blocked.value.should_block
    assert await counter_store.exists("fraud:flagged:127.0.0.1")
