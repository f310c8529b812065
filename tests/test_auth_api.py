"""End-to-end flows through the HTTP surface (TestClient + in-memory stores)."""
from fastapi.testclient import TestClient
from sqlalchemy import select

from core.config import load_settings
from domain.security.credentials import ERR_DIGIT, ERR_SPECIAL, ERR_UPPERCASE
from domain.user.entity import ROLE_ADMIN
from infrastructure.models.auth_attempt import AuthAttemptModel


API = "/api/v1"
STRONG_PASSWORD = "Voyage#2024!"


def _signup(client, email="ana@example.com", password=STRONG_PASSWORD, **headers):
    return client.post(f"{API}/auth/signup", json={"email": email, "password": password}, headers=headers)


def _signin(client, email="ana@example.com", password=STRONG_PASSWORD, **headers):
    return client.post(f"{API}/auth/signin", json={"email": email, "password": password}, headers=headers)


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _promote(client, app, email):
    container = app.state.container

    async def _run():
        async with container.uow_factory() as uow:
            user = await uow.user_repository.get_by_email(email)
            user.change_role(ROLE_ADMIN)
            await uow.user_repository.update(user)

    client.portal.call(_run)


def _app_with(clock, **overrides):
    from main import create_app

    settings = load_settings(
        DEBUG=False,
        database={"url": "sqlite+aiosqlite:///:memory:"},
        redis={"url": None},
        **overrides,
    )
    return create_app(settings, clock=clock)


class _RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send_email(self, to, subject, body_html):
        self.sent.append((to, subject, body_html))
        if self.fail:
            raise ConnectionError("mail relay down")


def test_weak_password_signup_lists_every_violation(client):
    response = _signup(client, password="weakpass")
    assert response.status_code == 400
    body = response.json()
    errors = body["error"]["details"]["errors"]
    assert ERR_UPPERCASE in errors
    assert ERR_DIGIT in errors
    assert ERR_SPECIAL in errors
    assert body["error"]["request_id"] == response.headers["X-Request-ID"]


def test_signup_returns_tokens_and_user(client):
    response = _signup(client, email="  Ana@Example.com ")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["user"]["email"] == "ana@example.com"
    assert data["user"]["role"] == "user"
    assert data["tokens"]["token_type"] == "bearer"
    assert data["tokens"]["expires_in"] == 900
    assert "hashed_password" not in data["user"]


def test_duplicate_signup_conflicts(client):
    assert _signup(client).status_code == 200
    response = _signup(client, email="ANA@example.com")
    assert response.status_code == 409


def test_lockout_after_five_failures_and_recovery(client, clock):
    assert _signup(client).status_code == 200

    for _ in range(4):
        response = _signin(client, password="Wrong#Pass1")
        assert response.status_code == 401
        assert response.json()["message"] == "Authentication failed. Please check your credentials."
        clock.advance(seconds=5)

    fifth = _signin(client, password="Wrong#Pass1")
    assert fifth.status_code == 423
    assert int(fifth.headers["Retry-After"]) == 1800

    clock.advance(seconds=5)
    sixth = _signin(client)
    assert sixth.status_code == 423

    clock.advance(minutes=30)
    assert _signin(client).status_code == 200


def test_forwarded_for_from_untrusted_peer_is_ignored(client, clock):
    _signup(client)
    statuses = []
    for n in range(5):
        response = _signin(client, password="Wrong#Pass1", **{"X-Forwarded-For": f"203.0.113.{n}"})
        statuses.append(response.status_code)
        clock.advance(seconds=5)
    assert statuses == [401, 401, 401, 401, 423]

    # 换一个伪造地址也无法绕过锁定
    assert _signin(client, **{"X-Forwarded-For": "198.51.100.7"}).status_code == 423


def test_trusted_proxy_forwarded_for_scopes_lockout(clock):
    app = _app_with(clock, FORWARDED_ALLOW_IPS="*")
    with TestClient(app) as client:
        _signup(client)
        headers = {"X-Forwarded-For": "1.2.3.4"}
        for _ in range(5):
            last = _signin(client, password="Wrong#Pass1", **headers)
            clock.advance(seconds=5)
        assert last.status_code == 423
        assert _signin(client, **headers).status_code == 423

        # 其他客户端地址不受影响
        assert _signin(client, **{"X-Forwarded-For": "5.6.7.8"}).status_code == 200


def test_failed_signin_event_carries_user_id(client, app):
    user_id = _signup(client).json()["data"]["user"]["id"]
    assert _signin(client, password="Wrong#Pass1").status_code == 401

    events = client.portal.call(app.state.container.events.list_recent, 10, "login_failed")
    assert len(events) == 1
    assert events[0].actor.user_id == user_id
    assert events[0].metadata["failure"] == "bad_password"


def test_unknown_user_and_bad_password_look_the_same(client):
    assert _signup(client).status_code == 200
    unknown = _signin(client, email="ghost@example.com")
    wrong = _signin(client, password="Wrong#Pass1")
    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json()["message"] == wrong.json()["message"]


def test_signin_invalid_input_reports_all_errors(client):
    response = _signin(client, email="not-an-email", password="")
    assert response.status_code == 400
    assert response.json()["error"]["details"]["errors"] == ["Invalid email format", "Password is required"]


def test_signout_revokes_access(client):
    assert _signup(client).status_code == 200
    tokens = _signin(client).json()["data"]["tokens"]

    me = client.get(f"{API}/users/me", headers=_bearer(tokens["access_token"]))
    assert me.status_code == 200
    assert me.json()["data"]["email"] == "ana@example.com"

    out = client.post(
        f"{API}/auth/signout",
        json={"refresh_token": tokens["refresh_token"]},
        headers=_bearer(tokens["access_token"]),
    )
    assert out.status_code == 200

    after = client.get(f"{API}/users/me", headers=_bearer(tokens["access_token"]))
    assert after.status_code == 401
    refreshed = client.post(f"{API}/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert refreshed.status_code == 401


def test_missing_bearer_is_unauthorized(client):
    response = client.get(f"{API}/users/me")
    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_refresh_rotates_tokens(client):
    tokens = _signup(client).json()["data"]["tokens"]

    first = client.post(f"{API}/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert first.status_code == 200
    rotated = first.json()["data"]
    assert rotated["session_id"] == tokens["session_id"]
    assert rotated["refresh_token"] != tokens["refresh_token"]

    replay = client.post(f"{API}/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert replay.status_code == 401

    me = client.get(f"{API}/users/me", headers=_bearer(rotated["access_token"]))
    assert me.status_code == 200


def test_access_token_cannot_be_used_to_refresh(client):
    tokens = _signup(client).json()["data"]["tokens"]
    response = client.post(f"{API}/auth/refresh", json={"refresh_token": tokens["access_token"]})
    assert response.status_code == 401


def test_idle_session_expires(client, clock):
    tokens = _signup(client).json()["data"]["tokens"]
    clock.advance(minutes=10)
    assert client.get(f"{API}/users/me", headers=_bearer(tokens["access_token"])).status_code == 200

    refreshed = client.post(f"{API}/auth/refresh", json={"refresh_token": tokens["refresh_token"]}).json()["data"]
    clock.advance(minutes=31)
    response = client.post(f"{API}/auth/refresh", json={"refresh_token": refreshed["refresh_token"]})
    assert response.status_code == 401


def test_session_listing_and_revocation(client, clock):
    _signup(client)
    first = _signin(client).json()["data"]["tokens"]
    clock.advance(seconds=5)
    second = _signin(client).json()["data"]["tokens"]

    listed = client.get(f"{API}/security/sessions", headers=_bearer(second["access_token"]))
    assert listed.status_code == 200
    sessions = listed.json()["data"]
    assert len(sessions) == 3
    current = [s for s in sessions if s["current"]]
    assert [s["session_id"] for s in current] == [second["session_id"]]

    revoke = client.delete(
        f"{API}/security/sessions/{first['session_id']}", headers=_bearer(second["access_token"])
    )
    assert revoke.status_code == 200
    assert client.get(f"{API}/users/me", headers=_bearer(first["access_token"])).status_code == 401

    missing = client.delete(f"{API}/security/sessions/nope", headers=_bearer(second["access_token"]))
    assert missing.status_code == 404


def test_security_status_reflects_failures(client):
    _signup(client)
    _signin(client, password="Wrong#Pass1")
    response = client.get(f"{API}/security/status", params={"email": "ana@example.com"})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["locked"] is False
    assert data["failed_attempts"] == 1
    assert data["remaining_attempts"] == 4
    assert data["rate_limit_remaining"] == 9


def test_unlock_requires_admin(client, app, clock):
    _signup(client)
    _signup(client, email="ops@example.com")
    for _ in range(5):
        _signin(client, password="Wrong#Pass1")
        clock.advance(seconds=5)
    assert _signin(client).status_code == 423

    user_token = _signin(client, email="ops@example.com").json()["data"]["tokens"]["access_token"]
    denied = client.post(
        f"{API}/security/unlock", json={"email": "ana@example.com", "ip_address": "testclient"},
        headers=_bearer(user_token),
    )
    assert denied.status_code == 403

    _promote(client, app, "ops@example.com")
    unlocked = client.post(
        f"{API}/security/unlock", json={"email": "ana@example.com", "ip_address": "testclient"},
        headers=_bearer(user_token),
    )
    assert unlocked.status_code == 200
    assert unlocked.json()["data"]["message"] == "Account unlocked"
    assert _signin(client).status_code == 200

    events = client.get(f"{API}/security/events", params={"limit": 100}, headers=_bearer(user_token))
    assert events.status_code == 200
    types = {e["event_type"] for e in events.json()["data"]}
    assert {"account_locked", "account_unlocked", "access_denied", "login_failed"} <= types


def test_events_forbidden_for_regular_user(client):
    token = _signup(client).json()["data"]["tokens"]["access_token"]
    assert client.get(f"{API}/security/events", headers=_bearer(token)).status_code == 403


def test_general_rate_limit_returns_429_with_retry_after(client):
    for _ in range(100):
        assert client.get(f"{API}/security/status", params={"email": "x@example.com"}).status_code == 200

    response = client.get(f"{API}/security/status", params={"email": "x@example.com"})
    assert response.status_code == 429
    retry_after = int(response.headers["Retry-After"])
    assert 0 < retry_after <= 900
    assert response.json()["error"]["details"]["retry_after"] == retry_after
    assert response.headers["X-RateLimit-Remaining"] == "0"

    # 非 /api/ 路径不受通用限流影响
    assert client.get("/health").status_code == 200


def test_security_headers_present(client):
    response = client.get("/health")
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert "Referrer-Policy" in response.headers
    assert "default-src 'self'" in response.headers["Content-Security-Policy"]
    assert "max-age" in response.headers["Strict-Transport-Security"]


def test_suspicious_request_is_logged_not_blocked(client, app):
    response = client.get(f"{API}/security/status", params={"email": "a@b.co", "q": "1 UNION SELECT password"})
    assert response.status_code == 200

    events = client.portal.call(app.state.container.events.list_recent, 10, "suspicious_request")
    assert len(events) == 1
    assert events[0].severity.value == "medium"
    assert "sql_injection" in events[0].metadata["patterns"]


def test_health_reports_components(client):
    data = client.get("/health").json()["data"]
    assert data["status"] == "healthy"
    assert data["checks"] == {"database": True, "counter_store": True}


def test_store_outage_fails_closed(app):
    class _DownStore:
        async def incr_window(self, key, window_ms):
            from domain.common.exceptions import StoreUnavailableError

            raise StoreUnavailableError("redis", "incr_window")

    with TestClient(app, raise_server_exceptions=False) as client:
        app.state.container.rate_limiter._store = _DownStore()
        response = _signin(client)
        events = client.portal.call(app.state.container.events.list_recent, 10, "internal_error")
    assert response.status_code == 500
    assert response.json()["message"] == "An internal error occurred. Please try again later."

    assert len(events) == 1
    assert events[0].severity.value == "high"
    assert events[0].metadata["error_type"] == "StoreUnavailableError"
    assert events[0].metadata["operation"] == "incr_window"
    assert events[0].metadata["request_id"] == response.json()["error"]["request_id"]


def _attempt_reasons(client, app):
    container = app.state.container

    async def _run():
        async with container.uow_factory(readonly=True) as uow:
            result = await uow.session.execute(
                select(AuthAttemptModel.failure_reason).order_by(AuthAttemptModel.id)
            )
            return list(result.scalars())

    return client.portal.call(_run)


def test_fraud_block_rejects_signin_and_records_attempt(clock):
    app = _app_with(clock, fraud={"suspicious_ips": ["testclient"]})
    with TestClient(app) as client:
        _signup(client)
        client.portal.call(app.state.container.fraud.flag_ip, "testclient")
        clock.advance(minutes=2)

        response = _signin(client, **{"User-Agent": "curl/8.4.0"})
        assert response.status_code == 403
        assert "tokens" not in (response.json().get("data") or {})

        events = client.portal.call(app.state.container.events.list_recent, 10, "fraud_detected")
        assert len(events) == 1
        assert events[0].metadata["risk_score"] == 85
        assert "bot_detected" in events[0].metadata["flags"]
        assert _attempt_reasons(client, app)[-1] == "fraud_blocked"
        assert client.portal.call(app.state.container.events.list_recent, 10, "login_success") == []


def test_risky_signin_is_logged_and_allowed(clock):
    app = _app_with(clock, fraud={"suspicious_ips": ["testclient"]})
    with TestClient(app) as client:
        _signup(client)
        client.portal.call(app.state.container.fraud.flag_ip, "testclient")
        clock.advance(minutes=2)

        response = _signin(client)
        assert response.status_code == 200
        assert response.json()["data"]["tokens"]["access_token"]

        events = client.portal.call(app.state.container.events.list_recent, 10, "suspicious_login")
        assert len(events) == 1
        assert events[0].metadata["risk_score"] == 65
        assert events[0].severity.value == "medium"


def test_lockout_sends_notice_email(client, app, clock):
    notifier = _RecordingNotifier()
    app.state.container.auth._notifier = notifier
    _signup(client)
    for _ in range(5):
        last = _signin(client, password="Wrong#Pass1")
        clock.advance(seconds=5)
    assert last.status_code == 423

    client.portal.call(app.state.container.auth.drain)
    assert len(notifier.sent) == 1
    to, subject, body = notifier.sent[0]
    assert to == "ana@example.com"
    assert subject == "Your account has been temporarily locked"
    assert "testclient" in body


def test_failing_notifier_does_not_block_lockout_response(client, app, clock):
    notifier = _RecordingNotifier(fail=True)
    app.state.container.auth._notifier = notifier
    _signup(client)
    for _ in range(5):
        last = _signin(client, password="Wrong#Pass1")
        clock.advance(seconds=5)
    assert last.status_code == 423
    assert int(last.headers["Retry-After"]) > 0

    client.portal.call(app.state.container.auth.drain)
    assert len(notifier.sent) == 1
    assert _signin(client).status_code == 423


def test_security_status_while_locked_reports_trigger_count(client, clock):
    _signup(client)
    for _ in range(5):
        _signin(client, password="Wrong#Pass1")
        clock.advance(seconds=5)

    data = client.get(f"{API}/security/status", params={"email": "ana@example.com"}).json()["data"]
    assert data["locked"] is True
    assert data["failed_attempts"] == 5
    assert data["remaining_attempts"] == 0
    assert 0 < data["retry_after"] <= 1800
