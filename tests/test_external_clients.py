import hashlib
import json

import httpx
import pytest

from application.services.password_leak import PasswordLeakChecker
from core.config import BreachCheckSettings, NotificationSettings
from domain.common.result import Degraded, Ok
from infrastructure.external.api_clients import APIError, EmailNotificationClient, PwnedPasswordsClient


LEAKED = "Password123!"


def _range_handler(request: httpx.Request) -> httpx.Response:
    digest = hashlib.sha1(LEAKED.encode()).hexdigest().upper()
    prefix, suffix = digest[:5], digest[5:]
    if request.url.path.endswith(prefix):
        body = f"0000000000000000000000000000000000A:0\r\n{suffix}:4211\r\n"
    else:
        # padding 条目计数为 0，不算命中
        other = hashlib.sha1(b"Voyage#2024!").hexdigest().upper()[5:]
        body = f"{other}:0\r\n"
    return httpx.Response(200, text=body, headers={"content-type": "text/plain"})


@pytest.fixture
def breach_client():
    return PwnedPasswordsClient(BreachCheckSettings(enabled=True), transport=httpx.MockTransport(_range_handler))


@pytest.mark.asyncio
async def test_breach_client_detects_leaked_password(breach_client):
    assert await breach_client.is_password_leaked(LEAKED)
    assert not await breach_client.is_password_leaked("Voyage#2024!")
    await breach_client.close()


@pytest.mark.asyncio
async def test_leak_checker_degrades_when_lookup_fails():
    def _down(request):
        return httpx.Response(503, json={"error": "unavailable"})

    client = PwnedPasswordsClient(
        BreachCheckSettings(enabled=True, timeout_seconds=0.5), transport=httpx.MockTransport(_down)
    )
    client.retry_delay = 0.01
    result = await PasswordLeakChecker(client).check(LEAKED)
    assert isinstance(result, Degraded)
    assert result.value is False
    assert result.failures == ("breach_lookup",)
    await client.close()


@pytest.mark.asyncio
async def test_leak_checker_disabled_skips_lookup():
    assert await PasswordLeakChecker(None).check(LEAKED) == Ok(False)


@pytest.mark.asyncio
async def test_email_client_posts_to_gateway():
    captured = []

    def _handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(202, json={"id": "msg_1"})

    client = EmailNotificationClient(
        NotificationSettings(enabled=True, base_url="http://mail.test/v1", api_key="k-123"),
        transport=httpx.MockTransport(_handler),
    )
    await client.send_email("ana@example.com", "Locked", "<p>hi</p>")
    await client.close()

    request = captured[0]
    assert str(request.url) == "http://mail.test/v1/emails"
    assert request.headers["Authorization"] == "Bearer k-123"
    payload = json.loads(request.content)
    assert payload["to"] == ["ana@example.com"]
    assert payload["subject"] == "Locked"


@pytest.mark.asyncio
async def test_email_client_raises_api_error_on_rejection():
    client = EmailNotificationClient(
        NotificationSettings(enabled=True, base_url="http://mail.test"),
        transport=httpx.MockTransport(lambda request: httpx.Response(400, json={"message": "bad recipient"})),
    )
    with pytest.raises(APIError) as exc_info:
        await client.send_email("nobody", "x", "y")
    assert exc_info.value.status_code == 400
    assert exc_info.value.message == "bad recipient"
    await client.close()
