import json

import httpx
import pytest
from structlog.testing import capture_logs

from queue_sentinel.config import Settings
from queue_sentinel.models.domain.classification_domain import StepOutcome
from queue_sentinel.services.alerting.alert_service import format_error
from queue_sentinel.services.geolocation_service import MAX_ATTEMPTS, IpInfoGeoResolver
from queue_sentinel.services.notifier import TelegramNotifier, escape_markdown
from queue_sentinel.services.remediation_service import compose_report
from queue_sentinel.services.zimbra.admin_client import ZimbraAdminError


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def service_settings():
    return Settings(
        IPINFO_TOKEN="ipinfo-token",
        TELEGRAM_BOT_TOKEN="123:abc",
        TELEGRAM_CHAT_ID="-1001",
        MAIL_SERVER_HOSTNAME="mail.inst.edu",
    )


# =================================================================
# Geolocation
# =================================================================


@pytest.mark.asyncio
async def test_resolve_returns_country_and_hostname(service_settings):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"ip": "203.0.113.9", "country": "US", "hostname": "host.example.net"})

    resolver = IpInfoGeoResolver(service_settings, client=_client(handler))

    geo = await resolver.resolve("203.0.113.9")

    assert (geo.country, geo.hostname) == ("US", "host.example.net")
    assert requests[0].url.path == "/203.0.113.9"
    assert requests[0].url.params["token"] == "ipinfo-token"


@pytest.mark.asyncio
async def test_resolve_without_hostname(service_settings):
    resolver = IpInfoGeoResolver(
        service_settings, client=_client(lambda request: httpx.Response(200, json={"country": "BR"}))
    )

    geo = await resolver.resolve("198.51.100.7")

    assert geo.country == "BR"
    assert geo.hostname == ""


@pytest.mark.asyncio
async def test_resolve_retries_then_gives_up_and_alerts(service_settings, alert_service, fake_notifier):
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise httpx.ConnectTimeout("timed out", request=request)

    resolver = IpInfoGeoResolver(
        service_settings, client=_client(handler), alerts=alert_service, backoff_seconds=0
    )

    assert await resolver.resolve("203.0.113.9") is None
    assert len(attempts) == MAX_ATTEMPTS
    assert len(fake_notifier.messages) == 1
    report = fake_notifier.messages[0]
    assert "Code: ETIMEDOUT" in report
    assert "Address: ipinfo.io" in report

    # Same failure again inside the window stays quiet
    assert await resolver.resolve("203.0.113.9") is None
    assert len(fake_notifier.messages) == 1


@pytest.mark.asyncio
async def test_resolve_recovers_on_retry(service_settings):
    responses = iter([httpx.Response(429), httpx.Response(200, json={"country": "DE"})])

    resolver = IpInfoGeoResolver(
        service_settings, client=_client(lambda request: next(responses)), backoff_seconds=0
    )

    geo = await resolver.resolve("203.0.113.9")

    assert geo.country == "DE"


# =================================================================
# Telegram
# =================================================================


@pytest.mark.asyncio
async def test_send_posts_markdown_message(service_settings):
    sent = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(request)
        return httpx.Response(200, json={"ok": True})

    notifier = TelegramNotifier(service_settings, client=_client(handler))

    assert await notifier.send("*Address:* a@inst.edu", markdown=True) is True

    request = sent[0]
    assert request.url.path == "/bot123:abc/sendMessage"
    payload = json.loads(request.content)
    assert payload["chat_id"] == "-1001"
    assert payload["parse_mode"] == "Markdown"
    assert payload["text"] == "*Mail Queue Monitor* mail.inst.edu\n\n*Address:* a@inst.edu"


@pytest.mark.asyncio
async def test_send_failure_is_not_raised(service_settings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("All connection attempts failed", request=request)

    notifier = TelegramNotifier(service_settings, client=_client(handler))

    assert await notifier.send("hello") is False


@pytest.mark.asyncio
async def test_rejected_message_returns_false(service_settings):
    notifier = TelegramNotifier(
        service_settings,
        client=_client(lambda request: httpx.Response(400, json={"ok": False, "description": "bad markdown"})),
    )

    assert await notifier.send("*unbalanced") is False


@pytest.mark.asyncio
async def test_unconfigured_notifier_only_logs():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200)

    notifier = TelegramNotifier(
        Settings(TELEGRAM_BOT_TOKEN=None, TELEGRAM_CHAT_ID=None), client=_client(handler)
    )

    assert await notifier.send("hello") is False
    assert calls == []


def _unescaped(text: str, char: str) -> int:
    """Occurrences of ``char`` that Telegram would read as Markdown syntax."""
    count = 0
    escaped = False
    for current in text:
        if escaped:
            escaped = False
        elif current == "\\":
            escaped = True
        elif current == char:
            count += 1
    return count


def _assert_parseable(text: str) -> None:
    for char in ("_", "*", "`"):
        assert _unescaped(text, char) % 2 == 0, (char, text)
    assert _unescaped(text, "[") == 0, text


def test_escape_markdown():
    assert escape_markdown("account.AUTH_FAILED") == "account.AUTH\\_FAILED"
    assert escape_markdown("a*b`c[d]\\") == "a\\*b\\`c\\[d]\\\\"


@pytest.mark.asyncio
async def test_underscored_values_reach_telegram_escaped(service_settings):
    sent = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(json.loads(request.content)["text"])
        return httpx.Response(200, json={"ok": True})

    notifier = TelegramNotifier(service_settings, client=_client(handler))

    auth_report = format_error(ZimbraAdminError("authentication failed", fault_code="account.AUTH_FAILED"))
    notice = "No such account for email: john_doe@inst.edu"
    remediation_report = compose_report(
        "john_doe@inst.edu",
        50,
        "203.0.113.9",
        "US",
        StepOutcome.succeeded("Password reset", secret="ab_cd*1[2`"),
        StepOutcome.succeeded("Account status changed to locked"),
        StepOutcome.failed("Failed to add the note: HTTP_500"),
    )

    assert await notifier.send(auth_report) is True
    assert await notifier.send(notice) is True
    assert await notifier.send(remediation_report, markdown=True) is True

    for text in sent:
        _assert_parseable(text)
    assert "Code: account.AUTH\\_FAILED" in sent[0]
    assert sent[1].endswith("john\\_doe@inst.edu")
    assert "*Address:* john\\_doe@inst.edu" in sent[2]
    assert "*New password:* ab\\_cd\\*1\\[2\\`" in sent[2]
    assert "*Note:* Failed to add the note: HTTP\\_500" in sent[2]


@pytest.mark.asyncio
async def test_rejected_message_is_logged_with_its_text(service_settings):
    notifier = TelegramNotifier(
        service_settings,
        client=_client(lambda request: httpx.Response(400, json={"ok": False})),
    )

    with capture_logs() as logs:
        assert await notifier.send("*New password:* S3cret", markdown=True) is False

    rejected = [entry for entry in logs if entry["event"] == "Telegram rejected message"]
    assert rejected[0]["log_level"] == "error"
    assert rejected[0]["undelivered_message"] == "*New password:* S3cret"
