"""
Tests for the Twilio SMS client.

Covers:
- E.164 normalisation
- Request shape (auth, form fields) and provider id
- Error mapping: invalid number, rejected 4xx, rate limit, 5xx, timeout, transport
- Circuit breaker opening on repeated provider failures
- Voice call TwiML
"""

from urllib.parse import parse_qs

import httpx
import pytest

from carewatch.channels.base import FailureReason
from carewatch.channels.sms import TwilioConfig, TwilioSmsSender, normalize_phone
from carewatch.services.resilience import CircuitBreaker

CONFIG = TwilioConfig(account_sid="AC123", auth_token="token", from_number="+15005550006")


def _make_sender(handler, **kwargs) -> TwilioSmsSender:
    return TwilioSmsSender(CONFIG, transport=httpx.MockTransport(handler), **kwargs)


def _form(request: httpx.Request) -> dict:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


class TestNormalizePhone:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("+1 (415) 555-0100", "+14155550100"),
            ("9876543210", "+919876543210"),
            ("098765 43210", "+919876543210"),
            ("+91-98765-43210", "+919876543210"),
        ],
    )
    def test_valid(self, raw, expected):
        assert normalize_phone(raw) == expected

    def test_custom_country_code(self):
        assert normalize_phone("4155550100", "+1") == "+14155550100"

    @pytest.mark.parametrize("raw", ["", "123", "+12", "abc"])
    def test_undialable(self, raw):
        assert normalize_phone(raw) is None


class TestSendSms:
    @pytest.mark.asyncio
    async def test_success(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(201, json={"sid": "SM123", "status": "queued"})

        sender = _make_sender(handler)
        result = await sender.send_sms("9876543210", "Fall suspected")
        await sender.close()

        assert result.success
        assert result.message_id == "SM123"
        assert result.detail == "queued"
        request = seen[0]
        assert request.url.path == "/2010-04-01/Accounts/AC123/Messages.json"
        assert request.headers["authorization"].startswith("Basic ")
        assert _form(request) == {
            "From": "+15005550006",
            "To": "+919876543210",
            "Body": "Fall suspected",
        }

    @pytest.mark.asyncio
    async def test_invalid_number_rejected_locally(self):
        sender = _make_sender(lambda r: httpx.Response(500))
        result = await sender.send_sms("12", "hi")
        assert result.failure == FailureReason.INVALID_RECIPIENT

    @pytest.mark.asyncio
    async def test_missing_number(self):
        result = await _make_sender(lambda r: httpx.Response(500)).send_sms("", "hi")
        assert result.failure == FailureReason.INVALID_RECIPIENT
        assert result.detail == "Contact has no phone number"

    @pytest.mark.asyncio
    async def test_twilio_invalid_number_code(self):
        sender = _make_sender(
            lambda r: httpx.Response(400, json={"code": 21211, "message": "Invalid 'To' Phone Number"})
        )
        result = await sender.send_sms("+14155550100", "hi")
        assert result.failure == FailureReason.INVALID_RECIPIENT
        assert result.detail == "Twilio error 21211: Invalid 'To' Phone Number"

    @pytest.mark.asyncio
    async def test_other_client_error(self):
        sender = _make_sender(
            lambda r: httpx.Response(401, json={"code": 20003, "message": "Authenticate"})
        )
        result = await sender.send_sms("+14155550100", "hi")
        assert result.failure == FailureReason.REJECTED
        assert "20003" in result.detail

    @pytest.mark.asyncio
    async def test_rate_limit_stays_retryable(self):
        sender = _make_sender(
            lambda r: httpx.Response(429, json={"code": 20429, "message": "Too Many Requests"})
        )
        result = await sender.send_sms("+14155550100", "hi")
        assert result.failure == FailureReason.PROVIDER_ERROR

    @pytest.mark.asyncio
    async def test_server_error(self):
        result = await _make_sender(lambda r: httpx.Response(503, text="down")).send_sms(
            "+14155550100", "hi"
        )
        assert result.failure == FailureReason.PROVIDER_ERROR
        assert "503" in result.detail

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        result = await _make_sender(handler).send_sms("+14155550100", "hi")
        assert result.failure == FailureReason.TIMEOUT

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        result = await _make_sender(handler).send_sms("+14155550100", "hi")
        assert result.failure == FailureReason.TRANSPORT_ERROR

    @pytest.mark.asyncio
    async def test_circuit_opens(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        breaker = CircuitBreaker("twilio_test", failure_threshold=2, recovery_timeout=60)
        sender = _make_sender(handler, breaker=breaker)
        for _ in range(2):
            await sender.send_sms("+14155550100", "hi")
        result = await sender.send_sms("+14155550100", "hi")

        assert result.failure == FailureReason.CIRCUIT_OPEN
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_not_configured(self):
        result = await TwilioSmsSender(TwilioConfig()).send_sms("+14155550100", "hi")
        assert result.failure == FailureReason.NOT_CONFIGURED

    @pytest.mark.asyncio
    async def test_dry_run(self):
        result = await TwilioSmsSender(TwilioConfig(), dry_run=True).send_sms("+14155550100", "hi")
        assert result.success
        assert result.message_id.startswith("dry-run-")


class TestPlaceCall:
    @pytest.mark.asyncio
    async def test_twiml_reads_message_twice(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(201, json={"sid": "CA123", "status": "queued"})

        result = await _make_sender(handler).place_call("+14155550100", "Fall & no response")
        assert result.message_id == "CA123"
        assert seen[0].url.path.endswith("/Calls.json")
        twiml = _form(seen[0])["Twiml"]
        assert twiml.count('<Say voice="alice">Fall &amp; no response</Say>') == 2
