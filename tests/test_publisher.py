"""Tests for the webhook signer and the httpx-based publisher."""

import httpx
import pytest

from signed_webhooks.config import Settings
from signed_webhooks.webhook.clock import FixedClock
from signed_webhooks.webhook.header import HeaderNames
from signed_webhooks.webhook.keys import StaticKeyRetriever
from signed_webhooks.webhook.publisher import (
    InvalidArgumentError,
    SignedWebhook,
    WebhookPublisher,
    WebhookSigner,
)
from signed_webhooks.webhook.validator import ValidationPolicy, WebhookHeader, WebhookValidator

from tests.helpers import KEY, NOW, b64url, reference_tag

ENDPOINT = "https://receiver.test/webhooks/receive"
PAYLOAD = b"test payload"


@pytest.fixture
def signer():
    return WebhookSigner(StaticKeyRetriever(KEY))


class CaptureTransport:
    """Records requests and answers with a fixed status."""

    def __init__(self, status_code: int = 204) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = status_code

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code)


class TestSigner:
    def test_sign_produces_split_headers(self, signer):
        signed = signer.sign(ENDPOINT, "evt_compat_1", PAYLOAD, NOW)

        expected = b64url(reference_tag(KEY, "evt_compat_1", NOW, PAYLOAD))
        assert isinstance(signed, SignedWebhook)
        assert signed.signature == expected
        assert signed.headers == {
            "webhook-id": "evt_compat_1",
            "webhook-signature": f"v1={expected}",
            "webhook-timestamp": str(NOW),
        }
        assert signed.body == PAYLOAD
        assert signed.url == ENDPOINT

    def test_signature_is_unpadded_base64url(self, signer):
        signed = signer.sign(ENDPOINT, "evt", PAYLOAD, NOW)

        assert "=" not in signed.signature
        assert len(signed.signature) == 43

    def test_combined_variant(self):
        signer = WebhookSigner(StaticKeyRetriever(KEY), variant="combined")

        signed = signer.sign(ENDPOINT, "evt", PAYLOAD, NOW)

        assert signed.headers["webhook-signature"] == f"t={NOW},v1={signed.signature}"
        assert signed.headers["webhook-timestamp"] == str(NOW)

    def test_custom_header_names(self):
        names = HeaderNames(id="x-msg-id", signature="x-msg-signature", timestamp="x-msg-ts")
        signer = WebhookSigner(StaticKeyRetriever(KEY), header_names=names)

        signed = signer.sign(ENDPOINT, "evt", PAYLOAD, NOW)

        assert set(signed.headers) == {"x-msg-id", "x-msg-signature", "x-msg-ts"}

    @pytest.mark.parametrize("message_id", ["", "   ", "m" * 257, "bad\ud800"])
    def test_invalid_message_id(self, signer, message_id):
        with pytest.raises(InvalidArgumentError):
            signer.sign(ENDPOINT, message_id, PAYLOAD, NOW)

    def test_message_id_at_the_bound(self, signer):
        signed = signer.sign(ENDPOINT, "m" * 256, PAYLOAD, NOW)

        assert signed.headers["webhook-id"] == "m" * 256

    @pytest.mark.parametrize("endpoint", ["", "not a url", "/relative/path", "ftp://host/x"])
    def test_invalid_endpoint(self, signer, endpoint):
        with pytest.raises(InvalidArgumentError):
            signer.sign(endpoint, "evt", PAYLOAD, NOW)

    def test_empty_key(self):
        signer = WebhookSigner(StaticKeyRetriever(b""))

        with pytest.raises(InvalidArgumentError):
            signer.sign(ENDPOINT, "evt", PAYLOAD, NOW)

    def test_invalid_argument_is_a_value_error(self):
        assert issubclass(InvalidArgumentError, ValueError)

    def test_key_is_read_on_every_call(self):
        calls = []

        class CountingRetriever:
            def get_key(self):
                calls.append(1)
                return KEY

        signer = WebhookSigner(CountingRetriever())
        signer.sign(ENDPOINT, "a", PAYLOAD, NOW)
        signer.sign(ENDPOINT, "b", PAYLOAD, NOW)

        assert len(calls) == 2


class TestPublisher:
    def test_publish_posts_signed_request(self, signer):
        transport = CaptureTransport()
        publisher = WebhookPublisher(
            signer,
            client=httpx.Client(transport=httpx.MockTransport(transport)),
            clock=FixedClock(NOW),
        )

        response = publisher.publish(ENDPOINT, "evt_compat_1", PAYLOAD)

        assert response.status_code == 204
        (request,) = transport.requests
        assert request.method == "POST"
        assert str(request.url) == ENDPOINT
        assert request.content == PAYLOAD
        assert request.headers["content-type"] == "application/json"
        assert request.headers["webhook-id"] == "evt_compat_1"
        assert request.headers["webhook-timestamp"] == str(NOW)
        expected = b64url(reference_tag(KEY, "evt_compat_1", NOW, PAYLOAD))
        assert request.headers["webhook-signature"] == f"v1={expected}"

    def test_non_ascii_id_is_sent_as_utf8(self, signer):
        transport = CaptureTransport()
        publisher = WebhookPublisher(
            signer,
            client=httpx.Client(transport=httpx.MockTransport(transport)),
            clock=FixedClock(NOW),
        )

        response = publisher.publish(ENDPOINT, "évt-ü", PAYLOAD)

        assert response.status_code == 204
        raw = dict(transport.requests[0].headers.raw)
        assert raw[b"webhook-id"] == "évt-ü".encode("utf-8")
        expected = b64url(reference_tag(KEY, "évt-ü", NOW, PAYLOAD))
        assert raw[b"webhook-signature"] == f"v1={expected}".encode()

    def test_custom_content_type(self, signer):
        transport = CaptureTransport()
        publisher = WebhookPublisher(
            signer,
            client=httpx.Client(transport=httpx.MockTransport(transport)),
            clock=FixedClock(NOW),
        )

        publisher.publish(ENDPOINT, "evt", b"a=1", content_type="application/x-www-form-urlencoded")

        assert transport.requests[0].headers["content-type"] == "application/x-www-form-urlencoded"

    def test_error_status_is_returned_not_raised(self, signer):
        publisher = WebhookPublisher(
            signer,
            client=httpx.Client(transport=httpx.MockTransport(CaptureTransport(status_code=500))),
        )

        response = publisher.publish(ENDPOINT, "evt", PAYLOAD)

        assert response.status_code == 500

    def test_transport_errors_propagate(self, signer):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        publisher = WebhookPublisher(signer, client=httpx.Client(transport=httpx.MockTransport(refuse)))

        with pytest.raises(httpx.TransportError):
            publisher.publish(ENDPOINT, "evt", PAYLOAD)

    def test_invalid_arguments_raise_before_any_request(self, signer):
        transport = CaptureTransport()
        publisher = WebhookPublisher(signer, client=httpx.Client(transport=httpx.MockTransport(transport)))

        with pytest.raises(InvalidArgumentError):
            publisher.publish(ENDPOINT, "", PAYLOAD)

        assert transport.requests == []

    def test_timestamp_comes_from_the_clock(self, signer):
        transport = CaptureTransport()
        clock = FixedClock(NOW + 0.9)
        publisher = WebhookPublisher(
            signer,
            client=httpx.Client(transport=httpx.MockTransport(transport)),
            clock=clock,
        )

        publisher.publish(ENDPOINT, "evt", PAYLOAD)
        clock.advance(60)
        publisher.publish(ENDPOINT, "evt", PAYLOAD)

        assert [r.headers["webhook-timestamp"] for r in transport.requests] == [str(NOW), str(NOW + 60)]

    def test_from_settings_requires_a_key(self):
        with pytest.raises(RuntimeError):
            WebhookPublisher.from_settings(Settings(webhook_key=""))

    def test_from_settings_uses_configured_headers_and_key(self):
        settings = Settings(
            webhook_key=KEY.decode(),
            webhook_id_header="x-id",
            signature_header_variant="combined",
        )
        transport = CaptureTransport()

        with WebhookPublisher.from_settings(
            settings,
            client=httpx.Client(transport=httpx.MockTransport(transport)),
            clock=FixedClock(NOW),
        ) as publisher:
            publisher.publish(ENDPOINT, "evt", PAYLOAD)

        request = transport.requests[0]
        expected = b64url(reference_tag(KEY, "evt", NOW, PAYLOAD))
        assert request.headers["x-id"] == "evt"
        assert request.headers["webhook-signature"] == f"t={NOW},v1={expected}"


class TestPublisherValidatorCompatibility:
    @pytest.mark.asyncio
    async def test_published_request_is_accepted(self, signer, validator):
        transport = CaptureTransport()
        publisher = WebhookPublisher(
            signer,
            client=httpx.Client(transport=httpx.MockTransport(transport)),
            clock=FixedClock(NOW),
        )
        publisher.publish(ENDPOINT, "evt_roundtrip", PAYLOAD)
        request = transport.requests[0]

        result = await validator.validate(
            request.headers,
            request.content,
            content_length=int(request.headers["content-length"]),
        )

        assert result.accepted
        assert result.header == WebhookHeader(id="evt_roundtrip", timestamp=NOW)
        assert result.body == PAYLOAD

    @pytest.mark.asyncio
    async def test_combined_variant_round_trip(self, clock, pool):
        signer = WebhookSigner(StaticKeyRetriever(KEY), variant="combined")
        validator = WebhookValidator(
            StaticKeyRetriever(KEY),
            policy=ValidationPolicy(variant="combined"),
            clock=clock,
            pool=pool,
        )
        signed = signer.sign(ENDPOINT, "evt", PAYLOAD, NOW)
        headers = {k: v for k, v in signed.headers.items() if k != "webhook-timestamp"}

        result = await validator.validate(headers, signed.body)

        assert result.accepted

    @pytest.mark.asyncio
    async def test_publisher_clock_skew_beyond_tolerance_is_rejected(self, signer, validator):
        signed = signer.sign(ENDPOINT, "evt", PAYLOAD, NOW - 301)

        result = await validator.validate(signed.headers, signed.body)

        assert not result.accepted
