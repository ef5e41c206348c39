from __future__ import annotations
import json
import httpx
import pytest

from portal.errors import NotifyError
from portal.services.notifier import Notifier

URL = "https://fn.example.test/functions/v1/send-eval-email"


@pytest.mark.asyncio
async def test_posts_decision_payload_with_bearer_key():
    seen = []

    def handler(request: httpx.Request):
        seen.append(request)
        return httpx.Response(200, json={"success": True})

    notifier = Notifier(URL, api_key="anon-key", transport=httpx.MockTransport(handler))
    await notifier.send(to_email="a@example.com", full_name="Ada", status="accepted", feedback="Well done")

    assert len(seen) == 1
    req = seen[0]
    assert req.method == "POST" and str(req.url) == URL
    assert req.headers["authorization"] == "Bearer anon-key"
    assert json.loads(req.content) == {
        "toEmail": "a@example.com", "fullName": "Ada", "status": "accepted", "feedback": "Well done",
    }


@pytest.mark.asyncio
async def test_error_status_raises_notify_error():
    notifier = Notifier(URL, transport=httpx.MockTransport(lambda r: httpx.Response(500, text="smtp down")))
    with pytest.raises(NotifyError) as err:
        await notifier.send(to_email="a@example.com", full_name="Ada", status="rejected", feedback="")
    assert "500" in str(err.value)


@pytest.mark.asyncio
async def test_transport_failure_raises_notify_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    notifier = Notifier(URL, transport=httpx.MockTransport(handler))
    with pytest.raises(NotifyError) as err:
        await notifier.send(to_email="a@example.com", full_name="Ada", status="rejected", feedback="")
    assert isinstance(err.value.cause, httpx.ConnectError)


@pytest.mark.asyncio
async def test_no_key_sends_no_authorization_header():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(204)

    await Notifier(URL, transport=httpx.MockTransport(handler)).send(
        to_email="a@example.com", full_name="Ada", status="accepted", feedback="ok"
    )
    assert "authorization" not in seen[0].headers
