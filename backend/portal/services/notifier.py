from __future__ import annotations
import httpx
import structlog

from portal.errors import NotifyError

log = structlog.get_logger()


class Notifier:
    """Calls the evaluation-email function. Every call sends one email."""

    def __init__(
        self,
        url: str,
        api_key: str = "",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def send(self, *, to_email: str, full_name: str, status: str, feedback: str) -> None:
        payload = {"toEmail": to_email, "fullName": full_name, "status": status, "feedback": feedback}
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise NotifyError(f"email function unreachable: {e}", cause=e) from e
        if resp.is_error:
            raise NotifyError(f"email function returned {resp.status_code}: {resp.text[:200]}")
        log.info("notification_sent", to=to_email, status=status)
