from __future__ import annotations
import asyncio
import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import create_async_engine

from conftest import add_submission, add_user
from portal.clients import build_clients
from portal.config import Settings
from portal.main import create_app
from portal.routes.submissions import _LiveView


class FakeSocket:
    """Just enough of a websocket for a live view: scripted inbox, recorded outbox."""

    def __init__(self):
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict] = []
        self.closed_with: int | None = None
        self.reject_snapshots = False

    async def receive_json(self):
        msg = await self.inbox.get()
        if msg is WebSocketDisconnect:
            raise WebSocketDisconnect(1000)
        return msg

    async def send_json(self, message):
        if self.reject_snapshots and message["type"] == "snapshot":
            raise ValueError("unserializable row")
        self.sent.append(message)

    async def close(self, code=1000):
        self.closed_with = code
        # the peer answers a close with a disconnect
        self.inbox.put_nowait(WebSocketDisconnect)

    def of_type(self, kind):
        return [m for m in self.sent if m["type"] == kind]


async def _until(predicate, timeout=2.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)
    await asyncio.wait_for(poll(), timeout)


@pytest.mark.asyncio
async def test_live_view_snapshot_feedback_and_decision(clients):
    dev = await add_user(clients, role="developer")
    s = await add_submission(clients, dev, full_name="Ada Lovelace", email="ada@example.com")
    ws = FakeSocket()
    view = _LiveView(ws, clients)
    run = asyncio.create_task(view.run())

    await _until(lambda: ws.of_type("snapshot"))
    first = ws.of_type("snapshot")[0]["submissions"]
    assert [row["id"] for row in first] == [s.id]

    await ws.inbox.put({"type": "feedback", "id": s.id, "text": "Lovely engine"})
    await ws.inbox.put({"type": "decide", "id": s.id, "decision": "accepted"})
    await _until(lambda: ws.of_type("outcome"))

    outcome = ws.of_type("outcome")[0]
    assert outcome["status"] == "accepted" and outcome["persisted"] and outcome["notified"]
    assert clients.notifier.sent[0]["feedback"] == "Lovely engine"
    # the committed update comes back through the feed as a fresh snapshot
    await _until(lambda: ws.of_type("snapshot")[-1]["submissions"][0]["status"] == "accepted")

    await ws.inbox.put(WebSocketDisconnect)
    await asyncio.wait_for(run, 2)
    assert clients.feed.subscriber_count == 0


@pytest.mark.asyncio
async def test_live_view_sees_new_submissions(clients):
    dev = await add_user(clients, role="developer")
    await add_submission(clients, dev, minutes=0, full_name="A")
    ws = FakeSocket()
    run = asyncio.create_task(_LiveView(ws, clients).run())
    await _until(lambda: ws.of_type("snapshot"))

    await add_submission(clients, dev, minutes=1, full_name="B")
    await _until(lambda: len(ws.of_type("snapshot")) == 2)
    assert [r["full_name"] for r in ws.of_type("snapshot")[-1]["submissions"]] == ["B", "A"]

    await ws.inbox.put(WebSocketDisconnect)
    await asyncio.wait_for(run, 2)


@pytest.mark.asyncio
async def test_live_view_reports_notify_failure_as_warning(clients):
    dev = await add_user(clients, role="developer")
    s = await add_submission(clients, dev)
    clients.notifier.fail = True
    ws = FakeSocket()
    run = asyncio.create_task(_LiveView(ws, clients).run())
    await _until(lambda: ws.of_type("snapshot"))

    await ws.inbox.put({"type": "decide", "id": s.id, "decision": "rejected"})
    await _until(lambda: ws.of_type("outcome"))
    outcome = ws.of_type("outcome")[0]
    assert outcome["persisted"] and not outcome["notified"]
    assert outcome["warning"]

    clients.notifier.fail = False
    await ws.inbox.put({"type": "renotify", "id": s.id})
    await _until(lambda: len(ws.of_type("outcome")) == 2)
    assert ws.of_type("outcome")[1]["notified"]
    assert len(clients.notifier.sent) == 1

    await ws.inbox.put(WebSocketDisconnect)
    await asyncio.wait_for(run, 2)


@pytest.mark.asyncio
async def test_live_view_rejects_bad_messages(clients):
    ws = FakeSocket()
    run = asyncio.create_task(_LiveView(ws, clients).run())
    await _until(lambda: ws.of_type("snapshot"))

    await ws.inbox.put({"type": "decide"})
    await ws.inbox.put({"type": "decide", "id": 1, "decision": "maybe"})
    await ws.inbox.put({"type": "decide", "id": 999, "decision": "accepted"})
    await ws.inbox.put({"type": "shout", "id": 1})
    await _until(lambda: len(ws.of_type("error")) == 4)
    codes = [m["code"] for m in ws.of_type("error")]
    assert codes == ["bad_request", "bad_request", "not_in_working_set", "bad_request"]
    assert clients.notifier.sent == []

    await ws.inbox.put(WebSocketDisconnect)
    await asyncio.wait_for(run, 2)


@pytest.mark.asyncio
async def test_live_view_closes_when_updates_stop(clients):
    dev = await add_user(clients, role="developer")
    s = await add_submission(clients, dev, minutes=0)
    ws = FakeSocket()
    view = _LiveView(ws, clients)
    run = asyncio.create_task(view.run())
    await _until(lambda: ws.of_type("snapshot"))

    ws.reject_snapshots = True
    await add_submission(clients, dev, minutes=1)
    await asyncio.wait_for(run, 2)

    assert ws.of_type("error")[-1]["code"] == "subscription_error"
    assert ws.closed_with == 1011
    assert clients.feed.subscriber_count == 0

    # a stale set never issues decisions
    await view.handle({"type": "decide", "id": s.id, "decision": "accepted"})
    assert clients.notifier.sent == []


def test_websocket_without_token_is_closed_for_login():
    engine = create_async_engine("sqlite+aiosqlite://")
    app = create_app(clients=build_clients(Settings(), engine))
    client = TestClient(app)
    with pytest.raises(WebSocketDisconnect) as err:
        with client.websocket_connect("/submissions/live"):
            pass
    assert err.value.code == 4401
