from __future__ import annotations

import asyncio
from typing import Any

from aiohttp import test_utils

from telegram_fakes import BOT, RecordingAPI, make_update
from topic_relay.app import SECRET_HEADER, UpdatePoller, build_webhook_app
from topic_relay.dispatcher import Dispatcher, UpdateContext
from topic_relay.store import MemoryStore
from topic_relay.telegram import TelegramAPIError


def _recording_dispatcher() -> tuple[Dispatcher, list[int]]:
    dispatcher = Dispatcher(RecordingAPI(), me=BOT)
    seen: list[int] = []

    async def handler(ctx: UpdateContext) -> None:
        seen.append(int(ctx.update["update_id"]))

    dispatcher.on("message", handler)
    return dispatcher, seen


def _post(app, body: Any, headers: dict[str, str] | None = None, *, raw: bool = False):
    async def runner() -> tuple[int, Any]:
        client = test_utils.TestClient(test_utils.TestServer(app))
        await client.start_server()
        try:
            if raw:
                resp = await client.post("/webhook", data=body, headers=headers)
            else:
                resp = await client.post("/webhook", json=body, headers=headers)
            return resp.status, await resp.json()
        finally:
            await client.close()

    return asyncio.run(runner())


def test_webhook_dispatches_update_with_valid_secret() -> None:
    dispatcher, seen = _recording_dispatcher()
    app = build_webhook_app(dispatcher, secret_token="s3cret")

    status, body = _post(app, make_update(7), {SECRET_HEADER: "s3cret"})

    assert status == 200
    assert body == {"ok": True}
    assert seen == [7]


def test_webhook_rejects_wrong_secret() -> None:
    dispatcher, seen = _recording_dispatcher()
    app = build_webhook_app(dispatcher, secret_token="s3cret")

    status, body = _post(app, make_update(7), {SECRET_HEADER: "guess"})
    missing_status, _ = _post(build_webhook_app(dispatcher, secret_token="s3cret"), make_update(8))

    assert status == 403
    assert body["ok"] is False
    assert missing_status == 403
    assert seen == []


def test_webhook_without_configured_secret_accepts_updates() -> None:
    dispatcher, seen = _recording_dispatcher()

    status, _ = _post(build_webhook_app(dispatcher), make_update(3))

    assert status == 200
    assert seen == [3]


def test_webhook_acknowledges_malformed_payloads() -> None:
    dispatcher, seen = _recording_dispatcher()

    status, body = _post(
        build_webhook_app(dispatcher),
        "not json",
        {"Content-Type": "application/json"},
        raw=True,
    )
    list_status, _ = _post(build_webhook_app(dispatcher), [1, 2, 3])

    assert status == 200
    assert body["ok"] is False
    assert list_status == 200
    assert seen == []


def test_webhook_answers_ok_for_unsupported_updates() -> None:
    dispatcher, seen = _recording_dispatcher()

    status, body = _post(build_webhook_app(dispatcher), {"update_id": 1, "poll": {"id": "p"}})

    assert status == 200
    assert body == {"ok": True}
    assert seen == []


class ScriptedUpdates:
    def __init__(self, *batches: Any) -> None:
        self.batches = list(batches)
        self.offsets: list[int | None] = []

    async def get_updates(
        self,
        offset: int | None = None,
        timeout: int = 30,
        allowed_updates: Any = None,
    ) -> list[dict[str, Any]]:
        self.offsets.append(offset)
        batch = self.batches.pop(0)
        if isinstance(batch, BaseException):
            raise batch
        return batch


def test_poller_dispatches_batches_and_persists_offset() -> None:
    async def runner() -> None:
        dispatcher, seen = _recording_dispatcher()
        store = MemoryStore()
        source = ScriptedUpdates([make_update(10), make_update(11)], [make_update(12)])
        poller = UpdatePoller(source, dispatcher, store, poll_timeout=0)

        assert await poller.poll_once() == 2
        assert await poller.poll_once() == 1

        assert seen == [10, 11, 12]
        assert source.offsets == [None, 12]
        assert poller.offset == 13
        assert store.get_update_offset() == 13

    asyncio.run(runner())


def test_poller_resumes_from_stored_offset_and_survives_errors() -> None:
    async def runner() -> None:
        dispatcher, seen = _recording_dispatcher()
        store = MemoryStore()
        store.set_update_offset(40)
        source = ScriptedUpdates(
            TelegramAPIError("getUpdates", "Conflict", 409),
            [make_update(40)],
        )
        poller = UpdatePoller(source, dispatcher, store, poll_timeout=0, error_delay=0)

        assert await poller.poll_once() == 0
        assert await poller.poll_once() == 1

        assert source.offsets == [40, 40]
        assert seen == [40]
        assert store.get_update_offset() == 41

    asyncio.run(runner())


def test_poller_run_stops_on_request() -> None:
    async def runner() -> None:
        dispatcher, seen = _recording_dispatcher()
        store = MemoryStore()
        poller = UpdatePoller(ScriptedUpdates([make_update(1)]), dispatcher, store)

        async def stop_after_first(ctx: UpdateContext) -> None:
            poller.stop()

        dispatcher.on("message", stop_after_first)
        await asyncio.wait_for(poller.run(), timeout=1)

        assert seen == [1]

    asyncio.run(runner())
