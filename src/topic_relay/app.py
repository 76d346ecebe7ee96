"""Application bootstrap: long polling and webhook transports."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Protocol

import aiohttp
from aiohttp import web

from .config import AppConfig
from .dispatcher import Dispatcher, UpdateType
from .handlers import register_handlers
from .store import SQLiteStore
from .telegram import TelegramAPI, TelegramAPIError

logger = logging.getLogger(__name__)

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"
_ALLOWED_UPDATES: tuple[str, ...] = tuple(item.value for item in UpdateType)
_DISPATCHER_KEY = web.AppKey("dispatcher", Dispatcher)
_SECRET_KEY = web.AppKey("secret_token", str)


class _OffsetStore(Protocol):
    def get_update_offset(self) -> int | None: ...

    def set_update_offset(self, offset: int) -> None: ...


class _UpdateSource(Protocol):
    async def get_updates(
        self,
        offset: int | None = None,
        timeout: int = 30,
        allowed_updates: Any = None,
    ) -> list[dict[str, Any]]: ...


class UpdatePoller:
    """Feed ``getUpdates`` results into the dispatcher one at a time."""

    def __init__(
        self,
        api: _UpdateSource,
        dispatcher: Dispatcher,
        store: _OffsetStore,
        *,
        poll_timeout: int = 25,
        error_delay: float = 3.0,
    ) -> None:
        self._api = api
        self._dispatcher = dispatcher
        self._store = store
        stored_offset = store.get_update_offset()
        self._offset = stored_offset if stored_offset is not None else 0
        self._poll_timeout = poll_timeout
        self._error_delay = error_delay
        self._running = True

    @property
    def offset(self) -> int:
        return self._offset

    def stop(self) -> None:
        """Stop the loop on the next iteration."""

        self._running = False

    async def poll_once(self) -> int:
        """Fetch and dispatch one batch. Returns the number of updates seen."""

        try:
            updates = await self._api.get_updates(
                self._offset or None,
                timeout=self._poll_timeout,
                allowed_updates=_ALLOWED_UPDATES,
            )
        except TelegramAPIError as exc:
            logger.warning("getUpdates failed: %s", exc)
            await asyncio.sleep(self._error_delay)
            return 0

        highest_offset = self._offset
        for update in updates:
            update_offset = _extract_update_offset(update)
            if update_offset is not None and update_offset > highest_offset:
                highest_offset = update_offset
            await self._dispatcher.handle_update(update)
        if highest_offset != self._offset:
            self._offset = highest_offset
            self._store.set_update_offset(highest_offset)
        return len(updates)

    async def run(self) -> None:
        self._running = True
        while self._running:
            await self.poll_once()


def _extract_update_offset(update: dict[str, Any]) -> int | None:
    try:
        update_id = int(update.get("update_id", 0))
    except (TypeError, ValueError):
        return None
    return max(0, update_id + 1)


async def handle_webhook(request: web.Request) -> web.Response:
    """Receive one update. Always answers 200 unless the secret mismatches."""

    secret = request.app.get(_SECRET_KEY)
    if secret and request.headers.get(SECRET_HEADER) != secret:
        logger.warning("Invalid secret token in webhook request")
        return web.json_response({"ok": False, "error": "Unauthorized"}, status=403)

    dispatcher = request.app[_DISPATCHER_KEY]
    try:
        update = await request.json()
    except ValueError as exc:
        logger.error("Malformed webhook payload: %s", exc)
        return web.json_response({"ok": False, "error": "Malformed payload"})

    if not isinstance(update, dict):
        logger.error("Webhook payload is not an object")
        return web.json_response({"ok": False, "error": "Malformed payload"})

    await dispatcher.handle_update(update)
    return web.json_response({"ok": True})


def build_webhook_app(
    dispatcher: Dispatcher,
    *,
    secret_token: str | None = None,
    path: str = "/webhook",
) -> web.Application:
    app = web.Application()
    app[_DISPATCHER_KEY] = dispatcher
    app[_SECRET_KEY] = secret_token or ""
    app.router.add_post(path, handle_webhook)
    return app


class TopicRelayApp:
    """High level coordinator tying together Telegram, the store and handlers."""

    def __init__(self, config: AppConfig):
        self._config = config
        self._store = SQLiteStore(config.db_path)

    def _build_dispatcher(self, api: TelegramAPI) -> Dispatcher:
        dispatcher = Dispatcher(api)
        register_handlers(dispatcher, self._store, self._config.bot_token)
        return dispatcher

    async def _with_api(self, factory: Callable[[TelegramAPI], Awaitable[Any]]) -> Any:
        async with aiohttp.ClientSession() as session:
            api = TelegramAPI(self._config.bot_token, session)
            return await factory(api)

    async def run_polling(self) -> None:
        async def run(api: TelegramAPI) -> None:
            dispatcher = self._build_dispatcher(api)
            await dispatcher.start()
            await api.delete_webhook(drop_pending_updates=False)
            poller = UpdatePoller(api, dispatcher, self._store)
            logger.info("Long polling started")
            await poller.run()

        try:
            await self._with_api(run)
        finally:
            self._store.close()

    async def run_webhook(self) -> None:
        async def run(api: TelegramAPI) -> None:
            dispatcher = self._build_dispatcher(api)
            await dispatcher.start()
            app = build_webhook_app(
                dispatcher,
                secret_token=self._config.secret_token,
                path=self._config.webhook_path,
            )
            runner = web.AppRunner(app)
            await runner.setup()
            site = web.TCPSite(runner, self._config.webhook_host, self._config.webhook_port)
            await site.start()
            logger.info(
                "Webhook server listening on %s:%s%s",
                self._config.webhook_host,
                self._config.webhook_port,
                self._config.webhook_path,
            )
            try:
                await asyncio.Event().wait()
            finally:
                await runner.cleanup()

        try:
            await self._with_api(run)
        finally:
            self._store.close()


async def set_webhook(config: AppConfig, base_url: str) -> bool:
    """Point Telegram at ``base_url`` + the configured webhook path."""

    url = base_url.rstrip("/") + config.webhook_path
    async with aiohttp.ClientSession() as session:
        api = TelegramAPI(config.bot_token, session)
        return await api.set_webhook(url, secret_token=config.secret_token)


async def reset_webhook(config: AppConfig) -> bool:
    async with aiohttp.ClientSession() as session:
        api = TelegramAPI(config.bot_token, session)
        return await api.delete_webhook()
