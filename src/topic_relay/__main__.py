"""Command line entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from pathlib import Path
from typing import Sequence

from .app import TopicRelayApp, reset_webhook, set_webhook
from .config import AppConfig, ConfigError
from .telegram import TelegramAPIError
from .utils import hash_token


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="topic-relay",
        description="Relay private Telegram chats into forum topics of an admin group",
    )
    parser.add_argument("--db-path", help="Path to the SQLite database (env DB_PATH)")
    parser.add_argument("--bot-token", help="Telegram bot token (env BOT_TOKEN)")
    parser.add_argument("--log-level", help="Logging level (env LOG_LEVEL)")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("poll", help="Receive updates with long polling")

    serve = subparsers.add_parser("serve", help="Receive updates through a webhook server")
    serve.add_argument("--host", help="Listen address (env WEBHOOK_HOST)")
    serve.add_argument("--port", type=int, help="Listen port (env WEBHOOK_PORT)")

    hook = subparsers.add_parser("set-webhook", help="Register the webhook URL with Telegram")
    hook.add_argument("url", help="Public base URL the webhook path is appended to")

    subparsers.add_parser("reset-webhook", help="Remove the registered webhook")
    subparsers.add_parser("setup-token", help="Print the token expected by /setup")
    return parser


def load_config(args: argparse.Namespace) -> AppConfig:
    environ = dict(os.environ)
    if args.bot_token:
        environ["BOT_TOKEN"] = args.bot_token
    config = AppConfig.from_env(environ)
    if args.db_path:
        config.db_path = Path(args.db_path)
    if args.log_level:
        config.log_level = args.log_level.upper()
    if getattr(args, "host", None):
        config.webhook_host = args.host
    if getattr(args, "port", None):
        config.webhook_port = args.port
    return config


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args)
    except ConfigError as exc:
        parser.error(f"{exc}. Pass --bot-token or set the environment variable.")

    log_level = getattr(logging, config.log_level, logging.INFO)
    logging.basicConfig(level=log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logger = logging.getLogger(__name__)

    if args.command == "setup-token":
        token = hash_token(config.bot_token)
        print(f"Add the bot to your forum supergroup as an admin and send:\n\n/setup {token}")
        return

    if not config.secret_token and args.command in {"serve", "set-webhook"}:
        logger.warning("SECRET_TOKEN is not set, webhook calls will not be authenticated")

    try:
        if args.command == "poll":
            asyncio.run(TopicRelayApp(config).run_polling())
        elif args.command == "serve":
            asyncio.run(TopicRelayApp(config).run_webhook())
        elif args.command == "set-webhook":
            ok = asyncio.run(set_webhook(config, args.url))
            logger.info("Webhook registered: %s", ok)
        elif args.command == "reset-webhook":
            ok = asyncio.run(reset_webhook(config))
            logger.info("Webhook removed: %s", ok)
    except TelegramAPIError as exc:
        logger.error("%s", exc)
        raise SystemExit(1) from exc
    except KeyboardInterrupt:
        logger.info("Stopped by user")


if __name__ == "__main__":
    main()
