#!/usr/bin/env python3
"""
Vanguard Bot Base
─────────────────
Shared plumbing for the Learn Vanguard Telegram bots.

Components:
    BotConfig       bot token, allowlist and audit path on top of ClientConfig
    AuditLogger     JSONL trail of board changes (moves, archive, delete)
    authorized      handler decorator enforcing the allowlist
    BotBase         /help, command menu and polling lifecycle

Dependencies:
    pip install python-telegram-bot==20.* pyyaml requests

Usage:
    See task_bot.py
"""

import functools
import json
import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import FrozenSet, Optional

import yaml
from telegram import BotCommand, Update
from telegram.ext import Application, CommandHandler, ContextTypes
from telegram.helpers import escape_markdown

from pkg.vanguard.config import ClientConfig
from pkg.vanguard.schema import StatusChangeIntent

logger = logging.getLogger(__name__)

FALLBACK_AUDIT_LOG = Path(__file__).parent.parent / "logs" / "audit.jsonl"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Utilities
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def utc_now() -> str:
    """ISO-8601 UTC timestamp."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def truncate(text: str, max_chars: int = 3500) -> str:
    """Keep a reply under Telegram's 4096 character limit."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + f"\n…[truncated, {len(text) - max_chars} chars omitted]"


def md(text) -> str:
    """Escape backend text for a parse_mode="Markdown" reply."""
    return escape_markdown(str(text), version=1)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# BotConfig
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ConfigError(Exception):
    """Raised when the bot section of the config is unusable."""
    pass


def _writable_audit_log(path_str: Optional[str]) -> Path:
    """The configured audit log, or the repo-local fallback if it can't be created."""
    if path_str:
        path = Path(path_str).expanduser()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.touch(exist_ok=True)
            return path
        except OSError as e:
            logger.warning(f"Cannot write audit log {path} ({e}), using {FALLBACK_AUDIT_LOG}")
    FALLBACK_AUDIT_LOG.parent.mkdir(parents=True, exist_ok=True)
    FALLBACK_AUDIT_LOG.touch(exist_ok=True)
    return FALLBACK_AUDIT_LOG


@dataclass
class BotConfig:
    """One bot's settings; `api` is the shared client config from the same file."""

    bot_name: str
    token: str
    api: ClientConfig
    allowed_users: FrozenSet[int] = frozenset()
    audit_log: Path = FALLBACK_AUDIT_LOG

    @classmethod
    def load(cls, config_path: str, bot_name: str) -> "BotConfig":
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

        section = (raw.get("bots") or {}).get(bot_name)
        if section is None:
            raise ConfigError(
                f"Bot '{bot_name}' not found in {config_path}. "
                f"Available: {sorted(raw.get('bots') or {})}"
            )

        token_env = section.get("token_env")
        if not token_env:
            raise ConfigError(f"Bot '{bot_name}' has no token_env configured")
        token = os.environ.get(token_env)
        if not token:
            raise ConfigError(
                f"Environment variable {token_env} is not set. "
                f"Get a token from @BotFather and export {token_env}=..."
            )

        return cls(
            bot_name=bot_name,
            token=token,
            api=ClientConfig.load(config_path),
            allowed_users=frozenset(int(uid) for uid in section.get("allowed_users") or []),
            audit_log=_writable_audit_log((raw.get("global") or {}).get("audit_log")),
        )

    def is_authorized(self, user_id: int) -> bool:
        return int(user_id) in self.allowed_users


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# AuditLogger
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class AuditLogger:
    """
    Appends one JSON object per line for every change requested from chat.

    Status moves carry their source, target and remark, so the trail shows
    what a confirmation or a cancellation actually did on the board.
    """

    def __init__(self, log_path: Path, bot_name: str):
        self.log_path = log_path
        self.bot_name = bot_name

    def record(self, user, command: str, status: str, task_id: str = "", **extra):
        entry = {
            "ts": utc_now(),
            "bot": self.bot_name,
            "user_id": user.id,
            "username": user.username or "",
            "command": command,
            "status": status,
            "task_id": task_id,
        }
        entry.update({k: v for k, v in extra.items() if v is not None})
        try:
            with open(self.log_path, "a") as f:
                f.write(json.dumps(entry, ensure_ascii=False) + "\n")
        except OSError as e:
            logger.error(f"Failed to write audit log: {e}")

    def record_intent(self, user, intent: StatusChangeIntent, status: str, remark: Optional[str] = None):
        self.record(
            user, "move", status,
            task_id=intent.task_id,
            task_name=intent.task_name,
            source=intent.source_status,
            target=intent.target_status,
            remark=remark,
        )

    def record_action(self, user, action, status: str):
        """`action` is a board PendingAction (archive or delete)."""
        self.record(user, action.kind, status, task_id=action.task_id or "", task_name=action.task_name)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# BotBase
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def authorized(handler):
    """Run the handler only for allowlisted users; log and refuse everyone else."""

    @functools.wraps(handler)
    async def wrapper(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not self.cfg.is_authorized(update.effective_user.id):
            await self.reject(update)
            return None
        return await handler(self, update, context)

    return wrapper


class BotBase:
    """
    Subclasses extend command_help() and register_handlers(), and wrap
    their handlers with @authorized.
    """

    def __init__(self, cfg: BotConfig):
        self.cfg = cfg
        self.audit = AuditLogger(cfg.audit_log, cfg.bot_name)

        logging.basicConfig(
            level=logging.INFO,
            format=f"%(asctime)s [{cfg.bot_name}] %(levelname)s: %(message)s",
            handlers=[logging.StreamHandler(sys.stdout)],
        )

    async def reject(self, update: Update):
        user = update.effective_user
        logger.warning(f"Rejected user_id={user.id} username={user.username}")
        self.audit.record(user, "UNAUTHORIZED", "rejected")
        await update.message.reply_text("⛔ Unauthorized. This incident has been logged.")

    @staticmethod
    def _command_args(text: str) -> list[str]:
        """Split '/cmd a b c' into ['a', 'b', 'c']."""
        return text.split()[1:]

    @staticmethod
    def _command_rest(text: str) -> str:
        """Everything after the command word."""
        parts = text.split(maxsplit=1)
        return parts[1] if len(parts) > 1 else ""

    def command_help(self) -> dict[str, str]:
        return {"help": "show this message"}

    @authorized
    async def handle_help(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        lines = [f"*{md(self.cfg.bot_name)} commands*", ""]
        lines += [f"/{name} {md(desc)}" for name, desc in self.command_help().items()]
        await update.message.reply_text("\n".join(lines), parse_mode="Markdown")

    def register_handlers(self, app: Application):
        """Subclasses call super() first, then add their own handlers."""
        app.add_handler(CommandHandler("help", self.handle_help))
        app.add_handler(CommandHandler("start", self.handle_help))

    async def _publish_commands(self, app: Application):
        await app.bot.set_my_commands(
            [BotCommand(name, desc[:256]) for name, desc in self.command_help().items()]
        )

    def run(self):
        app = Application.builder().token(self.cfg.token).post_init(self._publish_commands).build()
        self.register_handlers(app)
        logger.info(f"Starting {self.cfg.bot_name} against {self.cfg.api.api_base_url}")
        app.run_polling(drop_pending_updates=True)
