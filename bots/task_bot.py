#!/usr/bin/env python3
"""
Vanguard Task Bot
─────────────────
Drives the Learn Vanguard task board from Telegram. A /move is the
drag-and-drop: the card moves, then the bot asks for /confirm, /cancel
or (for On Hold) a /remark.

Setup:
    export VANGUARD_TASK_BOT_TOKEN=your_token_here
    python task_bot.py

Commands:
    /board [search]             show the four status columns
    /summary                    task statistics
    /move <task_id> <status>    move a task to another column
    /remark <reason>            confirm a move to On Hold
    /confirm                    answer "yes" to the pending prompt
    /cancel                     answer "no" to the pending prompt
    /archive <task_id>          archive a task (asks first)
    /delete <task_id>           delete a task permanently (asks first)
    /priority <task_id>         toggle high priority
    /login <token>              store the backend bearer token
"""

import logging
import sys
from pathlib import Path
from typing import Callable, Optional

from telegram import Update
from telegram.ext import CommandHandler, ContextTypes

# Allow running from project root or bots/ directory
sys.path.insert(0, str(Path(__file__).parent))
sys.path.insert(0, str(Path(__file__).parent.parent))
from bot_base import BotBase, BotConfig, authorized, md, truncate

from pkg.vanguard.board import TaskBoard
from pkg.vanguard.client import ApiClient
from pkg.vanguard.errors import ValidationError
from pkg.vanguard.events import EventBus
from pkg.vanguard.notify import Notifier, bind_api_events
from pkg.vanguard.query import QueryCache, TaskQuery
from pkg.vanguard.schema import Column, DropEvent, TaskPriority, TaskStatus, to_display
from pkg.vanguard.storage import TokenStore
from pkg.vanguard.task_api import TaskApi
from pkg.vanguard.transport import Transport, build_transport

logger = logging.getLogger(__name__)

CONFIG_PATH = Path(__file__).parent.parent / "config" / "vanguard.yaml"

COLUMN_ICONS = {
    TaskStatus.NOT_STARTED.display: "📬",
    TaskStatus.IN_PROGRESS.display: "🚀",
    TaskStatus.ON_HOLD.display: "🛑",
    TaskStatus.COMPLETED.display: "✅",
}


def format_board(columns: list[Column]) -> str:
    """Render board columns as a Telegram message."""
    lines = []
    for column in columns:
        icon = COLUMN_ICONS.get(column.title, "❓")
        lines.append(f"{icon} *{column.title}* ({len(column)})")
        if not column.tasks:
            lines.append("   (empty)")
        for task in column.tasks:
            flag = " ⚡" if task.priority is TaskPriority.HIGH else ""
            line = f"   • `{task.id}` {md(task.name)}{flag}"
            if task.on_hold_remark and task.status == TaskStatus.ON_HOLD.value:
                line += f" — {md(task.on_hold_remark)}"
            lines.append(line)
        lines.append("")
    return "\n".join(lines).rstrip()


def format_summary(summary: dict) -> str:
    return "\n".join([
        "📊 *Task summary*",
        f"Total: {summary.get('total', 0)}",
        f"Not started: {summary.get('notStarted', 0)}",
        f"In progress: {summary.get('inProgress', 0)}",
        f"On hold: {summary.get('onHold', 0)}",
        f"Completed: {summary.get('completed', 0)}",
        f"Overdue: {summary.get('overdue', 0)}",
        f"High priority: {summary.get('highPriority', 0)}",
    ])


class UserSession:
    """One user's board: own notifier and event bus, shared cache and token."""

    def __init__(
        self,
        cfg: BotConfig,
        token_store,
        cache: QueryCache,
        transport_factory: Optional[Callable[[EventBus], Transport]] = None,
    ):
        self.notifier = Notifier()
        self.bus = EventBus()
        bind_api_events(self.bus, self.notifier)

        if transport_factory is not None:
            transport = transport_factory(self.bus)
        else:
            transport = build_transport(cfg.api, token_store, self.bus)

        self.query = TaskQuery(
            TaskApi(ApiClient(transport)),
            self.notifier,
            bus=self.bus,
            cache=cache,
            tasks_stale_secs=cfg.api.tasks_stale_secs,
            summary_stale_secs=cfg.api.summary_stale_secs,
        )
        self.board = TaskBoard(
            self.query, self.notifier, remark_max_length=cfg.api.remark_max_length
        )


class TaskBot(BotBase):

    def __init__(
        self,
        cfg: BotConfig,
        token_store=None,
        transport_factory: Optional[Callable[[EventBus], Transport]] = None,
    ):
        super().__init__(cfg)
        self.token_store = token_store or TokenStore(cfg.api.token_path)
        self.transport_factory = transport_factory
        self.cache = QueryCache()
        self._sessions: dict[int, UserSession] = {}

    def session(self, user_id: int) -> UserSession:
        if user_id not in self._sessions:
            self._sessions[user_id] = UserSession(
                self.cfg, self.token_store, self.cache, self.transport_factory
            )
        return self._sessions[user_id]

    def command_help(self) -> dict[str, str]:
        commands = super().command_help()
        commands.update({
            "board": "show the task board [search]",
            "summary": "task statistics",
            "move": "<task_id> <status>: move a task",
            "remark": "<reason>: confirm a move to On Hold",
            "confirm": "confirm the pending action",
            "cancel": "cancel the pending action",
            "archive": "<task_id>: archive a task",
            "delete": "<task_id>: delete a task",
            "priority": "<task_id>: toggle high priority",
            "login": "<token>: store the API token",
        })
        return commands

    def register_handlers(self, app):
        super().register_handlers(app)  # registers /help, /start
        app.add_handler(CommandHandler("board", self.cmd_board))
        app.add_handler(CommandHandler("summary", self.cmd_summary))
        app.add_handler(CommandHandler("move", self.cmd_move))
        app.add_handler(CommandHandler("remark", self.cmd_remark))
        app.add_handler(CommandHandler("confirm", self.cmd_confirm))
        app.add_handler(CommandHandler("cancel", self.cmd_cancel))
        app.add_handler(CommandHandler("archive", self.cmd_archive))
        app.add_handler(CommandHandler("delete", self.cmd_delete))
        app.add_handler(CommandHandler("priority", self.cmd_priority))
        app.add_handler(CommandHandler("login", self.cmd_login))

    async def _reply(self, update: Update, session: UserSession, *lines: str):
        """
        Reply with the given lines followed by any toasts raised meanwhile.
        Lines must already be Markdown-safe; toast text is escaped here.
        """
        parts = [line for line in lines if line]
        parts.extend(md(t) for t in session.notifier.drain())
        if not parts:
            return
        await update.message.reply_text(truncate("\n".join(parts)), parse_mode="Markdown")

    # ──────────────────────────────────────────
    # Board
    # ──────────────────────────────────────────

    @authorized
    async def cmd_board(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        session = self.session(update.effective_user.id)
        session.board.set_filters(search=self._command_rest(update.message.text).strip())
        await self._reply(update, session, format_board(session.board.columns()))

    @authorized
    async def cmd_summary(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        session = self.session(update.effective_user.id)
        await self._reply(update, session, format_summary(session.query.summary()))

    # ──────────────────────────────────────────
    # Status changes
    # ──────────────────────────────────────────

    @authorized
    async def cmd_move(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        session = self.session(update.effective_user.id)
        args = self._command_args(update.message.text)
        if len(args) < 2:
            await update.message.reply_text("Usage: /move <task_id> <status>")
            return

        task_id, status_text = args[0], " ".join(args[1:])
        try:
            target = TaskStatus.parse(status_text)
        except ValidationError as e:
            allowed = ", ".join(s.value for s in TaskStatus)
            await update.message.reply_text(f"⚠️ {e}. Allowed: {allowed}")
            return

        if session.query.is_mutating:
            await update.message.reply_text("⏳ Another change is still in flight, try again.")
            return

        # The card is dragged out of the column it is shown in; the board
        # keeps the server-side source if an earlier move is still unanswered.
        board = session.board
        task = board.find_task(task_id)
        intent = board.handle_drop(DropEvent(
            draggable_id=task_id,
            source_column=task.status if task else "",
            destination_column=target.value,
        ))

        if intent is None:
            shown = board.find_task(task_id)
            if shown is not None and shown.status == target.value:
                await self._reply(update, session, f"ℹ️ {md(task_id)} is already in {target.display}.")
            else:
                await self._reply(update, session)
            return

        self.audit.record_intent(update.effective_user, intent, "awaiting_confirmation")
        if intent.requires_remark:
            hint = (f"Reply /remark <reason> (max {board.remark_max_length} characters) "
                    f"or /cancel to put it back.")
        else:
            hint = "Reply /confirm (yes) or /cancel (no)."
        await self._reply(update, session, f"⚠️ {md(intent.prompt)}", hint)

    @authorized
    async def cmd_remark(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        session = self.session(update.effective_user.id)
        intent = session.board.pending_intent
        if intent is None or not intent.requires_remark:
            await update.message.reply_text("ℹ️ Nothing is waiting for a reason.")
            return

        remark = self._command_rest(update.message.text)
        if not session.board.can_confirm(remark):
            await self._reply(
                update, session,
                f"⚠️ A reason of 1-{session.board.remark_max_length} characters is required.",
            )
            return

        ok = session.board.confirm(remark=remark)
        self.audit.record_intent(
            update.effective_user, intent, "confirmed" if ok else "failed", remark=remark.strip()
        )
        await self._reply(update, session)

    @authorized
    async def cmd_confirm(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        session = self.session(update.effective_user.id)
        board = session.board

        if board.pending_action is not None:
            action = board.pending_action
            ok = board.confirm_action()
            self.audit.record_action(update.effective_user, action, "confirmed" if ok else "failed")
            await self._reply(update, session)
            return

        intent = board.pending_intent
        if intent is None:
            await update.message.reply_text("ℹ️ Nothing pending confirmation.")
            return
        if intent.requires_remark:
            await update.message.reply_text("⚠️ Moving to On Hold needs a reason: /remark <reason>")
            return

        ok = board.confirm()
        self.audit.record_intent(update.effective_user, intent, "confirmed" if ok else "failed")
        await self._reply(update, session)

    @authorized
    async def cmd_cancel(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        session = self.session(update.effective_user.id)
        board = session.board

        if board.pending_action is not None:
            action = board.pending_action
            board.cancel_action()
            self.audit.record_action(update.effective_user, action, "cancelled")
            await self._reply(update, session, f"❌ Cancelled {action.kind} of \"{md(action.task_name)}\".")
            return

        intent = board.pending_intent
        if intent is None:
            await update.message.reply_text("ℹ️ Nothing pending to cancel.")
            return

        board.decline()
        self.audit.record_intent(update.effective_user, intent, "cancelled")
        await self._reply(
            update, session,
            f"↩️ \"{md(intent.task_name)}\" stays in {md(to_display(intent.source_status))}.",
        )

    # ──────────────────────────────────────────
    # Archive / delete / priority
    # ──────────────────────────────────────────

    async def _stage(self, update: Update, kind: str):
        session = self.session(update.effective_user.id)
        args = self._command_args(update.message.text)
        if not args:
            await update.message.reply_text(f"Usage: /{kind} <task_id>")
            return

        board = session.board
        action = board.request_delete(args[0]) if kind == "delete" else board.request_archive(args[0])
        if action is None:
            await self._reply(update, session)
            return
        self.audit.record_action(update.effective_user, action, "awaiting_confirmation")
        await self._reply(update, session, f"⚠️ {md(action.prompt)}", "Reply /confirm or /cancel.")

    @authorized
    async def cmd_archive(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        await self._stage(update, "archive")

    @authorized
    async def cmd_delete(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        await self._stage(update, "delete")

    @authorized
    async def cmd_priority(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        session = self.session(update.effective_user.id)
        args = self._command_args(update.message.text)
        if not args:
            await update.message.reply_text("Usage: /priority <task_id>")
            return
        session.board.toggle_high_priority(args[0])
        await self._reply(update, session)

    @authorized
    async def cmd_login(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        token = self._command_rest(update.message.text).strip()
        if not token:
            await update.message.reply_text("Usage: /login <token>")
            return
        self.token_store.set(token)
        self.audit.record(update.effective_user, "login", "stored")
        await update.message.reply_text("🔑 Token saved.")


def main():
    TaskBot(BotConfig.load(str(CONFIG_PATH), "task_bot")).run()


if __name__ == "__main__":
    main()
