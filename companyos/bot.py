#!/usr/bin/env python3
"""
Company OS Board Bot
────────────────────
Telegram front end for the board core. One BoardSession lives for the
lifetime of the bot; every command runs against it.

Components:
    format_*     board, columns and help text for Telegram
    BoardBot     auth, command handlers, notification relay, lifecycle

Dependencies:
    pip install python-telegram-bot pyyaml requests

Usage:
    export COMPANYOS_BOT_TOKEN=...
    companyos-bot [--config companyos.yaml]
"""

import argparse
import asyncio
import logging
import sys
from typing import Dict, List, Optional, Set, Tuple

from telegram import BotCommand, Update
from telegram.ext import Application, CommandHandler, ContextTypes

from .board.assist import ASSIST_ACTIONS, GeminiClient, parse_priority_suggestion
from .board.errors import BoardError
from .board.events import NOTIFY
from .board.projection import ALL_CATEGORIES, BoardProjection
from .board.schema import COLUMN_COLORS, Category, StatusColumn, Task, TaskDraft
from .board.session import BoardSession
from .config import BoardConfig, ConfigError, build_backend

logger = logging.getLogger(__name__)

LEVEL_ICONS = {
    "success": "✅",
    "info": "ℹ️",
    "warning": "⚠️",
    "error": "❌",
}

COMMANDS = (
    ("board", "[category]", "Show the board, optionally for one category"),
    ("columns", "", "List workflow columns"),
    ("addcolumn", "<label> [color]", "Add a column at the end"),
    ("delcolumn", "<value>", "Delete an empty custom column"),
    ("reorder", "<value> <value> …", "Set the full column order"),
    ("newtask", "<category> <title> [| description]", "Create a task"),
    ("move", "<task> <column>", "Move a task to another column"),
    ("deltask", "<task>", "Delete a task"),
    ("assist", "<task> <action>", "Ask the AI about a task"),
    ("refresh", "", "Reload the board from the backend"),
    ("help", "", "Show this message"),
)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Formatting
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def truncate(text: str, max_chars: int = 3500) -> str:
    """Truncate text to fit in a single Telegram message (4096 char limit)."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + f"\n…[truncated, {len(text) - max_chars} chars omitted]"


def short_id(task_id: str) -> str:
    return task_id[:8]


def format_task_line(task: Task) -> str:
    parts = [f"• {task.title} [{short_id(task.id)}]", f"P{int(task.priority)}"]
    if task.due_date:
        parts.append(f"due {task.due_date.isoformat()}")
    if task.assignees:
        parts.append(", ".join(p.full_name or p.email for p in task.assignees))
    return " · ".join(parts)


def format_board(board: BoardProjection, columns: List[StatusColumn]) -> str:
    """Render the projection column by column, in registry order."""
    if not columns:
        return "No columns configured."
    lines = []
    for column in columns:
        tasks = board.get(column.value, [])
        lines.append(f"▍{column.label} ({len(tasks)})")
        if not tasks:
            lines.append("  (empty)")
        for task in tasks:
            lines.append(f"  {format_task_line(task)}")
        lines.append("")
    return truncate("\n".join(lines).rstrip())


def format_columns(columns: List[StatusColumn]) -> str:
    if not columns:
        return "No columns configured."
    lines = ["📋 Columns:"]
    for index, column in enumerate(columns, 1):
        flag = " (default)" if column.is_default else ""
        lines.append(f"{index}. {column.label} — {column.value}{flag}")
    if not any(c.persisted for c in columns):
        lines.append("\nDefaults are not saved yet; they are saved on the first change.")
    return "\n".join(lines)


def format_help() -> str:
    lines = ["Company OS board — Commands\n"]
    for name, args, desc in COMMANDS:
        lines.append(f"/{name} {args}".rstrip())
        lines.append(f"  ↳ {desc}")
    lines.append(f"\nAssist actions: {', '.join(ASSIST_ACTIONS)}")
    lines.append(f"Column colors: {', '.join(c['label'].lower() for c in COLUMN_COLORS)}")
    return "\n".join(lines)


def split_label_and_color(args: List[str]) -> Tuple[str, Optional[str]]:
    """'/addcolumn In Review purple' -> ('In Review', 'purple')."""
    palette = {c["label"].lower() for c in COLUMN_COLORS}
    if len(args) > 1 and args[-1].lower() in palette:
        return " ".join(args[:-1]), args[-1]
    return " ".join(args), None


def parse_newtask(text: str) -> Tuple[str, str, Optional[str]]:
    """
    Parse '<category> <title> [| description]'.

    Returns (category, title, description); missing parts come back empty.
    """
    head, _, description = text.partition("|")
    words = head.strip().split(maxsplit=1)
    category = words[0] if words else ""
    title = words[1].strip() if len(words) > 1 else ""
    return category, title, description.strip() or None


def find_category(categories: List[Category], ref: str) -> Optional[Category]:
    """Match a category by id or by case-insensitive name."""
    ref = ref.strip()
    for category in categories:
        if category.id == ref or category.name.lower() == ref.lower():
            return category
    return None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# BoardBot
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class BoardBot:
    """
    Telegram bot over a BoardSession.

    Session operations publish their own success and failure notifications
    through the event bridge; the bot relays those to the chat that issued
    the last command. Handlers therefore only reply with content (boards,
    column lists, assist output) and stop quietly on BoardError.
    """

    def __init__(
        self,
        cfg: BoardConfig,
        session: Optional[BoardSession] = None,
        assistant: Optional[GeminiClient] = None,
    ):
        self.cfg = cfg
        self.session = session or BoardSession(build_backend(cfg))
        self.assistant = assistant
        if self.assistant is None:
            api_key = cfg.optional_secret("gemini_api_key_env")
            if api_key:
                self.assistant = GeminiClient(api_key, cfg.gemini_model, timeout=cfg.request_timeout)
        self.app: Optional[Application] = None
        self.chat_id: Optional[int] = None
        self._sends: Set[asyncio.Task] = set()

        self.session.events.subscribe(NOTIFY, self._on_notify)

    # ──────────────────────────────────────────
    # Auth + notification relay
    # ──────────────────────────────────────────

    def _is_authorized(self, update: Update) -> bool:
        """Check if the message sender is in the allowlist."""
        return self.cfg.is_authorized(update.effective_user.id)

    async def _guard(self, update: Update) -> bool:
        """Reject unauthorized users; remember the chat for notifications."""
        if not self._is_authorized(update):
            user = update.effective_user
            logger.warning(
                f"Unauthorized access attempt: user_id={user.id}, username={user.username}"
            )
            await update.message.reply_text("⛔ Unauthorized.")
            return False
        self.chat_id = update.effective_chat.id
        return True

    def _on_notify(self, level: str, message: str) -> None:
        """Event bridge callback: forward a notification to the active chat."""
        if self.app is None or self.chat_id is None:
            logger.info(f"[{level}] {message}")
            return
        text = f"{LEVEL_ICONS.get(level, '•')} {message}"
        send = asyncio.get_running_loop().create_task(
            self.app.bot.send_message(chat_id=self.chat_id, text=text)
        )
        self._sends.add(send)
        send.add_done_callback(self._sends.discard)

    async def _categories(self) -> List[Category]:
        return await asyncio.to_thread(self.session.store.list_categories)

    async def _task_or_reply(self, update: Update, ref: str) -> Optional[Task]:
        task = self.session.find_task(ref)
        if task is None:
            await update.message.reply_text(
                f"No single task matches '{ref}'. Use the id shown on /board."
            )
        return task

    # ──────────────────────────────────────────
    # Board + columns
    # ──────────────────────────────────────────

    async def handle_board(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /board [category]."""
        if not await self._guard(update):
            return
        if context.args:
            ref = " ".join(context.args)
            if ref.lower() == ALL_CATEGORIES:
                self.session.set_category_filter(ALL_CATEGORIES)
            else:
                try:
                    category = find_category(await self._categories(), ref)
                except BoardError as e:
                    await update.message.reply_text(f"❌ {e}")
                    return
                if category is None:
                    await update.message.reply_text(f"Unknown category '{ref}'.")
                    return
                self.session.set_category_filter(category.id)
        await update.message.reply_text(format_board(self.session.board, self.session.columns))

    async def handle_columns(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /columns."""
        if not await self._guard(update):
            return
        await update.message.reply_text(format_columns(self.session.columns))

    async def handle_addcolumn(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /addcolumn <label> [color]."""
        if not await self._guard(update):
            return
        label, color = split_label_and_color(context.args or [])
        try:
            await self.session.create_column(label, color)
        except BoardError:
            return

    async def handle_delcolumn(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /delcolumn <value>."""
        if not await self._guard(update):
            return
        if not context.args:
            await update.message.reply_text("Usage: /delcolumn <value>")
            return
        try:
            await self.session.delete_column(context.args[0])
        except BoardError:
            return

    async def handle_reorder(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /reorder <value> <value> …"""
        if not await self._guard(update):
            return
        if not context.args:
            await update.message.reply_text("Usage: /reorder <value> <value> …")
            return
        try:
            await self.session.reorder_columns(context.args)
        except BoardError:
            return
        await update.message.reply_text(format_columns(self.session.columns))

    # ──────────────────────────────────────────
    # Tasks
    # ──────────────────────────────────────────

    async def handle_newtask(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /newtask <category> <title> [| description]."""
        if not await self._guard(update):
            return
        category_ref, title, description = parse_newtask(" ".join(context.args or []))
        if not category_ref or not title:
            await update.message.reply_text("Usage: /newtask <category> <title> [| description]")
            return
        try:
            category = find_category(await self._categories(), category_ref)
        except BoardError as e:
            await update.message.reply_text(f"❌ {e}")
            return
        draft = TaskDraft(
            title=title,
            category_id=category.id if category else None,
            description=description,
        )
        try:
            task = await self.session.create_task(draft)
        except BoardError:
            return
        await update.message.reply_text(format_task_line(task))

    async def handle_move(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /move <task> <column>: the drag gesture."""
        if not await self._guard(update):
            return
        if not context.args or len(context.args) < 2:
            await update.message.reply_text("Usage: /move <task> <column>")
            return
        column = self.session.registry.find(context.args[-1])
        if column is None:
            await update.message.reply_text(
                f"Unknown column '{context.args[-1]}'. See /columns."
            )
            return
        task = await self._task_or_reply(update, " ".join(context.args[:-1]))
        if task is None:
            return
        result = await self.session.move_task(task.id, column.value)
        if result is None:
            await update.message.reply_text(f"'{task.title}' is already in {column.label}.")
        elif result.ok:
            await update.message.reply_text(f"➡️ {task.title} → {column.label}")

    async def handle_deltask(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /deltask <task>."""
        if not await self._guard(update):
            return
        task = await self._task_or_reply(update, " ".join(context.args or []))
        if task is None:
            return
        try:
            await self.session.delete_task(task.id)
        except BoardError:
            return

    async def handle_assist(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /assist <task> <action>."""
        if not await self._guard(update):
            return
        if self.assistant is None:
            await update.message.reply_text(
                f"Task assist is not configured. Set {self.cfg.gemini_api_key_env}."
            )
            return
        if not context.args or len(context.args) < 2:
            await update.message.reply_text(
                f"Usage: /assist <task> <action>\nActions: {', '.join(ASSIST_ACTIONS)}"
            )
            return
        action = context.args[-1]
        task = await self._task_or_reply(update, " ".join(context.args[:-1]))
        if task is None:
            return
        try:
            text = await asyncio.to_thread(self.assistant.assist, task, action)
        except BoardError as e:
            await update.message.reply_text(f"❌ {e}")
            return
        if action == "prioritize":
            suggestion = parse_priority_suggestion(text)
            if suggestion is not None:
                text += f"\n\nSuggested priority: {suggestion.label} ({int(suggestion)})"
        await update.message.reply_text(truncate(text))

    async def handle_refresh(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /refresh."""
        if not await self._guard(update):
            return
        try:
            await self.session.refresh()
        except BoardError as e:
            await update.message.reply_text(f"❌ Refresh failed: {e}")
            return
        stats = self.session.stats()
        lines = [f"🔄 {stats['total']} tasks"]
        for column in self.session.columns:
            lines.append(f"  {column.label}: {stats['by_status'].get(column.value, 0)}")
        if stats["orphaned"]:
            lines.append(f"  (not shown: {stats['orphaned']} in removed columns)")
        await update.message.reply_text("\n".join(lines))

    async def handle_help(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /help."""
        if not await self._guard(update):
            return
        await update.message.reply_text(format_help())

    # ──────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────

    def handlers(self) -> Dict[str, object]:
        return {
            "board": self.handle_board,
            "columns": self.handle_columns,
            "addcolumn": self.handle_addcolumn,
            "delcolumn": self.handle_delcolumn,
            "reorder": self.handle_reorder,
            "newtask": self.handle_newtask,
            "move": self.handle_move,
            "deltask": self.handle_deltask,
            "assist": self.handle_assist,
            "refresh": self.handle_refresh,
            "help": self.handle_help,
            "start": self.handle_help,
        }

    def register_handlers(self, app: Application):
        for name, handler in self.handlers().items():
            app.add_handler(CommandHandler(name, handler))

    async def post_init(self, app: Application):
        """Open the session and publish the command menu."""
        self.app = app
        await self.session.open(seed_defaults=self.cfg.seed_defaults)
        await app.bot.set_my_commands(
            [BotCommand(name, desc[:256]) for name, _, desc in COMMANDS]
        )

    async def post_shutdown(self, app: Application):
        await self.session.close()
        if self.assistant is not None:
            self.assistant.close()

    def run(self):
        """Build Telegram Application, register handlers, and start polling."""
        token = self.cfg.secret("bot_token_env")
        app = (
            Application.builder()
            .token(token)
            .post_init(self.post_init)
            .post_shutdown(self.post_shutdown)
            .build()
        )
        self.register_handlers(app)
        logger.info("Starting Company OS board bot…")
        app.run_polling(drop_pending_updates=True)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Company OS board bot")
    parser.add_argument("--config", help="Path to companyos.yaml")
    args = parser.parse_args(argv)

    try:
        cfg = BoardConfig.load(args.config)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s [companyos] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    try:
        BoardBot(cfg).run()
    except ConfigError as e:
        logger.error(f"Config error: {e}")
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
