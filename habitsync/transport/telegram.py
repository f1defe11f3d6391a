"""Telegram transport — habit list and actions via Telegram Bot API.

This is the default front-end. Requires TELEGRAM_BOT_TOKEN in .env.
Only the owner (first user to message the bot) is served.
"""

import logging
from telegram import Update
from telegram.ext import (
    Application, CommandHandler, MessageHandler,
    ContextTypes, filters,
)

from habitsync.config import TELEGRAM_BOT_TOKEN, HABIT_USER_ID, set_owner_user_id
from habitsync.identity import Identity
from habitsync.render import habit_at, render_habit_list
from habitsync.session import HabitSession
from habitsync.transport import Transport

log = logging.getLogger(__name__)

HELP_TEXT = (
    "Track daily habits and keep your streaks going.\n\n"
    "Commands:\n"
    "/habits — Today's habits\n"
    "/new title | description | frequency — Add a habit (daily, weekly, monthly)\n"
    "/done <n> — Mark habit n completed for today\n"
    "/delete <n> — Delete habit n\n"
    "/logout — Sign out\n"
    "/login — Sign back in\n"
    "/help — This message"
)


def _is_owner(user_id: int) -> bool:
    """Check user_id against the owner, auto-detecting on first contact."""
    from habitsync.config import OWNER_USER_ID as current_owner
    if not current_owner:
        set_owner_user_id(user_id)
        log.info("Owner auto-detected: user_id=%d", user_id)
        return True
    return user_id == current_owner


def parse_new_habit(text: str) -> tuple[str, str, str]:
    """'/new Read | 20 pages | daily' -> ("Read", "20 pages", "daily")"""
    parts = [p.strip() for p in text.split("|")]
    title = parts[0] if parts else ""
    description = parts[1] if len(parts) > 1 else ""
    frequency = parts[2] if len(parts) > 2 and parts[2] else "daily"
    return title, description, frequency


class TelegramTransport(Transport):
    """Telegram Bot API transport."""

    def __init__(self, session: HabitSession, identity: Identity,
                 user_id: str = HABIT_USER_ID):
        self._app: Application | None = None
        self.session = session
        self.identity = identity
        self.user_id = user_id

    @property
    def name(self) -> str:
        return "telegram"

    async def start(self) -> None:
        if not TELEGRAM_BOT_TOKEN:
            log.warning("TELEGRAM_BOT_TOKEN not set, Telegram transport disabled")
            return

        self._app = Application.builder().token(TELEGRAM_BOT_TOKEN).build()

        self._app.add_handler(CommandHandler(["start", "help"], self._cmd_help))
        self._app.add_handler(CommandHandler("habits", self._cmd_habits))
        self._app.add_handler(CommandHandler("new", self._cmd_new))
        self._app.add_handler(CommandHandler("done", self._cmd_done))
        self._app.add_handler(CommandHandler("delete", self._cmd_delete))
        self._app.add_handler(CommandHandler("logout", self._cmd_logout))
        self._app.add_handler(CommandHandler("login", self._cmd_login))
        self._app.add_handler(
            MessageHandler(filters.TEXT & ~filters.COMMAND, self._cmd_help)
        )

        await self._app.initialize()
        await self._app.start()
        await self._app.updater.start_polling(drop_pending_updates=True)
        log.info("Telegram transport started")

    async def stop(self) -> None:
        if self._app:
            await self._app.updater.stop()
            await self._app.stop()
            await self._app.shutdown()
            log.info("Telegram transport stopped")

    # ── Handlers ──────────────────────────────────────────────

    async def _guard(self, update: Update) -> bool:
        """Owner and signed-in checks. Replies when the user is signed out."""
        if not update.message or not _is_owner(update.effective_user.id):
            return False
        if not self.session.user_id:
            await update.message.reply_text("Signed out. Use /login to continue.")
            return False
        return True

    async def _cmd_help(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message or not _is_owner(update.effective_user.id):
            return
        await update.message.reply_text(HELP_TEXT)

    async def _cmd_habits(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await self._guard(update):
            return
        text = render_habit_list(self.session.snapshot, self.session.completed_today)
        await update.message.reply_text(text)

    async def _cmd_new(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await self._guard(update):
            return
        title, description, frequency = parse_new_habit(" ".join(context.args or []))
        try:
            habit_id = await self.session.create_habit(title, description, frequency)
        except ValueError as e:
            await update.message.reply_text(f"Can't add that habit: {e}")
            return
        if habit_id:
            await update.message.reply_text(f"Added “{title}”.")
        else:
            await update.message.reply_text("Couldn't save the habit, try again in a moment.")

    async def _cmd_done(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await self._guard(update):
            return
        habit = habit_at(self.session.snapshot, (context.args or [""])[0])
        if habit is None:
            await update.message.reply_text("No such habit. Use /habits to see the numbers.")
            return
        if self.session.is_completed_today(habit.id):
            await update.message.reply_text(f"“{habit.title}” is already done today.")
            return
        if await self.session.complete_habit(habit.id):
            await update.message.reply_text(f"Nice! “{habit.title}” marked done.")
        else:
            await update.message.reply_text(
                f"Couldn't mark “{habit.title}” done, try again in a moment."
            )

    async def _cmd_delete(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await self._guard(update):
            return
        habit = habit_at(self.session.snapshot, (context.args or [""])[0])
        if habit is None:
            await update.message.reply_text("No such habit. Use /habits to see the numbers.")
            return
        await self.session.delete_habit(habit.id)
        await update.message.reply_text(f"Deleted “{habit.title}”.")

    async def _cmd_logout(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await self._guard(update):
            return
        await self.identity.sign_out()
        await update.message.reply_text("Signed out.")

    async def _cmd_login(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message or not _is_owner(update.effective_user.id):
            return
        if not self.user_id:
            await update.message.reply_text("No HABIT_USER_ID configured.")
            return
        await self.identity.sign_in(self.user_id)
        await update.message.reply_text("Signed in. /habits to see today's list.")
