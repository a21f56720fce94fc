# tg_printer.py
from __future__ import annotations

import html
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from telegram import InlineKeyboardMarkup
from telegram.constants import ParseMode
from telegram.error import TelegramError

from callback_codec import CallbackCodec, CallbackType, MalformedCallback, MenuAction
from keyboards import build_copies_leaf, build_leaf, build_root
from options import AvailableAttributes, status_keys
from printer import Fetcher, PrinterClient, PrintJob, ensure_file_url, job_name_from_url
from storage import SettingsStore, Storage

logger = logging.getLogger(__name__)

MIN_NUMERIC_VALUE = 1
CLEARED_TEXT = "All print settings removed"


@dataclass(frozen=True)
class Position:
    """Where the menu is: root (option is None) or drilled into one option."""

    option: Optional[str] = None

    @property
    def is_root(self) -> bool:
        return self.option is None


ROOT = Position()


@dataclass(frozen=True)
class Outcome:
    """Result of one menu action: ack text plus at most one view change."""

    text: str = ""
    position: Optional[Position] = None
    summary: Optional[str] = None


IGNORED = Outcome()


def submitter_name(user, job_name_at: str) -> str:
    name = getattr(user, "username", None)
    if not name:
        parts = [getattr(user, "first_name", None) or "", getattr(user, "last_name", None) or ""]
        name = "_".join(p for p in parts if p) or str(getattr(user, "id", "unknown"))
    return f"{name}@{job_name_at}"


def _numeric(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


class TGPrinter:
    def __init__(
        self,
        name: str,
        printer: PrinterClient,
        db: Storage,
        fetcher: Fetcher,
        status_attributes: Sequence[str],
        job_attributes: Sequence[str],
        bot_name: str,
        callback_prefix: str = "",
    ):
        self.name = name
        self.printer = printer
        self.fetcher = fetcher
        self.status_attributes = list(status_attributes)
        self.job_attributes = list(job_attributes)
        self.bot_name = bot_name

        self.codec = CallbackCodec(callback_prefix)
        self.available = AvailableAttributes(self.job_attributes)
        self.user_settings = SettingsStore(db, scope=name)
        self._db = db
        self._job_name_at_key = f"{name}JobNameAt"

    # -----------------------------
    # Printer operations
    # -----------------------------
    async def load(self) -> None:
        """Fetch legal values and defaults for every configurable option."""
        status = await self.printer.printer_status(status_keys(self.job_attributes))
        self.available.update(status)
        self.user_settings.set_defaults(self.available.defaults())
        logger.info(
            "Loaded job attributes for %s: %s",
            self.name,
            {n: len(self.available.values(n)) for n in self.job_attributes},
        )

    async def status(self) -> Dict[str, Any]:
        return await self.printer.printer_status(self.status_attributes or "all")

    async def beep(self) -> bool:
        return await self.printer.identify()

    async def job_name_at(self) -> str:
        return await self._db.get_value(self._job_name_at_key, self.bot_name) or self.bot_name

    async def set_job_name_at(self, value: str) -> None:
        await self._db.set_value(self._job_name_at_key, value)

    async def print_from_url(self, url: str, user) -> str:
        # reject pages before any network traffic
        ensure_file_url(url)
        content = await self.fetcher.fetch(url)

        job_name = job_name_from_url(url)
        submitter = submitter_name(user, await self.job_name_at())

        await self.printer.print_file(PrintJob(content=content, job_name=job_name, submitter=submitter))
        logger.info("Printed %s/%s on %s", submitter, job_name, self.name)
        return f"{submitter}/{job_name}"

    async def print_from_document(self, document, user, bot, chat_id: int) -> str:
        """Print a Telegram document with the settings of the chat it was sent in."""
        tg_file = await bot.get_file(document.file_id)
        content = await self.fetcher.fetch(tg_file.file_path)

        job_name = document.file_name or document.file_id
        submitter = submitter_name(user, await self.job_name_at())
        job = PrintJob(
            content=content,
            job_name=job_name,
            submitter=submitter,
            file_type=document.mime_type,
            job_attributes=await self.user_settings.get(chat_id),
        )

        await self.printer.print_file(job)
        logger.info("Printed %s/%s on %s with %s", submitter, job_name, self.name, job.job_attributes)
        return f"{submitter}/{job_name}"

    # -----------------------------
    # Menu
    # -----------------------------
    def keyboard(self, option: Optional[str] = None, current: Optional[Any] = None) -> InlineKeyboardMarkup:
        """
        Root keyboard when option is None, otherwise the value list for option.
        """
        if option is None:
            return build_root(self.codec, self.job_attributes)

        spec = self.available.spec(option)
        default = self.available.default(option)
        if spec is not None and spec.numeric:
            return build_copies_leaf(self.codec, option, current, default)
        return build_leaf(self.codec, option, self.available.values(option), current, default)

    async def render(self, chat_id: int, position: Position) -> InlineKeyboardMarkup:
        if position.is_root:
            return self.keyboard()
        return self.keyboard(position.option, await self.user_settings.get_property(chat_id, position.option))

    async def settings_text(self, chat_id: int) -> str:
        record = await self.user_settings.get(chat_id)
        body = json.dumps(record, indent=2, ensure_ascii=False)
        return f"<b>{html.escape(self.name)} printer settings</b>\n<code>{html.escape(body)}</code>"

    async def _add_value(self, chat_id: int, option: str, add: int) -> int:
        # steps count from the chat's own value; a printer default never seeds them
        base = _numeric(await self.user_settings.get_stored(chat_id, option))
        if base is None:
            base = MIN_NUMERIC_VALUE
        new_value = max(base + add, MIN_NUMERIC_VALUE)
        await self.user_settings.set_property(chat_id, option, new_value)
        return new_value

    async def dispatch(self, chat_id: int, action: MenuAction) -> Outcome:
        """Apply one decoded menu action for chat_id and decide the next view."""
        t = action.type
        option = action.option

        if t is CallbackType.BACK:
            return Outcome(position=ROOT)

        if t is CallbackType.CLEAR_ALL:
            await self.user_settings.reset(chat_id)
            return Outcome(text=CLEARED_TEXT, position=ROOT)

        if t is CallbackType.EXIT:
            return Outcome(summary=await self.settings_text(chat_id))

        if option not in self.job_attributes:
            logger.warning("Ignoring %s for unknown option %r in chat %s", t.name, option, chat_id)
            return IGNORED

        if t is CallbackType.GO_TO:
            return Outcome(position=Position(option))

        if t in (CallbackType.SET_VALUE, CallbackType.SET_VALUE_AND_BACK):
            if action.has_value:
                await self.user_settings.set_property(chat_id, option, action.value)
            else:
                await self.user_settings.unset_property(chat_id, option)
            value = await self.user_settings.get_property(chat_id, option)
            next_position = ROOT if t is CallbackType.SET_VALUE_AND_BACK else Position(option)
            return Outcome(text=f"{option} = {value}", position=next_position)

        if t is CallbackType.ADD_VALUE:
            spec = self.available.spec(option)
            add = _numeric(action.value) if action.has_value else None
            if spec is None or not spec.numeric or add is None:
                logger.warning("Ignoring non-numeric %s on %r in chat %s", t.name, option, chat_id)
                return IGNORED
            new_value = await self._add_value(chat_id, option, add)
            return Outcome(text=f"{option} = {new_value}", position=Position(option))

        return IGNORED

    async def handle_callback(self, query, bot) -> None:
        """
        Entry point for one button press: decode, dispatch, edit the message
        at most once, answer the query exactly once.
        """
        if not query.data or not query.message:
            return

        try:
            action = self.codec.decode(query.data)
        except MalformedCallback as e:
            logger.warning("Dropping malformed callback from chat %s: %s", query.message.chat_id, e)
            return

        chat_id = query.message.chat_id
        message_id = query.message.message_id
        outcome = await self.dispatch(chat_id, action)

        if outcome.summary is not None:
            await safe_edit_text(bot, chat_id, message_id, outcome.summary, parse_mode=ParseMode.HTML)
        elif outcome.position is not None:
            markup = await self.render(chat_id, outcome.position)
            if markup != query.message.reply_markup:
                await safe_edit_markup(bot, chat_id, message_id, markup)

        await safe_answer_callback(query, outcome.text)


# -----------------------------
# Telegram helpers
# -----------------------------
async def safe_edit_markup(bot, chat_id: int, message_id: int, reply_markup: InlineKeyboardMarkup) -> None:
    try:
        await bot.edit_message_reply_markup(chat_id=chat_id, message_id=message_id, reply_markup=reply_markup)
    except TelegramError as e:
        logger.warning("Could not edit keyboard in chat %s: %s", chat_id, e)


async def safe_edit_text(bot, chat_id: int, message_id: int, text: str, **kwargs) -> None:
    # no reply_markup: the inline keyboard is removed
    try:
        await bot.edit_message_text(chat_id=chat_id, message_id=message_id, text=text, **kwargs)
    except TelegramError as e:
        logger.warning("Could not edit message in chat %s: %s", chat_id, e)


async def safe_answer_callback(query, text: str) -> None:
    try:
        await query.answer(text or None, show_alert=False)
    except TelegramError as e:
        logger.warning("Could not answer callback %s: %s", getattr(query, "id", "?"), e)
