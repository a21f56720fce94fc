# bot.py
from __future__ import annotations

import html
import json
import logging
import os
from typing import List, Optional

from dotenv import load_dotenv

from telegram import MessageEntity, Update
from telegram.constants import ParseMode
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    MessageHandler,
    ContextTypes,
    filters,
)

from options import job_attribute_tags
from printer import FileFetcher, IppPrinter, NotAFileError, PrintError, can_encode
from storage import Storage
from tg_printer import TGPrinter

logger = logging.getLogger(__name__)

DEFAULT_JOB_ATTRIBUTES = "copies,media,sides,print-color-mode,print-quality"
MAX_STATUS_CHARS = 3500


# -----------------------------
# Reply helper (update.message may be None)
# -----------------------------
async def reply(
    update: Update,
    context: Optional[ContextTypes.DEFAULT_TYPE],
    text: str,
    **kwargs,
):
    m = update.effective_message
    if m:
        return await m.reply_text(text, **kwargs)

    chat = update.effective_chat
    if chat and context:
        return await context.bot.send_message(chat_id=chat.id, text=text, **kwargs)

    return None


# -----------------------------
# Utils
# -----------------------------
def parse_csv(s: str) -> List[str]:
    return [p.strip() for p in (s or "").split(",") if p.strip()]


def format_status(status: dict) -> str:
    body = json.dumps(status, indent=2, ensure_ascii=False, default=str)
    if len(body) > MAX_STATUS_CHARS:
        body = body[: MAX_STATUS_CHARS - 1] + "…"
    return f"<code>{html.escape(body)}</code>"


def get_printer(context: ContextTypes.DEFAULT_TYPE) -> TGPrinter:
    return context.application.bot_data["printer"]


# -----------------------------
# Commands
# -----------------------------
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    printer = get_printer(context)
    await reply(
        update,
        context,
        f"Hi! I send documents to the printer \"{printer.name}\".\n\n"
        "Send a file, or a link to a file, and it gets printed.\n"
        "Files use your print settings, links are printed as they are.\n\n"
        "Commands:\n"
        "/settings — print settings\n"
        "/status — printer status\n"
        "/beep — make the printer identify itself\n"
        "/jobname <name> — name shown after @ in print jobs\n"
        "/reload — reload options from the printer",
    )


async def cmd_settings(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    printer = get_printer(context)
    await reply(update, context, f"{printer.name} print settings:", reply_markup=printer.keyboard())


async def cmd_status(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    printer = get_printer(context)
    try:
        status = await printer.status()
    except PrintError as e:
        logger.warning("Status of %s failed: %s", printer.name, e)
        await reply(update, context, f"Printer unavailable: {e}")
        return
    await reply(update, context, format_status(status), parse_mode=ParseMode.HTML)


async def cmd_beep(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    printer = get_printer(context)
    try:
        await printer.beep()
    except PrintError as e:
        logger.warning("Identify on %s failed: %s", printer.name, e)
        await reply(update, context, f"Printer unavailable: {e}")
        return
    await reply(update, context, "🔔 Beep!")


async def cmd_jobname(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    printer = get_printer(context)
    if not context.args:
        await reply(update, context, f"Jobs are named user@{await printer.job_name_at()}\nUsage: /jobname <name>")
        return
    value = "_".join(context.args).strip()
    await printer.set_job_name_at(value)
    await reply(update, context, f"Jobs are now named user@{value}")


async def cmd_reload(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    printer = get_printer(context)
    try:
        await printer.load()
    except PrintError as e:
        logger.warning("Reload of %s failed: %s", printer.name, e)
        await reply(update, context, f"Printer unavailable: {e}")
        return
    await reply(update, context, "Printer options reloaded.")


# -----------------------------
# Handlers: documents / links / buttons
# -----------------------------
async def on_document(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    printer = get_printer(context)
    msg = update.effective_message
    if not msg or not msg.document:
        return

    try:
        job = await printer.print_from_document(msg.document, update.effective_user, context.bot, update.effective_chat.id)
    except (PrintError, NotAFileError) as e:
        logger.warning("Printing document from chat %s failed: %s", update.effective_chat.id, e)
        await reply(update, context, f"⚠️ Could not print: {e}")
        return
    await reply(update, context, f"🖨 Printing {job}")


async def on_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    printer = get_printer(context)
    msg = update.effective_message
    if not msg:
        return

    urls = list(msg.parse_entities([MessageEntity.URL]).values())
    urls += [e.url for e in msg.entities or [] if e.type == MessageEntity.TEXT_LINK and e.url]
    if not urls:
        await reply(update, context, "Send a file or a link to a file to print it.")
        return

    for url in urls:
        try:
            job = await printer.print_from_url(url, update.effective_user)
        except (PrintError, NotAFileError) as e:
            logger.warning("Printing %s failed: %s", url, e)
            await reply(update, context, f"⚠️ Could not print {url}: {e}")
            continue
        await reply(update, context, f"🖨 Printing {job}")


async def on_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if not query or not query.data:
        return

    printer = get_printer(context)
    if not printer.codec.owns(query.data):
        return
    await printer.handle_callback(query, context.bot)


# -----------------------------
# Lifecycle
# -----------------------------
async def on_shutdown(app: Application) -> None:
    for key in ("ipp", "fetcher", "db"):
        res = app.bot_data.get(key)
        if res is None:
            continue
        try:
            await res.aclose()
        except Exception:
            logger.exception("Closing %s failed", key)


def main() -> None:
    load_dotenv()

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # httpx logs every request URL, which includes the bot token
    logging.getLogger("httpx").setLevel(logging.WARNING)

    token = os.environ["TELEGRAM_BOT_TOKEN"]
    printer_url = os.environ["PRINTER_URL"]

    printer_name = os.getenv("PRINTER_NAME", "Printer").strip() or "Printer"
    bot_name = os.getenv("BOT_NAME", "telegram").strip() or "telegram"
    status_attributes = parse_csv(os.getenv("STATUS_ATTRIBUTES", ""))
    job_attributes = parse_csv(os.getenv("JOB_ATTRIBUTES", DEFAULT_JOB_ATTRIBUTES))
    db_path = os.getenv("DB_PATH", "printer_bot.sqlite3")
    callback_prefix = os.getenv("CALLBACK_PREFIX", "").strip()

    async def post_init(app: Application) -> None:
        db = Storage(db_path)
        await db.init()

        ipp = IppPrinter(printer_url, attribute_tags=job_attribute_tags(job_attributes))
        unsendable = [n for n in job_attributes if not can_encode(n)]
        if unsendable:
            logger.warning("Options %s have no IPP value tag and are not sent to the printer", unsendable)
        fetcher = FileFetcher()
        printer = TGPrinter(
            name=printer_name,
            printer=ipp,
            db=db,
            fetcher=fetcher,
            status_attributes=status_attributes,
            job_attributes=job_attributes,
            bot_name=bot_name,
            callback_prefix=callback_prefix,
        )

        app.bot_data["db"] = db
        app.bot_data["ipp"] = ipp
        app.bot_data["fetcher"] = fetcher
        app.bot_data["printer"] = printer

        # menus show empty value lists until this succeeds; /reload retries
        try:
            await printer.load()
        except PrintError:
            logger.exception("Could not load job attributes from %s", printer_url)

    app = (
        ApplicationBuilder()
        .token(token)
        .post_init(post_init)
        .post_shutdown(on_shutdown)
        .build()
    )

    # Commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("settings", cmd_settings))
    app.add_handler(CommandHandler("status", cmd_status))
    app.add_handler(CommandHandler("beep", cmd_beep))
    app.add_handler(CommandHandler("jobname", cmd_jobname))
    app.add_handler(CommandHandler("reload", cmd_reload))

    # Callbacks
    app.add_handler(CallbackQueryHandler(on_callback))

    # Files and links
    app.add_handler(MessageHandler(filters.Document.ALL, on_document))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, on_text))

    app.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    main()
