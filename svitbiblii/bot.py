import logging
from datetime import datetime, time as dt_time
from typing import List, Optional
from zoneinfo import ZoneInfo

from telegram import (
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    KeyboardButton,
    ReplyKeyboardMarkup,
    Update,
)
from telegram.constants import ParseMode
from telegram.error import BadRequest
from telegram.ext import (
    Application, CommandHandler, CallbackQueryHandler, MessageHandler,
    ContextTypes, filters
)

from svitbiblii import config
from svitbiblii.books import load_book_index
from svitbiblii.commentary import CommentaryService, GeminiClient
from svitbiblii.epub_source import EpubBook
from svitbiblii.errors import (
    ChapterIndexOutOfRange,
    CommentaryError,
    ExtractionFailure,
    InvalidActionToken,
)
from svitbiblii.mailing import mailing_job, send_mailing
from svitbiblii.router import (
    CONTENTS_LABEL,
    EXTRACTION_FAILED_TEXT,
    HOME_LABEL,
    Action,
    ActionKind,
    NavigationRouter,
    ViewDescriptor,
)
from svitbiblii.storage import Store

logger = logging.getLogger(__name__)

CHUNK_LIMIT = 3500
WELCOME_TEXT = "Ласкаво просимо до «Світу Біблії»! Кнопки меню внизу екрана."
STALE_BUTTON_TEXT = "Ця кнопка застаріла. Відкрийте меню ще раз."
COMMENTARY_DISABLED_TEXT = "Коментарі зараз недоступні."
COMMENTARY_WAIT_TEXT = "⏳ Готую коментар..."
ADMIN_ONLY_TEXT = "Ця команда доступна лише адміністратору."


def to_markup(view: ViewDescriptor) -> Optional[InlineKeyboardMarkup]:
    if not view.button_rows:
        return None
    return InlineKeyboardMarkup(
        [[InlineKeyboardButton(b.label, callback_data=b.token) for b in row] for row in view.button_rows]
    )


def main_keyboard() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        [[KeyboardButton(CONTENTS_LABEL), KeyboardButton(HOME_LABEL)]],
        resize_keyboard=True,
    )


def split_to_chunks(text: str, limit: int = CHUNK_LIMIT) -> List[str]:
    chunks: List[str] = []
    buf: List[str] = []
    count = 0
    for line in text.splitlines(keepends=True):
        if count + len(line) > limit and buf:
            chunks.append("".join(buf))
            buf, count = [line], len(line)
        else:
            buf.append(line)
            count += len(line)
    if buf:
        chunks.append("".join(buf))
    return chunks or [text]


# Messaging
async def send_chunks(chat, text: str, reply_markup=None, parse_mode: Optional[str] = ParseMode.HTML) -> None:
    chunks = split_to_chunks(text)
    for i, ch in enumerate(chunks, start=1):
        markup = reply_markup if i == len(chunks) else None
        await chat.send_message(ch, parse_mode=parse_mode, reply_markup=markup)


async def send_view(update: Update, view: ViewDescriptor) -> None:
    await send_chunks(update.effective_chat, view.text, reply_markup=to_markup(view))


async def edit_view(q, view: ViewDescriptor) -> None:
    """Replace the tapped message; views too long for one message are sent anew."""
    markup = to_markup(view)
    if len(view.text) > CHUNK_LIMIT:
        await send_chunks(q.message.chat, view.text, reply_markup=markup)
        return
    try:
        await q.message.edit_text(view.text, parse_mode=ParseMode.HTML, reply_markup=markup)
    except BadRequest as e:
        msg = str(e).lower()
        if "message is not modified" in msg:
            return
        if "message is too long" in msg:
            await send_chunks(q.message.chat, view.text, reply_markup=markup)
            return
        raise


def _router(context: ContextTypes.DEFAULT_TYPE) -> NavigationRouter:
    return context.application.bot_data["router"]


def _store(context: ContextTypes.DEFAULT_TYPE) -> Store:
    return context.application.bot_data["store"]


def _commentary(context: ContextTypes.DEFAULT_TYPE) -> Optional[CommentaryService]:
    return context.application.bot_data.get("commentary")


def touch(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    user = update.effective_user
    if user is None:
        return
    _store(context).touch_user(user.id, user.username, user.first_name, user.last_name, user.language_code)


async def show_home(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await send_view(update, _router(context).home_view())


async def show_contents(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await send_view(update, await _router(context).book_list_view())


async def step(update: Update, context: ContextTypes.DEFAULT_TYPE, delta: int) -> None:
    store = _store(context)
    chat_id = update.effective_chat.id
    view, state = await _router(context).step(store.load_state(chat_id), delta)
    store.save_state(chat_id, state)
    await send_view(update, view)


# Handlers
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    touch(update, context)
    await update.effective_chat.send_message(WELCOME_TEXT, reply_markup=main_keyboard())
    await show_home(update, context)


async def cmd_contents(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    touch(update, context)
    await show_contents(update, context)


async def cmd_next(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    touch(update, context)
    await step(update, context, 1)


async def cmd_prev(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    touch(update, context)
    await step(update, context, -1)


async def cmd_where(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    touch(update, context)
    state = _store(context).load_state(update.effective_chat.id)
    await update.message.reply_text(_router(context).describe_location(state))


async def cmd_mailing_now(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    touch(update, context)
    if not config.is_admin(update.effective_user.id):
        await update.message.reply_text(ADMIN_ONLY_TEXT)
        return
    router = _router(context)
    await update.message.reply_text("Починаю розсилку...")
    result = await send_mailing(
        context.bot, router, _store(context), commentary_enabled=router.commentary_enabled
    )
    if result is None:
        await update.message.reply_text("Розсилку не виконано: вже триває або немає тексту.")
        return
    await update.message.reply_text(
        f"Розсилку #{result.iteration_id} завершено: {result.success}/{result.recipients} доставлено, "
        f"{result.failed} з помилкою."
    )


async def on_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    touch(update, context)
    text = (update.message.text or "").strip()
    if text == CONTENTS_LABEL:
        await show_contents(update, context)
    else:
        await show_home(update, context)


async def send_commentary(q, context: ContextTypes.DEFAULT_TYPE, action: Action) -> None:
    service = _commentary(context)
    if service is None:
        await q.answer(COMMENTARY_DISABLED_TEXT, show_alert=True)
        return
    await q.answer(COMMENTARY_WAIT_TEXT)
    chat = q.message.chat
    try:
        parts = await service.commentary_for(q.from_user.id, action.chapter_index, action.offset)
    except CommentaryError as e:
        await chat.send_message(str(e))
        return
    except ChapterIndexOutOfRange:
        await chat.send_message(STALE_BUTTON_TEXT)
        return
    except ExtractionFailure:
        logger.exception("Commentary extraction failed for %s", action.encode())
        await chat.send_message(EXTRACTION_FAILED_TEXT)
        return
    for part in parts:
        # model output is plain text, not HTML
        await send_chunks(chat, part, parse_mode=None)


async def on_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    touch(update, context)
    q = update.callback_query
    if q.message is None:
        # the tapped message is too old or otherwise inaccessible
        await q.answer(STALE_BUTTON_TEXT)
        return
    try:
        action = Action.decode(q.data)
    except InvalidActionToken as e:
        logger.warning("Bad callback data: %s", e)
        await q.answer(STALE_BUTTON_TEXT)
        return

    if action.kind is ActionKind.COMMENTARY:
        await send_commentary(q, context, action)
        return

    await q.answer()
    store = _store(context)
    chat_id = q.message.chat.id
    view, state = await _router(context).handle(store.load_state(chat_id), action)
    store.save_state(chat_id, state)
    await edit_view(q, view)


async def on_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error("Update %s caused error", update, exc_info=context.error)


def build_application(token: str, router: NavigationRouter, store: Store,
                      commentary: Optional[CommentaryService] = None) -> Application:
    app = Application.builder().token(token).build()
    app.bot_data.update(router=router, store=store, commentary=commentary)

    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("contents", cmd_contents))
    app.add_handler(CommandHandler("next", cmd_next))
    app.add_handler(CommandHandler("prev", cmd_prev))
    app.add_handler(CommandHandler("where", cmd_where))
    app.add_handler(CommandHandler("mailing_now", cmd_mailing_now))

    app.add_handler(CallbackQueryHandler(on_callback))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, on_text))
    app.add_error_handler(on_error)
    return app


def main() -> None:
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)

    if not config.BOT_TOKEN:
        raise SystemExit("Missing BOT_TOKEN env var")

    book = EpubBook(config.EPUB_PATH)
    try:
        book.load()
    except ExtractionFailure:
        # chapter requests retry the load and show the error view meanwhile
        logger.exception("Failed loading %s", config.EPUB_PATH)

    books = load_book_index(config.BOOK_TABLE_PATH or None)
    store = Store(config.DB_PATH)
    tz = ZoneInfo(config.TZ_NAME)
    router = NavigationRouter(book, book, books, commentary_enabled=bool(config.GEMINI_API_KEY))

    commentary = None
    if config.GEMINI_API_KEY:
        commentary = CommentaryService(
            router,
            store,
            GeminiClient(config.GEMINI_API_KEY, config.GEMINI_MODEL),
            max_requests_per_day=config.AI_MAX_REQUESTS_PER_DAY,
            max_length=config.AI_MAX_RESPONSE_LENGTH,
            is_exempt=config.is_admin,
            today=lambda: datetime.now(tz).date(),
        )
    else:
        logger.info("GEMINI_API_KEY not set; commentary disabled")

    app = build_application(config.BOT_TOKEN, router, store, commentary)
    app.job_queue.run_daily(
        mailing_job,
        time=dt_time(hour=config.MAILING_HOUR, tzinfo=tz),
        days=config.MAILING_DAYS,
        name="mailing",
    )
    logger.info("Mailing scheduled on days %s at %02d:00 %s", config.MAILING_DAYS, config.MAILING_HOUR, config.TZ_NAME)

    logger.info("Starting polling...")
    app.run_polling(drop_pending_updates=True, allowed_updates=None)


if __name__ == "__main__":
    main()
