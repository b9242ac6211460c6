"""Twice-weekly broadcast of three consecutive verses to every active user."""

import asyncio
import html
import logging
import random
from dataclasses import dataclass
from typing import Optional

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.constants import ParseMode
from telegram.error import Forbidden, TelegramError
from telegram.ext import ContextTypes

from svitbiblii.commentary import Passage, passage_from
from svitbiblii.errors import ChapterIndexOutOfRange, ExtractionFailure
from svitbiblii.router import COMMENTARY_LABEL, Action, NavigationRouter
from svitbiblii.storage import Store

logger = logging.getLogger(__name__)

PASSAGE_SIZE = 3
SEND_DELAY = 0.1
MAX_PICK_ATTEMPTS = 10

HEADER = "🌅 <b>Слово на сьогодні</b>"
FOOTER = "Щоб читати далі, надішліть /start"

_running = asyncio.Lock()


@dataclass
class MailingResult:
    iteration_id: Optional[int]
    recipients: int
    success: int
    failed: int


async def pick_passage(router: NavigationRouter, rng: Optional[random.Random] = None) -> Optional[Passage]:
    """Pick a random chapter that belongs to a book and a random run of verses in it."""
    rng = rng or random.Random()
    indices = router.books.chapter_indices()
    if not indices:
        return None
    for _ in range(MAX_PICK_ATTEMPTS):
        chapter_index = rng.choice(indices)
        try:
            content = await router.load_chapter(chapter_index)
        except ChapterIndexOutOfRange:
            logger.warning("Book table points past the spine at %d; picking again", chapter_index)
            continue
        count = content.parsed.verse_count
        if count == 0:
            logger.info("Chapter %d has no verses; picking again", content.chapter_index)
            continue
        offset = rng.randint(0, max(0, count - PASSAGE_SIZE))
        return passage_from(content, offset, PASSAGE_SIZE)
    return None


def format_passage(passage: Passage) -> str:
    numbers = passage.verse_numbers
    if passage.chapter_number is not None:
        where = f"{passage.book_name} {passage.chapter_number}:{numbers[0]}"
        if len(numbers) > 1:
            where += f"-{numbers[-1]}"
    else:
        where = passage.book_name
    lines = [HEADER, "", f"📖 <b>{html.escape(where, quote=False)}</b>", ""]
    for n, text in zip(numbers, passage.verse_texts):
        lines.append(f"<b>{n}</b> {html.escape(text, quote=False)}")
    lines += ["", FOOTER]
    return "\n".join(lines)


def passage_markup(passage: Passage, commentary_enabled: bool) -> InlineKeyboardMarkup:
    index = passage.chapter_index
    row = [InlineKeyboardButton("📖 Читати розділ", callback_data=Action.chapter(index).encode())]
    if commentary_enabled:
        token = Action.commentary(index, passage.window.start_offset).encode()
        row.append(InlineKeyboardButton(COMMENTARY_LABEL, callback_data=token))
    return InlineKeyboardMarkup([row])


async def send_mailing(
    bot: Bot,
    router: NavigationRouter,
    store: Store,
    commentary_enabled: bool = False,
    rng: Optional[random.Random] = None,
    delay: float = SEND_DELAY,
) -> Optional[MailingResult]:
    if _running.locked():
        logger.warning("Mailing is already running; skipping")
        return None

    async with _running:
        try:
            passage = await pick_passage(router, rng)
        except ExtractionFailure:
            logger.exception("Could not extract a passage for mailing")
            return None
        if passage is None:
            logger.error("No passage available for mailing")
            return None

        text = format_passage(passage)
        markup = passage_markup(passage, commentary_enabled)
        users = store.active_users()
        success = failed = 0
        for user in users:
            try:
                await bot.send_message(user.user_id, text, parse_mode=ParseMode.HTML, reply_markup=markup)
                success += 1
            except Forbidden:
                logger.info("User %d blocked the bot; deactivating", user.user_id)
                store.deactivate_user(user.user_id)
                failed += 1
            except TelegramError as e:
                logger.warning("Mailing to %d failed: %s", user.user_id, e)
                failed += 1
            await asyncio.sleep(delay)

        iteration_id = store.record_mailing(
            book_name=passage.book_name,
            chapter_index=passage.chapter_index,
            chapter_number=passage.chapter_number,
            verse_numbers=passage.verse_numbers,
            verse_texts=passage.verse_texts,
            recipients_count=len(users),
            success_count=success,
            fail_count=failed,
        )
        logger.info(
            "Mailing #%d: %s %s, sent %d/%d", iteration_id, passage.book_name,
            passage.verse_numbers, success, len(users),
        )
        return MailingResult(iteration_id, len(users), success, failed)


async def mailing_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    data = context.application.bot_data
    await send_mailing(
        context.bot,
        data["router"],
        data["store"],
        commentary_enabled=data["router"].commentary_enabled,
    )
