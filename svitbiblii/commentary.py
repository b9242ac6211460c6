"""Barclay-style AI commentary on a window of verses, via the Gemini REST API."""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import date
from typing import Callable, List, Optional

import requests

from svitbiblii import paginator
from svitbiblii.books import BookLocation
from svitbiblii.errors import CommentaryError, CommentaryLimitReached
from svitbiblii.paginator import VerseWindow
from svitbiblii.references import strip_inline_markers
from svitbiblii.router import ChapterContent, NavigationRouter
from svitbiblii.storage import Store
from svitbiblii.text import verse_body

logger = logging.getLogger(__name__)

API = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
MAX_RETRIES = 3
REQUEST_FAILED_TEXT = "Помилка при обробці запиту. Спробуйте ще раз."


@dataclass(frozen=True)
class Passage:
    chapter_index: int
    chapter_title: str
    location: Optional[BookLocation]
    window: VerseWindow

    @property
    def book_name(self) -> str:
        return self.location.book.title if self.location else self.chapter_title

    @property
    def chapter_number(self) -> Optional[int]:
        return self.location.chapter_in_book if self.location else None

    @property
    def verse_numbers(self) -> List[int]:
        return self.window.verse_numbers

    @property
    def verse_texts(self) -> List[str]:
        return [strip_inline_markers(verse_body(v)) for v in self.window.verses]


def passage_from(content: ChapterContent, offset: int, size: int = paginator.WINDOW_SIZE) -> Passage:
    offset = min(max(offset, 0), max(content.parsed.verse_count - 1, 0))
    return Passage(
        chapter_index=content.chapter_index,
        chapter_title=content.parsed.title,
        location=content.location,
        window=paginator.window(content.parsed, offset, size),
    )


def build_prompt(passage: Passage) -> str:
    lines = "".join(f"{n}. {t}\n" for n, t in zip(passage.verse_numbers, passage.verse_texts))
    if passage.chapter_number is not None:
        where = f"{passage.book_name}, Розділ {passage.chapter_number}"
    else:
        where = passage.book_name
    return (
        "На основі коментарів Вільяма Барклі з його серії \"Daily Study Bible\", "
        f"надай короткий виклад його думок про ці вірші:\n\n{where}\n\n{lines}\n"
        "Включи основні ідеї Барклі: історичний та культурний контекст, значення "
        "грецьких/єврейських слів, богословське тлумачення та практичні уроки для "
        "сучасного життя."
    )


def limit_response_length(text: str, limit: int = 2000) -> str:
    if len(text) <= limit:
        return text
    truncated = text[:limit]
    cut = max(truncated.rfind("."), truncated.rfind("\n"))
    if cut > limit * 0.7:
        return truncated[: cut + 1] + "..."
    return truncated + "..."


def split_message(text: str, limit: int = 2000) -> List[str]:
    if len(text) <= limit:
        return [text]
    chunks: List[str] = []
    start = 0
    while start < len(text):
        end = start + limit
        if end >= len(text):
            chunks.append(text[start:])
            break
        cut = max(text.rfind(".", start, end), text.rfind("\n", start, end))
        if cut > start + limit * 0.5:
            chunks.append(text[start:cut + 1])
            start = cut + 1
        else:
            chunks.append(text[start:end])
            start = end
    return chunks


class GeminiClient:
    def __init__(
        self,
        api_key: str,
        model: str,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        timeout: int = 60,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.session = session or requests.Session()
        self.sleep = sleep
        self.timeout = timeout

    def generate(self, prompt: str) -> str:
        system = (
            "Будь ласка, давай короткі та лаконічні відповіді. Обмеж свою відповідь "
            "до половини сторінки A4 (приблизно 30 рядків тексту)."
        )
        payload = {"contents": [{"role": "user", "parts": [{"text": f"{system}\n\n{prompt}"}]}]}
        url = API.format(model=self.model)

        for attempt in range(1, MAX_RETRIES + 1):
            try:
                r = self.session.post(
                    url,
                    json=payload,
                    headers={"x-goog-api-key": self.api_key},
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                logger.error("Gemini request failed: %s", e)
                raise CommentaryError(REQUEST_FAILED_TEXT) from e
            if r.status_code == 503 and attempt < MAX_RETRIES:
                wait = attempt * 2
                logger.warning("Gemini overloaded; retrying in %ds (attempt %d/%d)", wait, attempt, MAX_RETRIES)
                self.sleep(wait)
                continue
            break

        if r.status_code in (401, 403):
            raise CommentaryError("Помилка налаштування сервісу коментарів. Зверніться до підтримки.")
        if r.status_code in (429, 503):
            raise CommentaryError("Сервіс коментарів тимчасово перевантажений. Спробуйте пізніше.")
        try:
            r.raise_for_status()
        except requests.HTTPError as e:
            logger.error("Gemini request failed: %s", e)
            raise CommentaryError(REQUEST_FAILED_TEXT) from e

        try:
            js = r.json()
        except ValueError as e:
            logger.error("Gemini returned malformed JSON: %s", e)
            raise CommentaryError(REQUEST_FAILED_TEXT) from e
        candidates = js.get("candidates") or []
        parts = (candidates[0].get("content") or {}).get("parts") or [] if candidates else []
        text = "".join(p.get("text", "") for p in parts).strip()
        if not text:
            raise CommentaryError("Не вдалося отримати коментар. Спробуйте ще раз.")
        return text


class CommentaryService:
    def __init__(
        self,
        router: NavigationRouter,
        store: Store,
        client: GeminiClient,
        max_requests_per_day: int = 3,
        max_length: int = 2000,
        is_exempt: Callable[[int], bool] = lambda user_id: False,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.router = router
        self.store = store
        self.client = client
        self.max_requests_per_day = max_requests_per_day
        self.max_length = max_length
        self.is_exempt = is_exempt
        self.today = today

    def remaining(self, user_id: int) -> Optional[int]:
        if self.is_exempt(user_id):
            return None
        used = self.store.ai_requests_today(user_id, self.today().isoformat())
        return max(0, self.max_requests_per_day - used)

    async def commentary_for(self, user_id: int, chapter_index: int, offset: int) -> List[str]:
        """Return the commentary split into message-sized chunks.

        Cached answers are served without counting against the daily limit.
        May raise ChapterIndexOutOfRange or ExtractionFailure from the router.
        """
        content = await self.router.load_chapter(chapter_index)
        if not content.parsed.has_content:
            raise CommentaryError("Текст цього розділу не знайдено.")
        passage = passage_from(content, offset)
        start = passage.window.start_offset

        cached = self.store.cached_commentary(chapter_index, start)
        if cached is not None:
            return split_message(cached.response_text, self.max_length)

        remaining = self.remaining(user_id)
        if remaining == 0:
            raise CommentaryLimitReached(
                f"Ви досягли ліміту запитів на сьогодні ({self.max_requests_per_day} запитів на день). "
                "Спробуйте завтра."
            )

        prompt = build_prompt(passage)
        started = time.monotonic()
        text = await asyncio.to_thread(self.client.generate, prompt)
        elapsed_ms = int((time.monotonic() - started) * 1000)
        text = limit_response_length(text, self.max_length)

        self.store.save_commentary(chapter_index, start, prompt, text, self.client.model, elapsed_ms)
        if remaining is not None:
            self.store.record_ai_request(user_id, self.today().isoformat())
        logger.info("Commentary for chapter %d offset %d in %d ms", chapter_index, start, elapsed_ms)
        return split_message(text, self.max_length)
