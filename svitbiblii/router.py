"""Menu graph of the reader: which view follows which button.

Every view is rebuilt from the action token the user tapped plus the
chat's NavigationState; the router keeps no per-user state of its own.
"""

import html
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from svitbiblii import paginator
from svitbiblii.books import BookIndex, BookLocation
from svitbiblii.errors import (
    ChapterIndexOutOfRange,
    ExtractionFailure,
    InvalidActionToken,
    UnknownBook,
    VerseOutOfRange,
)
from svitbiblii.references import ProcessedContent, is_reference_line, process_content
from svitbiblii.text import ParsedChapter, html_to_text, parse_text

logger = logging.getLogger(__name__)

HOME_TEXT = "👋 Вітаю! Оберіть опцію нижче:"
CONTENTS_TEXT = "📖 Оберіть книгу для читання:"
FRONT_MATTER_TEXT = "📄 Вступні матеріали"
NO_CONTENT_TEXT = "Текст цього розділу не знайдено."
NO_BOOK_TEXT = "Цей розділ не належить до жодної книги."
CHAPTER_NOT_FOUND_TEXT = "❌ Розділ не знайдено."
NO_REFERENCES_TEXT = "📚 Для цього розділу немає посилань."
EXTRACTION_FAILED_TEXT = "❌ Не вдалося прочитати книгу. Спробуйте ще раз трохи пізніше."

CONTENTS_LABEL = "📋 Зміст книги"
HOME_LABEL = "🏠 Головне меню"
BACK_TO_CONTENTS_LABEL = "🔙 Назад до змісту"
BACK_TO_CHAPTER_LABEL = "⬅️ Назад до розділу"
PREV_CHAPTER_LABEL = "⬅️ Попередній розділ"
NEXT_CHAPTER_LABEL = "➡️ Наступний розділ"
PREV_VERSES_LABEL = "⬅️ Попередні 3 вірші"
NEXT_VERSES_LABEL = "➡️ Наступні 3 вірші"
READ_FULL_LABEL = "📖 Читати повністю"
REFERENCES_LABEL = "📚 Посилання"
COMMENTARY_LABEL = "💬 Коментарі Барклі"
RETRY_LABEL = "🔄 Спробувати ще раз"

BOOKS_PER_ROW = 2
CHAPTERS_PER_ROW = 5


class ActionKind(str, Enum):
    HOME = "h"
    CONTENTS = "t"
    BOOK = "b"
    CHAPTER = "c"
    FULL = "f"
    REFERENCES = "r"
    VERSES = "w"
    VERSE = "v"
    COMMENTARY = "a"


_FIELDS: Dict[ActionKind, Tuple[str, ...]] = {
    ActionKind.HOME: (),
    ActionKind.CONTENTS: (),
    ActionKind.BOOK: ("book_ordinal",),
    ActionKind.CHAPTER: ("chapter_index",),
    ActionKind.FULL: ("chapter_index",),
    ActionKind.REFERENCES: ("chapter_index",),
    ActionKind.VERSES: ("chapter_index", "offset"),
    ActionKind.VERSE: ("chapter_index", "verse_number"),
    ActionKind.COMMENTARY: ("chapter_index", "offset"),
}


@dataclass(frozen=True)
class Action:
    kind: ActionKind
    chapter_index: Optional[int] = None
    offset: Optional[int] = None
    verse_number: Optional[int] = None
    book_ordinal: Optional[int] = None

    def __post_init__(self) -> None:
        for name in _FIELDS[self.kind]:
            if getattr(self, name) is None:
                raise ValueError(f"{self.kind.name} action needs {name}")

    def encode(self) -> str:
        values = [self.kind.value] + [str(getattr(self, name)) for name in _FIELDS[self.kind]]
        return ":".join(values)

    @classmethod
    def decode(cls, token: str) -> "Action":
        parts = (token or "").split(":")
        try:
            kind = ActionKind(parts[0])
        except ValueError:
            raise InvalidActionToken(f"Unknown action in {token!r}") from None
        names = _FIELDS[kind]
        if len(parts) - 1 != len(names):
            raise InvalidActionToken(f"{kind.name} expects {len(names)} values in {token!r}")
        try:
            values = [int(p) for p in parts[1:]]
        except ValueError:
            raise InvalidActionToken(f"Non-numeric value in {token!r}") from None
        if any(v < 0 for v in values):
            raise InvalidActionToken(f"Negative value in {token!r}")
        return cls(kind, **dict(zip(names, values)))

    @classmethod
    def home(cls) -> "Action":
        return cls(ActionKind.HOME)

    @classmethod
    def contents(cls) -> "Action":
        return cls(ActionKind.CONTENTS)

    @classmethod
    def book(cls, ordinal: int) -> "Action":
        return cls(ActionKind.BOOK, book_ordinal=ordinal)

    @classmethod
    def chapter(cls, chapter_index: int) -> "Action":
        return cls(ActionKind.CHAPTER, chapter_index=chapter_index)

    @classmethod
    def full(cls, chapter_index: int) -> "Action":
        return cls(ActionKind.FULL, chapter_index=chapter_index)

    @classmethod
    def references(cls, chapter_index: int) -> "Action":
        return cls(ActionKind.REFERENCES, chapter_index=chapter_index)

    @classmethod
    def verses(cls, chapter_index: int, offset: int) -> "Action":
        return cls(ActionKind.VERSES, chapter_index=chapter_index, offset=offset)

    @classmethod
    def verse(cls, chapter_index: int, verse_number: int) -> "Action":
        return cls(ActionKind.VERSE, chapter_index=chapter_index, verse_number=verse_number)

    @classmethod
    def commentary(cls, chapter_index: int, offset: int) -> "Action":
        return cls(ActionKind.COMMENTARY, chapter_index=chapter_index, offset=offset)


class ViewKind(str, Enum):
    HOME = "home"
    BOOK_LIST = "book_list"
    CHAPTER_LIST = "chapter_list"
    CHAPTER_PREVIEW = "chapter_preview"
    VERSE_WINDOW = "verse_window"
    SINGLE_VERSE = "single_verse"
    FULL_CHAPTER = "full_chapter"
    REFERENCES = "references"
    NO_CONTENT = "no_content"
    NO_BOOK = "no_book"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass(frozen=True)
class Button:
    label: str
    token: str

    @classmethod
    def to(cls, label: str, action: Action) -> "Button":
        return cls(label=label, token=action.encode())


@dataclass
class ViewDescriptor:
    kind: ViewKind
    text: str
    button_rows: List[List[Button]] = field(default_factory=list)

    def tokens(self) -> List[str]:
        return [b.token for row in self.button_rows for b in row]


@dataclass(frozen=True)
class TocEntry:
    title: str


@dataclass(frozen=True)
class NavigationState:
    current_chapter_index: Optional[int] = None

    def with_chapter(self, chapter_index: int) -> "NavigationState":
        return NavigationState(current_chapter_index=chapter_index)


class ChapterSource(Protocol):
    async def get_chapter_html(self, chapter_index: int) -> str: ...

    async def get_total_chapter_count(self) -> int: ...


class ContentsSource(Protocol):
    async def get_book_list(self) -> List[TocEntry]: ...


@dataclass(frozen=True)
class ChapterContent:
    chapter_index: int
    total_chapters: int
    parsed: ParsedChapter
    processed: ProcessedContent
    location: Optional[BookLocation]


def _esc(text: str) -> str:
    return html.escape(text, quote=False)


def _rows(*rows: Sequence[Button]) -> List[List[Button]]:
    return [list(row) for row in rows if row]


class NavigationRouter:
    def __init__(
        self,
        chapters: ChapterSource,
        contents: ContentsSource,
        books: BookIndex,
        first_chapter_index: Optional[int] = None,
        commentary_enabled: bool = False,
    ) -> None:
        self.chapters = chapters
        self.contents = contents
        self.books = books
        self.first_chapter_index = (
            first_chapter_index if first_chapter_index is not None else books.first_chapter_of(1)
        )
        self.commentary_enabled = commentary_enabled

    # -- chapter pipeline -------------------------------------------------

    async def load_chapter(self, chapter_index: int) -> ChapterContent:
        """Extract, separate and parse one chapter.

        Raises ChapterIndexOutOfRange or ExtractionFailure; an empty chapter
        is not an error and comes back with ``parsed.has_content`` false.
        """
        try:
            total = await self.chapters.get_total_chapter_count()
            if not 0 <= chapter_index < total:
                raise ChapterIndexOutOfRange(chapter_index, total)
            raw_html = await self.chapters.get_chapter_html(chapter_index)
        except (ChapterIndexOutOfRange, ExtractionFailure):
            raise
        except Exception as e:
            raise ExtractionFailure(f"Could not read chapter {chapter_index}: {e}") from e

        processed = process_content(html_to_text(raw_html), include_references=True, clean_inline=False)
        return ChapterContent(
            chapter_index=chapter_index,
            total_chapters=total,
            parsed=parse_text(processed.main_text),
            processed=processed,
            location=self.books.find_book(chapter_index),
        )

    # -- dispatch ---------------------------------------------------------

    async def handle(self, state: NavigationState, action: Action) -> Tuple[ViewDescriptor, NavigationState]:
        kind = action.kind
        if kind is ActionKind.HOME:
            return self.home_view(), state
        if kind is ActionKind.CONTENTS:
            return await self.book_list_view(), state
        if kind is ActionKind.BOOK:
            return self.chapter_list_view(action.book_ordinal), state
        if kind is ActionKind.COMMENTARY:
            raise InvalidActionToken("Commentary actions are not navigation")

        try:
            content = await self.load_chapter(action.chapter_index)
        except ChapterIndexOutOfRange:
            return self._not_found_view(CHAPTER_NOT_FOUND_TEXT), state
        except ExtractionFailure:
            logger.exception("Extraction failed for %s", action.encode())
            return self._error_view(action), state

        state = state.with_chapter(content.chapter_index)
        if not content.parsed.has_content:
            return self._no_content_view(content), state

        if kind is ActionKind.CHAPTER:
            return self._preview_view(content), state
        if kind is ActionKind.VERSES:
            offset = min(max(action.offset, 0), content.parsed.verse_count - 1)
            return self._window_view(content, offset), state
        if kind is ActionKind.VERSE:
            return self._verse_view(content, action.verse_number), state
        if kind is ActionKind.FULL:
            return self._full_view(content), state
        return self._references_view(content), state

    async def handle_token(self, state: NavigationState, token: str) -> Tuple[ViewDescriptor, NavigationState]:
        return await self.handle(state, Action.decode(token))

    async def step(self, state: NavigationState, delta: int) -> Tuple[ViewDescriptor, NavigationState]:
        """Open the chapter `delta` positions away from the current one."""
        if state.current_chapter_index is None:
            return await self.handle(state, Action.chapter(self.first_chapter_index))
        target = state.current_chapter_index + delta
        if target < 0:
            return self._not_found_view(CHAPTER_NOT_FOUND_TEXT), state
        return await self.handle(state, Action.chapter(target))

    def describe_location(self, state: NavigationState) -> str:
        index = state.current_chapter_index
        if index is None:
            return "Ви ще не відкрили жодного розділу."
        location = self.books.find_book(index)
        if location is None:
            return f"{FRONT_MATTER_TEXT} (позиція {index})"
        return f"📖 {location.book.title}, розділ {location.chapter_in_book}"

    # -- menu views -------------------------------------------------------

    def home_view(self) -> ViewDescriptor:
        location = self.books.find_book(self.first_chapter_index)
        if location is not None:
            label = f"📖 {location.book.title} - Розділ {location.chapter_in_book}"
        else:
            label = "📖 Почати читання"
        return ViewDescriptor(
            ViewKind.HOME,
            HOME_TEXT,
            _rows(
                [Button.to(CONTENTS_LABEL, Action.contents())],
                [Button.to(label, Action.chapter(self.first_chapter_index))],
            ),
        )

    async def book_list_view(self) -> ViewDescriptor:
        try:
            entries = await self.contents.get_book_list()
        except ExtractionFailure:
            logger.exception("Table of contents is unavailable")
            return self._error_view(Action.contents())

        rows = []
        for numbers in paginator.layout_buttons(len(entries), per_row=BOOKS_PER_ROW):
            # TOC position doubles as the book ordinal; position 0 is front matter
            rows.append([Button.to(entries[n - 1].title, self._toc_action(n - 1)) for n in numbers])
        rows.append([Button.to(HOME_LABEL, Action.home())])
        return ViewDescriptor(ViewKind.BOOK_LIST, CONTENTS_TEXT, rows)

    def _toc_action(self, position: int) -> Action:
        # front matter has no book, so its entry opens the first spine item
        if position == 0:
            return Action.chapter(0)
        return Action.book(position)

    def chapter_list_view(self, ordinal: int) -> ViewDescriptor:
        try:
            book = self.books.get_book_by_ordinal(ordinal)
        except UnknownBook:
            return ViewDescriptor(
                ViewKind.NO_BOOK,
                NO_BOOK_TEXT,
                _rows([Button.to(BACK_TO_CONTENTS_LABEL, Action.contents()), Button.to(HOME_LABEL, Action.home())]),
            )

        rows = [
            [Button.to(str(n), Action.chapter(self.books.chapter_index_of(book, n))) for n in numbers]
            for numbers in paginator.layout_buttons(book.chapter_count, per_row=CHAPTERS_PER_ROW)
        ]
        rows.append([Button.to(BACK_TO_CONTENTS_LABEL, Action.contents()), Button.to(HOME_LABEL, Action.home())])
        return ViewDescriptor(ViewKind.CHAPTER_LIST, f"📖 {_esc(book.title)}:", rows)

    # -- chapter views ----------------------------------------------------

    def _header(self, content: ChapterContent) -> str:
        if content.location is None:
            book_line = FRONT_MATTER_TEXT
        else:
            book_line = f"📖 {_esc(content.location.book.title)}"
        return f"{book_line}\n<b>{_esc(content.parsed.full_title)}</b>"

    def _chapter_nav(self, content: ChapterContent) -> List[Button]:
        index = content.chapter_index
        buttons = []
        if index > 0:
            buttons.append(Button.to(PREV_CHAPTER_LABEL, Action.chapter(index - 1)))
        if index < content.total_chapters - 1:
            buttons.append(Button.to(NEXT_CHAPTER_LABEL, Action.chapter(index + 1)))
        return buttons

    def _global_nav(self) -> List[Button]:
        return [Button.to(CONTENTS_LABEL, Action.contents()), Button.to(HOME_LABEL, Action.home())]

    def _commentary(self, content: ChapterContent, offset: int) -> List[Button]:
        if not self.commentary_enabled:
            return []
        return [Button.to(COMMENTARY_LABEL, Action.commentary(content.chapter_index, offset))]

    def _verse_nav(self, content: ChapterContent, prev_offset: Optional[int], next_offset: Optional[int]) -> List[Button]:
        index = content.chapter_index
        buttons = []
        if prev_offset is not None:
            buttons.append(Button.to(PREV_VERSES_LABEL, Action.verses(index, prev_offset)))
        if next_offset is not None:
            buttons.append(Button.to(NEXT_VERSES_LABEL, Action.verses(index, next_offset)))
        return buttons

    def _actions(self, content: ChapterContent, read_full: bool) -> List[Button]:
        index = content.chapter_index
        buttons = []
        if read_full:
            buttons.append(Button.to(READ_FULL_LABEL, Action.full(index)))
        if content.processed.has_references:
            buttons.append(Button.to(REFERENCES_LABEL, Action.references(index)))
        return buttons

    def _preview_view(self, content: ChapterContent) -> ViewDescriptor:
        preview = paginator.preview(content.parsed)
        index = content.chapter_index
        verse_rows = [
            [Button.to(str(n), Action.verse(index, n)) for n in numbers]
            for numbers in paginator.layout_buttons(preview.verse_count)
        ]
        next_offset = paginator.PREVIEW_SIZE if preview.has_more else None
        return ViewDescriptor(
            ViewKind.CHAPTER_PREVIEW,
            f"{self._header(content)}\n\n{_esc(preview.content)}",
            _rows(
                self._verse_nav(content, None, next_offset),
                self._actions(content, read_full=preview.has_more),
                self._commentary(content, 0),
                self._chapter_nav(content),
                *verse_rows,
                self._global_nav(),
            ),
        )

    def _window_view(self, content: ChapterContent, offset: int) -> ViewDescriptor:
        view = paginator.window(content.parsed, offset)
        body = "\n".join(view.verses)
        prev_offset = max(0, offset - paginator.WINDOW_SIZE) if offset > 0 else None
        next_offset = offset + paginator.WINDOW_SIZE if view.has_more else None
        return ViewDescriptor(
            ViewKind.VERSE_WINDOW,
            f"{self._header(content)}\n\n{_esc(body)}",
            _rows(
                self._verse_nav(content, prev_offset, next_offset),
                self._actions(content, read_full=True),
                self._commentary(content, offset),
                self._chapter_nav(content),
                self._global_nav(),
            ),
        )

    def _verse_view(self, content: ChapterContent, verse_number: int) -> ViewDescriptor:
        index = content.chapter_index
        try:
            verse = paginator.verse_at(content.parsed, verse_number)
        except VerseOutOfRange:
            return ViewDescriptor(
                ViewKind.NOT_FOUND,
                f"Вірш {verse_number} не знайдено в цьому розділі.",
                _rows([Button.to(BACK_TO_CHAPTER_LABEL, Action.chapter(index))], self._global_nav()),
            )

        count = content.parsed.verse_count
        prev_offset = max(0, verse_number - 1 - paginator.WINDOW_SIZE) if verse_number > 1 else None
        next_offset = verse_number if verse_number < count else None
        return ViewDescriptor(
            ViewKind.SINGLE_VERSE,
            f"{self._header(content)}\n<b>Вірш {verse_number}</b>\n\n{_esc(verse)}",
            _rows(
                self._verse_nav(content, prev_offset, next_offset),
                self._actions(content, read_full=True),
                self._commentary(content, verse_number - 1),
                self._chapter_nav(content),
                self._global_nav(),
            ),
        )

    def _full_view(self, content: ChapterContent) -> ViewDescriptor:
        body = "\n".join(content.parsed.verses)
        return ViewDescriptor(
            ViewKind.FULL_CHAPTER,
            f"{self._header(content)}\n\n{_esc(body)}",
            _rows(
                self._actions(content, read_full=False),
                self._chapter_nav(content),
                self._global_nav(),
            ),
        )

    def _references_view(self, content: ChapterContent) -> ViewDescriptor:
        back = [Button.to(BACK_TO_CHAPTER_LABEL, Action.chapter(content.chapter_index))]
        if not content.processed.has_references:
            return ViewDescriptor(ViewKind.REFERENCES, NO_REFERENCES_TEXT, _rows(back, self._global_nav()))

        lines = []
        for line in content.processed.references.split("\n"):
            lines.append(f"<b>{_esc(line)}</b>" if is_reference_line(line) else _esc(line))
        text = f"{self._header(content)}\n\n📚 <b>Посилання для розділу:</b>\n\n" + "\n".join(lines)
        return ViewDescriptor(ViewKind.REFERENCES, text, _rows(back, self._global_nav()))

    # -- failure views ----------------------------------------------------

    def _no_content_view(self, content: ChapterContent) -> ViewDescriptor:
        if content.location is None:
            header = FRONT_MATTER_TEXT
        else:
            header = f"📖 {_esc(content.location.book.title)}, розділ {content.location.chapter_in_book}"
        return ViewDescriptor(
            ViewKind.NO_CONTENT,
            f"{header}\n\n{NO_CONTENT_TEXT}",
            _rows(self._chapter_nav(content), self._global_nav()),
        )

    def _not_found_view(self, text: str) -> ViewDescriptor:
        return ViewDescriptor(ViewKind.NOT_FOUND, text, _rows(self._global_nav()))

    def _error_view(self, action: Action) -> ViewDescriptor:
        return ViewDescriptor(
            ViewKind.ERROR,
            EXTRACTION_FAILED_TEXT,
            _rows([Button.to(RETRY_LABEL, action)], self._global_nav()),
        )
