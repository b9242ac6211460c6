from dataclasses import dataclass
from typing import Callable, List, Tuple, Union

from svitbiblii.text import ParsedChapter

PREVIEW_SIZE = 3
WINDOW_SIZE = 3


@dataclass(frozen=True)
class Preview:
    title: str
    content: str
    has_more: bool
    verse_count: int


@dataclass(frozen=True)
class VerseWindow:
    verses: Tuple[str, ...]
    start_offset: int
    has_more: bool

    @property
    def first_verse(self) -> int:
        return self.start_offset + 1

    @property
    def verse_numbers(self) -> List[int]:
        return list(range(self.start_offset + 1, self.start_offset + 1 + len(self.verses)))


def preview(chapter: ParsedChapter) -> Preview:
    return Preview(
        title=chapter.full_title,
        content="\n".join(chapter.slice(0, PREVIEW_SIZE)),
        has_more=chapter.verse_count > PREVIEW_SIZE,
        verse_count=chapter.verse_count,
    )


def window(chapter: ParsedChapter, offset: int, size: int = WINDOW_SIZE) -> VerseWindow:
    # Offsets are clamped by the router; anything negative here is a bug.
    if size <= 0:
        raise ValueError(f"window size must be positive, got {size}")
    if offset < 0:
        raise ValueError(f"window offset must not be negative, got {offset}")
    return VerseWindow(
        verses=chapter.slice(offset, size),
        start_offset=offset,
        has_more=offset + size < chapter.verse_count,
    )


def verse_at(chapter: ParsedChapter, verse_number: int) -> str:
    return chapter.verse(verse_number)


def row_width(count: int) -> int:
    if count > 20:
        return 7
    if count > 10:
        return 6
    return 5


def layout_buttons(count: int, per_row: Union[int, Callable[[int], int]] = row_width) -> List[List[int]]:
    """Group the numbers 1..count into rows; never yields an empty row."""
    width = per_row(count) if callable(per_row) else per_row
    if width <= 0:
        raise ValueError(f"row width must be positive, got {width}")
    numbers = list(range(1, count + 1))
    return [numbers[i:i + width] for i in range(0, len(numbers), width)]
