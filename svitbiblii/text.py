"""Turn one chapter's XHTML into a title, a subtitle and numbered verses."""

import html
import re
from dataclasses import dataclass
from typing import Tuple

from svitbiblii.errors import VerseOutOfRange

CHAPTER_MARKER = "Розділ"
NO_TEXT = "No text found."

_VERSE_START = re.compile(r"^\d+")


@dataclass(frozen=True)
class ParsedChapter:
    title: str
    subtitle: str
    verses: Tuple[str, ...]

    @property
    def has_content(self) -> bool:
        return len(self.verses) > 0

    @property
    def verse_count(self) -> int:
        return len(self.verses)

    @property
    def full_title(self) -> str:
        return f"{self.title}\n{self.subtitle}" if self.subtitle else self.title

    def verse(self, number: int) -> str:
        """Return verse `number` (1-based). The only place verses are indexed."""
        if number < 1 or number > len(self.verses):
            raise VerseOutOfRange(number, len(self.verses))
        return self.verses[number - 1]

    def slice(self, offset: int, size: int) -> Tuple[str, ...]:
        return self.verses[offset:offset + size]


EMPTY_CHAPTER = ParsedChapter(title="", subtitle="", verses=())


def html_to_text(raw_html: str) -> str:
    text = re.sub(r"(?i)<br\s*/?>", "\n", raw_html or "")
    text = re.sub(r"(?i)</p>", "\n", text)
    text = re.sub(r"<[^>]+>", "", text)
    text = html.unescape(text).replace("\xa0", " ")
    text = re.sub(r"\n\s*\n\s*\n+", "\n\n", text)
    return text.strip()


def _is_verse_line(line: str) -> bool:
    return bool(_VERSE_START.match(line))


def verse_body(verse: str) -> str:
    """Verse text without its leading number."""
    return _VERSE_START.sub("", verse, count=1).lstrip()


def parse_text(text: str) -> ParsedChapter:
    if not text or text == NO_TEXT:
        return EMPTY_CHAPTER

    lines = [line.strip() for line in text.split("\n") if line.strip()]
    if not lines:
        return EMPTY_CHAPTER

    title = ""
    subtitle = ""
    start = 0
    for i, line in enumerate(lines):
        if CHAPTER_MARKER in line:
            title = line
            start = i + 1
            if i + 1 < len(lines):
                following = lines[i + 1]
                if not _is_verse_line(following) and CHAPTER_MARKER not in following:
                    subtitle = following
                    start = i + 2
            break
    else:
        title = lines[0]
        start = 1

    verses = []
    current = ""
    for line in lines[start:]:
        if _is_verse_line(line):
            if current:
                verses.append(current)
            current = line
        elif current:
            # wrapped verse
            current += " " + line
    if current:
        verses.append(current)

    return ParsedChapter(title=title, subtitle=subtitle, verses=tuple(verses))


def parse_chapter(raw_html: str) -> ParsedChapter:
    return parse_text(html_to_text(raw_html))
