import pytest

from svitbiblii.books import BookIndex, BookRange
from svitbiblii.errors import ExtractionFailure
from svitbiblii.router import NavigationRouter, TocEntry


def chapter_html(number: int, verses: int = 5, subtitle: str = "Родовід Ісуса", references: bool = True) -> str:
    parts = [f"<p>Розділ {number}</p>"]
    if subtitle:
        parts.append(f"<p>{subtitle}</p>")
    for v in range(1, verses + 1):
        parts.append(f"<p>{v} Вірш {v} розділу {number} [{v}].</p>")
    if references:
        parts.append("<p></p><p>a 1:1 Пор. Бут. 5:1</p><p>b 1:3 Пор. Рут 4:18</p>")
    return "".join(parts)


class FakeBook:
    """In-memory chapter and contents source."""

    def __init__(self, chapters, toc, failing=()):
        self.chapters = list(chapters)
        self.toc = list(toc)
        self.failing = set(failing)
        self.requests = []

    async def get_total_chapter_count(self) -> int:
        return len(self.chapters)

    async def get_chapter_html(self, chapter_index: int) -> str:
        self.requests.append(chapter_index)
        if chapter_index in self.failing:
            raise ExtractionFailure(f"broken chapter {chapter_index}")
        return self.chapters[chapter_index]

    async def get_book_list(self):
        return list(self.toc)


@pytest.fixture
def book_index():
    return BookIndex([BookRange("МАТФЕЙ", 2, 3), BookRange("МАРКО", 5, 2)])


@pytest.fixture
def fake_book():
    chapters = [
        "<p>Передмова</p><p>Про це видання.</p>",
        "<p>Вступ</p>",
        chapter_html(1),
        chapter_html(2, verses=2, references=False),
        chapter_html(3, verses=7, subtitle=""),
        chapter_html(1, verses=4),
        "",
    ]
    toc = [TocEntry("Передмова"), TocEntry("МАТФЕЙ"), TocEntry("МАРКО")]
    return FakeBook(chapters, toc)


@pytest.fixture
def router(fake_book, book_index):
    return NavigationRouter(fake_book, fake_book, book_index)
