import json
import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

from svitbiblii.errors import ChapterIndexOutOfRange, UnknownBook

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookRange:
    title: str
    start_index: int
    chapter_count: int

    @property
    def end_index(self) -> int:
        """Exclusive end of the range."""
        return self.start_index + self.chapter_count

    def __contains__(self, chapter_index: int) -> bool:
        return self.start_index <= chapter_index < self.end_index


@dataclass(frozen=True)
class BookLocation:
    """A chapter index together with the book it falls in.

    The in-book chapter number is always derived from this pair and is
    never stored on its own.
    """
    book: BookRange
    chapter_index: int

    @property
    def chapter_in_book(self) -> int:
        return self.chapter_index - self.book.start_index + 1


# (title, first spine index, chapter count); indices 0 and 1 are front matter
NEW_TESTAMENT: Tuple[Tuple[str, int, int], ...] = (
    ("ЄВАНГЕЛІЄ ВІД МАТФЕЯ", 2, 28),
    ("ЄВАНГЕЛІЄ ВІД МАРКА", 31, 16),
    ("ЄВАНГЕЛІЄ ВІД ЛУКИ", 48, 24),
    ("ЄВАНГЕЛІЄ ВІД ІОАННА", 73, 21),
    ("ДІЯННЯ АПОСТОЛІВ", 95, 28),
    ("ПОСЛАННЯ ЯКОВА", 124, 5),
    ("ПЕРШЕ ПОСЛАННЯ ПЕТРА", 130, 5),
    ("ДРУГЕ ПОСЛАННЯ ПЕТРА", 136, 3),
    ("ПЕРШЕ ПОСЛАННЯ ІОАННА", 140, 5),
    ("ДРУГЕ ПОСЛАННЯ ІОАННА", 146, 1),
    ("ТРЕТЄ ПОСЛАННЯ ІОАННА", 148, 1),
    ("ПОСЛАННЯ ІУДИ", 150, 1),
    ("ПОСЛАННЯ ДО РИМЛЯН", 152, 16),
    ("ПЕРШЕ ПОСЛАННЯ ДО КОРИНФЯН", 169, 16),
    ("ДРУГЕ ПОСЛАННЯ ДО КОРИНФЯН", 186, 13),
    ("ПОСЛАННЯ ДО ГАЛАТІВ", 200, 6),
    ("ПОСЛАННЯ ДО ЕФЕСЯН", 207, 6),
    ("ПОСЛАННЯ ДО ФІЛІППІЙЦІВ", 214, 4),
    ("ПОСЛАННЯ ДО КОЛОССЯН", 219, 4),
    ("ПЕРШЕ ПОСЛАННЯ ДО ФЕССАЛОНІКІЙЦІВ", 224, 5),
    ("ДРУГЕ ПОСЛАННЯ ДО ФЕССАЛОНІКІЙЦІВ", 230, 3),
    ("ПЕРШЕ ПОСЛАННЯ ДО ТИМОФІЯ", 234, 6),
    ("ДРУГЕ ПОСЛАННЯ ДО ТИМОФІЯ", 241, 4),
    ("ПОСЛАННЯ ДО ТИТА", 246, 3),
    ("ПОСЛАННЯ ДО ФІЛІМОНА", 250, 1),
    ("ПОСЛАННЯ ДО ЄВРЕЇВ", 252, 13),
    ("ОДКРОВЕННЯ ІОАННА", 266, 22),
)


class BookIndex:
    """Read-only table of book ranges over the flat spine index.

    Book ordinals are 1-based positions in the displayed table of
    contents; ordinal 0 is the front matter and has no book.
    """

    def __init__(self, books: Sequence[BookRange]) -> None:
        books = tuple(books)
        for book in books:
            if book.chapter_count <= 0:
                raise ValueError(f"{book.title!r} has no chapters")
            if book.start_index < 0:
                raise ValueError(f"{book.title!r} starts before the spine")
        ordered = sorted(books, key=lambda b: b.start_index)
        for prev, nxt in zip(ordered, ordered[1:]):
            if nxt.start_index < prev.end_index:
                raise ValueError(f"{prev.title!r} overlaps {nxt.title!r}")
        self._books = books

    @property
    def books(self) -> Tuple[BookRange, ...]:
        return self._books

    def __len__(self) -> int:
        return len(self._books)

    def __iter__(self) -> Iterator[BookRange]:
        return iter(self._books)

    def find_book(self, chapter_index: int) -> Optional[BookLocation]:
        for book in self._books:
            if chapter_index in book:
                return BookLocation(book=book, chapter_index=chapter_index)
        return None

    def get_book_by_ordinal(self, ordinal: int, default: Optional[BookRange] = None) -> BookRange:
        if 1 <= ordinal <= len(self._books):
            return self._books[ordinal - 1]
        if ordinal == 0 and default is not None:
            return default
        raise UnknownBook(f"No book at position {ordinal}")

    def first_chapter_of(self, ordinal: int) -> int:
        return self.get_book_by_ordinal(ordinal).start_index

    def ordinal_of(self, book: BookRange) -> int:
        return self._books.index(book) + 1

    def chapter_index_of(self, book: BookRange, chapter_in_book: int) -> int:
        if not 1 <= chapter_in_book <= book.chapter_count:
            raise ChapterIndexOutOfRange(book.start_index + chapter_in_book - 1, book.end_index)
        return book.start_index + chapter_in_book - 1

    def chapter_indices(self) -> List[int]:
        return [i for book in self._books for i in range(book.start_index, book.end_index)]


def load_book_index(path: Optional[str] = None) -> BookIndex:
    """Build the table once, from `path` (a JSON list) or the built-in numbering.

    The whole table is replaced at once; there is no way to edit a single
    range after loading.
    """
    rows = NEW_TESTAMENT
    if path:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            rows = tuple((str(r["title"]), int(r["start_index"]), int(r["chapter_count"])) for r in data)
            logger.info("Loaded book table (%d books) from %s", len(rows), path)
        except FileNotFoundError:
            logger.warning("%s not found. Using built-in book table.", path)
    return BookIndex([BookRange(title, start, count) for title, start, count in rows])
