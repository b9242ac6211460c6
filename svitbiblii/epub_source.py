"""Chapter and table-of-contents source backed by the bundled EPUB."""

import logging
import zipfile
from typing import List, Optional

from ebooklib import epub

from svitbiblii.errors import ChapterIndexOutOfRange, ExtractionFailure
from svitbiblii.router import TocEntry

logger = logging.getLogger(__name__)


def _toc_title(node) -> str:
    # ebooklib yields Link objects or (Section, children) pairs
    if isinstance(node, tuple):
        node = node[0]
    return str(getattr(node, "title", "") or "").strip()


class EpubBook:
    def __init__(self, path: str) -> None:
        self.path = path
        self._book: Optional[epub.EpubBook] = None
        self._spine_ids: List[str] = []

    def load(self) -> "EpubBook":
        if self._book is not None:
            return self
        try:
            book = epub.read_epub(self.path, options={"ignore_ncx": False})
        except (epub.EpubException, zipfile.BadZipFile, OSError) as e:
            raise ExtractionFailure(f"Failed to load book {self.path}: {e}") from e
        self._book = book
        self._spine_ids = [idref for idref, _linear in book.spine]
        logger.info("Loaded %s (%d spine chapters)", self.path, len(self._spine_ids))
        return self

    async def get_total_chapter_count(self) -> int:
        self.load()
        return len(self._spine_ids)

    async def get_chapter_html(self, chapter_index: int) -> str:
        self.load()
        total = len(self._spine_ids)
        if not 0 <= chapter_index < total:
            raise ChapterIndexOutOfRange(chapter_index, total)

        item = self._book.get_item_with_id(self._spine_ids[chapter_index])
        if item is None:
            raise ExtractionFailure(f"Spine entry {self._spine_ids[chapter_index]!r} has no manifest item")
        if isinstance(item, epub.EpubHtml):
            body = item.get_body_content()
        else:
            body = item.get_content()
        if isinstance(body, bytes):
            body = body.decode("utf-8", errors="replace")
        return body or ""

    async def get_book_list(self) -> List[TocEntry]:
        self.load()
        # positions are book ordinals, so untitled entries keep their slot
        return [TocEntry(title=_toc_title(node) or str(i)) for i, node in enumerate(self._book.toc)]
