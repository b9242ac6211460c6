class SvitBibliiError(Exception):
    pass


class VerseOutOfRange(SvitBibliiError):
    def __init__(self, verse_number: int, verse_count: int) -> None:
        super().__init__(f"Verse {verse_number} is outside 1..{verse_count}")
        self.verse_number = verse_number
        self.verse_count = verse_count


class ChapterIndexOutOfRange(SvitBibliiError):
    def __init__(self, chapter_index: int, total: int) -> None:
        super().__init__(f"Chapter index {chapter_index} is outside 0..{total - 1}")
        self.chapter_index = chapter_index
        self.total = total


class UnknownBook(SvitBibliiError):
    pass


class ExtractionFailure(SvitBibliiError):
    pass


class InvalidActionToken(SvitBibliiError):
    pass


class CommentaryError(SvitBibliiError):
    """Raised with a message that can be shown to the user as is."""


class CommentaryLimitReached(CommentaryError):
    pass
