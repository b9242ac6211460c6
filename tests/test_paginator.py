import pytest

from svitbiblii import paginator
from svitbiblii.errors import VerseOutOfRange
from svitbiblii.text import ParsedChapter


def make_chapter(count: int) -> ParsedChapter:
    return ParsedChapter("Розділ 1", "", tuple(f"{n} вірш {n}" for n in range(1, count + 1)))


def test_preview_of_five_verses():
    p = paginator.preview(make_chapter(5))
    assert p.has_more
    assert p.content == "1 вірш 1\n2 вірш 2\n3 вірш 3"
    assert p.verse_count == 5


def test_preview_of_short_chapter():
    p = paginator.preview(make_chapter(3))
    assert not p.has_more


def test_window_at_end():
    w = paginator.window(make_chapter(5), 3)
    assert w.verses == ("4 вірш 4", "5 вірш 5")
    assert not w.has_more
    assert w.verse_numbers == [4, 5]
    assert w.first_verse == 4


def test_window_in_the_middle():
    w = paginator.window(make_chapter(10), 3)
    assert w.has_more
    assert w.verse_numbers == [4, 5, 6]


def test_window_rejects_bad_arguments():
    with pytest.raises(ValueError):
        paginator.window(make_chapter(5), -1)
    with pytest.raises(ValueError):
        paginator.window(make_chapter(5), 0, size=0)


def test_verse_at():
    chapter = make_chapter(4)
    assert paginator.verse_at(chapter, 4) == "4 вірш 4"
    with pytest.raises(VerseOutOfRange):
        paginator.verse_at(chapter, 5)


@pytest.mark.parametrize("count, width", [(1, 5), (10, 5), (11, 6), (20, 6), (21, 7), (50, 7)])
def test_row_width(count, width):
    assert paginator.row_width(count) == width


def test_layout_buttons():
    assert paginator.layout_buttons(12) == [[1, 2, 3, 4, 5, 6], [7, 8, 9, 10, 11, 12]]
    assert paginator.layout_buttons(3, per_row=2) == [[1, 2], [3]]
    assert paginator.layout_buttons(0) == []


def test_layout_buttons_covers_every_number_once():
    for count in range(0, 40):
        rows = paginator.layout_buttons(count)
        assert [n for row in rows for n in row] == list(range(1, count + 1))
        assert all(rows)


def test_window_has_more_matches_offset():
    chapter = make_chapter(8)
    for offset in range(10):
        w = paginator.window(chapter, offset)
        assert w.has_more == (offset + 3 < 8)
        assert paginator.window(chapter, offset) == w


def test_verse_at_matches_stored_verse():
    chapter = make_chapter(6)
    for n in range(1, 7):
        assert paginator.verse_at(chapter, n) == chapter.verses[n - 1]
