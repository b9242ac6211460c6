import asyncio
from types import SimpleNamespace

import pytest

pytest.importorskip("telegram")

from telegram.error import BadRequest  # noqa: E402

from svitbiblii.bot import (  # noqa: E402
    STALE_BUTTON_TEXT,
    edit_view,
    main_keyboard,
    on_callback,
    split_to_chunks,
    to_markup,
)
from svitbiblii.router import CONTENTS_LABEL, Action, Button, ViewDescriptor, ViewKind  # noqa: E402
from svitbiblii.storage import Store  # noqa: E402


class FakeChat:
    def __init__(self, chat_id=100):
        self.id = chat_id
        self.sent = []

    async def send_message(self, text, parse_mode=None, reply_markup=None):
        self.sent.append((text, reply_markup))


class FakeMessage:
    def __init__(self, chat, edit_error=None):
        self.chat = chat
        self.edit_error = edit_error
        self.edits = []

    async def edit_text(self, text, parse_mode=None, reply_markup=None):
        if self.edit_error is not None:
            raise self.edit_error
        self.edits.append((text, reply_markup))


class FakeQuery:
    def __init__(self, data, message):
        self.data = data
        self.message = message
        self.from_user = SimpleNamespace(id=7)
        self.answers = []

    async def answer(self, text=None, show_alert=False):
        self.answers.append(text)


def make_update(query):
    user = SimpleNamespace(id=7, username="reader", first_name="Олена", last_name=None, language_code="uk")
    return SimpleNamespace(callback_query=query, effective_user=user)


def make_context(router, store):
    return SimpleNamespace(application=SimpleNamespace(bot_data={"router": router, "store": store}))


def test_to_markup_keeps_rows():
    view = ViewDescriptor(
        ViewKind.HOME,
        "text",
        [[Button.to("Зміст", Action.contents())], [Button.to("1", Action.chapter(2)), Button.to("2", Action.chapter(3))]],
    )
    markup = to_markup(view)
    rows = markup.inline_keyboard
    assert [[b.callback_data for b in row] for row in rows] == [["t"], ["c:2", "c:3"]]
    assert rows[1][0].text == "1"


def test_to_markup_without_buttons():
    assert to_markup(ViewDescriptor(ViewKind.NOT_FOUND, "text")) is None


def test_split_to_chunks_keeps_lines_whole():
    text = "".join(f"{n} {'слово ' * 20}\n" for n in range(1, 100))
    chunks = split_to_chunks(text, limit=500)
    assert "".join(chunks) == text
    assert all(len(c) <= 500 for c in chunks)
    assert all(c.endswith("\n") for c in chunks)


def test_split_short_text():
    assert split_to_chunks("коротко") == ["коротко"]


def test_main_keyboard():
    keyboard = main_keyboard()
    assert keyboard.keyboard[0][0].text == CONTENTS_LABEL


def test_callback_routes_edits_and_saves_state(router):
    store = Store(":memory:")
    chat = FakeChat()
    query = FakeQuery("c:2", FakeMessage(chat))

    asyncio.run(on_callback(make_update(query), make_context(router, store)))

    assert query.answers == [None]
    assert store.load_state(chat.id).current_chapter_index == 2
    text, markup = query.message.edits[0]
    assert "Розділ 1" in text
    tokens = [b.callback_data for row in markup.inline_keyboard for b in row]
    assert "w:2:3" in tokens
    assert [u.user_id for u in store.active_users()] == [7]


@pytest.mark.parametrize("data", ["zz:1", "c:-4"])
def test_callback_with_stale_token(router, data):
    store = Store(":memory:")
    query = FakeQuery(data, FakeMessage(FakeChat()))
    asyncio.run(on_callback(make_update(query), make_context(router, store)))
    assert query.answers == [STALE_BUTTON_TEXT]
    assert query.message.edits == []


def test_callback_on_inaccessible_message(router):
    store = Store(":memory:")
    query = FakeQuery("c:2", None)
    asyncio.run(on_callback(make_update(query), make_context(router, store)))
    assert query.answers == [STALE_BUTTON_TEXT]


def test_edit_view_ignores_unchanged_message():
    chat = FakeChat()
    query = FakeQuery("h", FakeMessage(chat, edit_error=BadRequest("Message is not modified")))
    asyncio.run(edit_view(query, ViewDescriptor(ViewKind.HOME, "text")))
    assert chat.sent == []


def test_edit_view_sends_anew_when_rejected_as_too_long():
    chat = FakeChat()
    query = FakeQuery("f:2", FakeMessage(chat, edit_error=BadRequest("Message is too long")))
    view = ViewDescriptor(ViewKind.FULL_CHAPTER, "вірш\n" * 600, [[Button.to("Зміст", Action.contents())]])

    asyncio.run(edit_view(query, view))

    assert query.message.edits == []
    assert len(chat.sent) == 1
    assert chat.sent[0][1] is not None


def test_edit_view_sends_long_views_in_parts():
    chat = FakeChat()
    query = FakeQuery("f:2", FakeMessage(chat))
    view = ViewDescriptor(ViewKind.FULL_CHAPTER, "вірш\n" * 1000, [[Button.to("Зміст", Action.contents())]])

    asyncio.run(edit_view(query, view))

    assert query.message.edits == []
    assert len(chat.sent) == 2
    assert chat.sent[0][1] is None
    assert chat.sent[-1][1] is not None

def test_edit_view_reraises_other_errors():
    query = FakeQuery("h", FakeMessage(FakeChat(), edit_error=BadRequest("Chat not found")))
    with pytest.raises(BadRequest):
        asyncio.run(edit_view(query, ViewDescriptor(ViewKind.HOME, "text")))
