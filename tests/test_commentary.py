import asyncio
from datetime import date

import pytest

requests = pytest.importorskip("requests")

from svitbiblii.commentary import (  # noqa: E402
    CommentaryService,
    GeminiClient,
    build_prompt,
    limit_response_length,
    passage_from,
    split_message,
)
from svitbiblii.errors import CommentaryError, CommentaryLimitReached  # noqa: E402
from svitbiblii.storage import Store  # noqa: E402


class FakeResponse:
    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self.payload = payload or {}

    def json(self):
        return self.payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


def ok(text):
    return FakeResponse(200, {"candidates": [{"content": {"parts": [{"text": text}]}}]})


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append((url, json, headers))
        return self.responses.pop(0)


class FakeClient:
    model = "fake-model"

    def __init__(self, text="Коментар."):
        self.text = text
        self.prompts = []

    def generate(self, prompt):
        self.prompts.append(prompt)
        return self.text


def load(router, index):
    return asyncio.run(router.load_chapter(index))


def test_prompt_names_book_chapter_and_clean_verses(router):
    passage = passage_from(load(router, 3), 0)
    prompt = build_prompt(passage)
    assert "МАТФЕЙ, Розділ 2" in prompt
    assert "1. Вірш 1 розділу 2" in prompt
    assert "2. Вірш 2 розділу 2" in prompt
    assert "[1]" not in prompt
    assert "Барклі" in prompt


def test_passage_location_and_offset_clamp(router):
    passage = passage_from(load(router, 4), 0)
    assert passage.chapter_number == 3
    content = load(router, 2)
    assert passage_from(content, 99).verse_numbers == [5]


def test_limit_response_length():
    assert limit_response_length("short", 2000) == "short"
    text = "a" * 1500 + "." + "b" * 1000
    assert limit_response_length(text, 2000) == "a" * 1500 + "...."
    text = "a." + "b" * 2500
    assert limit_response_length(text, 2000) == text[:2000] + "..."


def test_split_message():
    assert split_message("short", 2000) == ["short"]
    text = "x" * 1500 + "." + "y" * 1500
    chunks = split_message(text, 2000)
    assert chunks == ["x" * 1500 + ".", "y" * 1500]
    text = "z" * 4500
    chunks = split_message(text, 2000)
    assert [len(c) for c in chunks] == [2000, 2000, 500]
    assert "".join(chunks) == text


def test_client_retries_overloaded_service():
    session = FakeSession([FakeResponse(503), FakeResponse(503), ok("Відповідь")])
    waits = []
    client = GeminiClient("key", "gemini-pro-latest", session=session, sleep=waits.append)
    assert client.generate("prompt") == "Відповідь"
    assert waits == [2, 4]
    url, payload, headers = session.calls[0]
    assert url.endswith("/models/gemini-pro-latest:generateContent")
    assert headers["x-goog-api-key"] == "key"
    assert "prompt" in payload["contents"][0]["parts"][0]["text"]


def test_client_gives_up_after_three_attempts():
    session = FakeSession([FakeResponse(503)] * 3)
    client = GeminiClient("key", "m", session=session, sleep=lambda s: None)
    with pytest.raises(CommentaryError):
        client.generate("prompt")
    assert len(session.calls) == 3


@pytest.mark.parametrize("status", [401, 403, 429, 500])
def test_client_errors(status):
    client = GeminiClient("key", "m", session=FakeSession([FakeResponse(status)]), sleep=lambda s: None)
    with pytest.raises(CommentaryError):
        client.generate("prompt")


class FailingSession:
    def __init__(self, error):
        self.error = error

    def post(self, url, json=None, headers=None, timeout=None):
        raise self.error


@pytest.mark.parametrize(
    "error", [requests.ConnectionError("network down"), requests.Timeout("too slow")]
)
def test_client_network_errors_become_commentary_errors(error):
    client = GeminiClient("key", "m", session=FailingSession(error), sleep=lambda s: None)
    with pytest.raises(CommentaryError) as exc:
        client.generate("prompt")
    assert "Спробуйте ще раз" in str(exc.value)


class BrokenJsonResponse(FakeResponse):
    def json(self):
        raise ValueError("Expecting value")


def test_client_malformed_json():
    client = GeminiClient("key", "m", session=FakeSession([BrokenJsonResponse(200)]))
    with pytest.raises(CommentaryError):
        client.generate("prompt")


def test_client_empty_answer():
    client = GeminiClient("key", "m", session=FakeSession([FakeResponse(200, {"candidates": []})]))
    with pytest.raises(CommentaryError):
        client.generate("prompt")


def make_service(router, client, exempt=()):
    return CommentaryService(
        router,
        Store(":memory:"),
        client,
        max_requests_per_day=2,
        is_exempt=lambda user_id: user_id in exempt,
        today=lambda: date(2024, 5, 1),
    )


def test_service_caches_and_limits(router):
    client = FakeClient()
    service = make_service(router, client)

    assert asyncio.run(service.commentary_for(1, 2, 0)) == ["Коментар."]
    assert asyncio.run(service.commentary_for(1, 2, 0)) == ["Коментар."]
    assert len(client.prompts) == 1
    assert service.remaining(1) == 1

    asyncio.run(service.commentary_for(1, 2, 3))
    assert service.remaining(1) == 0
    with pytest.raises(CommentaryLimitReached):
        asyncio.run(service.commentary_for(1, 4, 0))

    # cached answers are still served after the limit
    assert asyncio.run(service.commentary_for(1, 2, 3)) == ["Коментар."]


def test_service_admin_is_exempt(router):
    client = FakeClient()
    service = make_service(router, client, exempt={99})
    for offset in range(4):
        asyncio.run(service.commentary_for(99, 4, offset))
    assert len(client.prompts) == 4
    assert service.remaining(99) is None


def test_service_rejects_chapter_without_verses(router):
    service = make_service(router, FakeClient())
    with pytest.raises(CommentaryError):
        asyncio.run(service.commentary_for(1, 0, 0))
