import pytest

from src.helpers import mailer
from src.helpers.llm import LLMClient, LLMUnavailable
from src.helpers.mailer import EmailSender
from src.helpers.trivia import TriviaAPIError, TriviaClient


async def test_trivia_response_codes(monkeypatch):
    client = TriviaClient()

    async def rate_limited(url, params=None):
        return {"response_code": 5, "results": []}

    monkeypatch.setattr(client, "_get", rate_limited)

    with pytest.raises(TriviaAPIError, match="Rate limit exceeded"):
        await client.fetch_questions(10, 9)


async def test_trivia_mixed_filters_are_not_sent(monkeypatch):
    client = TriviaClient()
    sent = {}

    async def capture(url, params=None):
        sent.update(params)
        return {"response_code": 0, "results": [{"question": "?"}]}

    monkeypatch.setattr(client, "_get", capture)

    results = await client.fetch_questions(5, 18, "mixed", "boolean")

    assert results == [{"question": "?"}]
    assert sent == {"amount": 5, "category": 18, "type": "boolean"}


async def test_trivia_categories_shape(monkeypatch):
    client = TriviaClient()

    async def broken(url, params=None):
        return {"unexpected": True}

    monkeypatch.setattr(client, "_get", broken)

    with pytest.raises(TriviaAPIError):
        await client.get_categories()


async def test_llm_without_key_is_unavailable():
    client = LLMClient(api_key=None)

    assert not client.available
    with pytest.raises(LLMUnavailable):
        await client.generate_response("hello")


async def test_mailer_without_smtp_skips_sending():
    sender = EmailSender(host=None)

    assert not sender.enabled
    assert await sender.send("student@example.com", "Results", "Body") is False


async def test_mailer_sends_plain_text_through_fastmail(monkeypatch):
    sent = []

    class RecordingMail:
        def __init__(self, config):
            self.config = config

        async def send_message(self, message):
            sent.append((self.config, message))

    monkeypatch.setattr(mailer, "FastMail", RecordingMail)
    sender = EmailSender(host="smtp.example.com", port=2525, username="bot", password="secret",
                         sender="noreply@example.com")

    assert sender.enabled
    assert await sender.send("student@example.com", "Results", "Body") is True

    config, message = sent[0]
    assert config.MAIL_SERVER == "smtp.example.com"
    assert config.MAIL_PORT == 2525
    assert config.USE_CREDENTIALS is True
    assert "student@example.com" in str(message.recipients)
    assert message.subject == "Results"
    assert message.body == "Body"
