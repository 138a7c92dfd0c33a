"""Test the Anthropic-backed chapter enhancer with a fake client."""
import asyncio
from types import SimpleNamespace

import anthropic
import httpx
import pytest

from channel.errors import ApplicationError, ConfigurationError, RateLimited
from channel.messages import EnhanceOptions
from worker.enhancer import (
    ChapterEnhancer,
    check_retention,
    preserve_elements,
    restore_elements,
    strip_code_fences
)
from worker.prompts import build_system_prompt
from worker.rate_limiter import RateLimiter

API_URL = "https://api.anthropic.com/v1/messages"
CHAPTER = "The young master walked into the hall. " * 5


class FakeMessages:
    """Records create() calls and replies with a fixed text or raises."""

    def __init__(self, reply="Enhanced text.", error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(
            content=[SimpleNamespace(type="text", text=self.reply)],
            usage=SimpleNamespace(input_tokens=100, output_tokens=120)
        )


def _enhancer(messages):
    client = SimpleNamespace(messages=messages)
    return ChapterEnhancer(client=client, model="test-model", rate_limiter=RateLimiter(min_interval=0))


def _status_error(cls, status, headers=None):
    request = httpx.Request("POST", API_URL)
    response = httpx.Response(status, headers=headers or {}, request=request)
    return cls("upstream said no", response=response, body=None)


def test_enhance_returns_result():
    """Test a successful call and the request it sends."""
    messages = FakeMessages(reply="```html\n<p>Polished chapter.</p>\n```")
    enhancer = _enhancer(messages)
    options = EnhanceOptions(chunk_index=1, total_chunks=3, site_prompt="Cultivation novel.")

    result = asyncio.run(enhancer.enhance("Chapter 7", CHAPTER, options))

    assert result.enhanced_content == "<p>Polished chapter.</p>"
    assert result.original_content == CHAPTER
    assert result.model_info == {"name": "test-model", "provider": "Anthropic"}
    assert enhancer.total_tokens_used == 220

    call = messages.calls[0]
    assert call["model"] == "test-model"
    assert call["messages"] == [{"role": "user", "content": CHAPTER}]
    assert "part 2 of 3" in call["system"]
    assert "Cultivation novel." in call["system"]
    assert call["system"].endswith("### Title:\nChapter 7")


def test_short_content_rejected():
    """Test that content under the minimum length is refused before any call."""
    messages = FakeMessages()

    with pytest.raises(ApplicationError):
        asyncio.run(_enhancer(messages).enhance("Chapter 1", "Too short."))
    assert messages.calls == []


def test_missing_credentials():
    """Test that an enhancer without a client reports a configuration error."""
    enhancer = ChapterEnhancer(client=None, api_key=None, rate_limiter=RateLimiter(min_interval=0))

    assert enhancer.has_credentials is False
    with pytest.raises(ConfigurationError):
        asyncio.run(enhancer.enhance("Chapter 1", CHAPTER))


def test_rate_limit_uses_retry_after():
    """Test that a 429 becomes RateLimited with the advertised wait."""
    error = _status_error(anthropic.RateLimitError, 429, headers={"retry-after": "12"})
    enhancer = _enhancer(FakeMessages(error=error))

    with pytest.raises(RateLimited) as info:
        asyncio.run(enhancer.enhance("Chapter 1", CHAPTER))
    assert info.value.wait_time == 12000


def test_rate_limit_default_wait():
    """Test the fallback wait when no retry-after header is present."""
    error = _status_error(anthropic.RateLimitError, 429)
    enhancer = _enhancer(FakeMessages(error=error))

    with pytest.raises(RateLimited) as info:
        asyncio.run(enhancer.enhance("Chapter 1", CHAPTER))
    assert info.value.wait_time == 60000


def test_rejected_key_is_configuration_error():
    """Test that a 401 from the API halts like a missing key."""
    error = _status_error(anthropic.AuthenticationError, 401)

    with pytest.raises(ConfigurationError):
        asyncio.run(_enhancer(FakeMessages(error=error)).enhance("Chapter 1", CHAPTER))


def test_other_api_errors():
    """Test that connection failures become application errors."""
    error = anthropic.APIConnectionError(request=httpx.Request("POST", API_URL))

    with pytest.raises(ApplicationError):
        asyncio.run(_enhancer(FakeMessages(error=error)).enhance("Chapter 1", CHAPTER))


def test_empty_reply_rejected():
    """Test that a blank model reply is an error."""
    with pytest.raises(ApplicationError):
        asyncio.run(_enhancer(FakeMessages(reply="   ")).enhance("Chapter 1", CHAPTER))


def test_preserved_elements_round_trip():
    """Test that images reach the model as placeholders and come back intact."""
    content = CHAPTER + '<img src="map.png"> and then ' + CHAPTER
    messages = FakeMessages(reply="Better prose [PRESERVED_ELEMENT_0] continues here.")

    result = asyncio.run(_enhancer(messages).enhance("Chapter 1", content))

    assert "[PRESERVED_ELEMENT_0]" in messages.calls[0]["messages"][0]["content"]
    assert "<img" not in messages.calls[0]["messages"][0]["content"]
    assert result.enhanced_content == 'Better prose <img src="map.png"> continues here.'


def test_plain_text_sent_unchanged():
    """Test that plain chunk text reaches the model without placeholders."""
    messages = FakeMessages(reply="Better prose.")
    options = EnhanceOptions(chunk_index=1, total_chunks=3)

    asyncio.run(_enhancer(messages).enhance("Chapter 1", CHAPTER, options))

    sent = messages.calls[0]["messages"][0]["content"]
    assert sent == CHAPTER
    assert "PRESERVED_ELEMENT" not in sent


def test_preserve_helpers():
    """Test placeholder substitution for media and stats boxes."""
    text = 'a <iframe src="x"> b <div class="game-stats-box">HP 10</div> c'

    body, preserved = preserve_elements(text)

    assert body == "a [PRESERVED_ELEMENT_0] b [PRESERVED_ELEMENT_1] c"
    assert len(preserved) == 2
    assert restore_elements(body, preserved) == text


def test_strip_code_fences():
    """Test that only a fence around the whole reply is removed."""
    assert strip_code_fences("```\nHello\n```") == "Hello"
    assert strip_code_fences("```markdown\nHello\nWorld\n```") == "Hello\nWorld"
    assert strip_code_fences("  Plain text  ") == "Plain text"


def test_retention_check():
    """Test rejection of replies that lost most of a long input."""
    original = "word " * 300

    check_retention(original, "word " * 250)
    check_retention("word " * 100, "word")
    with pytest.raises(ApplicationError):
        check_retention(original, "word " * 100)


def test_system_prompt_parts():
    """Test the optional prompt sections."""
    single = build_system_prompt("Title", base_prompt="Base.", chunk_index=0, total_chunks=1)
    assert single == "Base.\n\n### Title:\nTitle"

    full = build_system_prompt(
        "Title",
        base_prompt="Base.",
        chunk_index=0,
        total_chunks=2,
        use_emoji=True,
        permanent_prompt="Use British spelling."
    )
    assert "part 1 of 2" in full
    assert "emojis" in full
    assert "## Always Follow These Instructions:\nUse British spelling." in full
    assert "## Site-Specific Context" not in full


def test_rate_limiter_spacing():
    """Test that calls are spaced by the minimum interval."""
    limiter = RateLimiter(min_interval=0.05)

    async def main():
        loop = asyncio.get_running_loop()
        start = loop.time()
        await limiter.acquire()
        await limiter.acquire()
        return loop.time() - start

    elapsed = asyncio.run(main())

    assert elapsed >= 0.04
    assert limiter.total_requests == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
