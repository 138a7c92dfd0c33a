"""Chapter enhancement through the Anthropic API."""
import re
from typing import List, Optional, Tuple

import anthropic
from anthropic import AsyncAnthropic

from utils.logger import setup_logger
from channel.errors import (
    ApplicationError,
    ConfigurationError,
    RateLimited,
    parse_wait_time
)
from channel.messages import ChunkResult, EnhanceOptions
from ingestion.splitter import count_tokens
from worker import prompts
from worker.rate_limiter import RateLimiter
import config

logger = setup_logger(__name__)

MIN_CONTENT_LENGTH = 50
MIN_RETENTION_RATIO = 0.7
RETENTION_CHECK_MIN_WORDS = 200

PRESERVE_RE = re.compile(
    r'<img[^>]+>|<iframe[^>]+>|<video[^>]+>|<audio[^>]+>|<source[^>]+>'
    r'|<div class="game-stats-box">[\s\S]*?</div>',
    re.IGNORECASE
)
FENCE_RE = re.compile(r"^\s*```[a-zA-Z]*\s*\n(.*?)\n?```\s*$", re.DOTALL)
TAG_RE = re.compile(r"<[^>]+>")

MISSING_KEY_MESSAGE = "Anthropic API key is missing. Set ANTHROPIC_API_KEY in your environment or .env file."


def preserve_elements(content: str) -> Tuple[str, List[str]]:
    """Swap media tags and stats boxes for [PRESERVED_ELEMENT_n] placeholders.

    Returns:
        (content with placeholders, preserved markup in placeholder order)
    """
    preserved: List[str] = []

    def _replace(match):
        placeholder = f"[PRESERVED_ELEMENT_{len(preserved)}]"
        preserved.append(match.group(0))
        return placeholder

    return PRESERVE_RE.sub(_replace, content), preserved


def restore_elements(text: str, preserved: List[str]) -> str:
    for index, element in enumerate(preserved):
        text = text.replace(f"[PRESERVED_ELEMENT_{index}]", element)
    return text


def strip_code_fences(text: str) -> str:
    """Remove a ```-fence the model sometimes wraps its whole reply in."""
    match = FENCE_RE.match(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def count_words(text: str) -> int:
    return len(TAG_RE.sub(" ", text).split())


def check_retention(original: str, enhanced: str) -> None:
    """Reject replies that dropped too much of a long input (accidental summaries).

    Raises:
        ApplicationError: If fewer than 70% of the words survived
    """
    original_words = count_words(original)
    enhanced_words = count_words(enhanced)
    if original_words < RETENTION_CHECK_MIN_WORDS or enhanced_words == 0:
        return

    min_words = round(original_words * MIN_RETENTION_RATIO)
    if enhanced_words < min_words:
        raise ApplicationError(
            f"Enhanced content too short ({enhanced_words}/{original_words} words)."
        )


def _retry_after_ms(error: anthropic.RateLimitError) -> int:
    response = getattr(error, "response", None)
    header = response.headers.get("retry-after") if response is not None else None
    if header:
        try:
            return int(float(header) * 1000)
        except ValueError:
            pass
    return parse_wait_time(str(error)) or config.DEFAULT_RATE_LIMIT_WAIT_MS


class ChapterEnhancer:
    """Rewrites one piece of chapter text with the LLM."""

    def __init__(
        self,
        client: Optional[AsyncAnthropic] = None,
        api_key: Optional[str] = config.ANTHROPIC_API_KEY,
        model: str = config.ANTHROPIC_MODEL,
        rate_limiter: Optional[RateLimiter] = None,
        base_prompt: str = prompts.DEFAULT_PROMPT,
        permanent_prompt: str = ""
    ):
        """Initialize enhancer.

        Args:
            client: Anthropic async client (built from api_key when omitted)
            api_key: Anthropic API key
            model: Model name to use
            rate_limiter: Spacing between upstream calls
            base_prompt: Main enhancement instructions
            permanent_prompt: Extra instructions added to every call
        """
        if client is None and api_key:
            client = AsyncAnthropic(api_key=api_key)
        self.client = client
        self.model = model
        self.rate_limiter = rate_limiter or RateLimiter()
        self.base_prompt = base_prompt
        self.permanent_prompt = permanent_prompt
        self.total_tokens_used = 0

        logger.info(f"ChapterEnhancer initialized with model: {model}")

    @property
    def has_credentials(self) -> bool:
        return self.client is not None

    def _max_tokens(self, text: str) -> int:
        # Enhanced prose runs somewhat longer than the source
        return max(1024, min(config.MAX_OUTPUT_TOKENS, count_tokens(text) * 2))

    async def enhance(
        self,
        title: str,
        content: str,
        options: Optional[EnhanceOptions] = None
    ) -> ChunkResult:
        """Enhance one chapter or chapter part.

        Media tags and stats boxes in HTML content are swapped for
        placeholders before the call and put back afterwards. Chunks from
        the orchestrator are plain text, so for them nothing is swapped.

        Args:
            title: Chapter title
            content: Text or HTML to enhance
            options: Part info, emoji and site prompt settings

        Returns:
            ChunkResult with original and enhanced text

        Raises:
            ConfigurationError: If no API key is configured
            RateLimited: If the API is rate limiting us
            ApplicationError: For every other failure
        """
        options = options or EnhanceOptions()
        trimmed = (content or "").strip()
        if len(trimmed) < MIN_CONTENT_LENGTH:
            raise ApplicationError(f"Content too short for enhancement ({len(trimmed)} chars)")

        if not self.has_credentials:
            raise ConfigurationError(MISSING_KEY_MESSAGE)

        body, preserved = preserve_elements(content)
        if preserved:
            logger.debug(f"Preserved {len(preserved)} HTML elements")

        system = prompts.build_system_prompt(
            title,
            base_prompt=self.base_prompt,
            chunk_index=options.chunk_index,
            total_chunks=options.total_chunks,
            use_emoji=options.use_emoji,
            site_prompt=options.site_prompt,
            permanent_prompt=self.permanent_prompt
        )

        part = ""
        if options.chunk_index is not None and options.total_chunks:
            part = f" - part {options.chunk_index + 1}/{options.total_chunks}"
        logger.info(f"Enhancing \"{title}\"{part} ({len(body)} characters)")

        await self.rate_limiter.acquire()
        try:
            message = await self.client.messages.create(
                model=self.model,
                max_tokens=self._max_tokens(body),
                temperature=config.LLM_TEMPERATURE,
                system=system,
                messages=[
                    {"role": "user", "content": body}
                ]
            )
        except anthropic.RateLimitError as e:
            wait_time = _retry_after_ms(e)
            logger.warning(f"Rate limited by the API, wait {wait_time / 1000:.0f}s")
            raise RateLimited(f"Rate limit reached: {e}", wait_time=wait_time) from e
        except anthropic.AuthenticationError as e:
            raise ConfigurationError(f"Anthropic rejected the API key: {e}") from e
        except anthropic.APIError as e:
            raise ApplicationError(f"Anthropic API call failed: {e}") from e

        usage = getattr(message, "usage", None)
        if usage is not None:
            self.total_tokens_used += usage.input_tokens + usage.output_tokens

        text = "".join(
            block.text for block in message.content
            if getattr(block, "type", "text") == "text"
        )
        if not text.strip():
            raise ApplicationError("The model returned no content")

        enhanced = restore_elements(strip_code_fences(text), preserved)
        check_retention(content, enhanced)

        logger.info(f"✓ Enhanced \"{title}\"{part}")
        return ChunkResult(
            original_content=content,
            enhanced_content=enhanced,
            model_info={"name": self.model, "provider": "Anthropic"}
        )
