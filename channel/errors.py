"""Error taxonomy for worker communication."""
import re
from typing import Any, Dict, Optional

import config

TRANSIENT_MARKERS = (
    "receiving end does not exist",
    "could not establish connection",
    "connection closed",
    "connection was closed",
    "port closed",
    "message port closed",
    "disconnected port",
    "empty response",
    "no response",
)

RATE_LIMIT_MARKERS = ("rate limit", "quota", "429", "too many requests")
WAIT_SECONDS_RE = re.compile(r"(\d+)\s*seconds?", re.IGNORECASE)


class ChannelError(Exception):
    """Base class for failures reported through the channel."""
    pass


class TransientPeerUnavailable(ChannelError):
    """The worker is asleep, gone, or answered with nothing. Retried by the channel."""
    pass


class RateLimited(ChannelError):
    """The upstream model is rate limited. Surfaced with its wait time, never auto-retried."""

    def __init__(self, message: str, wait_time: Optional[int] = None):
        super().__init__(message)
        self.wait_time = wait_time  # milliseconds


class ApplicationError(ChannelError):
    """The worker explicitly reported a failure for this request."""
    pass


class ConfigurationError(ChannelError):
    """A required credential is missing. Halts the whole job."""
    pass


def is_transient_error(error: BaseException) -> bool:
    """Check whether an exception means the peer is temporarily unreachable."""
    if isinstance(error, TransientPeerUnavailable):
        return True
    if isinstance(error, (ConnectionError, EOFError)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


def parse_wait_time(message: str) -> Optional[int]:
    """Extract an advertised wait ("try again in 30 seconds") in milliseconds."""
    match = WAIT_SECONDS_RE.search(message or "")
    if match:
        return int(match.group(1)) * 1000
    return None


def error_from_response(response: Dict[str, Any]) -> ChannelError:
    """Map a worker failure payload to the matching error class.

    Args:
        response: Response dict with success == False

    Returns:
        ConfigurationError, RateLimited or ApplicationError
    """
    message = response.get("error") or "Unknown error"

    if response.get("needsApiKey"):
        return ConfigurationError(message)

    lowered = message.lower()
    if response.get("isRateLimit") or any(marker in lowered for marker in RATE_LIMIT_MARKERS):
        wait_time = response.get("waitTime") or parse_wait_time(message) or config.DEFAULT_RATE_LIMIT_WAIT_MS
        return RateLimited(message, wait_time=int(wait_time))

    return ApplicationError(message)
