"""Retrying request channel to the enhancement worker."""
import asyncio
import random
from typing import Optional

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential
)

from utils.logger import setup_logger
from channel.errors import TransientPeerUnavailable, is_transient_error
from channel.keepalive import KeepAliveSession
from channel.messages import PingRequest
from channel.scheduler import Scheduler
from channel.settings import ChannelSettings
from channel.transport import Listener, Message, WorkerTransport

logger = setup_logger(__name__)


class Channel:
    """Request/response and push notifications over a WorkerTransport.

    Transient failures (worker asleep, port closed, empty response) trigger a
    wake-up probe and a bounded number of re-sends. Application failures come
    back as payloads and are never retried here.
    """

    def __init__(
        self,
        transport: WorkerTransport,
        settings: Optional[ChannelSettings] = None,
        scheduler: Optional[Scheduler] = None,
        rng: Optional[random.Random] = None
    ):
        self.transport = transport
        self.settings = settings or ChannelSettings()
        self.scheduler = scheduler or Scheduler()
        self.session = KeepAliveSession(
            transport,
            settings=self.settings,
            scheduler=self.scheduler,
            rng=rng
        )

    async def start(self) -> bool:
        """Open the keep-alive session."""
        return await self.session.connect(trigger="startup")

    async def close(self) -> None:
        await self.session.close()
        await self.scheduler.shutdown()
        await self.transport.close()
        logger.info("Channel closed")

    def add_listener(self, listener: Listener) -> None:
        self.transport.add_listener(listener)

    def remove_listener(self, listener: Listener) -> None:
        self.transport.remove_listener(listener)

    def new_user_action(self) -> None:
        """Re-arm keep-alive reconnection for a fresh user-initiated action."""
        self.session.reset_retries()

    async def send(self, message: Message) -> Optional[Message]:
        """Send one request without retrying."""
        return await self.transport.request(message)

    async def wake_up(self) -> bool:
        """Ping the worker until it answers or the attempts run out.

        Returns:
            True if the worker answered a ping
        """
        backoff = self.settings.wake_backoff_ms / 1000
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.wake_attempts),
            wait=wait_exponential(multiplier=backoff, min=backoff, max=backoff * 8),
            retry=retry_if_exception(is_transient_error),
            reraise=True
        )

        try:
            async for attempt in retrying:
                with attempt:
                    response = await self.transport.request(PingRequest().to_wire())
                    if not response or not response.get("success"):
                        raise TransientPeerUnavailable("Empty response to wake-up ping")
        except Exception as e:
            if not is_transient_error(e):
                raise
            logger.warning(f"Worker did not wake up after {self.settings.wake_attempts} pings: {e}")
            return False

        logger.info("✓ Worker is awake")
        return True

    async def send_with_retry(self, message: Message) -> Message:
        """Send a request, waking the worker and re-sending on transient failures.

        Args:
            message: Wire request dict

        Returns:
            The worker's response dict, including success == False payloads

        Raises:
            TransientPeerUnavailable: If the worker stayed unreachable
        """
        action = message.get("action", "request")
        await self.session.ensure(trigger=action)

        last_error: Optional[Exception] = None
        for attempt in range(1, self.settings.max_send_attempts + 1):
            try:
                response = await self.send(message)
                if response is None:
                    raise TransientPeerUnavailable(f"Empty response to '{action}'")
                return response
            except Exception as e:
                if not is_transient_error(e):
                    raise
                last_error = e
                logger.warning(
                    f"'{action}' attempt {attempt}/{self.settings.max_send_attempts} failed: {e}"
                )

            if attempt == self.settings.max_send_attempts:
                break
            if not await self.wake_up():
                break
            await self.session.ensure(trigger="wake")
            await asyncio.sleep(self.settings.send_retry_delay_ms / 1000)

        if isinstance(last_error, TransientPeerUnavailable):
            raise last_error
        raise TransientPeerUnavailable(str(last_error)) from last_error
