"""Heartbeated keep-alive session to the enhancement worker."""
import random
import time
from enum import Enum
from typing import Callable, Optional

from pydantic import ValidationError

from utils.logger import setup_logger
from channel.errors import TransientPeerUnavailable
from channel.messages import PortPing, PortPong, parse_port_message
from channel.scheduler import ScheduledTask, Scheduler
from channel.settings import ChannelSettings
from channel.transport import Port, WorkerTransport

logger = setup_logger(__name__)


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class KeepAliveSession:
    """Keeps a duplex port open to the worker and pings it periodically.

    State machine: disconnected -> connecting -> connected. A lost port or a
    failed connect schedules a reconnect after reconnect_delay_ms plus jitter,
    for at most max_retries consecutive failures. After that the session
    stays disconnected until reset_retries() is called.
    """

    def __init__(
        self,
        transport: WorkerTransport,
        settings: Optional[ChannelSettings] = None,
        scheduler: Optional[Scheduler] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time
    ):
        self.transport = transport
        self.settings = settings or ChannelSettings()
        self.scheduler = scheduler or Scheduler()
        self.rng = rng or random.Random()
        self.clock = clock

        self.state = SessionState.DISCONNECTED
        self.retry_count = 0
        self.pings_sent = 0
        self.last_pong_at: Optional[float] = None

        self._port: Optional[Port] = None
        self._heartbeat: Optional[ScheduledTask] = None
        self._reconnect: Optional[ScheduledTask] = None
        self._closed = False

    @property
    def connected(self) -> bool:
        return self.state == SessionState.CONNECTED

    @property
    def exhausted(self) -> bool:
        return self.retry_count >= self.settings.max_retries

    async def connect(self, trigger: str = "startup") -> bool:
        """Open the port and start the heartbeat.

        Returns:
            True if the session is connected afterwards
        """
        if self._closed:
            return False
        if self.state == SessionState.CONNECTED:
            return True
        if self.state == SessionState.CONNECTING:
            return False

        self.state = SessionState.CONNECTING
        try:
            port = await self.transport.connect(self.settings.port_name)
        except Exception as e:
            logger.warning(f"Keep-alive connect failed ({trigger}): {e}")
            self.state = SessionState.DISCONNECTED
            self._schedule_reconnect()
            return False

        if self._closed:
            port.disconnect()
            self.state = SessionState.DISCONNECTED
            return False

        port.on_message = self._on_message
        port.on_disconnect = self._on_disconnect
        self._port = port
        self.state = SessionState.CONNECTED
        self.retry_count = 0
        logger.info(f"Keep-alive session connected ({trigger})")

        self._start_heartbeat()
        self._send_ping(trigger)
        return True

    async def ensure(self, trigger: str = "request") -> bool:
        """Connect unless already connected or out of reconnect attempts."""
        if self.connected:
            return True
        if self._closed or self.exhausted:
            return False
        if self._reconnect is not None:
            self._reconnect.cancel()
            self._reconnect = None
        return await self.connect(trigger)

    def reset_retries(self) -> None:
        """Re-arm reconnection after max_retries was reached."""
        if self.retry_count:
            logger.debug(f"Keep-alive retry counter reset (was {self.retry_count})")
        self.retry_count = 0

    def next_heartbeat_interval(self) -> float:
        """Base interval plus random jitter, in milliseconds."""
        return self.settings.heartbeat_interval_ms + self.rng.uniform(0, self.settings.jitter_ms)

    def _start_heartbeat(self) -> None:
        self._stop_heartbeat()
        self._heartbeat = self.scheduler.repeat(
            self.next_heartbeat_interval,
            self._heartbeat_tick,
            name="keepalive-heartbeat"
        )

    def _stop_heartbeat(self) -> None:
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            self._heartbeat = None

    async def _heartbeat_tick(self) -> None:
        self._send_ping("heartbeat")

    def _send_ping(self, trigger: str) -> None:
        port = self._port
        if port is None or not port.connected:
            return
        try:
            port.post(PortPing(ts=self.clock() * 1000, trigger=trigger).to_wire())
            self.pings_sent += 1
            logger.debug(f"Keep-alive ping sent ({trigger})")
        except TransientPeerUnavailable as e:
            logger.warning(f"Keep-alive ping failed: {e}")
            self._on_disconnect()

    def _on_message(self, message) -> None:
        try:
            parsed = parse_port_message(message)
        except ValidationError:
            logger.debug(f"Ignoring unknown keep-alive message: {message}")
            return

        if isinstance(parsed, PortPong):
            self.last_pong_at = self.clock()
            self.retry_count = 0

    def _on_disconnect(self) -> None:
        if self._port is not None:
            self._port.on_message = None
            self._port.on_disconnect = None
        self._port = None
        self._stop_heartbeat()
        self.state = SessionState.DISCONNECTED

        if self._closed:
            return
        logger.info("Keep-alive port disconnected")
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._closed:
            return
        if self.exhausted:
            logger.warning(
                f"Keep-alive gave up after {self.retry_count} attempts; "
                "waiting for the next request to re-arm it"
            )
            return

        self.retry_count += 1
        delay = self.settings.reconnect_delay_ms + self.rng.uniform(0, self.settings.jitter_ms)
        logger.info(f"Keep-alive reconnect {self.retry_count}/{self.settings.max_retries} in {delay:.0f}ms")

        if self._reconnect is not None:
            self._reconnect.cancel()
        self._reconnect = self.scheduler.call_later(
            delay,
            self._reconnect_now,
            name="keepalive-reconnect"
        )

    async def _reconnect_now(self) -> None:
        self._reconnect = None
        await self.connect("reconnect")

    async def close(self) -> None:
        """Stop heartbeats and reconnects and drop the port."""
        self._closed = True
        self._stop_heartbeat()
        if self._reconnect is not None:
            self._reconnect.cancel()
            self._reconnect = None
        port, self._port = self._port, None
        if port is not None:
            port.on_disconnect = None
            port.on_message = None
            port.disconnect()
        self.state = SessionState.DISCONNECTED
        logger.debug("Keep-alive session closed")
