"""In-process transport hosting the enhancement worker.

The hosted worker behaves like a suspended-when-idle background process:
after idle_timeout seconds without traffic it suspends and drops its ports,
and the first contact afterwards fails while it wakes up again.
"""
import asyncio
from typing import List, Optional

from utils.logger import setup_logger
from channel.errors import TransientPeerUnavailable
from channel.transport import Message, Port, WorkerTransport
import config

logger = setup_logger(__name__)

NO_RECEIVER = "Could not establish connection. Receiving end does not exist."


class LocalPort(Port):
    """Port whose peer lives on the same event loop."""

    def __init__(self, name: str):
        super().__init__(name)
        self.peer: Optional["LocalPort"] = None
        self._connected = True

    @classmethod
    def pair(cls, name: str):
        a, b = cls(name), cls(name)
        a.peer, b.peer = b, a
        return a, b

    @property
    def connected(self) -> bool:
        return self._connected

    def post(self, message: Message) -> None:
        if not self._connected:
            raise TransientPeerUnavailable("Attempting to use a disconnected port object")
        asyncio.get_running_loop().call_soon(self.peer._deliver, message)

    def _deliver(self, message: Message) -> None:
        if self._connected and self.on_message:
            self.on_message(message)

    def disconnect(self) -> None:
        if not self._connected:
            return
        self._connected = False
        peer = self.peer
        if peer and peer._connected:
            peer._connected = False
            if peer.on_disconnect:
                peer.on_disconnect()


class LocalWorkerTransport(WorkerTransport):
    """Hosts an EnhancementWorker in-process and simulates its sleep/wake cycle."""

    def __init__(
        self,
        worker,
        idle_timeout: Optional[float] = config.WORKER_IDLE_TIMEOUT,
        wake_delay: float = config.WORKER_WAKE_DELAY,
        request_timeout_ms: Optional[int] = None
    ):
        """
        Args:
            worker: Object with handle(), handle_port_message() and a notify attribute
            idle_timeout: Seconds of silence before the worker suspends (None: never)
            wake_delay: Seconds a suspended worker needs to start again
            request_timeout_ms: Give up on a request after this long (None: wait)
        """
        super().__init__()
        self.worker = worker
        self.worker.notify = self.dispatch_notification
        self.idle_timeout = idle_timeout
        self.wake_delay = wake_delay
        self.request_timeout_ms = request_timeout_ms
        self.state = "awake"
        self.wake_count = 0
        self._in_flight = 0
        self._ports: List[LocalPort] = []
        self._idle_handle: Optional[asyncio.TimerHandle] = None
        self._wake_handle: Optional[asyncio.TimerHandle] = None

    @property
    def awake(self) -> bool:
        return self.state == "awake"

    async def request(self, message: Message) -> Optional[Message]:
        self._ensure_awake()
        self._touch()
        self._in_flight += 1

        try:
            call = self.worker.handle(message)
            if self.request_timeout_ms is None:
                response = await call
            else:
                try:
                    response = await asyncio.wait_for(call, self.request_timeout_ms / 1000)
                except asyncio.TimeoutError:
                    raise TransientPeerUnavailable(f"No response from worker for '{message.get('action')}'")
        finally:
            self._in_flight -= 1

        self._touch()
        return response

    async def connect(self, name: str) -> Port:
        self._ensure_awake()
        caller_side, worker_side = LocalPort.pair(name)

        def _on_worker_message(message: Message) -> None:
            self._touch()
            reply = self.worker.handle_port_message(message)
            if reply is not None and worker_side.connected:
                worker_side.post(reply)

        def _on_worker_disconnect() -> None:
            if worker_side in self._ports:
                self._ports.remove(worker_side)

        worker_side.on_message = _on_worker_message
        worker_side.on_disconnect = _on_worker_disconnect
        self._ports.append(worker_side)
        self._touch()
        logger.debug(f"Port '{name}' connected to worker")
        return caller_side

    def suspend(self) -> None:
        """Put the worker to sleep and drop every open port."""
        if self.state == "asleep":
            return
        logger.info("Worker suspended after idling")
        self.state = "asleep"
        self._cancel_timers()
        ports, self._ports = self._ports, []
        for port in ports:
            port.disconnect()
        self.worker.reset()

    def _ensure_awake(self) -> None:
        if self.state == "awake":
            return
        self._begin_wake()
        raise TransientPeerUnavailable(NO_RECEIVER)

    def _begin_wake(self) -> None:
        if self.state != "asleep":
            return
        self.state = "waking"
        loop = asyncio.get_running_loop()
        self._wake_handle = loop.call_later(self.wake_delay, self._finish_wake)

    def _finish_wake(self) -> None:
        self._wake_handle = None
        self.state = "awake"
        self.wake_count += 1
        logger.info("Worker woke up")
        self._touch()

    def _touch(self) -> None:
        if self._idle_handle is not None:
            self._idle_handle.cancel()
            self._idle_handle = None
        if self.idle_timeout is not None and self.state == "awake":
            loop = asyncio.get_running_loop()
            self._idle_handle = loop.call_later(self.idle_timeout, self._idle_expired)

    def _idle_expired(self) -> None:
        self._idle_handle = None
        if self._in_flight:
            # Requests in progress keep the worker alive
            self._touch()
            return
        self.suspend()

    def _cancel_timers(self) -> None:
        for handle in (self._idle_handle, self._wake_handle):
            if handle is not None:
                handle.cancel()
        self._idle_handle = None
        self._wake_handle = None

    async def close(self) -> None:
        self._cancel_timers()
        ports, self._ports = self._ports, []
        for port in ports:
            port.disconnect()
