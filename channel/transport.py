"""Abstract transport to the enhancement worker."""
import abc
from typing import Any, Callable, Dict, List, Optional

from utils.logger import setup_logger

logger = setup_logger(__name__)

Message = Dict[str, Any]
Listener = Callable[[Message], None]


class Port(abc.ABC):
    """One end of a persistent duplex connection."""

    def __init__(self, name: str):
        self.name = name
        self.on_message: Optional[Callable[[Message], None]] = None
        self.on_disconnect: Optional[Callable[[], None]] = None

    @abc.abstractmethod
    def post(self, message: Message) -> None:
        """Send a message to the other end (fire and forget)."""
        pass

    @abc.abstractmethod
    def disconnect(self) -> None:
        """Close the connection. The other end's on_disconnect fires."""
        pass

    @property
    @abc.abstractmethod
    def connected(self) -> bool:
        pass


class WorkerTransport(abc.ABC):
    """Request/response, duplex ports and push notifications to a worker."""

    def __init__(self):
        self._listeners: List[Listener] = []

    @abc.abstractmethod
    async def request(self, message: Message) -> Optional[Message]:
        """Send a request and return the worker's response (None when it gave none).

        Raises:
            TransientPeerUnavailable: If the worker cannot be reached
        """
        pass

    @abc.abstractmethod
    async def connect(self, name: str) -> Port:
        """Open a duplex port to the worker.

        Raises:
            TransientPeerUnavailable: If the worker cannot be reached
        """
        pass

    async def close(self) -> None:
        """Release transport resources."""
        pass

    def add_listener(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def dispatch_notification(self, message: Message) -> None:
        """Deliver a push notification from the worker to every listener."""
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception:
                logger.exception(f"Notification listener failed for {message.get('action')}")
