"""Abstract interfaces and error types shared by the composition engine."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable


class VirtuosoError(Exception):
    """Base exception for composition and performance errors."""


class AlreadyComposing(VirtuosoError):
    """Raised when a recording session is started while another is active."""


class InvalidComposition(VirtuosoError):
    """Raised when a composition is structurally unfit for replay."""

    def __init__(self, problems: list[str]):
        self.problems = list(problems)
        super().__init__("Invalid composition: " + "; ".join(self.problems))


class PeerUnavailable(VirtuosoError):
    """Raised when an alias has no usable identifier or cannot be connected."""


class SendFailed(VirtuosoError):
    """Raised when an outgoing stanza is malformed or rejected by the transport."""


class CueTimeout(VirtuosoError):
    """Raised when no matching message arrives before a cue's deadline."""


class PerformanceCancelled(VirtuosoError):
    """Raised inside a waiting step when its performance has been cancelled."""


class MatchEvaluationError(VirtuosoError):
    """Raised when a match or assertion expression cannot be evaluated."""


class ConnectionStatus(str, Enum):
    """Connection states reported by a connection provider."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


MessageCallback = Callable[[str], None]
StatusCallback = Callable[[ConnectionStatus], None]


class ConnectionProvider(ABC):
    """Transport that performances drive; one handle per live connection."""

    @abstractmethod
    def connect(self, identifier: str) -> Any:
        """
        Open a connection for an account identifier.

        Args:
            identifier: Account identifier (typically a JID)

        Returns:
            Opaque connection handle

        Raises:
            PeerUnavailable: If the connection cannot be established
        """

    @abstractmethod
    def disconnect(self, handle: Any) -> None:
        """Close the connection behind a handle."""

    @abstractmethod
    def send(self, handle: Any, raw_message: str) -> None:
        """
        Transmit a raw stanza.

        Raises:
            SendFailed: If the transport rejects the message
        """

    @abstractmethod
    def on_message(self, handle: Any, callback: MessageCallback) -> None:
        """
        Subscribe to inbound stanzas on a connection.

        The callback may be invoked from any thread, once per raw stanza,
        in arrival order.
        """

    @abstractmethod
    def on_status(self, handle: Any, callback: StatusCallback) -> None:
        """Subscribe to connection status changes."""
