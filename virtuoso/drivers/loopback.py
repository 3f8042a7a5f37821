"""
In-memory loopback transport.

Stands in for an XMPP server: every connected identifier gets a mailbox,
stanzas addressed with `to="..."` are routed to the matching connections,
and scripted responders can answer sends. Deliveries run on timer threads
so inbound traffic arrives asynchronously, as it would from a real server.
"""

import itertools
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Union

from lxml import etree

from virtuoso.interfaces import (
    ConnectionProvider,
    ConnectionStatus,
    MessageCallback,
    PeerUnavailable,
    SendFailed,
    StatusCallback,
)
from virtuoso.logging_config import get_logger

ReplyFactory = Callable[[str], Optional[str]]


def bare_jid(jid: str) -> str:
    return jid.split("/", 1)[0]


@dataclass(eq=False)
class LoopbackConnection:
    """Handle for one loopback connection."""

    identifier: str
    connection_id: int
    connected: bool = True
    message_callbacks: List[MessageCallback] = field(default_factory=list)
    status_callbacks: List[StatusCallback] = field(default_factory=list)


@dataclass
class Responder:
    """Scripted reply to sends containing a trigger string."""

    trigger: str
    reply: Union[str, ReplyFactory]
    to: Optional[str] = None
    delay_s: float = 0.0
    once: bool = False
    fired: int = 0

    def render(self, raw_message: str) -> Optional[str]:
        if callable(self.reply):
            return self.reply(raw_message)
        return self.reply


class LoopbackProvider(ConnectionProvider):
    """Connection provider backed by in-process mailboxes."""

    def __init__(self, known_identifiers: Optional[List[str]] = None, route_by_recipient: bool = True):
        """
        Initialize the loopback provider.

        Args:
            known_identifiers: Identifiers allowed to connect; None accepts any
            route_by_recipient: Deliver sent stanzas to connections matching their `to` attribute
        """
        self.known_identifiers = set(known_identifiers) if known_identifiers is not None else None
        self.route_by_recipient = route_by_recipient
        self.logger = get_logger(__name__)

        self.connect_counts: Counter = Counter()
        self.disconnect_counts: Counter = Counter()
        self.sent: List[tuple] = []
        self.rejected_identifiers: set = set()

        self._connections: List[LoopbackConnection] = []
        self._responders: List[Responder] = []
        self._ids = itertools.count(1)
        self._timers: List[threading.Timer] = []
        self._lock = threading.RLock()

    # ConnectionProvider

    def connect(self, identifier: str) -> LoopbackConnection:
        if self.known_identifiers is not None and identifier not in self.known_identifiers:
            raise PeerUnavailable(f"Unknown account: {identifier}")

        with self._lock:
            connection = LoopbackConnection(identifier=identifier, connection_id=next(self._ids))
            self._connections.append(connection)
            self.connect_counts[identifier] += 1

        self.logger.info(f"Loopback connected {identifier} (#{connection.connection_id})")
        return connection

    def disconnect(self, handle: LoopbackConnection) -> None:
        with self._lock:
            if not handle.connected:
                return
            handle.connected = False
            self.disconnect_counts[handle.identifier] += 1
            callbacks = list(handle.status_callbacks)

        for callback in callbacks:
            callback(ConnectionStatus.DISCONNECTED)
        self.logger.info(f"Loopback disconnected {handle.identifier} (#{handle.connection_id})")

    def send(self, handle: LoopbackConnection, raw_message: str) -> None:
        if not handle.connected:
            raise SendFailed("Account is not connected")
        if handle.identifier in self.rejected_identifiers:
            raise SendFailed(f"Server rejected stanza from {handle.identifier}")

        with self._lock:
            self.sent.append((handle.identifier, raw_message))
            responders = [r for r in self._responders if r.trigger in raw_message and not (r.once and r.fired)]
            for responder in responders:
                responder.fired += 1

        if self.route_by_recipient:
            self._route(handle.identifier, raw_message)

        for responder in responders:
            reply = responder.render(raw_message)
            if reply is not None:
                self.deliver(responder.to or handle.identifier, reply, delay_s=responder.delay_s)

    def on_message(self, handle: LoopbackConnection, callback: MessageCallback) -> None:
        with self._lock:
            handle.message_callbacks.append(callback)

    def on_status(self, handle: LoopbackConnection, callback: StatusCallback) -> None:
        with self._lock:
            handle.status_callbacks.append(callback)

    # Scripting

    def add_responder(self, trigger: str, reply: Union[str, ReplyFactory], to: Optional[str] = None,
                      delay_s: float = 0.0, once: bool = False) -> Responder:
        """
        Answer sends that contain `trigger`.

        Args:
            trigger: Substring that activates the responder
            reply: Reply stanza, or a function of the sent stanza returning one
            to: Identifier receiving the reply; defaults to the sender
            delay_s: Delay before the reply is delivered
            once: Fire only for the first matching send
        """
        responder = Responder(trigger=trigger, reply=reply, to=to, delay_s=delay_s, once=once)
        with self._lock:
            self._responders.append(responder)
        return responder

    def remove_responder(self, responder: Responder) -> None:
        with self._lock:
            if responder in self._responders:
                self._responders.remove(responder)

    def deliver(self, identifier: str, raw_message: str, delay_s: float = 0.0) -> None:
        """Deliver a stanza to every live connection of an identifier (bare JIDs match all resources)."""
        timer = threading.Timer(delay_s, self._dispatch, args=(identifier, raw_message))
        timer.daemon = True
        with self._lock:
            self._timers = [t for t in self._timers if t.is_alive()]
            self._timers.append(timer)
        timer.start()

    def drop(self, identifier: str, status: ConnectionStatus = ConnectionStatus.ERROR) -> None:
        """Report a server-side status change on every live connection of an identifier."""
        for connection in self.connections_for(identifier):
            for callback in list(connection.status_callbacks):
                callback(status)

    def connections_for(self, identifier: str) -> List[LoopbackConnection]:
        target = bare_jid(identifier)
        with self._lock:
            return [
                c for c in self._connections
                if c.connected and (c.identifier == identifier or bare_jid(c.identifier) == target)
            ]

    def sent_by(self, identifier: str) -> List[str]:
        with self._lock:
            return [raw for sender, raw in self.sent if sender == identifier]

    def wait_idle(self, timeout_s: float = 5.0) -> None:
        """Block until pending deliveries have run."""
        with self._lock:
            timers = list(self._timers)
        for timer in timers:
            timer.join(timeout_s)

    def close(self) -> None:
        """Cancel pending deliveries and disconnect everything."""
        with self._lock:
            timers = list(self._timers)
            connections = [c for c in self._connections if c.connected]
        for timer in timers:
            timer.cancel()
        for connection in connections:
            self.disconnect(connection)

    def _dispatch(self, identifier: str, raw_message: str) -> None:
        for connection in self.connections_for(identifier):
            for callback in list(connection.message_callbacks):
                try:
                    callback(raw_message)
                except Exception as e:
                    self.logger.error(f"Delivery callback failed for {identifier}: {e}")

    def _route(self, sender: str, raw_message: str) -> None:
        try:
            root = etree.fromstring(raw_message.encode("utf-8"))
        except etree.XMLSyntaxError:
            return

        recipient = root.get("to")
        if not recipient or not self.connections_for(recipient):
            return

        if root.get("from") is None:
            root.set("from", sender)
        self.deliver(recipient, etree.tostring(root, encoding="unicode"))
