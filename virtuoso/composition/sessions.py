"""
Peer session registry for a single performance.

The registry owns one connection handle per alias and an inbox that buffers
every stanza the provider delivers for that alias. Delivery happens on the
provider's threads and never waits on the step loop; a cue drains its own
alias's inbox with a bounded condition wait.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from virtuoso.interfaces import (
    ConnectionProvider,
    ConnectionStatus,
    PeerUnavailable,
    PerformanceCancelled,
    SendFailed,
)
from virtuoso.logging_config import get_logger, log_stanza


class Inbox:
    """Append-only buffer of raw messages received on one alias."""

    def __init__(self, alias: str):
        self.alias = alias
        self._messages: List[str] = []
        self._cursor = 0
        self._condition = threading.Condition(threading.RLock())

    def append(self, message: str) -> None:
        with self._condition:
            self._messages.append(message)
            self._condition.notify_all()

    def __len__(self) -> int:
        with self._condition:
            return len(self._messages)

    @property
    def cursor(self) -> int:
        """Index of the first message no cue has consumed yet."""
        with self._condition:
            return self._cursor

    def messages(self) -> List[str]:
        with self._condition:
            return list(self._messages)

    def latest(self) -> Optional[str]:
        with self._condition:
            return self._messages[-1] if self._messages else None

    def wait_for(self, predicate: Callable[[str], bool], timeout_s: float,
                 cancelled: threading.Event) -> Optional[str]:
        """
        Consume messages in arrival order until one satisfies `predicate`.

        Messages scanned on the way, matching or not, are consumed so later
        cues start after them.

        Args:
            predicate: Match rule; exceptions it raises propagate
            timeout_s: Maximum wait in seconds
            cancelled: Event that truncates the wait when set

        Returns:
            The matching message, or None if the deadline passed

        Raises:
            PerformanceCancelled: If `cancelled` is set while waiting
        """
        deadline = time.monotonic() + timeout_s
        with self._condition:
            while True:
                while self._cursor < len(self._messages):
                    candidate = self._messages[self._cursor]
                    self._cursor += 1
                    if predicate(candidate):
                        return candidate

                if cancelled.is_set():
                    raise PerformanceCancelled(f"Cancelled while waiting on '{self.alias}'")

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._condition.wait(remaining)

    def wake(self) -> None:
        """Wake any waiter so it re-checks cancellation."""
        with self._condition:
            self._condition.notify_all()


@dataclass
class PeerSession:
    """Connection state for one alias."""

    alias: str
    identifier: Optional[str]
    inbox: Inbox
    handle: Any = None
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    last_observed: Optional[str] = None
    connect_count: int = 0
    status_history: List[ConnectionStatus] = field(default_factory=list)

    @property
    def is_connected(self) -> bool:
        return self.handle is not None and self.status == ConnectionStatus.CONNECTED


class PeerSessionRegistry:
    """Alias-scoped connections and inboxes for one performance."""

    def __init__(self, provider: ConnectionProvider, identifiers: Dict[str, str]):
        """
        Initialize the registry.

        Args:
            provider: Transport used to open connections
            identifiers: Account identifier for each alias
        """
        self.provider = provider
        self.identifiers = dict(identifiers)
        self.logger = get_logger(__name__)

        self._sessions: Dict[str, PeerSession] = {}
        # _lock is held across provider calls; _sessions_lock guards only the alias table
        self._lock = threading.RLock()
        self._sessions_lock = threading.Lock()
        self._closed = False

    def _session(self, alias: str) -> PeerSession:
        with self._sessions_lock:
            session = self._sessions.get(alias)
            if session is None:
                session = PeerSession(
                    alias=alias,
                    identifier=self.identifiers.get(alias),
                    inbox=Inbox(alias)
                )
                self._sessions[alias] = session
            return session

    def ensure_connected(self, alias: str) -> Any:
        """
        Return the live handle for an alias, connecting if needed.

        Raises:
            PeerUnavailable: If the alias has no identifier or the provider
                cannot connect
        """
        with self._lock:
            if self._closed:
                raise PeerUnavailable(f"Registry is closed; cannot connect '{alias}'")

            session = self._session(alias)
            if session.is_connected:
                return session.handle

            if session.handle is not None:
                # Dropped by the peer; release the stale handle before reconnecting
                self.logger.warning(f"Connection for '{alias}' is {session.status.value}; reconnecting")
                self._release(session)

            if not session.identifier:
                raise PeerUnavailable(f"No account identifier for alias '{alias}'")

            try:
                handle = self.provider.connect(session.identifier)
            except PeerUnavailable:
                raise
            except Exception as e:
                raise PeerUnavailable(f"Failed to connect '{alias}' as {session.identifier}: {e}") from e

            session.handle = handle
            session.status = ConnectionStatus.CONNECTED
            session.connect_count += 1
            self.provider.on_message(handle, self._delivery_callback(session, handle))
            self.provider.on_status(handle, self._status_callback(session, handle))

            self.logger.info(f"Connected '{alias}' as {session.identifier}")
            return handle

    def _delivery_callback(self, session: PeerSession, handle: Any) -> Callable[[str], None]:
        def _deliver(raw_message: str) -> None:
            if session.handle is not handle:
                self.logger.debug(f"Dropping stanza from stale connection for '{session.alias}'")
                return
            log_stanza(self.logger, session.alias, "in", raw_message)
            session.inbox.append(raw_message)

        return _deliver

    def _status_callback(self, session: PeerSession, handle: Any) -> Callable[[ConnectionStatus], None]:
        def _on_status(status: ConnectionStatus) -> None:
            if session.handle is not handle:
                return
            status = ConnectionStatus(status)
            session.status_history.append(status)
            if status != session.status:
                self.logger.info(f"Connection status for '{session.alias}': {status.value}")
            session.status = status

        return _on_status

    def send(self, alias: str, raw_message: str) -> None:
        """
        Send a stanza on an alias, connecting first if needed.

        Raises:
            PeerUnavailable: If the alias cannot be connected
            SendFailed: If the transport rejects the stanza
        """
        handle = self.ensure_connected(alias)
        log_stanza(self.logger, alias, "out", raw_message)
        try:
            self.provider.send(handle, raw_message)
        except SendFailed:
            raise
        except Exception as e:
            raise SendFailed(f"Transport rejected stanza on '{alias}': {e}") from e

    def disconnect(self, alias: str) -> None:
        """
        Tear down an alias's connection; a later `ensure_connected` may reopen it.

        Raises:
            PeerUnavailable: If the provider fails to disconnect
        """
        with self._lock:
            with self._sessions_lock:
                session = self._sessions.get(alias)
            if session is None or session.handle is None:
                self.logger.warning(f"Disconnect requested for '{alias}' which is not connected")
                return

            try:
                self._release(session)
            except Exception as e:
                raise PeerUnavailable(f"Failed to disconnect '{alias}': {e}") from e
            self.logger.info(f"Disconnected '{alias}'")

    def _release(self, session: PeerSession) -> None:
        handle = session.handle
        session.handle = None
        session.status = ConnectionStatus.DISCONNECTED
        self.provider.disconnect(handle)

    def inbound(self, alias: str) -> Inbox:
        """Get the inbox for an alias."""
        return self._session(alias).inbox

    def set_last_observed(self, alias: str, message: str) -> None:
        self._session(alias).last_observed = message

    def observed_message(self, alias: str) -> Optional[str]:
        """Last message a cue matched on the alias, else the newest inbound one."""
        session = self._session(alias)
        if session.last_observed is not None:
            return session.last_observed
        return session.inbox.latest()

    def touched_aliases(self) -> List[str]:
        """Aliases that were connected at least once."""
        with self._sessions_lock:
            return [alias for alias, s in self._sessions.items() if s.connect_count > 0]

    def interrupt(self) -> None:
        """Wake every waiting cue."""
        with self._sessions_lock:
            sessions = list(self._sessions.values())
        for session in sessions:
            session.inbox.wake()

    def close(self) -> None:
        """Disconnect every alias that still has a live connection, exactly once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            with self._sessions_lock:
                sessions = [s for s in self._sessions.values() if s.handle is not None]

        for session in sessions:
            try:
                self._release(session)
                self.logger.info(f"Teardown disconnected '{session.alias}'")
            except Exception as e:
                self.logger.warning(f"Error during teardown of '{session.alias}': {e}")
