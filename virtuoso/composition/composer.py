"""
Composition recording.

A composer accumulates the steps a user performs against live peers while a
recording session is open and turns them into an immutable composition.
"""

import time
from typing import Dict, List, Optional

from virtuoso.interfaces import AlreadyComposing
from virtuoso.logging_config import get_logger
from .models import (
    AccountReference,
    AssertPayload,
    AssertStep,
    AssertionType,
    Composition,
    ConnectStep,
    CuePayload,
    CueStep,
    DisconnectStep,
    MatchType,
    SendPayload,
    SendStep,
    Step,
    generate_id,
    utc_now,
)


class CompositionSession:
    """State of one open recording session."""

    def __init__(self, seed: Optional[Composition] = None):
        """
        Initialize a recording session.

        Args:
            seed: Existing composition to extend ("record more"); None for an empty session
        """
        self.seed = seed
        self.steps: List[Step] = list(seed.steps) if seed else []
        self.accounts: Dict[str, AccountReference] = {
            account.alias: account for account in (seed.accounts if seed else [])
        }
        self.start_time = time.time()
        self._step_ids = {step.id for step in self.steps}

    def new_step_id(self) -> str:
        step_id = generate_id("step")
        while step_id in self._step_ids:
            step_id = generate_id("step")
        self._step_ids.add(step_id)
        return step_id

    def register_account(self, alias: str, identifier: Optional[str] = None) -> None:
        """Track an alias; an explicit identifier replaces whatever was known."""
        if identifier:
            self.accounts[alias] = AccountReference(alias=alias, jid=identifier)
        elif alias not in self.accounts:
            self.accounts[alias] = AccountReference(alias=alias, jid=alias)

    def add_step(self, step: Step, identifier: Optional[str] = None) -> None:
        self.register_account(step.account_alias, identifier)
        self.steps.append(step)

    def build(self, name: Optional[str] = None, description: Optional[str] = None,
              tags: Optional[List[str]] = None) -> Optional[Composition]:
        """Build the composition; None when nothing was recorded."""
        if not self.steps:
            return None

        accounts = list(self.accounts.values())
        if self.seed is not None:
            data = self.seed.model_dump()
            data.update(
                steps=self.steps,
                accounts=accounts,
                updated=utc_now(),
            )
        else:
            now = utc_now()
            data = {
                "id": generate_id("comp"),
                "created": now,
                "updated": now,
                "steps": self.steps,
                "accounts": accounts,
            }

        if name is not None:
            data["name"] = name
        if description is not None:
            data["description"] = description
        if tags is not None:
            data["tags"] = tags
        return Composition.model_validate(data)


class Composer:
    """Session-scoped recording API."""

    def __init__(self, default_cue_timeout_ms: int = 10000):
        """
        Initialize composer.

        Args:
            default_cue_timeout_ms: Timeout given to cues recorded without one
        """
        self.default_cue_timeout_ms = default_cue_timeout_ms
        self.logger = get_logger(__name__)
        self.active_session: Optional[CompositionSession] = None

    @property
    def is_composing(self) -> bool:
        return self.active_session is not None

    @property
    def steps(self) -> List[Step]:
        """Steps recorded so far in the active session."""
        return list(self.active_session.steps) if self.active_session else []

    def start(self) -> None:
        """
        Begin an empty recording session.

        Raises:
            AlreadyComposing: If a session is already open
        """
        if self.active_session is not None:
            raise AlreadyComposing("A recording session is already active")

        self.active_session = CompositionSession()
        self.logger.info("Started composing")

    def start_from_existing(self, composition: Composition) -> None:
        """
        Begin a session seeded with an existing composition's steps and accounts.

        Raises:
            AlreadyComposing: If a session is already open
        """
        if self.active_session is not None:
            raise AlreadyComposing("A recording session is already active")

        self.active_session = CompositionSession(seed=composition)
        self.logger.info(f"Started composing from existing composition: {composition.name} "
                         f"({len(composition.steps)} steps)")

    def cancel(self) -> None:
        """Discard the active session."""
        if self.active_session is None:
            self.logger.warning("No active recording session to cancel")
            return

        discarded = len(self.active_session.steps)
        self.active_session = None
        self.logger.info(f"Cancelled composing; discarded {discarded} steps")

    def stop(self, name: Optional[str] = None, description: Optional[str] = None,
             tags: Optional[List[str]] = None) -> Optional[Composition]:
        """
        Finish the active session.

        Returns:
            The built composition, or None if no steps were recorded

        Raises:
            pydantic.ValidationError: If the metadata is invalid; the session
                stays active so `stop` can be retried
        """
        if self.active_session is None:
            self.logger.warning("No active recording session")
            return None

        composition = self.active_session.build(name=name, description=description, tags=tags)
        self.active_session = None

        if composition is None:
            self.logger.info("Stopped composing with no steps; nothing to keep")
            return None

        self.logger.info(f"Stopped composing: {composition.name} ({len(composition.steps)} steps)")
        return composition

    def _record(self, step: Step, identifier: Optional[str] = None) -> str:
        self.active_session.add_step(step, identifier)
        self.logger.debug(f"Recorded step: {step.type} on '{step.account_alias}' ({step.id})")
        return step.id

    def _inactive(self, action: str) -> bool:
        if self.active_session is None:
            self.logger.warning(f"Cannot record {action} - recording not active")
            return True
        return False

    def capture_connect(self, alias: str, identifier: str) -> Optional[str]:
        """Record a connection of `alias` using account `identifier`."""
        if self._inactive("connect"):
            return None

        step = ConnectStep(
            id=self.active_session.new_step_id(),
            account_alias=alias,
            description=f"Connect as {alias}"
        )
        return self._record(step, identifier)

    def capture_disconnect(self, alias: str) -> Optional[str]:
        """Record a disconnection of `alias`."""
        if self._inactive("disconnect"):
            return None

        step = DisconnectStep(
            id=self.active_session.new_step_id(),
            account_alias=alias,
            description=f"Disconnect {alias}"
        )
        return self._record(step)

    def capture_send(self, alias: str, xml: str,
                     generated_ids: Optional[Dict[str, str]] = None) -> Optional[str]:
        """Record a stanza sent by `alias` and any variables it minted."""
        if self._inactive("send"):
            return None

        step = SendStep(
            id=self.active_session.new_step_id(),
            account_alias=alias,
            description=f"{alias} sends stanza",
            payload=SendPayload(xml=xml, generated_ids=generated_ids or {})
        )
        return self._record(step)

    def add_cue(self, alias: str, match_type: MatchType, expression: str,
                timeout_ms: Optional[int] = None) -> Optional[str]:
        """Record a wait for an inbound message on `alias`."""
        if self._inactive("cue"):
            return None

        match_type = MatchType(match_type)
        step = CueStep(
            id=self.active_session.new_step_id(),
            account_alias=alias,
            description=f"Wait for response ({match_type.value})",
            payload=CuePayload(
                match_type=match_type,
                match_expression=expression,
                timeout_ms=timeout_ms if timeout_ms is not None else self.default_cue_timeout_ms
            )
        )
        return self._record(step)

    def add_assertion(self, alias: str, assertion_type: AssertionType, expression: str,
                      expected: Optional[str] = None) -> Optional[str]:
        """Record a check on the last message observed on `alias`."""
        if self._inactive("assertion"):
            return None

        assertion_type = AssertionType(assertion_type)
        step = AssertStep(
            id=self.active_session.new_step_id(),
            account_alias=alias,
            description=f"Assert {assertion_type.value}: {expression}",
            payload=AssertPayload(assertion_type=assertion_type, expression=expression, expected=expected)
        )
        return self._record(step)

    def get_status(self) -> Dict[str, object]:
        """Get current recording status."""
        if self.active_session is None:
            return {"composing": False, "session": None}

        return {
            "composing": True,
            "session": {
                "extending": self.active_session.seed.id if self.active_session.seed else None,
                "steps_recorded": len(self.active_session.steps),
                "accounts": list(self.active_session.accounts),
                "start_time": self.active_session.start_time
            }
        }
