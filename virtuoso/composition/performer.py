"""
Composition replay engine.

A performance drives a composition's steps strictly in order against a
fresh peer session registry and variable store, and records one step result
per step. Infrastructure errors abort the run and skip what remains; failed
assertions are reported and the run carries on.
"""

import threading
import time
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from virtuoso.config_models import PerformerConfig
from virtuoso.interfaces import (
    ConnectionProvider,
    CueTimeout,
    InvalidComposition,
    MatchEvaluationError,
    PeerUnavailable,
    PerformanceCancelled,
    SendFailed,
    VirtuosoError,
)
from virtuoso.logging_config import get_logger
from . import matcher
from .models import (
    AssertStep,
    Composition,
    ConnectStep,
    CueStep,
    DisconnectStep,
    Performance,
    SendStep,
    Step,
    StepError,
    StepResult,
    StepStatus,
    StepType,
)
from .sessions import PeerSessionRegistry
from .variables import VariableStore

StepObserver = Callable[[Step, StepResult], None]


class PerformerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class PerformanceSession:
    """Runs one composition once; cancellable from another thread."""

    def __init__(self, composition: Composition, provider: ConnectionProvider,
                 account_overrides: Optional[Dict[str, str]] = None,
                 fail_fast: bool = False,
                 observers: Optional[Iterable[StepObserver]] = None):
        """
        Initialize a performance session.

        Args:
            composition: Composition to replay
            provider: Transport used for every alias
            account_overrides: Identifiers replacing the composition's own, by alias
            fail_fast: Abort on the first failed assertion as well as on errors
            observers: Callbacks notified after each step result is recorded
        """
        self.composition = composition
        self.provider = provider
        self.fail_fast = fail_fast
        self.observers: List[StepObserver] = list(observers or [])
        self.logger = get_logger(__name__)

        identifiers = composition.account_identifiers()
        identifiers.update({
            alias: identifier for alias, identifier in (account_overrides or {}).items()
            if alias in identifiers
        })
        self.registry = PeerSessionRegistry(provider, identifiers)
        self.variables = VariableStore(composition.variables)
        self.performance: Optional[Performance] = None
        self.state = PerformerState.IDLE

        self._cancelled = threading.Event()
        self.step_handlers: Dict[StepType, Callable[..., StepResult]] = {
            StepType.CONNECT: self._handle_connect,
            StepType.DISCONNECT: self._handle_disconnect,
            StepType.SEND: self._handle_send,
            StepType.CUE: self._handle_cue,
            StepType.ASSERT: self._handle_assert,
        }

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Stop the performance: a waiting cue errors now and later steps are skipped."""
        if self._cancelled.is_set():
            return
        self.logger.warning(f"Cancelling performance of '{self.composition.name}'")
        self._cancelled.set()
        self.registry.interrupt()

    def execute(self) -> Performance:
        """
        Replay the composition.

        Returns:
            The finished performance report

        Raises:
            InvalidComposition: If the composition fails structural checks;
                raised before any step runs
        """
        if self.state != PerformerState.IDLE:
            raise RuntimeError("A performance session can only be executed once")

        problems = self.composition.validate_structure()
        if problems:
            self.logger.error(f"Refusing to perform '{self.composition.name}': {problems}")
            raise InvalidComposition(problems)

        performance = Performance(composition_id=self.composition.id)
        self.performance = performance
        self.state = PerformerState.RUNNING
        self.logger.info(f"Starting performance {performance.id} of composition: {self.composition.name}")

        timer = time.perf_counter()
        aborted = False
        try:
            for step in self.composition.steps:
                if aborted:
                    result = StepResult.skipped(step.id)
                else:
                    result = self._execute_step(step)
                    if result.status == StepStatus.ERROR:
                        aborted = True
                        self.logger.warning(f"Step {step.id} errored; skipping remaining steps")
                    elif result.status == StepStatus.FAILED and self.fail_fast:
                        aborted = True
                        self.logger.warning(f"Step {step.id} failed with fail_fast enabled; skipping remaining steps")

                performance.add_step_result(result)
                self._notify(step, result)

            performance.finish((time.perf_counter() - timer) * 1000)
        finally:
            self.registry.close()
            self.state = PerformerState.ABORTED if aborted else PerformerState.COMPLETED

        self.logger.info(f"Performance completed: {performance.get_summary()}")
        return performance

    def _notify(self, step: Step, result: StepResult) -> None:
        for observer in self.observers:
            try:
                observer(step, result)
            except Exception as e:
                self.logger.error(f"Step observer failed for {step.id}: {e}")

    def _execute_step(self, step: Step) -> StepResult:
        """Dispatch a single step and time it."""
        self.logger.debug(f"Executing step {step.id}: {step.type} on '{step.account_alias}'")
        start_time = time.perf_counter()

        if self._cancelled.is_set():
            result = self._error_result(step, PerformanceCancelled("Performance cancelled before step started"))
        else:
            handler = self.step_handlers.get(StepType(step.type))
            try:
                if handler is None:
                    raise VirtuosoError(f"No handler for step type: {step.type}")
                result = handler(step)
            except (PeerUnavailable, SendFailed, CueTimeout, MatchEvaluationError, PerformanceCancelled) as e:
                result = self._error_result(step, e)
            except Exception as e:
                self.logger.exception(f"Unexpected error executing step {step.id}")
                result = self._error_result(step, e)

        result.duration_ms = (time.perf_counter() - start_time) * 1000
        self.logger.debug(f"Step {step.id} {result.status.value} in {result.duration_ms:.1f}ms")
        return result

    def _error_result(self, step: Step, error: Exception) -> StepResult:
        self.logger.error(f"Step {step.id} error: {error}")
        return StepResult(
            step_id=step.id,
            status=StepStatus.ERROR,
            error=StepError(message=str(error), details=type(error).__name__)
        )

    # Step handlers

    def _handle_connect(self, step: ConnectStep) -> StepResult:
        self.registry.ensure_connected(step.account_alias)
        return StepResult(step_id=step.id, status=StepStatus.PASSED)

    def _handle_disconnect(self, step: DisconnectStep) -> StepResult:
        self.registry.disconnect(step.account_alias)
        return StepResult(step_id=step.id, status=StepStatus.PASSED)

    def _handle_send(self, step: SendStep) -> StepResult:
        xml = self.variables.substitute(step.payload.xml)
        try:
            matcher.parse_document(xml)
        except MatchEvaluationError as e:
            raise SendFailed(f"Invalid XML stanza: {e}") from e

        self.registry.send(step.account_alias, xml.strip())
        self.variables.update(step.payload.generated_ids)
        return StepResult(step_id=step.id, status=StepStatus.PASSED)

    def _handle_cue(self, step: CueStep) -> StepResult:
        payload = step.payload
        variables = self.variables.snapshot()
        # A bad rule is an error now, not a timeout on a quiet alias
        matcher.validate_rule(payload.match_type, payload.match_expression, variables)
        inbox = self.registry.inbound(step.account_alias)

        def _predicate(candidate: str) -> bool:
            return matcher.matches(payload.match_type, payload.match_expression, candidate, variables)

        message = inbox.wait_for(_predicate, payload.timeout_ms / 1000.0, self._cancelled)
        if message is None:
            raise CueTimeout(
                f"No message matching {payload.match_type.value} '{payload.match_expression}' "
                f"on '{step.account_alias}' within {payload.timeout_ms} ms"
            )

        self.registry.set_last_observed(step.account_alias, message)
        return StepResult(step_id=step.id, status=StepStatus.PASSED, matched_message=message)

    def _handle_assert(self, step: AssertStep) -> StepResult:
        payload = step.payload
        candidate = self.registry.observed_message(step.account_alias)
        if candidate is None:
            raise MatchEvaluationError(f"No message observed on '{step.account_alias}' to assert against")

        outcome = matcher.evaluate_assertion(
            payload.assertion_type, payload.expression, payload.expected,
            candidate, self.variables.snapshot()
        )
        if outcome.passed:
            return StepResult(step_id=step.id, status=StepStatus.PASSED, assertion_results=[outcome])

        return StepResult(
            step_id=step.id,
            status=StepStatus.FAILED,
            assertion_results=[outcome],
            error=StepError(
                message=(f"Assertion {payload.assertion_type.value} '{payload.expression}' did not hold: "
                         f"expected {outcome.expected!r}, got {outcome.actual!r}"),
                details="AssertionMismatch"
            )
        )


class Performer:
    """Replays compositions against a connection provider."""

    def __init__(self, provider: ConnectionProvider, config: Optional[PerformerConfig] = None,
                 account_overrides: Optional[Dict[str, str]] = None):
        """Initialize performer."""
        self.provider = provider
        self.config = config or PerformerConfig()
        self.account_overrides = dict(account_overrides or {})
        self.logger = get_logger(__name__)

    def session(self, composition: Composition,
                observers: Optional[Iterable[StepObserver]] = None) -> PerformanceSession:
        """Create a session; keep it to cancel the run from another thread."""
        return PerformanceSession(
            composition,
            self.provider,
            account_overrides=self.account_overrides,
            fail_fast=self.config.fail_fast,
            observers=observers
        )

    def run(self, composition: Composition,
            observers: Optional[Iterable[StepObserver]] = None) -> Performance:
        """Perform a composition and return its report."""
        return self.session(composition, observers).execute()

    def run_batch(self, compositions: Iterable[Composition],
                  stop_on_failure: bool = False) -> List[Performance]:
        """Perform several compositions one after another."""
        results = []

        for composition in compositions:
            try:
                performance = self.run(composition)
            except InvalidComposition as e:
                self.logger.error(f"Skipping composition {composition.id}: {e}")
                continue

            results.append(performance)
            if performance.failures() and stop_on_failure:
                self.logger.warning(f"Stopping batch after failure in {composition.id}")
                break

        return results
