"""
Data models for composition recording and performance replay.

This module defines the recorded step vocabulary (connect, disconnect, send,
cue, assert), the composition that holds an ordered script of steps, and the
performance report produced by replaying one.
"""

import random
import string
import time
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_id(prefix: str) -> str:
    """Generate a `<prefix>_<epoch ms>_<random>` identifier."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=6))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StepType(str, Enum):
    """Kinds of steps that can be recorded in a composition."""

    CONNECT = "connect"
    DISCONNECT = "disconnect"
    SEND = "send"
    CUE = "cue"
    ASSERT = "assert"


class MatchType(str, Enum):
    """Rules a cue can use to recognise an inbound message."""

    CONTAINS = "contains"
    XPATH = "xpath"
    REGEX = "regex"
    ID = "id"


class AssertionType(str, Enum):
    """Checks an assertion can run against an observed message."""

    CONTAINS = "contains"
    XPATH = "xpath"
    REGEX = "regex"
    EQUALS = "equals"


class StepStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    ERROR = "error"
    SKIPPED = "skipped"


class PerformanceStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"


# Step payloads

class EmptyPayload(BaseModel):
    """Payload for steps that carry nothing beyond their alias."""

    model_config = ConfigDict(frozen=True)


class SendPayload(BaseModel):
    """Outgoing stanza and the variables it introduces."""

    model_config = ConfigDict(frozen=True)

    xml: str = Field(..., description="Raw outgoing stanza")
    generated_ids: Dict[str, str] = Field(default_factory=dict, description="Variables minted by this send")

    @field_validator("xml")
    @classmethod
    def xml_must_not_be_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Send step XML cannot be empty")
        return v


class CuePayload(BaseModel):
    """Blocking wait for an inbound message matching a rule."""

    model_config = ConfigDict(frozen=True)

    match_type: MatchType = Field(..., description="Matching rule")
    match_expression: str = Field(..., description="Expression interpreted by the rule")
    timeout_ms: int = Field(default=10000, gt=0, description="Maximum wait in milliseconds")


class AssertPayload(BaseModel):
    """Non-blocking check against the last observed message."""

    model_config = ConfigDict(frozen=True)

    assertion_type: AssertionType = Field(..., description="Assertion rule")
    expression: str = Field(..., description="Expression interpreted by the rule")
    expected: Optional[str] = Field(default=None, description="Expected value")

    @model_validator(mode="after")
    def equals_requires_expected(self) -> "AssertPayload":
        if self.assertion_type == AssertionType.EQUALS and self.expected is None:
            raise ValueError("An 'equals' assertion requires an expected value")
        return self


# Steps

class _StepBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique step identifier")
    account_alias: str = Field(..., description="Alias of the account the step acts on")
    description: str = Field(default="", description="Human-readable description")

    @field_validator("account_alias")
    @classmethod
    def alias_must_not_be_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Account alias cannot be empty")
        return v.strip()


class ConnectStep(_StepBase):
    type: Literal["connect"] = "connect"
    payload: EmptyPayload = Field(default_factory=EmptyPayload)


class DisconnectStep(_StepBase):
    type: Literal["disconnect"] = "disconnect"
    payload: EmptyPayload = Field(default_factory=EmptyPayload)


class SendStep(_StepBase):
    type: Literal["send"] = "send"
    payload: SendPayload


class CueStep(_StepBase):
    type: Literal["cue"] = "cue"
    payload: CuePayload


class AssertStep(_StepBase):
    type: Literal["assert"] = "assert"
    payload: AssertPayload


Step = Annotated[
    Union[ConnectStep, DisconnectStep, SendStep, CueStep, AssertStep],
    Field(discriminator="type"),
]


class AccountReference(BaseModel):
    """Script-local alias for a peer account."""

    model_config = ConfigDict(frozen=True)

    alias: str = Field(..., description="Alias used by steps")
    jid: str = Field(..., description="Account identifier")


class Composition(BaseModel):
    """Named, ordered script of protocol interaction steps."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique composition identifier")
    name: str = Field(default="New Composition", description="Human-readable name")
    description: str = Field(default="", description="Composition description")
    version: str = Field(default="1.0.0", description="Composition version")
    created: datetime = Field(default_factory=utc_now, description="Creation timestamp")
    updated: datetime = Field(default_factory=utc_now, description="Last edit timestamp")
    accounts: List[AccountReference] = Field(default_factory=list, description="Accounts referenced by steps")
    steps: List[Step] = Field(default_factory=list, description="Ordered steps")
    variables: Dict[str, str] = Field(default_factory=dict, description="Template variable defaults")
    tags: List[str] = Field(default_factory=list, description="Composition tags")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or len(v.strip()) == 0:
            raise ValueError("Composition name cannot be empty")
        return v.strip()

    @field_validator("accounts")
    @classmethod
    def aliases_must_be_unique(cls, v: List[AccountReference]) -> List[AccountReference]:
        seen = set()
        for account in v:
            if account.alias in seen:
                raise ValueError(f"Duplicate account alias: {account.alias}")
            seen.add(account.alias)
        return v

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, v: List[str]) -> List[str]:
        return list(dict.fromkeys(v))

    def get_step(self, step_id: str) -> Optional[Step]:
        """Get step by ID."""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def account_identifiers(self) -> Dict[str, str]:
        """Map each declared alias to its account identifier."""
        return {account.alias: account.jid for account in self.accounts}

    def validate_structure(self) -> List[str]:
        """
        Check the invariants replay depends on.

        Returns:
            List of problems; empty when the composition can be performed
        """
        problems = []
        aliases = {account.alias for account in self.accounts}
        produced: set = set()

        if not self.steps:
            problems.append("Composition has no steps")

        for index, step in enumerate(self.steps, start=1):
            if step.account_alias not in aliases:
                problems.append(f"Step {index} ({step.id}) uses undeclared alias '{step.account_alias}'")

            if isinstance(step, SendStep):
                for name in step.payload.generated_ids:
                    if name in produced:
                        problems.append(f"Step {index} ({step.id}) redeclares generated id '{name}'")
                    produced.add(name)

            elif isinstance(step, CueStep) and step.payload.match_type == MatchType.ID:
                if step.payload.match_expression not in produced:
                    problems.append(
                        f"Step {index} ({step.id}) references '{step.payload.match_expression}' "
                        f"before any send step produces it"
                    )

        step_ids = [step.id for step in self.steps]
        if len(step_ids) != len(set(step_ids)):
            problems.append("Step ids are not unique")

        return problems

    def save_to_file(self, file_path: Path) -> None:
        """Save composition to JSON file."""
        file_path.write_text(self.model_dump_json(indent=2), encoding="utf-8")

    @classmethod
    def load_from_file(cls, file_path: Path) -> "Composition":
        """Load composition from JSON file."""
        return cls.model_validate_json(file_path.read_text(encoding="utf-8"))

    def get_summary(self) -> Dict[str, Any]:
        """Get composition summary information."""
        return {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "total_steps": len(self.steps),
            "accounts": [account.alias for account in self.accounts],
            "updated": self.updated.isoformat(),
            "tags": self.tags
        }


# Results

class StepError(BaseModel):
    message: str
    details: Optional[str] = None


class AssertionResult(BaseModel):
    passed: bool
    expected: Optional[str] = None
    actual: Optional[str] = None


class StepResult(BaseModel):
    """Outcome of one replayed step."""

    step_id: str
    status: StepStatus
    duration_ms: float = 0.0
    error: Optional[StepError] = None
    assertion_results: Optional[List[AssertionResult]] = None
    matched_message: Optional[str] = Field(default=None, description="Message a cue matched")

    @classmethod
    def skipped(cls, step_id: str) -> "StepResult":
        return cls(step_id=step_id, status=StepStatus.SKIPPED, duration_ms=0.0)


class PerformanceSummary(BaseModel):
    total: int = 0
    passed: int = 0
    failed: int = 0


class Performance(BaseModel):
    """One timestamped replay of a composition."""

    id: str = Field(default_factory=lambda: generate_id("perf"))
    composition_id: str
    status: Optional[PerformanceStatus] = None
    start_time: datetime = Field(default_factory=utc_now)
    end_time: Optional[datetime] = None
    duration_ms: float = 0.0
    summary: PerformanceSummary = Field(default_factory=PerformanceSummary)
    step_results: List[StepResult] = Field(default_factory=list)

    def add_step_result(self, result: StepResult) -> None:
        self.step_results.append(result)

    def finish(self, duration_ms: float) -> None:
        """Close the report: timestamps, summary and verdict."""
        self.end_time = utc_now()
        self.duration_ms = duration_ms

        passed = sum(1 for r in self.step_results if r.status == StepStatus.PASSED)
        failed = sum(1 for r in self.step_results if r.status in (StepStatus.FAILED, StepStatus.ERROR))
        self.summary = PerformanceSummary(total=len(self.step_results), passed=passed, failed=failed)
        self.status = PerformanceStatus.FAILED if failed else PerformanceStatus.PASSED

    def failures(self) -> List[StepResult]:
        return [r for r in self.step_results if r.status in (StepStatus.FAILED, StepStatus.ERROR)]

    def get_summary(self) -> Dict[str, Any]:
        """Get performance summary."""
        return {
            "id": self.id,
            "composition_id": self.composition_id,
            "status": self.status.value if self.status else None,
            "total": self.summary.total,
            "passed": self.summary.passed,
            "failed": self.summary.failed,
            "duration_ms": round(self.duration_ms, 1),
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None
        }
