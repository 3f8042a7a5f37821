"""
Composition recording and performance replay.

A composer records the steps a user takes against live XMPP peers into a
composition; a performer replays it against fresh connections and reports
what happened at every step.
"""

from .composer import Composer, CompositionSession
from .manager import CompositionManager
from .models import (
    AssertionType,
    Composition,
    MatchType,
    Performance,
    PerformanceStatus,
    Step,
    StepResult,
    StepStatus,
    StepType,
)
from .performer import PerformanceSession, Performer

__all__ = [
    "Composer",
    "CompositionSession",
    "CompositionManager",
    "Composition",
    "Step",
    "StepType",
    "MatchType",
    "AssertionType",
    "Performance",
    "PerformanceStatus",
    "StepResult",
    "StepStatus",
    "Performer",
    "PerformanceSession",
]
