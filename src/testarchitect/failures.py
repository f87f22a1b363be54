"""Failure taxonomy and exception hierarchy."""

from __future__ import annotations

from enum import Enum


class FailureKind(str, Enum):
    """Standardized categories for structured tool failures."""

    TOOL_ERROR = "tool_error"
    TIMEOUT = "timeout"
    EMPTY_RESULT = "empty_result"
    VERIFICATION_FAILED = "verification_failed"
    PRECONDITION = "precondition"
    PARSE_ERROR = "parse_error"
    BUDGET_EXHAUSTED = "budget_exhausted"


class TestArchitectError(Exception):
    """Base class for errors raised by testarchitect."""

    __test__ = False


class PreconditionError(TestArchitectError):
    """An input violates a hard precondition; never retried."""

    kind = FailureKind.PRECONDITION


class SourceFileMissingError(PreconditionError):
    def __init__(self, path: str) -> None:
        super().__init__(f"Source file not found: {path}")
        self.path = path


class ImageSizeMismatchError(PreconditionError):
    def __init__(self, baseline: tuple[int, int], current: tuple[int, int]) -> None:
        super().__init__(
            "Image size mismatch: baseline "
            f"{baseline[0]}x{baseline[1]}, current {current[0]}x{current[1]}"
        )
        self.baseline = baseline
        self.current = current


class MaxStepsExceededError(TestArchitectError):
    """The orchestration loop ran out of steps before completing."""

    kind = FailureKind.BUDGET_EXHAUSTED

    def __init__(self, max_steps: int, pending_phases: list[str]) -> None:
        pending = ", ".join(pending_phases) or "none"
        super().__init__(
            f"Maximum steps ({max_steps}) reached without completion; pending phases: {pending}"
        )
        self.max_steps = max_steps
        self.pending_phases = pending_phases
