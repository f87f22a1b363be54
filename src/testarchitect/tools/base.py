"""Base tool definitions."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from testarchitect.failures import FailureKind, PreconditionError
from testarchitect.util.logging import get_logger

logger = get_logger(__name__)

OutputT = TypeVar("OutputT")


class ToolFailure(BaseModel):
    kind: FailureKind
    message: str


class ToolResult(BaseModel, Generic[OutputT]):
    """Either a success payload or a structured failure, never both."""

    output: OutputT | None = None
    failure: ToolFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, output: OutputT) -> "ToolResult[OutputT]":
        return cls(output=output)

    @classmethod
    def fail(cls, kind: FailureKind, message: str) -> "ToolResult[OutputT]":
        return cls(failure=ToolFailure(kind=kind, message=message))


class ToolError(Exception):
    """Raised inside a tool to report a failure of a specific kind."""

    def __init__(self, kind: FailureKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class Tool(ABC, Generic[OutputT]):
    """Abstract asynchronous tool.

    Subclasses implement :meth:`run`; callers use :meth:`invoke`, which
    validates the input, bounds the call with ``timeout_seconds`` and
    converts every error into a :class:`ToolFailure`.
    """

    name: str
    description: str
    input_schema: type[BaseModel]
    timeout_seconds: float = 120.0

    @abstractmethod
    async def run(self, data: BaseModel) -> OutputT:
        """Execute the tool and return its success payload."""
        raise NotImplementedError

    async def invoke(self, data: BaseModel | dict[str, Any]) -> ToolResult[OutputT]:
        try:
            payload = self.input_schema.model_validate(data)
        except ValidationError as exc:
            return ToolResult.fail(FailureKind.PRECONDITION, f"Invalid input for {self.name}: {exc}")
        try:
            output = await asyncio.wait_for(self.run(payload), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("tool.timeout name=%s timeout=%.1fs", self.name, self.timeout_seconds)
            return ToolResult.fail(
                FailureKind.TIMEOUT, f"{self.name} timed out after {self.timeout_seconds:.0f}s"
            )
        except ToolError as exc:
            logger.warning("tool.failed name=%s kind=%s error=%s", self.name, exc.kind.value, exc)
            return ToolResult.fail(exc.kind, str(exc))
        except PreconditionError as exc:
            logger.warning("tool.precondition name=%s error=%s", self.name, exc)
            return ToolResult.fail(FailureKind.PRECONDITION, str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("tool.crashed name=%s", self.name)
            return ToolResult.fail(FailureKind.TOOL_ERROR, f"{type(exc).__name__}: {exc}")
        return ToolResult.success(output)

    def describe(self) -> str:
        return f"{self.name} - {self.description}"
