"""
Invocation Request and Result Types for Local Function Invocation

This module defines the immutable values exchanged with callers: the request
describing one invocation and the result assembled once it has finished.
"""

import json
import os
import uuid
from dataclasses import dataclass, asdict, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .log_buffer import LogEntry


class InvocationOutcome(Enum):
    """How an invocation ended."""
    RESOLVED = "resolved"
    REJECTED = "rejected"
    TIMED_OUT = "timed-out"


class FaultKind(Enum):
    """Classification of the fault behind a non-resolved invocation."""
    SPAWN_FAILURE = "spawn_failure"
    HANDLER_FAULT = "handler_fault"
    WORKER_CRASH = "worker_crash"
    TIMEOUT_EXCEEDED = "timeout_exceeded"


class InvocationError(Exception):
    """Base exception for invocation failures."""
    pass


class SpawnFailure(InvocationError):
    """Exception raised when the worker process cannot be created."""
    pass


@dataclass(frozen=True)
class InvocationRequest:
    """
    Immutable description of one invocation.

    Attributes:
        entry: Absolute path of the module holding the handler
        handler: Name of the handler callable inside the entry module
        event: JSON-serialized invocation event
        timeout_seconds: Time allowed before the invocation is timed out
        request_id: Identifier passed to the handler context
    """
    entry: str
    handler: str
    event: str = "{}"
    timeout_seconds: float = 3.0
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def create(cls,
               entry: Union[str, Path],
               handler: str,
               event: Any = None,
               timeout_seconds: float = 3.0) -> 'InvocationRequest':
        """
        Create a request, resolving the entry path against the current
        directory and serializing the event.

        Args:
            entry: Path to the entry module, absolute or relative to cwd
            handler: Handler name
            event: Event object (serialized to JSON)
            timeout_seconds: Invocation timeout

        Returns:
            InvocationRequest ready to be run
        """
        return cls(
            entry=str(Path(os.getcwd(), entry).resolve()),
            handler=handler,
            event=json.dumps({} if event is None else event),
            timeout_seconds=float(timeout_seconds)
        )

    def decoded_event(self) -> Any:
        """Return the event payload as Python data."""
        return json.loads(self.event)


@dataclass(frozen=True)
class InvocationResult:
    """
    Structured outcome of one invocation.

    Attributes:
        outcome: resolved, rejected or timed-out
        return_value: The handler's return value (JSON data)
        error: Error text when the invocation did not resolve
        exit_code: Exit code reported by the worker
        log_entries: Captured stdout chunks in arrival order
        warnings: Non-fatal notices such as log overflow
        fault: Fault classification for non-resolved outcomes
        duration_ms: Wall time from spawn to decision
        request_id: Identifier of the originating request
        timestamp: When the result was assembled
    """
    outcome: InvocationOutcome
    return_value: Any = None
    error: Optional[str] = None
    exit_code: int = 0
    log_entries: Tuple[LogEntry, ...] = ()
    warnings: Tuple[str, ...] = ()
    fault: Optional[FaultKind] = None
    duration_ms: float = 0.0
    request_id: str = ""
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def success(self) -> bool:
        return self.outcome is InvocationOutcome.RESOLVED

    @property
    def log_text(self) -> str:
        """All captured log output joined in arrival order."""
        return "".join(entry.text for entry in self.log_entries)

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary for serialization."""
        data = asdict(self)
        data["outcome"] = self.outcome.value
        data["fault"] = self.fault.value if self.fault else None
        data["log_entries"] = [list(entry) for entry in self.log_entries]
        data["warnings"] = list(self.warnings)
        return data

    def to_json(self) -> str:
        """Convert result to JSON string."""
        return json.dumps(self.to_dict(), default=str, indent=2)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'InvocationResult':
        """Create InvocationResult from dictionary."""
        data = dict(data)
        data["outcome"] = InvocationOutcome(data["outcome"])
        if data.get("fault"):
            data["fault"] = FaultKind(data["fault"])
        data["log_entries"] = tuple(LogEntry(*entry) for entry in data.get("log_entries", []))
        data["warnings"] = tuple(data.get("warnings", []))
        return cls(**data)

    @classmethod
    def from_json(cls, json_str: str) -> 'InvocationResult':
        """Create InvocationResult from JSON string."""
        return cls.from_dict(json.loads(json_str))


def format_return_value(value: Any) -> str:
    """Render a return value for log output; containers become JSON."""
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    if callable(value):
        return repr(value)
    return str(value)


def create_spawn_failure_result(request: InvocationRequest, error: Exception) -> InvocationResult:
    """
    Create an InvocationResult for a worker that could not be started.

    Args:
        request: The request that failed to spawn
        error: The spawn error

    Returns:
        Rejected InvocationResult
    """
    return InvocationResult(
        outcome=InvocationOutcome.REJECTED,
        error=str(error),
        exit_code=1,
        fault=FaultKind.SPAWN_FAILURE,
        request_id=request.request_id
    )


def summarize(results: List[InvocationResult]) -> Dict[str, Any]:
    """Aggregate outcome counts and timing over a list of results."""
    if not results:
        return {
            "total_invocations": 0,
            "resolved": 0,
            "rejected": 0,
            "timed_out": 0,
            "success_rate": 0.0,
            "average_duration_ms": 0.0
        }

    counts = {outcome: 0 for outcome in InvocationOutcome}
    for result in results:
        counts[result.outcome] += 1

    return {
        "total_invocations": len(results),
        "resolved": counts[InvocationOutcome.RESOLVED],
        "rejected": counts[InvocationOutcome.REJECTED],
        "timed_out": counts[InvocationOutcome.TIMED_OUT],
        "success_rate": counts[InvocationOutcome.RESOLVED] / len(results),
        "average_duration_ms": sum(r.duration_ms for r in results) / len(results)
    }
