"""
Core module for local serverless function invocation

This module provides the supervised worker-process invocation protocol:
spawning, completion detection, timeouts, log buffering and results.
"""

from .invocation import (
    InvocationRequest,
    InvocationResult,
    InvocationOutcome,
    FaultKind,
    InvocationError,
    SpawnFailure,
    format_return_value,
    create_spawn_failure_result
)

from .log_buffer import (
    BoundedLogBuffer,
    LogEntry
)

from .worker import (
    WorkerProcess,
    WorkerEvent,
    WorkerEventType,
    spawn_worker
)

from .supervisor import (
    InvocationSupervisor,
    InvocationState,
    SupervisorStatus
)

from .local_invoker import (
    LocalInvoker
)

__all__ = [
    'InvocationRequest',
    'InvocationResult',
    'InvocationOutcome',
    'FaultKind',
    'InvocationError',
    'SpawnFailure',
    'BoundedLogBuffer',
    'LogEntry',
    'WorkerProcess',
    'WorkerEvent',
    'WorkerEventType',
    'InvocationSupervisor',
    'InvocationState',
    'SupervisorStatus',
    'LocalInvoker',
    'spawn_worker',
    'format_return_value',
    'create_spawn_failure_result'
]
