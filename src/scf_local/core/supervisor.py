"""
Invocation Supervisor

Runs one invocation end to end: spawns the worker, applies its events to the
invocation state on a fixed tick, decides when the invocation is over, kills
the worker and assembles the result.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from ..config import config
from .invocation import (
    InvocationRequest, InvocationResult, InvocationOutcome, FaultKind,
    SpawnFailure, create_spawn_failure_result, format_return_value
)
from .log_buffer import BoundedLogBuffer
from .worker import WorkerEvent, WorkerEventType, WorkerProcess, spawn_worker


logger = logging.getLogger(__name__)


class SupervisorStatus(Enum):
    """Supervisor lifecycle."""
    STARTING = "starting"
    RUNNING = "running"
    FINISHED = "finished"


@dataclass
class InvocationState:
    """Completion state, mutated only while the supervisor applies events."""
    done: bool = False
    error: Optional[str] = None
    return_value: Any = None
    exit_code: int = 0
    message_received: bool = False
    crashed: bool = False
    completed_at: Optional[float] = None
    stderr_text: str = ""

    def mark_done(self, at: float) -> None:
        if not self.done:
            self.done = True
            self.completed_at = at


class InvocationSupervisor:
    """
    Supervises a single invocation.

    Worker events are queued by the worker's reader threads and applied here,
    on the caller's thread, once per tick. The timeout check runs before the
    completion check within a tick, so a completion that arrives after the
    deadline loses to the timeout.
    """

    def __init__(self,
                 request: InvocationRequest,
                 log_max_bytes: Optional[int] = None,
                 poll_interval: Optional[float] = None,
                 spawner: Optional[Callable[[InvocationRequest], WorkerProcess]] = None,
                 raise_on_spawn_failure: bool = False):
        """
        Initialize the supervisor.

        Args:
            request: Invocation to run
            log_max_bytes: Cap for captured stdout (defaults to configuration)
            poll_interval: Seconds between decision ticks (defaults to configuration)
            spawner: Callable creating the worker handle
            raise_on_spawn_failure: Raise SpawnFailure instead of returning a rejected result
        """
        self.request = request
        self.poll_interval = poll_interval or config.invocation.poll_interval_seconds
        self.log_buffer = BoundedLogBuffer(log_max_bytes or config.invocation.log_max_bytes)
        self.state = InvocationState()
        self.status = SupervisorStatus.STARTING
        self.raise_on_spawn_failure = raise_on_spawn_failure
        self._spawner = spawner or spawn_worker
        self._started_at = 0.0

    def run(self) -> InvocationResult:
        """
        Run the invocation to completion.

        Returns:
            InvocationResult for every worker-side outcome

        Raises:
            SpawnFailure: Only when raise_on_spawn_failure is set
        """
        if self.status is not SupervisorStatus.STARTING:
            raise RuntimeError("An InvocationSupervisor runs exactly once")

        self._started_at = time.monotonic()
        try:
            worker = self._spawner(self.request)
        except SpawnFailure as e:
            self.status = SupervisorStatus.FINISHED
            logger.error(f"Failed to start worker: {e}")
            if self.raise_on_spawn_failure:
                raise
            return create_spawn_failure_result(self.request, e)

        self.status = SupervisorStatus.RUNNING
        logger.debug(f"Invocation {self.request.request_id} running")

        timed_out = False
        try:
            timed_out = self._poll(worker)
        finally:
            worker.kill()
            worker.close()
            self.status = SupervisorStatus.FINISHED

        self._drain_trailing(worker)
        result = self._build_result(timed_out)
        self._report(result)
        return result

    def _poll(self, worker: WorkerProcess) -> bool:
        """Tick until the invocation is over; return True on timeout."""
        while True:
            time.sleep(self.poll_interval)
            for event in worker.drain():
                self._apply(event)

            if self._is_timed_out(time.monotonic()):
                return True
            if self.state.done:
                return False

    def _is_timed_out(self, now: float) -> bool:
        timeout = self.request.timeout_seconds
        if now - self._started_at <= timeout:
            return False
        if not self.state.done:
            return True
        return self.state.completed_at - self._started_at > timeout

    def _apply(self, event: WorkerEvent) -> None:
        """
        Fold one worker event into the invocation state.

        Stdout goes to the log buffer. Stderr, the completion message and the
        exit status each complete the invocation; the first fault recorded
        keeps its error.

        Args:
            event: Event drained from the worker queue
        """
        state = self.state

        if event.type is WorkerEventType.STDOUT:
            self.log_buffer.append(event.payload)

        elif event.type is WorkerEventType.STDERR:
            text = event.payload.decode("utf-8", errors="replace")
            if not state.stderr_text:
                logger.error(f"Worker crashed: {text}")
            state.stderr_text += text
            if state.error is None or state.crashed:
                state.crashed = True
                state.error = state.stderr_text
            state.mark_done(event.received_at)

        elif event.type is WorkerEventType.MESSAGE:
            state.mark_done(event.received_at)
            if state.message_received or state.crashed:
                logger.debug("Ignoring completion message after an earlier completion")
                return
            payload = event.payload if isinstance(event.payload, dict) else {"returnVal": event.payload}
            state.message_received = True
            state.return_value = payload.get("returnVal")
            error = payload.get("error")
            state.error = None if error is None else str(error)
            try:
                state.exit_code = int(payload.get("exitCode") or 0)
            except (TypeError, ValueError):
                logger.warning(f"Worker sent an invalid exit code: {payload.get('exitCode')!r}")
                state.exit_code = 1

        elif event.type is WorkerEventType.EXIT:
            state.mark_done(event.received_at)
            if not state.message_received:
                state.exit_code = event.payload

    def _drain_trailing(self, worker: WorkerProcess) -> None:
        """Collect output still queued when the decision was made."""
        for event in worker.drain():
            if event.type is WorkerEventType.STDOUT:
                self.log_buffer.append(event.payload)
            elif event.type is WorkerEventType.STDERR and self.state.crashed:
                self.state.stderr_text += event.payload.decode("utf-8", errors="replace")
                self.state.error = self.state.stderr_text

    def _build_result(self, timed_out: bool) -> InvocationResult:
        """
        Turn the final state into an InvocationResult.

        Args:
            timed_out: Whether the deadline passed before completion

        Returns:
            Result with outcome, fault kind and captured logs
        """
        state = self.state
        error = state.error or None
        fault = None

        if timed_out:
            outcome = InvocationOutcome.TIMED_OUT
            fault = FaultKind.TIMEOUT_EXCEEDED
            error = f"Invocation timed out after {self.request.timeout_seconds} seconds"
        elif error:
            outcome = InvocationOutcome.REJECTED
            fault = FaultKind.WORKER_CRASH if state.crashed else FaultKind.HANDLER_FAULT
        else:
            outcome = InvocationOutcome.RESOLVED

        return InvocationResult(
            outcome=outcome,
            return_value=state.return_value,
            error=error,
            exit_code=state.exit_code,
            log_entries=self.log_buffer.entries,
            warnings=self.log_buffer.warnings,
            fault=fault,
            duration_ms=(time.monotonic() - self._started_at) * 1000,
            request_id=self.request.request_id
        )

    def _report(self, result: InvocationResult) -> None:
        if result.outcome is InvocationOutcome.TIMED_OUT:
            logger.warning(f"Invocation {result.request_id} timed out")
        else:
            logger.debug(f"Invocation {result.request_id} {result.outcome.value}")

        logger.debug(f"Error: {result.error}")
        logger.debug(f"Return value: {format_return_value(result.return_value)}")
        logger.debug(f"Exit code: {result.exit_code}")
        logger.debug(f"Logs: {len(result.log_entries)} entries" if result.log_entries else "Logs: no output")
