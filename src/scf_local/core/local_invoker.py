"""
Local Invocation Environment for Serverless Handlers

This module provides the local driver that invokes handlers in isolated worker
processes and keeps a history of their results.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..config import config
from .invocation import InvocationRequest, InvocationResult, summarize
from .supervisor import InvocationSupervisor


logger = logging.getLogger(__name__)


class LocalInvoker:
    """
    Local invocation environment for serverless handlers.

    Each call gets its own supervisor, worker and log buffer, so the invoker
    can be shared between threads.
    """

    def __init__(self,
                 default_timeout_seconds: Optional[float] = None,
                 log_max_bytes: Optional[int] = None,
                 poll_interval: Optional[float] = None,
                 raise_on_spawn_failure: bool = False):
        """
        Initialize the local invoker.

        Args:
            default_timeout_seconds: Timeout used when a call does not pass one
            log_max_bytes: Cap for captured logs per invocation
            poll_interval: Seconds between supervisor decision ticks
            raise_on_spawn_failure: Surface SpawnFailure instead of a rejected result
        """
        self.default_timeout = default_timeout_seconds or config.invocation.timeout_seconds
        self.log_max_bytes = log_max_bytes or config.invocation.log_max_bytes
        self.poll_interval = poll_interval or config.invocation.poll_interval_seconds
        self.raise_on_spawn_failure = raise_on_spawn_failure
        self.invocation_history: List[InvocationResult] = []
        self._history_lock = threading.Lock()

    def invoke(self,
               entry: Union[str, Path],
               handler: str,
               event: Any = None,
               timeout_seconds: Optional[float] = None) -> InvocationResult:
        """
        Invoke a handler with the given event.

        Args:
            entry: Path to the module holding the handler
            handler: Handler name
            event: JSON-serializable event payload
            timeout_seconds: Timeout for this invocation (uses default if None)

        Returns:
            InvocationResult describing the outcome
        """
        if timeout_seconds is None:
            timeout_seconds = self.default_timeout

        request = InvocationRequest.create(entry, handler, event, timeout_seconds)
        return self.invoke_request(request)

    def invoke_request(self, request: InvocationRequest) -> InvocationResult:
        """Run a prepared request and record its result."""
        logger.info(f"Invoking {request.handler} from {request.entry}")

        supervisor = InvocationSupervisor(
            request,
            log_max_bytes=self.log_max_bytes,
            poll_interval=self.poll_interval,
            raise_on_spawn_failure=self.raise_on_spawn_failure
        )
        result = supervisor.run()

        with self._history_lock:
            self.invocation_history.append(result)

        logger.info(f"Invocation {result.request_id} {result.outcome.value} "
                    f"in {result.duration_ms:.1f}ms")
        return result

    def get_invocation_history(self) -> List[InvocationResult]:
        """Get the invocation history."""
        with self._history_lock:
            return self.invocation_history.copy()

    def clear_invocation_history(self) -> None:
        """Clear the invocation history."""
        with self._history_lock:
            self.invocation_history.clear()

    def get_statistics(self) -> Dict[str, Any]:
        """Get invocation statistics."""
        return summarize(self.get_invocation_history())
