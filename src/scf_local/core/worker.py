"""
Worker Process Handle

Spawns the worker entry point in a child interpreter and turns everything the
child does into events on a queue: stdout and stderr chunks, the structured
completion message, and the final exit status.
"""

import json
import logging
import os
import queue
import subprocess
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, IO, List, Optional

import psutil

from ..config import config
from .invocation import InvocationRequest, SpawnFailure


logger = logging.getLogger(__name__)

WRAPPER_PATH = Path(__file__).with_name("wrapper.py")
READ_CHUNK_SIZE = 64 * 1024
EXIT_FLUSH_TIMEOUT = 1.0


class WorkerEventType(Enum):
    """Events a worker can emit."""
    MESSAGE = "message"
    STDOUT = "stdout"
    STDERR = "stderr"
    EXIT = "exit"


@dataclass
class WorkerEvent:
    """One observation from the worker, stamped with its arrival time."""
    type: WorkerEventType
    payload: Any = None
    received_at: float = field(default_factory=time.monotonic)


class WorkerProcess:
    """
    Handle on one live worker process.

    Reader threads only enqueue events; they never interpret them. The owner
    drains ``events`` and decides what they mean.
    """

    def __init__(self, process: subprocess.Popen, message_fd: int, request_id: str = ""):
        self._process = process
        self.request_id = request_id
        self.events: "queue.Queue[WorkerEvent]" = queue.Queue()
        self._killed = False
        self._kill_lock = threading.Lock()
        self._readers: List[threading.Thread] = []
        self._threads: List[threading.Thread] = []

        channel = open(message_fd, "rb")
        sources = [
            (self._pump_stream, process.stdout, WorkerEventType.STDOUT),
            (self._pump_stream, process.stderr, WorkerEventType.STDERR),
            (self._read_message, channel)
        ]
        try:
            for target, *args in sources:
                self._readers.append(self._start_thread(target, *args))
            self._threads = self._readers + [self._start_thread(self._wait_for_exit)]
        except RuntimeError:
            self._abort_start([args[0] for _, *args in sources[len(self._readers):]])
            raise

    def _abort_start(self, unwatched: List[IO[bytes]]) -> None:
        """
        Stop a worker whose reader threads could not all be started.

        Args:
            unwatched: Streams no reader thread took ownership of
        """
        self._killed = True
        self._process.kill()
        self._process.wait()
        for stream in unwatched:
            stream.close()
        logger.error(f"Killed worker {self.pid}: could not start its reader threads")

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def killed(self) -> bool:
        return self._killed

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    def _start_thread(self, target, *args) -> threading.Thread:
        thread = threading.Thread(
            target=target,
            args=args,
            name=f"worker-{self.pid}-{target.__name__.strip('_')}",
            daemon=True
        )
        thread.start()
        return thread

    def _pump_stream(self, stream: IO[bytes], event_type: WorkerEventType) -> None:
        """
        Forward raw chunks from one output stream until it reaches EOF.

        Args:
            stream: The worker's stdout or stderr pipe
            event_type: Event type stamped on every chunk
        """
        try:
            while True:
                chunk = stream.read1(READ_CHUNK_SIZE)
                if not chunk:
                    break
                self.events.put(WorkerEvent(event_type, chunk))
        except (OSError, ValueError) as e:
            logger.debug(f"Worker {self.pid} {event_type.value} stream closed: {e}")

    def _read_message(self, channel: IO[bytes]) -> None:
        """
        Read the completion message, sent once before the channel closes.

        Args:
            channel: Read end of the message pipe; closed when done
        """
        with channel:
            raw = channel.read()
        if not raw.strip():
            return
        try:
            payload = json.loads(raw.decode("utf-8"))
        except ValueError as e:
            logger.warning(f"Worker {self.pid} sent an unreadable message: {e}")
            return
        self.events.put(WorkerEvent(WorkerEventType.MESSAGE, payload))

    def _wait_for_exit(self) -> None:
        """Reap the process and queue its exit status."""
        code = self._process.wait()
        # The exit event is queued after whatever the process wrote before dying.
        for thread in self._readers:
            thread.join(EXIT_FLUSH_TIMEOUT)
        self.events.put(WorkerEvent(WorkerEventType.EXIT, code))

    def kill(self) -> None:
        """Terminate the worker and anything it spawned. Idempotent."""
        with self._kill_lock:
            if self._killed:
                return
            self._killed = True

        for child in self._descendants():
            try:
                child.kill()
            except psutil.NoSuchProcess:
                pass

        if self._process.poll() is not None:
            return

        try:
            self._process.kill()
        except ProcessLookupError:
            pass
        logger.debug(f"Killed worker {self.pid}")

    def _descendants(self) -> List[psutil.Process]:
        """
        Find every process the worker spawned.

        Children re-parented after the worker exited are matched through the
        worker's environment, since the process tree no longer links them.

        Returns:
            Live descendant processes
        """
        if self._process.poll() is None:
            try:
                return psutil.Process(self.pid).children(recursive=True)
            except psutil.NoSuchProcess:
                pass

        if not self.request_id:
            return []

        orphans = []
        for proc in psutil.process_iter():
            if proc.pid == self.pid:
                continue
            try:
                if proc.environ().get("SCF_REQUEST_ID") == self.request_id:
                    orphans.append(proc)
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
        return orphans

    def close(self, timeout: float = 2.0) -> None:
        """Wait for the reader threads to finish and release the pipes."""
        deadline = time.monotonic() + timeout
        for thread in self._threads:
            thread.join(max(0.0, deadline - time.monotonic()))

        if any(thread.is_alive() for thread in self._threads):
            logger.warning(f"Worker {self.pid} still holds its output pipes open")
            return

        for stream in (self._process.stdout, self._process.stderr):
            if stream is not None:
                stream.close()

    def drain(self) -> List[WorkerEvent]:
        """Take every event queued so far without blocking."""
        drained = []
        while True:
            try:
                drained.append(self.events.get_nowait())
            except queue.Empty:
                return drained


def build_worker_env(request: InvocationRequest, message_fd: int) -> dict:
    """Environment for the worker: the parent's plus the invocation channel."""
    env = dict(os.environ)
    env.update({
        "SCF_ENTRY": request.entry,
        "SCF_HANDLER": request.handler,
        "SCF_EVENT": request.event,
        "SCF_REQUEST_ID": request.request_id,
        "SCF_TIMEOUT_MS": str(int(request.timeout_seconds * 1000)),
        "SCF_MESSAGE_FD": str(message_fd),
        "PYTHONUNBUFFERED": "1"
    })
    return env


def spawn_worker(request: InvocationRequest, python_executable: Optional[str] = None) -> WorkerProcess:
    """
    Start a worker for the given request.

    Args:
        request: Invocation to run
        python_executable: Interpreter for the worker (defaults to the configured one)

    Returns:
        WorkerProcess emitting events for this invocation

    Raises:
        SpawnFailure: If the entry module is missing or the process cannot start
    """
    if not Path(request.entry).is_file():
        raise SpawnFailure(f"Entry module not found: {request.entry}")

    if python_executable is None:
        python_executable = config.invocation.python_executable

    read_fd = write_fd = None
    try:
        read_fd, write_fd = os.pipe()
        process = subprocess.Popen(
            [python_executable, str(WRAPPER_PATH)],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=build_worker_env(request, write_fd),
            cwd=str(Path(request.entry).parent),
            pass_fds=(write_fd,)
        )
    except OSError as e:
        if read_fd is not None:
            os.close(read_fd)
        raise SpawnFailure(f"Could not start worker: {e}") from e
    finally:
        if write_fd is not None:
            os.close(write_fd)

    logger.debug(f"Spawned worker {process.pid} for {request.entry}:{request.handler}")
    try:
        return WorkerProcess(process, read_fd, request.request_id)
    except RuntimeError as e:
        raise SpawnFailure(f"Could not watch worker {process.pid}: {e}") from e
