"""
Test suite for the worker process handle

Covers spawn failures that happen after the entry module was found, and
cleanup of processes the handler itself started.
"""

import unittest
import subprocess
import tempfile
import textwrap
import time
import sys
import os
from pathlib import Path
from unittest.mock import patch

import psutil

# Add the src directory to the Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from scf_local.core import (
    InvocationRequest,
    InvocationOutcome,
    InvocationSupervisor,
    FaultKind,
    SpawnFailure,
    WorkerProcess,
    spawn_worker
)

SAMPLE_HANDLERS = Path(__file__).resolve().parent.parent / "examples" / "sample_handlers.py"


def wait_until_gone(pid: int, timeout: float = 5.0) -> bool:
    """True once the pid no longer runs (reaped or left as a zombie)."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            if psutil.Process(pid).status() == psutil.STATUS_ZOMBIE:
                return True
        except psutil.NoSuchProcess:
            return True
        time.sleep(0.05)
    return False


class TestSpawnFailures(unittest.TestCase):
    """Test failures while the worker is being started."""

    def test_pipe_exhaustion_raises_spawn_failure(self):
        request = InvocationRequest.create(SAMPLE_HANDLERS, "hello_world", {})
        with patch("scf_local.core.worker.os.pipe",
                   side_effect=OSError(24, "Too many open files")):
            with self.assertRaises(SpawnFailure) as raised:
                spawn_worker(request)

        self.assertIn("Too many open files", str(raised.exception))

    def test_pipe_exhaustion_becomes_rejected_result(self):
        request = InvocationRequest.create(SAMPLE_HANDLERS, "hello_world", {})
        with patch("scf_local.core.worker.os.pipe",
                   side_effect=OSError(24, "Too many open files")):
            result = InvocationSupervisor(request).run()

        self.assertEqual(result.outcome, InvocationOutcome.REJECTED)
        self.assertEqual(result.fault, FaultKind.SPAWN_FAILURE)
        self.assertIn("Too many open files", result.error)

    def test_reader_thread_failure_kills_worker(self):
        spawned = []
        real_popen = subprocess.Popen

        def recording_popen(*args, **kwargs):
            process = real_popen(*args, **kwargs)
            spawned.append(process)
            return process

        request = InvocationRequest.create(SAMPLE_HANDLERS, "hang", {})
        with patch("scf_local.core.worker.subprocess.Popen", side_effect=recording_popen), \
                patch.object(WorkerProcess, "_start_thread",
                             side_effect=RuntimeError("can't start new thread")):
            with self.assertRaises(SpawnFailure) as raised:
                spawn_worker(request)

        self.assertIn("can't start new thread", str(raised.exception))
        self.assertEqual(len(spawned), 1)
        process = spawned[0]
        self.assertIsNotNone(process.returncode)
        self.assertTrue(process.stdout.closed)
        self.assertTrue(process.stderr.closed)

    def test_partial_reader_start_kills_worker(self):
        spawned = []
        started = []
        real_popen = subprocess.Popen
        real_start_thread = WorkerProcess._start_thread

        def recording_popen(*args, **kwargs):
            process = real_popen(*args, **kwargs)
            spawned.append(process)
            return process

        def start_one_thread(handle, target, *args):
            if started:
                raise RuntimeError("can't start new thread")
            thread = real_start_thread(handle, target, *args)
            started.append(thread)
            return thread

        request = InvocationRequest.create(SAMPLE_HANDLERS, "hang", {})
        with patch("scf_local.core.worker.subprocess.Popen", side_effect=recording_popen), \
                patch.object(WorkerProcess, "_start_thread", autospec=True,
                             side_effect=start_one_thread):
            with self.assertRaises(SpawnFailure):
                spawn_worker(request)

        self.assertIsNotNone(spawned[0].returncode)
        started[0].join(2.0)
        self.assertFalse(started[0].is_alive())
        self.assertTrue(spawned[0].stderr.closed)


class TestDescendantCleanup(unittest.TestCase):
    """Test that processes started by a handler do not outlive the invocation."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)

    def write_handler(self, body: str) -> Path:
        path = Path(self._tmp.name) / "index.py"
        path.write_text(textwrap.dedent(body), encoding="utf-8")
        return path

    def test_grandchild_killed_after_handler_returns(self):
        entry = self.write_handler("""
            import subprocess
            import sys

            def main_handler(event, context):
                child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"],
                                         stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
                return child.pid
        """)
        request = InvocationRequest.create(entry, "main_handler", {}, timeout_seconds=10.0)
        result = InvocationSupervisor(request, poll_interval=0.02).run()

        self.assertEqual(result.outcome, InvocationOutcome.RESOLVED)
        self.assertIsInstance(result.return_value, int)
        self.assertTrue(wait_until_gone(result.return_value))

    def test_grandchild_killed_on_timeout(self):
        entry = self.write_handler("""
            import subprocess
            import sys
            import time

            def main_handler(event, context):
                child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"],
                                         stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
                print(child.pid, flush=True)
                while True:
                    time.sleep(0.05)
        """)
        request = InvocationRequest.create(entry, "main_handler", {}, timeout_seconds=1.0)
        result = InvocationSupervisor(request, poll_interval=0.02).run()

        self.assertEqual(result.outcome, InvocationOutcome.TIMED_OUT)
        self.assertTrue(wait_until_gone(int(result.log_text.strip())))

    def test_grandchild_killed_after_worker_exits(self):
        """A worker that already exited still has its orphans collected."""
        entry = self.write_handler("""
            import os
            import subprocess
            import sys

            def main_handler(event, context):
                child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"],
                                         stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
                print(child.pid, flush=True)
                os._exit(0)
        """)
        request = InvocationRequest.create(entry, "main_handler", {}, timeout_seconds=10.0)
        result = InvocationSupervisor(request, poll_interval=0.02).run()

        self.assertEqual(result.exit_code, 0)
        self.assertTrue(wait_until_gone(int(result.log_text.strip())))


if __name__ == "__main__":
    unittest.main(verbosity=2)
