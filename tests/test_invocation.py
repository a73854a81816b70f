"""
Test suite for invocation requests, results and configuration
"""

import unittest
import dataclasses
import json
import tempfile
import sys
import os
from pathlib import Path
from unittest.mock import patch

# Add the src directory to the Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from scf_local.config import Config, DEFAULT_LOG_MAX_BYTES
from scf_local.core import (
    InvocationRequest,
    InvocationResult,
    InvocationOutcome,
    FaultKind,
    LogEntry,
    SpawnFailure,
    format_return_value,
    create_spawn_failure_result
)
from scf_local.core.invocation import summarize


class TestInvocationRequest(unittest.TestCase):
    """Test the InvocationRequest class."""

    def test_create_resolves_relative_entry(self):
        with tempfile.TemporaryDirectory() as tmp:
            cwd = os.getcwd()
            os.chdir(tmp)
            try:
                request = InvocationRequest.create("index.py", "main_handler", {"a": 1}, 5)
            finally:
                os.chdir(cwd)

        self.assertTrue(os.path.isabs(request.entry))
        self.assertEqual(Path(request.entry).name, "index.py")
        self.assertEqual(Path(request.entry).parent, Path(tmp).resolve())
        self.assertEqual(request.handler, "main_handler")
        self.assertEqual(request.timeout_seconds, 5.0)
        self.assertEqual(json.loads(request.event), {"a": 1})
        self.assertEqual(request.decoded_event(), {"a": 1})
        self.assertTrue(request.request_id)

    def test_default_event_is_empty_object(self):
        request = InvocationRequest.create("/tmp/index.py", "main_handler")
        self.assertEqual(request.event, "{}")

    def test_request_is_immutable(self):
        request = InvocationRequest.create("/tmp/index.py", "main_handler")
        with self.assertRaises(dataclasses.FrozenInstanceError):
            request.handler = "other"


class TestInvocationResult(unittest.TestCase):
    """Test the InvocationResult class."""

    def test_resolved_result(self):
        result = InvocationResult(
            outcome=InvocationOutcome.RESOLVED,
            return_value={"ok": True},
            log_entries=(LogEntry("t1", "a\n"), LogEntry("t2", "b\n"))
        )

        self.assertTrue(result.success)
        self.assertIsNone(result.error)
        self.assertEqual(result.exit_code, 0)
        self.assertEqual(result.log_text, "a\nb\n")
        self.assertIsNotNone(result.timestamp)

    def test_serialization(self):
        """Test result serialization to/from JSON."""
        result = InvocationResult(
            outcome=InvocationOutcome.REJECTED,
            error="boom",
            exit_code=1,
            log_entries=(LogEntry("t1", "trace"),),
            warnings=("dropped",),
            fault=FaultKind.HANDLER_FAULT,
            request_id="req-1"
        )

        data = result.to_dict()
        self.assertEqual(data["outcome"], "rejected")
        self.assertEqual(data["fault"], "handler_fault")
        self.assertEqual(data["log_entries"], [["t1", "trace"]])

        reconstructed = InvocationResult.from_json(result.to_json())
        self.assertEqual(reconstructed, result)

    def test_spawn_failure_result(self):
        request = InvocationRequest.create("/tmp/missing.py", "main_handler")
        result = create_spawn_failure_result(request, SpawnFailure("Entry module not found"))

        self.assertEqual(result.outcome, InvocationOutcome.REJECTED)
        self.assertEqual(result.fault, FaultKind.SPAWN_FAILURE)
        self.assertEqual(result.error, "Entry module not found")
        self.assertEqual(result.request_id, request.request_id)

    def test_format_return_value(self):
        self.assertEqual(format_return_value({"a": [1, 2]}), '{"a": [1, 2]}')
        self.assertEqual(format_return_value([1, "x"]), '[1, "x"]')
        self.assertEqual(format_return_value("plain"), "plain")
        self.assertEqual(format_return_value(None), "None")

    def test_summarize(self):
        self.assertEqual(summarize([])["total_invocations"], 0)

        results = [
            InvocationResult(outcome=InvocationOutcome.RESOLVED, duration_ms=10.0),
            InvocationResult(outcome=InvocationOutcome.REJECTED, duration_ms=20.0),
            InvocationResult(outcome=InvocationOutcome.TIMED_OUT, duration_ms=30.0),
            InvocationResult(outcome=InvocationOutcome.RESOLVED, duration_ms=40.0)
        ]
        stats = summarize(results)

        self.assertEqual(stats["total_invocations"], 4)
        self.assertEqual(stats["resolved"], 2)
        self.assertEqual(stats["rejected"], 1)
        self.assertEqual(stats["timed_out"], 1)
        self.assertAlmostEqual(stats["success_rate"], 0.5)
        self.assertAlmostEqual(stats["average_duration_ms"], 25.0)


class TestConfig(unittest.TestCase):
    """Test environment-based configuration."""

    def test_defaults(self):
        with patch.dict(os.environ):
            for key in ("SCF_INVOKE_TIMEOUT", "SCF_LOG_MAX_BYTES", "SCF_POLL_INTERVAL_MS"):
                os.environ.pop(key, None)
            cfg = Config(env_file="does-not-exist.env")

        self.assertEqual(cfg.invocation.timeout_seconds, 3.0)
        self.assertEqual(cfg.invocation.log_max_bytes, DEFAULT_LOG_MAX_BYTES)
        self.assertEqual(cfg.invocation.log_max_bytes, 6 * 1024 * 1024)
        self.assertAlmostEqual(cfg.invocation.poll_interval_seconds, 0.1)
        self.assertEqual(cfg.invocation.python_executable, sys.executable)

    def test_environment_overrides(self):
        with patch.dict(os.environ, {"SCF_INVOKE_TIMEOUT": "7.5", "SCF_LOG_MAX_BYTES": "2048",
                                     "LOG_LEVEL": "DEBUG"}):
            cfg = Config(env_file="does-not-exist.env")

        self.assertEqual(cfg.invocation.timeout_seconds, 7.5)
        self.assertEqual(cfg.invocation.log_max_bytes, 2048)
        self.assertEqual(cfg.logging.level, "DEBUG")

    def test_invalid_value_falls_back_to_default(self):
        with patch.dict(os.environ, {"SCF_POLL_INTERVAL_MS": "often"}):
            cfg = Config(env_file="does-not-exist.env")
        self.assertEqual(cfg.invocation.poll_interval_ms, 100)

    def test_env_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            env_file = Path(tmp) / ".env"
            env_file.write_text("SCF_POLL_INTERVAL_MS=25\n")
            with patch.dict(os.environ):
                os.environ.pop("SCF_POLL_INTERVAL_MS", None)
                cfg = Config(env_file=str(env_file))

        self.assertEqual(cfg.invocation.poll_interval_ms, 25)
        self.assertIn("invocation", cfg.to_dict())


if __name__ == "__main__":
    unittest.main(verbosity=2)
