"""
Example serverless handlers for exercising the local invocation runtime.

Each handler takes ``(event, context)`` like a deployed function would.
"""

import asyncio
import logging
import math
import sys
import time
from typing import Any, Dict


def hello_world(event: Any, context: Dict[str, Any]) -> str:
    """Return a personalized greeting."""
    name = event.get("name", "World") if isinstance(event, dict) else "World"
    print(f"greeting {name}")
    return f"Hello, {name}!"


def echo(event: Any, context: Dict[str, Any]) -> Any:
    """Return the event unchanged."""
    return event


def describe_context(event: Any, context: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "request_id": context["request_id"],
        "function_name": context["function_name"],
        "time_limit_in_ms": context["time_limit_in_ms"]
    }


def math_operations(event: Any, context: Dict[str, Any]) -> Dict[str, Any]:
    """Perform a mathematical operation on two numbers."""
    if not isinstance(event, dict):
        raise ValueError("Event must be a dictionary with 'operation', 'a', and 'b' keys")

    operation = event.get("operation")
    a = float(event.get("a", 0))
    b = float(event.get("b", 0))

    if operation == "add":
        result = a + b
    elif operation == "multiply":
        result = a * b
    elif operation == "divide":
        if b == 0:
            raise ValueError("Cannot divide by zero")
        result = a / b
    elif operation == "sqrt":
        if a < 0:
            raise ValueError("Cannot take square root of negative number")
        result = math.sqrt(a)
    else:
        raise ValueError(f"Unsupported operation: {operation}")

    return {"operation": operation, "operands": {"a": a, "b": b}, "result": result}


def fail(event: Any, context: Dict[str, Any]) -> Any:
    """Raise with the message given in the event."""
    message = event.get("message", "boom") if isinstance(event, dict) else "boom"
    raise RuntimeError(message)


def slow(event: Any, context: Dict[str, Any]) -> Dict[str, Any]:
    """Sleep for ``sleep_seconds`` before returning."""
    sleep_time = float(event.get("sleep_seconds", 1.0)) if isinstance(event, dict) else 1.0
    start_time = time.time()
    time.sleep(sleep_time)
    return {"requested_sleep_seconds": sleep_time, "actual_sleep_seconds": time.time() - start_time}


def hang(event: Any, context: Dict[str, Any]) -> None:
    """Never return."""
    print("hanging", flush=True)
    while True:
        time.sleep(0.05)


def chatty(event: Any, context: Dict[str, Any]) -> int:
    """Write ``chunks`` lines of ``chunk_bytes`` each to stdout."""
    chunk_bytes = int(event.get("chunk_bytes", 1024))
    chunks = int(event.get("chunks", 1))
    line = "x" * (chunk_bytes - 1) + "\n"
    for _ in range(chunks):
        sys.stdout.write(line)
    sys.stdout.flush()
    return chunks * chunk_bytes


def uses_logging(event: Any, context: Dict[str, Any]) -> str:
    """Log through the logging module, which writes to stderr by default."""
    logging.basicConfig(level=logging.INFO)
    logging.getLogger("handler").info("handled via logging")
    return "logged"


def exit_early(event: Any, context: Dict[str, Any]) -> None:
    """Leave the worker without reporting completion."""
    print("leaving")
    sys.exit(int(event.get("code", 3)) if isinstance(event, dict) else 3)


async def async_greeting(event: Any, context: Dict[str, Any]) -> str:
    await asyncio.sleep(0.01)
    return f"async hello {event.get('name', 'World')}"


def unserializable(event: Any, context: Dict[str, Any]) -> Any:
    return {"items": {1, 2, 3}}
