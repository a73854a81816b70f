"""
Worker entry point.

Run by the supervisor as a standalone script in a fresh interpreter. Loads the
entry module named in the environment, calls its handler with the decoded
event and reports completion as one JSON message on the inherited pipe.
A module that fails to load is reported on stderr only.
"""

import asyncio
import importlib.util
import inspect
import json
import os
import sys
import time
import traceback


def load_handler(entry, handler_name):
    """Load ``handler_name`` from the module file at ``entry``."""
    own_dir = os.path.dirname(os.path.abspath(__file__))
    if own_dir in sys.path:
        sys.path.remove(own_dir)

    entry_dir = os.path.dirname(entry)
    if entry_dir not in sys.path:
        sys.path.insert(0, entry_dir)

    module_name = os.path.splitext(os.path.basename(entry))[0]
    spec = importlib.util.spec_from_file_location(module_name, entry)
    if spec is None or spec.loader is None:
        raise ImportError(f"Could not load module from {entry}")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)

    handler = getattr(module, handler_name, None)
    if handler is None or not callable(handler):
        raise AttributeError(f"Handler '{handler_name}' not found in {entry}")
    return handler


def build_context(handler_name):
    timeout_ms = int(os.environ.get("SCF_TIMEOUT_MS", "3000"))
    return {
        "request_id": os.environ.get("SCF_REQUEST_ID", ""),
        "function_name": handler_name,
        "time_limit_in_ms": timeout_ms,
        "deadline": time.time() + timeout_ms / 1000.0,
    }


def invoke(handler, event, context):
    result = handler(event, context)
    if inspect.iscoroutine(result):
        result = asyncio.run(result)
    return result


def send_message(fd, return_val, error, exit_code):
    sys.stdout.flush()
    message = json.dumps(
        {"returnVal": return_val, "error": error, "exitCode": exit_code},
        default=str
    )
    with os.fdopen(fd, "w", encoding="utf-8") as channel:
        channel.write(message)


def main():
    entry = os.environ["SCF_ENTRY"]
    handler_name = os.environ["SCF_HANDLER"]
    message_fd = int(os.environ["SCF_MESSAGE_FD"])

    try:
        event = json.loads(os.environ.get("SCF_EVENT") or "{}")
        handler = load_handler(entry, handler_name)
    except Exception:
        traceback.print_exc()
        sys.stderr.flush()
        return 1

    # Handler output, including logging, belongs to the captured log.
    sys.stderr = sys.stdout

    try:
        return_val = invoke(handler, event, build_context(handler_name))
    except Exception as e:
        traceback.print_exc(file=sys.stdout)
        send_message(message_fd, None, str(e) or e.__class__.__name__, 1)
        return 1

    send_message(message_fd, return_val, None, 0)
    return 0


if __name__ == "__main__":
    sys.exit(main())
