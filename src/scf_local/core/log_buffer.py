"""
Bounded Log Buffer

Collects the worker's stdout chunks with their arrival time while keeping the
total retained size under a byte cap.
"""

import logging
from datetime import datetime
from typing import List, NamedTuple, Optional, Tuple


logger = logging.getLogger(__name__)


class LogEntry(NamedTuple):
    """One retained output chunk."""
    timestamp: str
    text: str


class BoundedLogBuffer:
    """
    Ordered log entries plus a running byte counter capped at ``max_bytes``.

    Once the cap is reached every later chunk is dropped; the drop is reported
    once through ``warnings``, never once per chunk.
    """

    def __init__(self, max_bytes: int = 6 * 1024 * 1024):
        if max_bytes <= 0:
            raise ValueError("max_bytes must be positive")
        self.max_bytes = max_bytes
        self.size = 0
        self._entries: List[LogEntry] = []
        self._warnings: List[str] = []
        self._oversize_warned = False
        self._full_warned = False

    @property
    def remaining(self) -> int:
        return self.max_bytes - self.size

    @property
    def is_full(self) -> bool:
        return self.size >= self.max_bytes

    @property
    def entries(self) -> Tuple[LogEntry, ...]:
        return tuple(self._entries)

    @property
    def warnings(self) -> Tuple[str, ...]:
        return tuple(self._warnings)

    def append(self, chunk: bytes, timestamp: Optional[str] = None) -> None:
        """
        Append one raw output chunk.

        A chunk larger than the whole cap records two warnings: the oversize
        warning and the "buffer full" warning. Workers are read in chunks of
        at most 64 KiB, so this only happens with caps below that size.

        Args:
            chunk: Bytes read from the worker's stdout
            timestamp: Arrival time; defaults to now
        """
        if not chunk:
            return

        if self.is_full:
            self._warn_full()
            return

        if len(chunk) > self.max_bytes and not self._oversize_warned:
            self._oversize_warned = True
            self._warn(f"A single log write exceeded {self.max_bytes} bytes; "
                       f"the excess is discarded")

        kept = chunk[:self.remaining]
        self._entries.append(LogEntry(
            timestamp=timestamp or datetime.now().isoformat(timespec="milliseconds"),
            text=kept.decode("utf-8", errors="replace")
        ))
        self.size += len(kept)

        if len(kept) < len(chunk):
            self._warn_full()

    def _warn_full(self) -> None:
        if self._full_warned:
            return
        self._full_warned = True
        self._warn(f"Collected logs reached {self.max_bytes} bytes; "
                   f"later output is discarded")

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self._warnings.append(message)
