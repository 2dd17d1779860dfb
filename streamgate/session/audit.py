"""Audit log for messages delivered on session streams.

Every message a transport sends is handed to the audit log before it is
written to the client. The gateway treats the audit log as an external
collaborator: a failure to record is logged and never blocks delivery.

JsonlAuditLog only enqueues in record(). A single background task appends
queued lines to the file, so a slow disk never holds up any session's send.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import stat
import time
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

# Owner read/write only
_SECURE_FILE_MODE = stat.S_IRUSR | stat.S_IWUSR


class AuditLog(Protocol):
    """Protocol for recording outbound stream messages."""

    async def record(self, session_id: str, message: dict[str, Any]) -> None: ...


class JsonlAuditLog:
    """Appends one JSON line per outbound message to a file.

    Lines are written in the order record() was called. Call flush() to wait
    for everything queued so far, and aclose() before the event loop ends.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._writer_task: asyncio.Task[None] | None = None

    async def record(self, session_id: str, message: dict[str, Any]) -> None:
        entry = {
            "timestamp": time.time(),
            "sessionId": session_id,
            "message": message,
        }
        self._queue.put_nowait(json.dumps(entry, separators=(",", ":")) + "\n")
        if self._writer_task is None or self._writer_task.done():
            self._writer_task = asyncio.create_task(self._write_loop())

    async def flush(self) -> None:
        """Wait until every queued line has been written (or has failed)."""
        await self._queue.join()

    async def aclose(self) -> None:
        """Flush pending lines and stop the writer task."""
        await self.flush()
        if self._writer_task is not None:
            self._writer_task.cancel()
            try:
                await self._writer_task
            except asyncio.CancelledError:
                pass
            self._writer_task = None

    async def _write_loop(self) -> None:
        while True:
            lines = [await self._queue.get()]
            while not self._queue.empty():
                lines.append(self._queue.get_nowait())
            try:
                await asyncio.to_thread(self._append, "".join(lines))
            except Exception:
                logger.warning(
                    "Failed to write %d audit line(s) to %s", len(lines), self.path, exc_info=True
                )
            finally:
                for _ in lines:
                    self._queue.task_done()

    def _append(self, text: str) -> None:
        """Append JSON lines to the file."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        is_new = not self.path.exists()
        with self.path.open("a", encoding="utf-8") as f:
            f.write(text)
        # Set secure permissions on first write
        if is_new:
            os.chmod(self.path, _SECURE_FILE_MODE)
