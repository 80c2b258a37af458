"""Audit logger with two outputs: JSON-lines file and the ``system_logs`` table.

``AuditLogger`` is the scheduler's record of what it did: one event per
scheduled story, one per emergency release and one summary per run.
Entries are written to a local JSON log via ``aiofiles`` and, when a
database client is attached, inserted into Supabase as tracked
fire-and-forget tasks.  Neither output can fail the caller: a lost audit
entry is reported through the process log instead.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Set

import aiofiles

from dripfeed.logging.models import LogEntry, LogLevel
from dripfeed.utils import utc_now

logger = logging.getLogger(__name__)


class AuditLogger:
    """Structured audit trail for drip-feed runs.

    Parameters:
        db: Optional Supabase DB client with a ``save_system_log()`` method.
        log_dir: Directory for the JSON log file (created if missing).
        function_name: Default ``function_name`` column for entries.
        min_level: Minimum level written to Supabase.
    """

    def __init__(
        self,
        db: Any = None,
        log_dir: str = "logs",
        function_name: str = "drip-feed-scheduler",
        min_level: LogLevel = LogLevel.INFO,
    ) -> None:
        self.db = db
        self.function_name = function_name
        self.min_level = min_level

        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._log_file = self.log_dir / "drip_feed.log"

        # Track pending async tasks to prevent garbage collection
        self._pending_tasks: Set["asyncio.Task[None]"] = set()

    # ------------------------------------------------------------------
    # Core record method
    # ------------------------------------------------------------------

    async def record_event(
        self,
        level: LogLevel,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        function_name: Optional[str] = None,
    ) -> LogEntry:
        """Record one audit event.

        The file write is awaited; the Supabase insert runs in the
        background and is awaited by :meth:`flush`.

        Returns:
            The entry that was recorded.
        """
        entry = LogEntry(
            timestamp=utc_now(),
            level=level,
            function_name=function_name or self.function_name,
            message=message,
            context=context or {},
        )

        await self._write_to_file(entry)

        if self.db is not None and level.value >= self.min_level.value:
            task = asyncio.create_task(self._write_to_supabase(entry))
            self._pending_tasks.add(task)
            task.add_done_callback(self._pending_tasks.discard)

        return entry

    async def info(self, message: str, **context: Any) -> LogEntry:
        """Record at INFO level."""
        return await self.record_event(LogLevel.INFO, message, context)

    async def warning(self, message: str, **context: Any) -> LogEntry:
        """Record at WARNING level."""
        return await self.record_event(LogLevel.WARNING, message, context)

    # ------------------------------------------------------------------
    # Flush (call before returning a response)
    # ------------------------------------------------------------------

    async def flush(self) -> None:
        """Wait for all pending Supabase writes."""
        if self._pending_tasks:
            await asyncio.gather(*self._pending_tasks, return_exceptions=True)
            self._pending_tasks.clear()

    # ------------------------------------------------------------------
    # Private output methods
    # ------------------------------------------------------------------

    async def _write_to_file(self, entry: LogEntry) -> None:
        try:
            async with aiofiles.open(self._log_file, "a", encoding="utf-8") as f:
                await f.write(entry.to_json() + "\n")
        except OSError as exc:
            logger.warning(
                "[DRIP FEED] Failed to write audit entry to %s: %s",
                self._log_file,
                exc,
            )

    async def _write_to_supabase(self, entry: LogEntry) -> None:
        try:
            await self.db.save_system_log(entry.to_dict())
        except Exception as exc:
            logger.warning(
                "[DRIP FEED] Failed to write audit entry to Supabase: %s", exc
            )
