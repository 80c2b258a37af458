"""Logging data models: LogLevel, LogEntry."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict


class LogLevel(Enum):
    """Log levels with numeric values for severity comparison.

    Uses integer values so that severity comparison works correctly.
    String comparison would fail (e.g., "debug" > "error" lexicographically).
    """

    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40

    @property
    def name_str(self) -> str:
        """Lowercase name as stored in ``system_logs.level``."""
        if self is LogLevel.WARNING:
            return "warn"
        return self.name.lower()


@dataclass
class LogEntry:
    """Structured audit record.

    Matches the ``system_logs`` table: one row per scheduling event, per
    emergency release and per run summary.
    """

    # Required fields
    timestamp: datetime
    level: LogLevel
    function_name: str
    message: str

    # Structured payload (topic_id, story_id, results, ...)
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary for Supabase insertion."""
        return {
            "level": self.level.name_str,
            "function_name": self.function_name,
            "message": self.message,
            "context": self.context,
            "created_at": self.timestamp.isoformat(),
        }

    def to_json(self) -> str:
        """Serialize to JSON string for file logging."""
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)
