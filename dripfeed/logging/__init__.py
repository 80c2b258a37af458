"""Audit logging for the drip-feed scheduler."""
from dripfeed.logging.models import LogLevel, LogEntry
from dripfeed.logging.audit_logger import AuditLogger

__all__ = [
    "LogLevel", "LogEntry",
    "AuditLogger",
]
