"""
Transport-agnostic entry point for drip-feed invocations.

``handle_drip_feed_request`` takes the request body (a cron tick, a
"story ready" trigger or a manual call from the admin panel) and returns
``(status_code, body)``.  Whatever serves HTTP, or the command line
runner, only has to serialise the body.

Request body::

    {
        "channel_id": "<topic uuid>",      # optional, alias "topic_id"
        "emergency_publish_all": false,   # requires channel_id
        "dry_run": false
    }
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Dict, Optional, Tuple

from dripfeed.config import Settings, get_settings, validate_env
from dripfeed.exceptions import (
    ConfigurationError,
    RateLimitExceededError,
    RunTimeoutError,
    ValidationError,
)
from dripfeed.logging import AuditLogger
from dripfeed.scheduling.drip_feed_scheduler import DripFeedScheduler
from dripfeed.scheduling.rate_limiter import KeyedRateLimiter
from dripfeed.utils import utc_now

logger = logging.getLogger(__name__)

Response = Tuple[int, Dict[str, Any]]


@dataclass
class DripFeedRequest:
    """Parsed invocation parameters."""

    channel_id: Optional[str] = None
    emergency_publish_all: bool = False
    dry_run: bool = False

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> "DripFeedRequest":
        """Parse a request body; a missing body means a plain cron run.

        Raises:
            ValidationError: If the parameters are malformed or
                ``emergency_publish_all`` comes without a channel.
        """
        payload = payload or {}
        if not isinstance(payload, dict):
            raise ValidationError("request body must be a JSON object")

        channel_id = payload.get("channel_id") or payload.get("topic_id") or None
        if channel_id is not None and not isinstance(channel_id, str):
            raise ValidationError("channel_id must be a string")

        request = cls(
            channel_id=channel_id,
            emergency_publish_all=payload.get("emergency_publish_all") is True,
            dry_run=payload.get("dry_run") is True,
        )
        if request.emergency_publish_all and not request.channel_id:
            raise ValidationError(
                "emergency_publish_all requires channel_id"
            )
        if request.emergency_publish_all and request.dry_run:
            raise ValidationError(
                "emergency_publish_all cannot be combined with dry_run"
            )
        return request


async def handle_drip_feed_request(
    payload: Optional[Dict[str, Any]] = None,
    db: Any = None,
    settings: Optional[Settings] = None,
    rate_limiter: Optional[KeyedRateLimiter] = None,
    audit: Optional[AuditLogger] = None,
    now: Optional[datetime] = None,
) -> Response:
    """Serve one drip-feed invocation.

    Args:
        payload: Request body (see module docstring).
        db: Database client.  When ``None`` one is created from the
            environment, after checking the Supabase credentials.
        settings: Application settings (defaults to :func:`get_settings`).
        rate_limiter: Throttle for emergency releases.  Owned by the
            caller so its state lives exactly as long as the caller does;
            see :meth:`KeyedRateLimiter.for_emergency_releases`.  When
            ``None`` emergency releases are not throttled.
        audit: Audit logger; built from *settings* when ``None``.
        now: Invocation time override (tests and replays).

    Returns:
        ``(status_code, body)``: 200 on success or partial success, 400 for
        a malformed request, 429 when rate limited, 500 on fatal errors.
    """
    started = utc_now()

    try:
        request = DripFeedRequest.from_payload(payload)
    except ValidationError as exc:
        return 400, {"success": False, "error": str(exc)}

    try:
        settings = settings or get_settings()
        if db is None:
            validate_env()
            from dripfeed.database import connect

            db = await connect()

        audit = audit or AuditLogger(
            db=db,
            log_dir=settings.log_dir,
            function_name=settings.audit_function_name,
        )
        scheduler = DripFeedScheduler(db, audit, settings)

        logger.info("[DRIP FEED] Drip Feed Scheduler starting...")

        if request.emergency_publish_all:
            if rate_limiter is not None:
                rate_limiter.hit(f"emergency:{request.channel_id}")
            released = await _bounded(
                scheduler.emergency_release(request.channel_id),
                settings,
                "emergency_release",
            )
            return 200, {
                "success": True,
                "emergency": True,
                "items_released": released,
                "message": f"Released {released} stories for immediate publishing",
            }

        if request.dry_run:
            previews = await _bounded(
                scheduler.preview(now=now, channel_id=request.channel_id),
                settings,
                "preview",
            )
            return 200, {
                "success": True,
                "dry_run": True,
                "would_schedule": [p.to_dict() for p in previews],
            }

        report = await _bounded(
            scheduler.run(now=now, channel_id=request.channel_id),
            settings,
            "run",
        )
        body: Dict[str, Any] = {
            "success": True,
            "results": [r.to_dict() for r in report.results],
            "duration_ms": _elapsed_ms(started),
        }
        if not report.results:
            body["message"] = "No drip feed topics found"
        return 200, body

    except RateLimitExceededError as exc:
        logger.warning("[DRIP FEED] %s", exc)
        return 429, {
            "success": False,
            "error": "Rate limit exceeded. Please try again later.",
            "rate_limited": True,
            "retry_after": round(exc.retry_after),
        }
    except (ConfigurationError, RunTimeoutError) as exc:
        logger.error("[DRIP FEED] Fatal error: %s", exc)
        return 500, {"success": False, "error": str(exc)}
    except Exception as exc:
        logger.exception("[DRIP FEED] Fatal error")
        return 500, {"success": False, "error": str(exc)}


async def _bounded(coro: Awaitable[Any], settings: Settings, operation: str) -> Any:
    """Await *coro* within the configured invocation deadline."""
    timeout = settings.run_timeout_seconds
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise RunTimeoutError(operation, timeout) from exc


def _elapsed_ms(started: datetime) -> int:
    return int((utc_now() - started).total_seconds() * 1000)


__all__ = [
    "DripFeedRequest",
    "handle_drip_feed_request",
]
