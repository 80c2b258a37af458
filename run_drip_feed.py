"""
Entry point: run the drip-feed scheduler once.

Usage::

    # Scheduled tick, all drip-feed topics:
    python run_drip_feed.py

    # A story became ready in one topic:
    python run_drip_feed.py --channel-id 6f1c...

    # Preview without writing anything:
    python run_drip_feed.py --dry-run

    # Release everything queued for a topic right now:
    python run_drip_feed.py --channel-id 6f1c... --emergency-publish-all
"""

import argparse
import asyncio
import json
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger("run_drip_feed")


async def main() -> int:
    parser = argparse.ArgumentParser(
        description="Assign release slots to ready stories"
    )
    parser.add_argument(
        "--channel-id",
        metavar="TOPIC_ID",
        help="Only process this topic",
    )
    parser.add_argument(
        "--emergency-publish-all",
        action="store_true",
        help="Clear every queued slot of --channel-id so its stories publish now",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be scheduled without writing anything",
    )
    args = parser.parse_args()

    if args.emergency_publish_all and not args.channel_id:
        parser.error("--emergency-publish-all requires --channel-id")

    from dripfeed.config import get_settings
    from dripfeed.scheduling import handle_drip_feed_request

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)-8s %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )

    status, body = await handle_drip_feed_request(
        {
            "channel_id": args.channel_id,
            "emergency_publish_all": args.emergency_publish_all,
            "dry_run": args.dry_run,
        },
        settings=settings,
    )
    print(json.dumps(body, indent=2, ensure_ascii=False))
    return 0 if status < 400 else 1


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(0)
