#!/usr/bin/env python
"""Process due crop tasks once; meant to be run from cron every few minutes.

Usage:
    python scripts/process_crop_tasks.py
    python scripts/process_crop_tasks.py --limit 50
"""

import argparse
import asyncio
import sys

import structlog
from redis.asyncio import Redis

from app.config import get_settings
from app.database import async_session_factory, engine
from app.middleware.logging import configure_structured_logging
from app.services.crop_workflow import build_workflow


async def process_due_tasks(limit: int | None) -> int:
    """Run one dispatch pass and return the number of failed tasks."""
    logger = structlog.get_logger("sproutline.cron")
    settings = get_settings()
    redis = Redis.from_url(settings.redis_url, decode_responses=True) if settings.redis_url else None
    try:
        async with async_session_factory() as session:
            workflow = await build_workflow(session, redis)
            try:
                summary = await workflow.dispatcher.run_due(limit=limit)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
    finally:
        if redis is not None:
            await redis.aclose()
        await engine.dispose()

    logger.info(
        "crop_task_pass_complete",
        due=summary.due,
        processed=summary.processed,
        stale=summary.stale,
        failed=summary.failed,
        errors=summary.errors,
    )
    return summary.failed + summary.errors


def main() -> None:
    parser = argparse.ArgumentParser(description="Process due crop lifecycle tasks")
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum number of due tasks to handle in this pass",
    )
    args = parser.parse_args()

    configure_structured_logging("cron")
    failures = asyncio.run(process_due_tasks(args.limit))
    sys.exit(1 if failures else 0)


if __name__ == "__main__":
    main()
