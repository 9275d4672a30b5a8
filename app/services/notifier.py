"""Outbound crop alerts: Redis pub/sub or the structured log."""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Protocol

import structlog
from redis.asyncio import Redis

logger = structlog.get_logger("sproutline.notifier")


class Notifier(Protocol):
	async def notify(
		self,
		recipients: Sequence[str],
		subject: str,
		body: str,
		link: str | None = None,
	) -> None: ...


class RedisNotifier:
	"""Publishes alerts as JSON on a Redis channel for delivery workers."""

	def __init__(self, redis_client: Redis, channel: str = "crops:alerts"):
		self.redis_client = redis_client
		self.channel = channel

	async def notify(
		self,
		recipients: Sequence[str],
		subject: str,
		body: str,
		link: str | None = None,
	) -> None:
		payload = {
			"event_type": "crop_alert",
			"recipients": list(recipients),
			"subject": subject,
			"body": body,
			"link": link,
			"sent_at": datetime.now(UTC).isoformat(),
		}
		await self.redis_client.publish(self.channel, json.dumps(payload))
		logger.info("crop_alert_published", channel=self.channel, subject=subject)


class LoggingNotifier:
	async def notify(
		self,
		recipients: Sequence[str],
		subject: str,
		body: str,
		link: str | None = None,
	) -> None:
		logger.info("crop_alert", recipients=list(recipients), subject=subject, body=body, link=link)
