"""Batch-wide watering suspension ahead of harvest."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

import structlog

from app.models.crops import Crop
from app.services.batch_resolver import BatchKey, BatchResolver
from app.services.clock import Clock
from app.services.crop_store import CropStore

logger = structlog.get_logger("sproutline.watering")


@dataclass
class WateringChange:
	batch_identifier: str
	crop_count: int
	changed: int
	unchanged: int


class WateringService:
	def __init__(self, store: CropStore, resolver: BatchResolver, clock: Clock):
		self.store = store
		self.resolver = resolver
		self.clock = clock

	async def suspend(self, target: Crop | BatchKey | int, when: datetime | None = None) -> WateringChange:
		when = when or self.clock.now()
		async with self.store.transaction():
			batch = await self.resolver.resolve(target, lock=True)
			changed = 0
			for crop in batch.crops:
				if crop.watering_suspended_at is not None:
					continue
				crop.watering_suspended_at = when
				changed += 1
			await self.store.flush()

		logger.info("watering_suspended", batch=batch.key.identifier, changed=changed)
		return WateringChange(batch.key.identifier, len(batch.crops), changed, len(batch.crops) - changed)

	async def resume(self, target: Crop | BatchKey | int) -> WateringChange:
		async with self.store.transaction():
			batch = await self.resolver.resolve(target, lock=True)
			changed = 0
			for crop in batch.crops:
				if crop.watering_suspended_at is None:
					continue
				crop.watering_suspended_at = None
				changed += 1
			await self.store.flush()

		logger.info("watering_resumed", batch=batch.key.identifier, changed=changed)
		return WateringChange(batch.key.identifier, len(batch.crops), changed, len(batch.crops) - changed)
