"""Seed stock deduction hook called when trays are planted."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

import structlog

from app.models.crops import Crop

logger = structlog.get_logger("sproutline.seed_inventory")


class SeedInventory(Protocol):
	async def deduct(self, crops: Sequence[Crop]) -> None: ...


class UntrackedSeedInventory:
	"""Used when no seed-lot accounting is wired in; records the deduction only."""

	async def deduct(self, crops: Sequence[Crop]) -> None:
		logger.info(
			"seed_deduction_untracked",
			crop_ids=[crop.id for crop in crops],
			crop_count=len(crops),
		)
