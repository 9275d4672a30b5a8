"""Batch identity and resolution of the crops that must transition together."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from app.models.crops import Crop
from app.services.errors import CropNotFoundError, NoCropsFoundError

if TYPE_CHECKING:
	from app.services.crop_store import CropStore

ANCHOR_FIELDS = ("germination_at", "soaking_at")


@dataclass(frozen=True)
class BatchKey:
	"""Identity of a batch.

	Explicit keys carry ``crop_batch_id``.  Implicit keys group batchless
	crops by recipe, planting anchor and current stage; the anchor is
	``germination_at``, falling back to ``soaking_at`` while germination has
	not been stamped yet.
	"""

	crop_batch_id: uuid.UUID | None = None
	recipe_id: uuid.UUID | None = None
	anchor_field: str | None = None
	anchor_at: datetime | None = None
	stage_id: int | None = None

	@classmethod
	def for_crop(cls, crop: Crop) -> BatchKey:
		if crop.crop_batch_id is not None:
			return cls(crop_batch_id=crop.crop_batch_id)
		if crop.germination_at is not None or crop.soaking_at is None:
			anchor_field, anchor_at = "germination_at", crop.germination_at
		else:
			anchor_field, anchor_at = "soaking_at", crop.soaking_at
		return cls(
			recipe_id=crop.recipe_id,
			anchor_field=anchor_field,
			anchor_at=anchor_at,
			stage_id=crop.current_stage_id,
		)

	@property
	def is_explicit(self) -> bool:
		return self.crop_batch_id is not None

	@property
	def identifier(self) -> str:
		if self.is_explicit:
			return f"batch|{self.crop_batch_id}"
		anchor = self.anchor_at.isoformat() if self.anchor_at is not None else "none"
		return f"implicit|{self.recipe_id}|{self.anchor_field}|{anchor}|{self.stage_id}"

	@classmethod
	def parse(cls, identifier: str) -> BatchKey:
		parts = identifier.split("|")
		try:
			if parts[0] == "batch" and len(parts) == 2:
				return cls(crop_batch_id=uuid.UUID(parts[1]))
			if parts[0] == "implicit" and len(parts) == 5 and parts[2] in ANCHOR_FIELDS:
				anchor_at = None if parts[3] == "none" else datetime.fromisoformat(parts[3])
				return cls(
					recipe_id=uuid.UUID(parts[1]),
					anchor_field=parts[2],
					anchor_at=anchor_at,
					stage_id=int(parts[4]),
				)
		except ValueError as exc:
			raise ValueError(f"Invalid batch identifier format: {identifier}") from exc
		raise ValueError(f"Invalid batch identifier format: {identifier}")

	def matches(self, crop: Crop) -> bool:
		if self.is_explicit:
			return crop.crop_batch_id == self.crop_batch_id
		if crop.crop_batch_id is not None:
			return False
		if crop.recipe_id != self.recipe_id or crop.current_stage_id != self.stage_id:
			return False
		if self.anchor_field == "soaking_at" and crop.germination_at is not None:
			return False
		return getattr(crop, self.anchor_field or "germination_at") == self.anchor_at


@dataclass
class ResolvedBatch:
	key: BatchKey
	crops: list[Crop]

	@property
	def representative(self) -> Crop:
		return self.crops[0]

	@property
	def crop_ids(self) -> list[int]:
		return [crop.id for crop in self.crops]

	@property
	def tray_numbers(self) -> list[int]:
		return [crop.tray_number for crop in self.crops if crop.tray_number is not None]


class BatchResolver:
	def __init__(self, store: CropStore):
		self.store = store

	async def resolve(self, target: Crop | BatchKey | int, *, lock: bool = False) -> ResolvedBatch:
		"""Resolve every member of the target's batch, ordered by crop id."""
		if isinstance(target, BatchKey):
			key = target
		else:
			crop = target if isinstance(target, Crop) else await self.store.get_crop(target)
			if crop is None:
				raise CropNotFoundError(f"Crop {target} not found")
			key = BatchKey.for_crop(crop)

		crops = await self.store.find_batch_crops(key, lock=lock)
		if not crops:
			raise NoCropsFoundError(f"No crops found in batch {key.identifier}")
		return ResolvedBatch(key=key, crops=crops)
