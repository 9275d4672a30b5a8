"""Crop planting, status projections and timestamp repair."""

from __future__ import annotations

import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime

import structlog

from app.models.crops import Crop, CropBatch, Recipe
from app.models.enums import StageCodeEnum
from app.models.tasks import TaskSchedule
from app.schemas.crops import CreationMode, CropBatchCreate
from app.services.batch_resolver import BatchKey, BatchResolver, ResolvedBatch
from app.services.clock import Clock
from app.services.crop_store import CropStore
from app.services.errors import CropNotFoundError, RecipeNotFoundError, TransitionValidationError
from app.services.seed_inventory import SeedInventory
from app.services.stage_graph import StageGraph, get_stage_timestamp, set_stage_timestamp
from app.services.task_scheduler import TaskScheduler, compute_timeline

logger = structlog.get_logger("sproutline.lifecycle")


@dataclass
class CreatedBatch:
	batch: CropBatch
	crops: list[Crop]
	tasks: list[TaskSchedule]
	mode: CreationMode


@dataclass
class CropStatus:
	crop: Crop
	stage: StageCodeEnum
	expected_harvest_at: datetime | None
	days_in_current_stage: float | None
	soaking_minutes_remaining: int | None


class CropLifecycleService:
	def __init__(
		self,
		store: CropStore,
		graph: StageGraph,
		resolver: BatchResolver,
		scheduler: TaskScheduler,
		seeds: SeedInventory,
		clock: Clock,
	):
		self.store = store
		self.graph = graph
		self.resolver = resolver
		self.scheduler = scheduler
		self.seeds = seeds
		self.clock = clock

	async def create_batch(self, payload: CropBatchCreate, mode: CreationMode | None = None) -> CreatedBatch:
		"""Plant one tray per entry of ``payload.tray_numbers``.

		Trays start in soaking when the recipe soaks its seed, otherwise in
		germination.  ``standard`` mode deducts seed per tray, ``bulk`` once for
		the whole batch; either way the batch is scheduled once.
		"""
		mode = mode or payload.mode
		recipe = await self.store.get_recipe(payload.recipe_id)
		if recipe is None:
			raise RecipeNotFoundError(f"Recipe {payload.recipe_id} not found")

		now = self.clock.now()
		started_at = payload.started_at or now
		requires_soaking = (recipe.seed_soak_hours or 0) > 0
		entry_code = StageCodeEnum.soaking if requires_soaking else StageCodeEnum.germination
		entry_stage = self.graph.by_code(entry_code)

		async with self.store.transaction():
			errors = await self._tray_errors(payload.tray_numbers, entry_code)
			if started_at > now:
				errors.append("Start time cannot be in the future")
			if errors:
				raise TransitionValidationError(errors)

			batch = CropBatch(id=uuid.uuid4(), recipe_id=recipe.id, notes=payload.notes)
			self.store.add(batch)
			crops: list[Crop] = []
			for tray in payload.tray_numbers:
				crop = Crop(
					crop_batch_id=batch.id,
					recipe_id=recipe.id,
					current_stage_id=entry_stage.id,
					tray_number=tray,
					requires_soaking=requires_soaking,
					notes=payload.notes,
				)
				set_stage_timestamp(crop, entry_code, started_at)
				self.store.add(crop)
				crops.append(crop)
			await self.store.flush()

			resolved = ResolvedBatch(key=BatchKey(crop_batch_id=batch.id), crops=crops)
			if mode == CreationMode.bulk:
				await self.seeds.deduct(crops)
			else:
				for crop in crops:
					await self.seeds.deduct([crop])
			tasks = await self.scheduler.schedule_all(resolved)

		logger.info(
			"crop_batch_created",
			batch_id=str(batch.id),
			crop_count=len(crops),
			stage=str(entry_code),
			mode=str(mode),
		)
		return CreatedBatch(batch=batch, crops=crops, tasks=tasks, mode=mode)

	async def _tray_errors(self, trays: list[int | None], entry_code: StageCodeEnum) -> list[str]:
		errors: list[str] = []
		given = [tray for tray in trays if tray is not None]
		if entry_code == StageCodeEnum.germination and len(given) != len(trays):
			errors.append("Every crop entering germination needs a tray number")
		duplicates = sorted(tray for tray, count in Counter(given).items() if count > 1)
		if duplicates:
			errors.append(f"Duplicate tray numbers: {', '.join(str(tray) for tray in duplicates)}")
		for tray, crop_id in sorted((await self.store.trays_in_use(given)).items()):
			errors.append(f"Tray {tray} is already in use by crop {crop_id}")
		return errors

	async def get_crop(self, crop_id: int) -> Crop:
		crop = await self.store.get_crop(crop_id)
		if crop is None:
			raise CropNotFoundError(f"Crop {crop_id} not found")
		return crop

	async def list_tasks(self, crop_id: int) -> list[TaskSchedule]:
		batch = await self.resolver.resolve(await self.get_crop(crop_id))
		return await self.store.active_tasks_for(batch.crop_ids, batch.key.identifier)

	async def status(self, crop_id: int) -> CropStatus:
		crop = await self.get_crop(crop_id)
		recipe = await self.store.get_recipe(crop.recipe_id)
		return CropStatus(
			crop=crop,
			stage=self.graph.code_of(self.graph.by_id(crop.current_stage_id)),
			expected_harvest_at=self.expected_harvest_at(crop, recipe),
			days_in_current_stage=self.days_in_current_stage(crop),
			soaking_minutes_remaining=self.soaking_minutes_remaining(crop, recipe),
		)

	def expected_harvest_at(self, crop: Crop, recipe: Recipe | None) -> datetime | None:
		if crop.harvested_at is not None:
			return crop.harvested_at
		if recipe is None:
			return None
		timeline = compute_timeline(crop, recipe)
		return timeline.harvest_at if timeline else None

	def days_in_current_stage(self, crop: Crop) -> float | None:
		code = self.graph.code_of(self.graph.by_id(crop.current_stage_id))
		entered_at = get_stage_timestamp(crop, code)
		if entered_at is None:
			return None
		return round((self.clock.now() - entered_at).total_seconds() / 86400, 2)

	def soaking_minutes_remaining(self, crop: Crop, recipe: Recipe | None) -> int | None:
		code = self.graph.code_of(self.graph.by_id(crop.current_stage_id))
		if code != StageCodeEnum.soaking or crop.soaking_at is None:
			return None
		if recipe is None or not recipe.seed_soak_hours:
			return None
		elapsed = (self.clock.now() - crop.soaking_at).total_seconds() / 60
		return max(0, int(recipe.seed_soak_hours * 60 - elapsed))

	async def fix_missing_stage_timestamp(self, crop_id: int, fallback: datetime | None = None) -> bool:
		"""Backfill the current stage's timestamp from ``fallback`` or ``germination_at``."""
		async with self.store.transaction():
			crop = await self.store.get_crop(crop_id, lock=True)
			if crop is None:
				raise CropNotFoundError(f"Crop {crop_id} not found")
			code = self.graph.code_of(self.graph.by_id(crop.current_stage_id))
			value = fallback or crop.germination_at
			if get_stage_timestamp(crop, code) is not None or value is None:
				return False
			set_stage_timestamp(crop, code, value)
			await self.store.save(crop)

		logger.info("stage_timestamp_repaired", crop_id=crop_id, stage=str(code), value=value.isoformat())
		return True
