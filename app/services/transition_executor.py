"""Applies validated advance/revert transitions to whole batches."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from app.models.crops import Crop, CropStage, Recipe
from app.models.enums import StageCodeEnum, TransitionTypeEnum
from app.models.transitions import StageTransitionRecord
from app.services.batch_resolver import BatchKey, BatchResolver, ResolvedBatch
from app.services.clock import Clock
from app.services.crop_store import CropStore
from app.services.errors import RecipeNotFoundError, TransitionValidationError
from app.services.stage_graph import StageGraph, set_stage_timestamp
from app.services.task_scheduler import TaskScheduler
from app.services.transition_validator import TransitionValidator

logger = structlog.get_logger("sproutline.transition_executor")


@dataclass
class CropOutcome:
	crop_id: int
	tray_number: int | None
	status: str
	error: str | None = None

	def as_entry(self) -> dict[str, Any]:
		entry: dict[str, Any] = {
			"crop_id": self.crop_id,
			"tray_number": self.tray_number,
			"status": self.status,
		}
		if self.error is not None:
			entry["error"] = self.error
		return entry


@dataclass
class TransitionResult:
	type: TransitionTypeEnum
	batch_identifier: str
	from_stage: StageCodeEnum
	to_stage: StageCodeEnum
	transition_at: datetime
	crops: list[CropOutcome] = field(default_factory=list)
	warnings: list[str] = field(default_factory=list)
	record_id: uuid.UUID | None = None

	@property
	def succeeded(self) -> list[CropOutcome]:
		return [outcome for outcome in self.crops if outcome.error is None]

	@property
	def failed(self) -> list[CropOutcome]:
		return [outcome for outcome in self.crops if outcome.error is not None]


@dataclass
class AdvanceOptions:
	tray_numbers: dict[int, int] | None = None
	actor: str | None = None
	reason: str | None = None
	enforce_minimum_duration: bool = True


class TransitionExecutor:
	def __init__(
		self,
		store: CropStore,
		graph: StageGraph,
		resolver: BatchResolver,
		validator: TransitionValidator,
		scheduler: TaskScheduler,
		clock: Clock,
	):
		self.store = store
		self.graph = graph
		self.resolver = resolver
		self.validator = validator
		self.scheduler = scheduler
		self.clock = clock

	async def advance(
		self,
		target: Crop | BatchKey | int,
		when: datetime | None = None,
		options: AdvanceOptions | None = None,
	) -> TransitionResult:
		"""Move every crop of the target's batch to its next stage.

		All validation runs after the batch rows are locked and before any
		write.  Each crop is then written inside its own savepoint: a crop that
		fails to persist is reported in the result while its siblings proceed.
		"""
		options = options or AdvanceOptions()
		now = self.clock.now()
		when = when or now

		async with self.store.transaction():
			batch = await self.resolver.resolve(target, lock=True)
			report = self.validator.validate_batch_consistency(batch.crops)
			report.raise_for_errors()

			lead = batch.representative
			recipe = await self._require_recipe(lead)
			current = self.graph.by_id(lead.current_stage_id)
			destination = self.graph.advance_target(current, recipe)
			if destination is None:
				raise TransitionValidationError(
					[f"Batch is already at its final stage ({self.graph.code_of(current)})"]
				)
			from_code = self.graph.code_of(current)
			to_code = self.graph.code_of(destination)

			for crop in batch.crops:
				report.merge(
					self.validator.can_advance(
						crop,
						destination,
						when,
						recipe,
						now=now,
						enforce_minimum_duration=options.enforce_minimum_duration,
					)
				)

			trays: dict[int, int | None] | None = None
			if from_code == StageCodeEnum.soaking:
				requested = options.tray_numbers or {}
				trays = {crop.id: requested.get(crop.id, crop.tray_number) for crop in batch.crops}
				in_use = await self.store.trays_in_use(
					[tray for tray in trays.values() if tray is not None],
					exclude_crop_ids=batch.crop_ids,
				)
				report.merge(self.validator.validate_tray_assignment(batch.crops, trays, in_use))
			report.raise_for_errors()

			result = TransitionResult(
				type=TransitionTypeEnum.bulk_advance if len(batch.crops) > 1 else TransitionTypeEnum.advance,
				batch_identifier=batch.key.identifier,
				from_stage=from_code,
				to_stage=to_code,
				transition_at=when,
				warnings=list(report.warnings),
			)
			moved: list[Crop] = []
			for crop in batch.crops:
				crop_id = crop.id
				tray = trays[crop_id] if trays is not None else crop.tray_number
				try:
					async with self.store.savepoint():
						if trays is not None:
							crop.tray_number = tray
						crop.current_stage_id = destination.id
						set_stage_timestamp(crop, to_code, when)
						await self.store.save(crop)
				except Exception as exc:
					logger.warning("crop_advance_failed", crop_id=crop_id, to_stage=str(to_code), error=str(exc))
					result.crops.append(CropOutcome(crop_id, tray, "failed", str(exc)))
					continue
				result.crops.append(CropOutcome(crop_id, tray, "advanced"))
				moved.append(crop)

			result.record_id = await self._record(batch, current, destination, result, options.actor, options.reason, now)
			if moved:
				await self.scheduler.schedule_all(ResolvedBatch(key=BatchKey.for_crop(moved[0]), crops=moved))

		logger.info(
			"crop_stage_advanced",
			batch=result.batch_identifier,
			from_stage=str(from_code),
			to_stage=str(to_code),
			succeeded=len(result.succeeded),
			failed=len(result.failed),
		)
		return result

	async def revert(
		self,
		target: Crop | BatchKey | int,
		*,
		reason: str | None = None,
		actor: str | None = None,
	) -> TransitionResult:
		"""Move every crop of the target's batch back one stage.

		Clears the vacated stage's timestamp and every later one; timestamps at
		or before the restored stage are kept.
		"""
		now = self.clock.now()

		async with self.store.transaction():
			batch = await self.resolver.resolve(target, lock=True)
			report = self.validator.validate_batch_consistency(batch.crops)
			report.raise_for_errors()

			lead = batch.representative
			current = self.graph.by_id(lead.current_stage_id)
			destination = self.graph.revert_target(current, lead)
			from_code = self.graph.code_of(current)
			if destination is None:
				raise TransitionValidationError([f"Cannot revert from {from_code}: no earlier stage applies"])
			to_code = self.graph.code_of(destination)

			for crop in batch.crops:
				report.merge(
					self.validator.can_revert(
						crop,
						destination,
						has_harvest_records=await self.store.has_harvest(crop.id),
						active_tasks=await self.store.active_tasks_for([crop.id], batch.key.identifier),
					)
				)
			report.raise_for_errors()

			cleared = [self.graph.code_of(stage) for stage in self.graph.stages_after(destination)]
			result = TransitionResult(
				type=TransitionTypeEnum.bulk_revert if len(batch.crops) > 1 else TransitionTypeEnum.revert,
				batch_identifier=batch.key.identifier,
				from_stage=from_code,
				to_stage=to_code,
				transition_at=now,
				warnings=list(report.warnings),
			)
			# Leaving harvested puts trays back into play.
			in_use: dict[int, int] = {}
			if from_code == StageCodeEnum.harvested:
				in_use = await self.store.trays_in_use(
					[crop.tray_number for crop in batch.crops if crop.tray_number is not None],
					exclude_crop_ids=batch.crop_ids,
				)
			restored: list[Crop] = []
			for crop in batch.crops:
				crop_id, tray = crop.id, crop.tray_number
				owner = in_use.get(tray) if tray is not None else None
				if owner is not None:
					message = f"Tray {tray} is already in use by crop {owner}"
					logger.warning("crop_revert_failed", crop_id=crop_id, to_stage=str(to_code), error=message)
					result.crops.append(CropOutcome(crop_id, tray, "failed", message))
					continue
				try:
					async with self.store.savepoint():
						for code in cleared:
							set_stage_timestamp(crop, code, None)
						crop.current_stage_id = destination.id
						await self.store.save(crop)
				except Exception as exc:
					logger.warning("crop_revert_failed", crop_id=crop_id, to_stage=str(to_code), error=str(exc))
					result.crops.append(CropOutcome(crop_id, tray, "failed", str(exc)))
					continue
				result.crops.append(CropOutcome(crop_id, tray, "reverted"))
				restored.append(crop)

			result.record_id = await self._record(batch, current, destination, result, actor, reason, now)
			await self.scheduler.deactivate_for_stage(batch, current)
			if restored:
				await self.scheduler.schedule_all(ResolvedBatch(key=BatchKey.for_crop(restored[0]), crops=restored))

		logger.info(
			"crop_stage_reverted",
			batch=result.batch_identifier,
			from_stage=str(from_code),
			to_stage=str(to_code),
			succeeded=len(result.succeeded),
			failed=len(result.failed),
		)
		return result

	async def _require_recipe(self, crop: Crop) -> Recipe:
		recipe = await self.store.get_recipe(crop.recipe_id)
		if recipe is None:
			raise RecipeNotFoundError(f"Recipe {crop.recipe_id} not found")
		return recipe

	async def _record(
		self,
		batch: ResolvedBatch,
		from_stage: CropStage,
		to_stage: CropStage,
		result: TransitionResult,
		actor: str | None,
		reason: str | None,
		recorded_at: datetime,
	) -> uuid.UUID:
		record = StageTransitionRecord(
			id=uuid.uuid4(),
			type=result.type,
			crop_batch_id=batch.key.crop_batch_id,
			batch_identifier=batch.key.identifier,
			from_stage_id=from_stage.id,
			to_stage_id=to_stage.id,
			transition_at=result.transition_at,
			recorded_at=recorded_at,
			actor=actor,
			reason=reason,
			crop_count=len(result.crops),
			succeeded_count=len(result.succeeded),
			failed_count=len(result.failed),
			affected_crops=[outcome.as_entry() for outcome in result.crops],
			failed_crops=[{"crop_id": outcome.crop_id, "error": outcome.error} for outcome in result.failed],
			validation_warnings=list(result.warnings),
		)
		await self.store.save(record)
		return record.id
