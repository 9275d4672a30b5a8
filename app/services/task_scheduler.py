"""Pre-computes one-shot advancement and alert tasks for a batch.

Every call purges the batch's active tasks and recreates them from the
recipe, so the task set always reflects the batch's current stage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

import psutil
import structlog

from app.models.crops import Crop, CropStage, Recipe
from app.models.enums import StageCodeEnum
from app.models.tasks import TaskSchedule
from app.services.batch_resolver import ResolvedBatch
from app.services.clock import Clock
from app.services.crop_store import RESOURCE_TYPE, CropStore
from app.services.errors import StageNotFoundError
from app.services.stage_graph import StageGraph

ADVANCE_TASK_PREFIX = "advance_to_"
SOAKING_WARNING_TASK = "soaking_completion_warning"
SUSPEND_WATERING_TASK = "suspend_watering"

logger = structlog.get_logger("sproutline.task_scheduler")


@dataclass
class StageTimeline:
	"""Projected entry time of each stage, anchored on the planting time."""

	anchor_at: datetime
	entries: dict[StageCodeEnum, datetime] = field(default_factory=dict)

	@property
	def harvest_at(self) -> datetime:
		return self.entries[StageCodeEnum.harvested]


def compute_timeline(crop: Crop, recipe: Recipe) -> StageTimeline | None:
	if crop.requires_soaking and crop.soaking_at is not None:
		anchor = crop.soaking_at
		germination_at = anchor + timedelta(hours=recipe.seed_soak_hours or 0)
	elif crop.germination_at is not None:
		anchor = crop.germination_at
		germination_at = anchor
	else:
		return None

	blackout_at = germination_at + timedelta(days=recipe.germination_days or 0)
	light_at = blackout_at + timedelta(days=recipe.blackout_days or 0)
	harvest_at = light_at + timedelta(days=recipe.light_days or 0)
	return StageTimeline(
		anchor_at=anchor,
		entries={
			StageCodeEnum.soaking: anchor,
			StageCodeEnum.germination: germination_at,
			StageCodeEnum.blackout: blackout_at,
			StageCodeEnum.light: light_at,
			StageCodeEnum.harvested: harvest_at,
		},
	)


class TaskScheduler:
	def __init__(
		self,
		store: CropStore,
		graph: StageGraph,
		clock: Clock,
		*,
		farm_timezone: str = "UTC",
		soaking_warning_hour: int = 6,
		memory_limit_mb: int | None = None,
	):
		self.store = store
		self.graph = graph
		self.clock = clock
		self.farm_timezone = ZoneInfo(farm_timezone)
		self.soaking_warning_hour = soaking_warning_hour
		self.memory_limit_mb = memory_limit_mb

	async def schedule_all(self, batch: ResolvedBatch) -> list[TaskSchedule]:
		rss_mb = self._current_rss_mb()
		if self.memory_limit_mb and rss_mb > self.memory_limit_mb:
			logger.warning(
				"task_scheduling_skipped",
				reason="memory_limit",
				rss_mb=round(rss_mb, 1),
				limit_mb=self.memory_limit_mb,
				batch=batch.key.identifier,
			)
			return []

		await self.purge(batch)

		crop = batch.representative
		recipe = await self.store.get_recipe(crop.recipe_id)
		if recipe is None:
			logger.warning("task_scheduling_skipped", reason="recipe_missing", crop_id=crop.id)
			return []
		try:
			stage = self.graph.by_id(crop.current_stage_id)
		except StageNotFoundError:
			logger.warning("task_scheduling_skipped", reason="stage_missing", crop_id=crop.id)
			return []

		timeline = compute_timeline(crop, recipe)
		if timeline is None:
			logger.warning("task_scheduling_skipped", reason="no_anchor_timestamp", crop_id=crop.id)
			return []

		now = self.clock.now()
		stage_code = self.graph.code_of(stage)
		tasks: list[TaskSchedule] = []

		for target in self.graph.remaining_path(stage, recipe):
			target_code = self.graph.code_of(target)
			due_at = timeline.entries[target_code]
			if due_at <= now:
				continue
			tasks.append(
				self._build_task(
					batch,
					recipe,
					stage_code,
					task_name=f"{ADVANCE_TASK_PREFIX}{target_code}",
					name=f"Advance to {target_code.title()}",
					due_at=due_at,
					target_stage=target_code,
				)
			)

		if stage_code == StageCodeEnum.soaking:
			completion_at = timeline.entries[StageCodeEnum.germination]
			if completion_at > now:
				tasks.append(
					self._build_task(
						batch,
						recipe,
						stage_code,
						task_name=SOAKING_WARNING_TASK,
						name="Soaking completion warning",
						due_at=max(self._warning_time(completion_at), now),
						target_stage=StageCodeEnum.germination,
						extra={
							"warning_type": "soaking_completion",
							"completes_at": completion_at.isoformat(),
						},
					)
				)

		suspend_hours = recipe.suspend_water_hours or 0
		if suspend_hours > 0 and stage_code != StageCodeEnum.harvested:
			suspend_at = timeline.harvest_at - timedelta(hours=suspend_hours)
			if suspend_at > timeline.anchor_at and suspend_at > now:
				tasks.append(
					self._build_task(
						batch,
						recipe,
						stage_code,
						task_name=SUSPEND_WATERING_TASK,
						name="Suspend watering",
						due_at=suspend_at,
						target_stage=StageCodeEnum.harvested,
					)
				)

		for task in tasks:
			self.store.add(task)
		await self.store.flush()
		logger.info(
			"tasks_scheduled",
			batch=batch.key.identifier,
			stage=str(stage_code),
			task_names=[task.task_name for task in tasks],
		)
		return tasks

	async def purge(self, batch: ResolvedBatch) -> int:
		"""Delete every active task pointing at a batch member or the batch itself."""
		tasks = await self.store.active_tasks_for(batch.crop_ids, batch.key.identifier)
		for task in tasks:
			await self.store.delete(task)
		await self.store.flush()
		return len(tasks)

	async def deactivate_for_stage(self, batch: ResolvedBatch, stage: CropStage) -> int:
		code = self.graph.code_of(stage)
		now = self.clock.now()
		count = 0
		for task in await self.store.active_tasks_for(batch.crop_ids, batch.key.identifier):
			if (task.conditions or {}).get("stage") != code:
				continue
			task.is_active = False
			task.last_run_at = now
			count += 1
		await self.store.flush()
		return count

	def _build_task(
		self,
		batch: ResolvedBatch,
		recipe: Recipe,
		stage_code: StageCodeEnum,
		*,
		task_name: str,
		name: str,
		due_at: datetime,
		target_stage: StageCodeEnum,
		extra: dict[str, Any] | None = None,
	) -> TaskSchedule:
		trays = batch.tray_numbers
		variety = recipe.variety or recipe.name
		conditions: dict[str, Any] = {
			"crop_id": batch.representative.id,
			"batch_identifier": batch.key.identifier,
			"stage": str(stage_code),
			"target_stage": str(target_stage),
			"tray_numbers": trays,
			"tray_count": len(batch.crops),
			"tray_list": ", ".join(str(tray) for tray in trays),
			"variety": variety,
			**(extra or {}),
		}
		return TaskSchedule(
			name=f"{name} - {variety}",
			resource_type=RESOURCE_TYPE,
			task_name=task_name,
			frequency="once",
			conditions=conditions,
			due_at=due_at,
			is_active=True,
		)

	def _warning_time(self, completion_at: datetime) -> datetime:
		local = completion_at.astimezone(self.farm_timezone)
		warning = local.replace(hour=self.soaking_warning_hour, minute=0, second=0, microsecond=0)
		return warning.astimezone(UTC)

	@staticmethod
	def _current_rss_mb() -> float:
		return psutil.Process().memory_info().rss / (1024 * 1024)
