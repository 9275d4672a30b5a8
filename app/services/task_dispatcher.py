"""Consumes due tasks: batch advancement, soaking warnings, watering cut-off.

Each task is handled inside its own transaction with the task row locked.
Deactivation is written in the same transaction as the side effect, so a
task fires at most once; a task already inactive is a no-op.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from app.models.enums import StageCodeEnum
from app.models.tasks import TaskSchedule
from app.services.batch_resolver import BatchKey, BatchResolver, ResolvedBatch
from app.services.clock import Clock
from app.services.crop_store import CropStore
from app.services.errors import LifecycleError, NoCropsFoundError, StageNotFoundError, StaleTaskError
from app.services.notifier import Notifier
from app.services.stage_graph import StageGraph, set_stage_timestamp
from app.services.task_scheduler import ADVANCE_TASK_PREFIX, SOAKING_WARNING_TASK, SUSPEND_WATERING_TASK
from app.services.transition_executor import AdvanceOptions, TransitionExecutor
from app.services.watering_service import WateringService

DISPATCH_ACTOR = "system:task_dispatcher"

logger = structlog.get_logger("sproutline.task_dispatcher")


@dataclass
class DispatchResult:
	task_id: uuid.UUID
	task_name: str | None
	status: str
	message: str


@dataclass
class DispatchSummary:
	due: int = 0
	processed: int = 0
	stale: int = 0
	skipped: int = 0
	failed: int = 0
	errors: int = 0
	results: list[DispatchResult] = field(default_factory=list)

	def add(self, result: DispatchResult) -> None:
		self.results.append(result)
		if result.status == "processed":
			self.processed += 1
		elif result.status == "stale":
			self.stale += 1
		elif result.status == "skipped":
			self.skipped += 1
		elif result.status == "failed":
			self.failed += 1
		else:
			self.errors += 1


class TaskDispatcher:
	def __init__(
		self,
		store: CropStore,
		graph: StageGraph,
		resolver: BatchResolver,
		executor: TransitionExecutor,
		watering: WateringService,
		notifier: Notifier,
		clock: Clock,
		*,
		recipients: Sequence[str] = (),
		base_url: str = "",
		batch_limit: int = 500,
	):
		self.store = store
		self.graph = graph
		self.resolver = resolver
		self.executor = executor
		self.watering = watering
		self.notifier = notifier
		self.clock = clock
		self.recipients = list(recipients)
		self.base_url = base_url.rstrip("/")
		self.batch_limit = batch_limit

	async def run_due(self, now: datetime | None = None, limit: int | None = None) -> DispatchSummary:
		"""Process every active task due at ``now``, oldest first."""
		now = now or self.clock.now()
		due = [(task.id, task.task_name) for task in await self.store.due_tasks(now, limit or self.batch_limit)]
		# The due read must not hold a transaction open; each task commits on its own.
		await self.store.commit()
		summary = DispatchSummary(due=len(due))
		for task_id, task_name in due:
			try:
				result = await self.process_due(task_id)
			except Exception as exc:
				logger.exception("task_dispatch_failed", task_id=str(task_id), task_name=task_name, error=str(exc))
				summary.add(DispatchResult(task_id, task_name, "error", str(exc)))
				continue
			summary.add(result)

		logger.info(
			"task_dispatch_run",
			due=summary.due,
			processed=summary.processed,
			stale=summary.stale,
			skipped=summary.skipped,
			failed=summary.failed,
			errors=summary.errors,
		)
		return summary

	async def process_due(self, task_id: uuid.UUID) -> DispatchResult:
		async with self.store.transaction():
			task = await self.store.get_task(task_id, lock=True)
			if task is None or not task.is_active:
				return DispatchResult(task_id, task.task_name if task else None, "skipped", "Task is missing or inactive")

			try:
				if task.task_name == SOAKING_WARNING_TASK:
					result = await self._soaking_warning(task)
				elif task.task_name == SUSPEND_WATERING_TASK:
					result = await self._suspend_watering(task)
				elif task.task_name.startswith(ADVANCE_TASK_PREFIX):
					result = await self._advance(task)
				else:
					raise StaleTaskError(f"Unknown task type {task.task_name}")
			except StaleTaskError as exc:
				await self._deactivate(task)
				result = DispatchResult(task.id, task.task_name, "stale", str(exc))

		logger.info("task_dispatched", task_id=str(task_id), task_name=result.task_name, status=result.status)
		return result

	async def _advance(self, task: TaskSchedule) -> DispatchResult:
		conditions = task.conditions or {}
		raw_target = conditions.get("target_stage") or task.task_name[len(ADVANCE_TASK_PREFIX):]
		try:
			target = self.graph.by_code(raw_target)
		except StageNotFoundError as exc:
			raise StaleTaskError(str(exc)) from exc

		batch = await self._load_batch(conditions)
		lead = batch.representative
		current = self.graph.by_id(lead.current_stage_id)
		target_code = self.graph.code_of(target)
		if self.graph.position(current) >= self.graph.position(target):
			raise StaleTaskError(f"Batch {batch.key.identifier} is already at or past {target_code}")

		recipe = await self.store.get_recipe(lead.recipe_id)
		try:
			path = self.graph.advance_path(current, target, recipe)
		except ValueError as exc:
			raise StaleTaskError(str(exc)) from exc

		await self._notify(
			f"Crop stage transition - {conditions.get('variety', 'crop')}",
			f"Batch {batch.key.identifier} ({len(batch.crops)} trays) is moving to {target_code}.",
			lead.id,
		)
		await self._deactivate(task)

		now = self.clock.now()
		skipped = path[:-1]
		try:
			if skipped and self.graph.code_of(current) == StageCodeEnum.soaking:
				trays = {crop.id: crop.tray_number for crop in batch.crops}
				in_use = await self.store.trays_in_use(
					[tray for tray in trays.values() if tray is not None],
					exclude_crop_ids=batch.crop_ids,
				)
				self.executor.validator.validate_tray_assignment(batch.crops, trays, in_use).raise_for_errors()
			async with self.store.savepoint():
				for stage in skipped:
					code = self.graph.code_of(stage)
					for crop in batch.crops:
						set_stage_timestamp(crop, code, now)
						crop.current_stage_id = stage.id
					await self.store.flush()
				outcome = await self.executor.advance(
					lead,
					when=now,
					options=AdvanceOptions(
						actor=DISPATCH_ACTOR,
						reason=f"Scheduled task {task.task_name}",
						enforce_minimum_duration=not skipped,
					),
				)
		except LifecycleError as exc:
			logger.warning("scheduled_advance_rejected", task_id=str(task.id), error=str(exc))
			return DispatchResult(task.id, task.task_name, "failed", str(exc))

		message = f"Batch {batch.key.identifier} ({len(outcome.crops)} crops) advanced to {outcome.to_stage}"
		if skipped:
			message += f" (skipped {len(skipped)} intermediate stages)"
		return DispatchResult(task.id, task.task_name, "processed", message)

	async def _soaking_warning(self, task: TaskSchedule) -> DispatchResult:
		conditions = task.conditions or {}
		batch = await self._load_batch(conditions)
		lead = batch.representative
		if self.graph.code_of(self.graph.by_id(lead.current_stage_id)) != StageCodeEnum.soaking:
			raise StaleTaskError(f"Batch {batch.key.identifier} is no longer soaking")

		variety = conditions.get("variety", "crop")
		tray_count = conditions.get("tray_count", len(batch.crops))
		plural = "s" if tray_count > 1 else ""
		await self._notify(
			f"Soaking Completes Today - {variety}",
			f"The soaking stage for {variety} (Tray{plural} {conditions.get('tray_list', '')}) will complete "
			"today. Please monitor for the transition to germination stage.",
			lead.id,
		)
		await self._deactivate(task)
		return DispatchResult(
			task.id,
			task.task_name,
			"processed",
			f"Soaking completion warning sent for batch {batch.key.identifier} ({tray_count} trays)",
		)

	async def _suspend_watering(self, task: TaskSchedule) -> DispatchResult:
		conditions = task.conditions or {}
		batch = await self._load_batch(conditions)
		await self._deactivate(task)
		change = await self.watering.suspend(batch.key)
		await self._notify(
			f"Watering suspended - {conditions.get('variety', 'crop')}",
			f"Watering suspended for {change.changed} trays ahead of harvest (batch {batch.key.identifier}).",
			batch.representative.id,
		)
		return DispatchResult(
			task.id,
			task.task_name,
			"processed",
			f"Watering suspended for {change.changed} of {change.crop_count} crops",
		)

	async def _load_batch(self, conditions: dict[str, Any]) -> ResolvedBatch:
		identifier = conditions.get("batch_identifier")
		try:
			if identifier:
				return await self.resolver.resolve(BatchKey.parse(identifier), lock=True)
			crop_id = conditions.get("crop_id")
			if crop_id is None:
				raise StaleTaskError("Task conditions carry no crop or batch reference")
			crop = await self.store.get_crop(int(crop_id), lock=True)
			if crop is None:
				raise StaleTaskError(f"Crop with ID {crop_id} not found")
			return await self.resolver.resolve(crop, lock=True)
		except (ValueError, NoCropsFoundError) as exc:
			raise StaleTaskError(str(exc)) from exc

	async def _deactivate(self, task: TaskSchedule) -> None:
		task.is_active = False
		task.last_run_at = self.clock.now()
		await self.store.save(task)

	async def _notify(self, subject: str, body: str, crop_id: int) -> None:
		if not self.recipients:
			logger.info("crop_alert_unrouted", subject=subject)
			return
		await self.notifier.notify(self.recipients, subject, body, f"{self.base_url}/api/v1/crops/{crop_id}/status")
