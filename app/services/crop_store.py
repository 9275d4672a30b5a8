"""SQLAlchemy persistence adapter used by every lifecycle component."""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import Select, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction

from app.models.crops import Crop, CropStage, Harvest, Recipe
from app.models.tasks import TaskSchedule
from app.services.batch_resolver import BatchKey

RESOURCE_TYPE = "crops"


class CropStore:
	def __init__(self, db: AsyncSession):
		self.db = db

	# ── Transactions ────────────────────────────────────────────────────────

	def transaction(self) -> AsyncSessionTransaction:
		"""Outer transaction, or a savepoint when one is already open."""
		if self.db.in_transaction():
			return self.db.begin_nested()
		return self.db.begin()

	def savepoint(self) -> AsyncSessionTransaction:
		return self.db.begin_nested()

	async def commit(self) -> None:
		"""End the open transaction so the next unit of work starts its own."""
		if self.db.in_transaction():
			await self.db.commit()

	# ── Catalog ─────────────────────────────────────────────────────────────

	async def list_stages(self) -> list[CropStage]:
		rows = await self.db.execute(select(CropStage).order_by(CropStage.sort_order))
		return list(rows.scalars().all())

	async def get_recipe(self, recipe_id: uuid.UUID) -> Recipe | None:
		return await self.db.get(Recipe, recipe_id)

	# ── Crops ───────────────────────────────────────────────────────────────

	async def get_crop(self, crop_id: int, *, lock: bool = False) -> Crop | None:
		stmt = select(Crop).where(Crop.id == crop_id)
		row = await self.db.execute(self._locked(stmt) if lock else stmt)
		return row.scalar_one_or_none()

	async def find_batch_crops(self, key: BatchKey, *, lock: bool = False) -> list[Crop]:
		stmt = select(Crop).where(*self._batch_criteria(key)).order_by(Crop.id)
		rows = await self.db.execute(self._locked(stmt) if lock else stmt)
		return list(rows.scalars().all())

	async def trays_in_use(
		self,
		tray_numbers: Iterable[int],
		*,
		exclude_crop_ids: Sequence[int] = (),
	) -> dict[int, int]:
		"""Map of tray number to the non-harvested crop currently holding it."""
		trays = sorted(set(tray_numbers))
		if not trays:
			return {}
		stmt = select(Crop.tray_number, Crop.id).where(
			Crop.tray_number.in_(trays),
			Crop.harvested_at.is_(None),
		)
		if exclude_crop_ids:
			stmt = stmt.where(Crop.id.not_in(list(exclude_crop_ids)))
		rows = await self.db.execute(stmt)
		return {tray: crop_id for tray, crop_id in rows.all()}

	async def has_harvest(self, crop_id: int) -> bool:
		row = await self.db.execute(select(Harvest.id).where(Harvest.crop_id == crop_id).limit(1))
		return row.first() is not None

	# ── Tasks ───────────────────────────────────────────────────────────────

	async def active_tasks_for(
		self,
		crop_ids: Sequence[int],
		batch_identifier: str | None = None,
	) -> list[TaskSchedule]:
		clauses = [TaskSchedule.conditions["crop_id"].as_integer().in_(list(crop_ids))]
		if batch_identifier:
			clauses.append(TaskSchedule.conditions["batch_identifier"].as_string() == batch_identifier)
		stmt = (
			select(TaskSchedule)
			.where(
				TaskSchedule.resource_type == RESOURCE_TYPE,
				TaskSchedule.is_active.is_(True),
				or_(*clauses),
			)
			.order_by(TaskSchedule.due_at)
		)
		rows = await self.db.execute(stmt)
		return list(rows.scalars().all())

	async def due_tasks(self, now: datetime, limit: int) -> list[TaskSchedule]:
		stmt = (
			select(TaskSchedule)
			.where(
				TaskSchedule.resource_type == RESOURCE_TYPE,
				TaskSchedule.is_active.is_(True),
				TaskSchedule.due_at <= now,
			)
			.order_by(TaskSchedule.due_at, TaskSchedule.id)
			.limit(limit)
		)
		rows = await self.db.execute(stmt)
		return list(rows.scalars().all())

	async def get_task(self, task_id: uuid.UUID, *, lock: bool = False) -> TaskSchedule | None:
		stmt = select(TaskSchedule).where(TaskSchedule.id == task_id)
		row = await self.db.execute(self._locked(stmt) if lock else stmt)
		return row.scalar_one_or_none()

	# ── Writes ──────────────────────────────────────────────────────────────

	def add(self, instance: Any) -> None:
		self.db.add(instance)

	async def save(self, instance: Any) -> None:
		self.db.add(instance)
		await self.db.flush()

	async def delete(self, instance: Any) -> None:
		await self.db.delete(instance)

	async def flush(self) -> None:
		await self.db.flush()

	# ── Helpers ─────────────────────────────────────────────────────────────

	@staticmethod
	def _locked(stmt: Select) -> Select:
		return stmt.with_for_update().execution_options(populate_existing=True)

	@staticmethod
	def _batch_criteria(key: BatchKey) -> list[Any]:
		if key.is_explicit:
			return [Crop.crop_batch_id == key.crop_batch_id]
		anchor = getattr(Crop, key.anchor_field or "germination_at")
		criteria = [
			Crop.crop_batch_id.is_(None),
			Crop.recipe_id == key.recipe_id,
			Crop.current_stage_id == key.stage_id,
			anchor.is_(None) if key.anchor_at is None else anchor == key.anchor_at,
		]
		if key.anchor_field == "soaking_at":
			criteria.append(Crop.germination_at.is_(None))
		return criteria
