"""Shared pytest fixtures — in-memory crop store, fixed clock, async test client."""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Iterable, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from app.config import Settings
from app.main import app
from app.models.crops import Crop, CropBatch, CropStage, Harvest, Recipe
from app.models.enums import StageCodeEnum
from app.models.tasks import TaskSchedule
from app.models.transitions import StageTransitionRecord
from app.routes.crops import get_workflow
from app.services.batch_resolver import BatchKey
from app.services.crop_workflow import CropWorkflow, assemble_workflow
from app.services.stage_graph import StageGraph

T0 = datetime(2026, 3, 2, 8, 0, tzinfo=UTC)

CROP_FIELDS = (
	"current_stage_id",
	"tray_number",
	"soaking_at",
	"germination_at",
	"blackout_at",
	"light_at",
	"harvested_at",
	"requires_soaking",
	"watering_suspended_at",
)
TASK_FIELDS = ("is_active", "last_run_at", "due_at", "conditions")


def build_stages() -> list[CropStage]:
	return [
		CropStage(id=index, code=code, name=code.value.title(), sort_order=index, is_active=True)
		for index, code in enumerate(StageCodeEnum, start=1)
	]


class FixedClock:
	def __init__(self, current: datetime) -> None:
		self.current = current

	def now(self) -> datetime:
		return self.current

	def advance(self, **delta: float) -> datetime:
		self.current += timedelta(**delta)
		return self.current


class RecordingNotifier:
	def __init__(self) -> None:
		self.sent: list[dict[str, Any]] = []

	async def notify(self, recipients: Sequence[str], subject: str, body: str, link: str | None = None) -> None:
		self.sent.append({"recipients": list(recipients), "subject": subject, "body": body, "link": link})


class RecordingSeedInventory:
	def __init__(self) -> None:
		self.deductions: list[list[int]] = []

	async def deduct(self, crops: Sequence[Crop]) -> None:
		self.deductions.append([crop.id for crop in crops])


class InMemoryCropStore:
	"""Drop-in for CropStore; transactions and savepoints snapshot and restore state."""

	def __init__(self, stages: Iterable[CropStage]) -> None:
		self.stages = list(stages)
		self.recipes: dict[uuid.UUID, Recipe] = {}
		self.batches: list[CropBatch] = []
		self.crops: list[Crop] = []
		self.harvests: list[Harvest] = []
		self.tasks: list[TaskSchedule] = []
		self.records: list[StageTransitionRecord] = []
		self.fail_on_save: set[int] = set()
		self.locked_crop_ids: list[int] = []
		self.commits = 0
		self._next_crop_id = 1

	@asynccontextmanager
	async def transaction(self) -> AsyncGenerator[None, None]:
		snapshot = self._snapshot()
		try:
			yield
		except BaseException:
			self._restore(snapshot)
			raise

	def savepoint(self) -> Any:
		return self.transaction()

	async def commit(self) -> None:
		self.commits += 1

	def _snapshot(self) -> dict[str, Any]:
		return {
			"crops": [(crop, {name: getattr(crop, name) for name in CROP_FIELDS}) for crop in self.crops],
			"tasks": [(task, {name: getattr(task, name) for name in TASK_FIELDS}) for task in self.tasks],
			"records": list(self.records),
			"batches": list(self.batches),
		}

	def _restore(self, snapshot: dict[str, Any]) -> None:
		self.crops = []
		for crop, values in snapshot["crops"]:
			for name, value in values.items():
				setattr(crop, name, value)
			self.crops.append(crop)
		self.tasks = []
		for task, values in snapshot["tasks"]:
			for name, value in values.items():
				setattr(task, name, value)
			self.tasks.append(task)
		self.records = snapshot["records"]
		self.batches = snapshot["batches"]

	async def list_stages(self) -> list[CropStage]:
		return list(self.stages)

	async def get_recipe(self, recipe_id: uuid.UUID) -> Recipe | None:
		return self.recipes.get(recipe_id)

	async def get_crop(self, crop_id: int, *, lock: bool = False) -> Crop | None:
		for crop in self.crops:
			if crop.id == crop_id:
				if lock:
					self.locked_crop_ids.append(crop.id)
				return crop
		return None

	async def find_batch_crops(self, key: BatchKey, *, lock: bool = False) -> list[Crop]:
		found = sorted((crop for crop in self.crops if key.matches(crop)), key=lambda crop: crop.id)
		if lock:
			self.locked_crop_ids.extend(crop.id for crop in found)
		return found

	async def trays_in_use(self, tray_numbers: Iterable[int], *, exclude_crop_ids: Sequence[int] = ()) -> dict[int, int]:
		wanted = set(tray_numbers)
		excluded = set(exclude_crop_ids)
		return {
			crop.tray_number: crop.id
			for crop in self.crops
			if crop.tray_number in wanted and crop.harvested_at is None and crop.id not in excluded
		}

	async def has_harvest(self, crop_id: int) -> bool:
		return any(harvest.crop_id == crop_id for harvest in self.harvests)

	async def active_tasks_for(self, crop_ids: Sequence[int], batch_identifier: str | None = None) -> list[TaskSchedule]:
		ids = set(crop_ids)
		matched = [
			task
			for task in self.tasks
			if task.is_active
			and (
				task.conditions.get("crop_id") in ids
				or (batch_identifier and task.conditions.get("batch_identifier") == batch_identifier)
			)
		]
		return sorted(matched, key=lambda task: task.due_at)

	async def due_tasks(self, now: datetime, limit: int) -> list[TaskSchedule]:
		due = [task for task in self.tasks if task.is_active and task.due_at <= now]
		return sorted(due, key=lambda task: task.due_at)[:limit]

	async def get_task(self, task_id: uuid.UUID, *, lock: bool = False) -> TaskSchedule | None:
		return next((task for task in self.tasks if task.id == task_id), None)

	def add(self, instance: Any) -> None:
		if isinstance(instance, Crop):
			if instance.id is None:
				instance.id = self._next_crop_id
			self._next_crop_id = max(self._next_crop_id, instance.id + 1)
			self._append(self.crops, instance)
		elif isinstance(instance, TaskSchedule):
			if instance.id is None:
				instance.id = uuid.uuid4()
			self._append(self.tasks, instance)
		elif isinstance(instance, StageTransitionRecord):
			self._append(self.records, instance)
		elif isinstance(instance, CropBatch):
			self._append(self.batches, instance)
		else:
			raise TypeError(f"unsupported instance {instance!r}")

	async def save(self, instance: Any) -> None:
		if isinstance(instance, Crop) and instance.id in self.fail_on_save:
			raise RuntimeError(f"write failed for crop {instance.id}")
		self.add(instance)

	async def delete(self, instance: Any) -> None:
		self.tasks = [task for task in self.tasks if task is not instance]

	async def flush(self) -> None:
		return None

	@staticmethod
	def _append(rows: list[Any], instance: Any) -> None:
		if not any(row is instance for row in rows):
			rows.append(instance)


class FarmBuilder:
	"""Seeds the in-memory store with recipes, crops, harvests and tasks."""

	def __init__(self, store: InMemoryCropStore, graph: StageGraph) -> None:
		self.store = store
		self.graph = graph

	def stage(self, code: StageCodeEnum) -> CropStage:
		return self.graph.by_code(code)

	def recipe(self, **overrides: Any) -> Recipe:
		values: dict[str, Any] = {
			"id": uuid.uuid4(),
			"name": "Sunflower",
			"variety": "Black Oil Sunflower",
			"seed_soak_hours": 0,
			"germination_days": 3,
			"blackout_days": 0,
			"light_days": 5,
			"suspend_water_hours": 0,
		}
		values.update(overrides)
		recipe = Recipe(**values)
		self.store.recipes[recipe.id] = recipe
		return recipe

	def crop(self, recipe: Recipe, stage: StageCodeEnum, **fields: Any) -> Crop:
		values: dict[str, Any] = {
			"recipe_id": recipe.id,
			"current_stage_id": self.stage(stage).id,
			"requires_soaking": (recipe.seed_soak_hours or 0) > 0,
		}
		values.update(fields)
		crop = Crop(**values)
		self.store.add(crop)
		return crop

	def batch(self, recipe: Recipe, stage: StageCodeEnum, trays: Sequence[int | None], **fields: Any) -> list[Crop]:
		batch = CropBatch(id=uuid.uuid4(), recipe_id=recipe.id)
		self.store.add(batch)
		return [self.crop(recipe, stage, crop_batch_id=batch.id, tray_number=tray, **fields) for tray in trays]

	def harvest(self, crop: Crop) -> Harvest:
		harvest = Harvest(id=uuid.uuid4(), crop_id=crop.id, harvested_at=crop.harvested_at, weight_grams=120.0)
		self.store.harvests.append(harvest)
		return harvest

	def task(self, crop: Crop, task_name: str, due_at: datetime, **conditions: Any) -> TaskSchedule:
		task = TaskSchedule(
			id=uuid.uuid4(),
			name=task_name,
			resource_type="crops",
			task_name=task_name,
			frequency="once",
			conditions={"crop_id": crop.id, **conditions},
			due_at=due_at,
			is_active=True,
		)
		self.store.add(task)
		return task

	def active_tasks(self) -> list[TaskSchedule]:
		return [task for task in self.store.tasks if task.is_active]


@pytest.fixture
def clock() -> FixedClock:
	return FixedClock(T0)


@pytest.fixture
def settings() -> Settings:
	return Settings(
		notification_recipients=["grower@farm.test"],
		app_base_url="http://farm.test",
		task_memory_limit_mb=0,
		farm_timezone="UTC",
		redis_url="",
	)


@pytest.fixture
def store() -> InMemoryCropStore:
	return InMemoryCropStore(build_stages())


@pytest.fixture
def graph(store: InMemoryCropStore) -> StageGraph:
	return StageGraph(store.stages)


@pytest.fixture
def notifier() -> RecordingNotifier:
	return RecordingNotifier()


@pytest.fixture
def seeds() -> RecordingSeedInventory:
	return RecordingSeedInventory()


@pytest.fixture
def workflow(
	store: InMemoryCropStore,
	graph: StageGraph,
	notifier: RecordingNotifier,
	seeds: RecordingSeedInventory,
	clock: FixedClock,
	settings: Settings,
) -> CropWorkflow:
	return assemble_workflow(
		store,  # type: ignore[arg-type]
		graph,
		notifier=notifier,
		seeds=seeds,
		clock=clock,
		settings=settings,
	)


@pytest.fixture
def farm(store: InMemoryCropStore, graph: StageGraph) -> FarmBuilder:
	return FarmBuilder(store, graph)


@pytest.fixture
async def client(workflow: CropWorkflow) -> AsyncGenerator[AsyncClient, None]:
	"""HTTPX async client with lifespan disabled and the workflow bound to the in-memory store."""

	async def override_get_workflow() -> CropWorkflow:
		return workflow

	app.dependency_overrides[get_workflow] = override_get_workflow
	original_lifespan = app.router.lifespan_context

	@asynccontextmanager
	async def noop_lifespan(_: Any) -> AsyncGenerator[None, None]:
		yield

	app.router.lifespan_context = noop_lifespan

	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://test") as test_client:
		yield test_client

	app.router.lifespan_context = original_lifespan
	app.dependency_overrides.clear()
