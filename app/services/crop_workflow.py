"""Wires the lifecycle components around one store."""

from __future__ import annotations

from dataclasses import dataclass

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.services.batch_resolver import BatchResolver
from app.services.clock import Clock, SystemClock
from app.services.crop_lifecycle_service import CropLifecycleService
from app.services.crop_store import CropStore
from app.services.notifier import LoggingNotifier, Notifier, RedisNotifier
from app.services.seed_inventory import SeedInventory, UntrackedSeedInventory
from app.services.stage_graph import StageGraph
from app.services.task_dispatcher import TaskDispatcher
from app.services.task_scheduler import TaskScheduler
from app.services.transition_executor import TransitionExecutor
from app.services.transition_validator import TransitionValidator
from app.services.watering_service import WateringService


@dataclass
class CropWorkflow:
	store: CropStore
	graph: StageGraph
	resolver: BatchResolver
	validator: TransitionValidator
	scheduler: TaskScheduler
	executor: TransitionExecutor
	watering: WateringService
	lifecycle: CropLifecycleService
	dispatcher: TaskDispatcher


def assemble_workflow(
	store: CropStore,
	graph: StageGraph,
	*,
	notifier: Notifier,
	seeds: SeedInventory,
	clock: Clock,
	settings: Settings,
) -> CropWorkflow:
	resolver = BatchResolver(store)
	validator = TransitionValidator(
		graph,
		minimum_ratio=settings.minimum_duration_tolerance,
		early_warning_ratio=settings.early_advance_warning_ratio,
	)
	scheduler = TaskScheduler(
		store,
		graph,
		clock,
		farm_timezone=settings.farm_timezone,
		soaking_warning_hour=settings.soaking_warning_hour,
		memory_limit_mb=settings.task_memory_limit_mb,
	)
	executor = TransitionExecutor(store, graph, resolver, validator, scheduler, clock)
	watering = WateringService(store, resolver, clock)
	return CropWorkflow(
		store=store,
		graph=graph,
		resolver=resolver,
		validator=validator,
		scheduler=scheduler,
		executor=executor,
		watering=watering,
		lifecycle=CropLifecycleService(store, graph, resolver, scheduler, seeds, clock),
		dispatcher=TaskDispatcher(
			store,
			graph,
			resolver,
			executor,
			watering,
			notifier,
			clock,
			recipients=settings.notification_recipients,
			base_url=settings.app_base_url,
			batch_limit=settings.dispatch_batch_limit,
		),
	)


async def build_workflow(db: AsyncSession, redis_client: Redis | None = None) -> CropWorkflow:
	"""Workflow bound to a database session, alerting through Redis when available."""
	settings = get_settings()
	store = CropStore(db)
	notifier: Notifier = (
		RedisNotifier(redis_client, settings.alerts_channel) if redis_client is not None else LoggingNotifier()
	)
	return assemble_workflow(
		store,
		await StageGraph.load(store),
		notifier=notifier,
		seeds=UntrackedSeedInventory(),
		clock=SystemClock(),
		settings=settings,
	)
