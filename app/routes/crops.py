"""Crop batch planting, stage transitions, tasks and watering routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.schemas.crops import (
	AdvanceRequest,
	CropBatchCreate,
	CropBatchCreated,
	CropOutcomeRead,
	CropRead,
	CropStatusResponse,
	RevertRequest,
	TransitionResponse,
	WateringRequest,
	WateringResponse,
)
from app.schemas.tasks import TaskRead
from app.services.crop_workflow import CropWorkflow, build_workflow
from app.services.errors import TransitionValidationError
from app.services.transition_executor import AdvanceOptions, TransitionResult
from app.services.watering_service import WateringChange

router = APIRouter(prefix="/crops", tags=["crops"])


async def get_workflow(request: Request, db: AsyncSession = Depends(get_db)) -> CropWorkflow:
	return await build_workflow(db, getattr(request.app.state, "redis", None))


def _map_error(exc: Exception) -> HTTPException:
	if isinstance(exc, TransitionValidationError):
		return HTTPException(
			status_code=422,
			detail={"errors": exc.errors, "details": exc.details},
		)
	if isinstance(exc, LookupError):
		return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
	if isinstance(exc, ValueError):
		return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
	return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="crop lifecycle failure")


def _to_transition_response(result: TransitionResult) -> TransitionResponse:
	return TransitionResponse(
		type=result.type.value,
		batch_identifier=result.batch_identifier,
		from_stage=result.from_stage.value,
		to_stage=result.to_stage.value,
		transition_at=result.transition_at,
		succeeded_count=len(result.succeeded),
		failed_count=len(result.failed),
		warnings=result.warnings,
		crops=[
			CropOutcomeRead(
				crop_id=outcome.crop_id,
				tray_number=outcome.tray_number,
				status=outcome.status,
				error=outcome.error,
			)
			for outcome in result.crops
		],
		record_id=result.record_id,
	)


def _to_watering_response(change: WateringChange) -> WateringResponse:
	return WateringResponse(
		batch_identifier=change.batch_identifier,
		crop_count=change.crop_count,
		changed=change.changed,
		unchanged=change.unchanged,
	)


@router.post("/batches", response_model=CropBatchCreated, status_code=status.HTTP_201_CREATED)
async def create_crop_batch(
	payload: CropBatchCreate,
	workflow: CropWorkflow = Depends(get_workflow),
) -> CropBatchCreated:
	try:
		created = await workflow.lifecycle.create_batch(payload)
	except Exception as exc:
		raise _map_error(exc) from exc
	return CropBatchCreated(
		batch_id=created.batch.id,
		mode=created.mode,
		crops=[CropRead.model_validate(crop) for crop in created.crops],
		tasks_scheduled=len(created.tasks),
	)


@router.get("/{crop_id}/status", response_model=CropStatusResponse)
async def get_crop_status(crop_id: int, workflow: CropWorkflow = Depends(get_workflow)) -> CropStatusResponse:
	try:
		current = await workflow.lifecycle.status(crop_id)
	except Exception as exc:
		raise _map_error(exc) from exc
	return CropStatusResponse(
		crop=CropRead.model_validate(current.crop),
		stage=current.stage.value,
		expected_harvest_at=current.expected_harvest_at,
		days_in_current_stage=current.days_in_current_stage,
		soaking_minutes_remaining=current.soaking_minutes_remaining,
	)


@router.post("/{crop_id}/advance", response_model=TransitionResponse)
async def advance_crop(
	crop_id: int,
	payload: AdvanceRequest | None = None,
	workflow: CropWorkflow = Depends(get_workflow),
) -> TransitionResponse:
	payload = payload or AdvanceRequest()
	try:
		result = await workflow.executor.advance(
			crop_id,
			when=payload.when,
			options=AdvanceOptions(tray_numbers=payload.tray_numbers, actor=payload.actor, reason=payload.reason),
		)
	except Exception as exc:
		raise _map_error(exc) from exc
	return _to_transition_response(result)


@router.post("/{crop_id}/revert", response_model=TransitionResponse)
async def revert_crop(
	crop_id: int,
	payload: RevertRequest | None = None,
	workflow: CropWorkflow = Depends(get_workflow),
) -> TransitionResponse:
	payload = payload or RevertRequest()
	try:
		result = await workflow.executor.revert(crop_id, reason=payload.reason, actor=payload.actor)
	except Exception as exc:
		raise _map_error(exc) from exc
	return _to_transition_response(result)


@router.get("/{crop_id}/tasks", response_model=list[TaskRead])
async def list_crop_tasks(crop_id: int, workflow: CropWorkflow = Depends(get_workflow)) -> list[TaskRead]:
	try:
		tasks = await workflow.lifecycle.list_tasks(crop_id)
	except Exception as exc:
		raise _map_error(exc) from exc
	return [TaskRead.model_validate(task) for task in tasks]


@router.post("/{crop_id}/watering/suspend", response_model=WateringResponse)
async def suspend_watering(
	crop_id: int,
	payload: WateringRequest | None = None,
	workflow: CropWorkflow = Depends(get_workflow),
) -> WateringResponse:
	payload = payload or WateringRequest()
	try:
		change = await workflow.watering.suspend(crop_id, when=payload.when)
	except Exception as exc:
		raise _map_error(exc) from exc
	return _to_watering_response(change)


@router.post("/{crop_id}/watering/resume", response_model=WateringResponse)
async def resume_watering(crop_id: int, workflow: CropWorkflow = Depends(get_workflow)) -> WateringResponse:
	try:
		change = await workflow.watering.resume(crop_id)
	except Exception as exc:
		raise _map_error(exc) from exc
	return _to_watering_response(change)
