"""Scheduled task dispatch routes (cron-friendly HTTP trigger)."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, status

from app.routes.crops import get_workflow
from app.schemas.tasks import DispatchRequest, DispatchResultRead, DispatchSummaryRead
from app.services.crop_workflow import CropWorkflow
from app.services.task_dispatcher import DispatchResult

router = APIRouter(prefix="/tasks", tags=["tasks"])


def _to_result_read(result: DispatchResult) -> DispatchResultRead:
	return DispatchResultRead(
		task_id=result.task_id,
		task_name=result.task_name,
		status=result.status,
		message=result.message,
	)


@router.post("/dispatch", response_model=DispatchSummaryRead)
async def dispatch_due_tasks(
	payload: DispatchRequest | None = None,
	workflow: CropWorkflow = Depends(get_workflow),
) -> DispatchSummaryRead:
	payload = payload or DispatchRequest()
	try:
		summary = await workflow.dispatcher.run_due(limit=payload.limit)
	except Exception as exc:
		raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="dispatch failure") from exc
	return DispatchSummaryRead(
		due=summary.due,
		processed=summary.processed,
		stale=summary.stale,
		skipped=summary.skipped,
		failed=summary.failed,
		errors=summary.errors,
		results=[_to_result_read(result) for result in summary.results],
	)


@router.post("/{task_id}/dispatch", response_model=DispatchResultRead)
async def dispatch_task(task_id: uuid.UUID, workflow: CropWorkflow = Depends(get_workflow)) -> DispatchResultRead:
	try:
		result = await workflow.dispatcher.process_due(task_id)
	except Exception as exc:
		raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="dispatch failure") from exc
	return _to_result_read(result)
