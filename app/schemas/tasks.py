"""Pydantic schemas for scheduled crop tasks and dispatch runs."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TaskRead(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	id: uuid.UUID
	name: str
	task_name: str
	due_at: datetime
	is_active: bool
	last_run_at: datetime | None = None
	conditions: dict[str, Any]


class DispatchRequest(BaseModel):
	limit: int | None = Field(default=None, ge=1)


class DispatchResultRead(BaseModel):
	task_id: uuid.UUID
	task_name: str | None = None
	status: str
	message: str


class DispatchSummaryRead(BaseModel):
	due: int
	processed: int
	stale: int
	skipped: int
	failed: int
	errors: int
	results: list[DispatchResultRead]
