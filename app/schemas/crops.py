"""Pydantic schemas for crop batch creation, transitions and watering."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field


class CreationMode(StrEnum):
	"""standard: deduct seed per crop; bulk: once for the whole batch. Scheduling runs once either way."""

	standard = "standard"
	bulk = "bulk"


class CropBatchCreate(BaseModel):
	recipe_id: uuid.UUID
	tray_numbers: list[int | None] = Field(min_length=1)
	started_at: AwareDatetime | None = None
	notes: str | None = None
	mode: CreationMode = CreationMode.standard


class CropRead(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	id: int
	crop_batch_id: uuid.UUID | None = None
	recipe_id: uuid.UUID
	current_stage_id: int
	tray_number: int | None = None
	soaking_at: datetime | None = None
	germination_at: datetime | None = None
	blackout_at: datetime | None = None
	light_at: datetime | None = None
	harvested_at: datetime | None = None
	requires_soaking: bool = False
	watering_suspended_at: datetime | None = None


class CropBatchCreated(BaseModel):
	batch_id: uuid.UUID
	mode: CreationMode
	crops: list[CropRead]
	tasks_scheduled: int


class CropStatusResponse(BaseModel):
	crop: CropRead
	stage: str
	expected_harvest_at: datetime | None = None
	days_in_current_stage: float | None = None
	soaking_minutes_remaining: int | None = None


class AdvanceRequest(BaseModel):
	when: AwareDatetime | None = None
	tray_numbers: dict[int, int] | None = None
	actor: str | None = None
	reason: str | None = None


class RevertRequest(BaseModel):
	reason: str | None = None
	actor: str | None = None


class CropOutcomeRead(BaseModel):
	crop_id: int
	tray_number: int | None = None
	status: str
	error: str | None = None


class TransitionResponse(BaseModel):
	type: str
	batch_identifier: str
	from_stage: str
	to_stage: str
	transition_at: datetime
	succeeded_count: int
	failed_count: int
	warnings: list[str]
	crops: list[CropOutcomeRead]
	record_id: uuid.UUID | None = None


class WateringRequest(BaseModel):
	when: AwareDatetime | None = None


class WateringResponse(BaseModel):
	batch_identifier: str
	crop_count: int
	changed: int
	unchanged: int
