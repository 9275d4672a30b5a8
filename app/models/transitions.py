"""Immutable audit trail of stage transitions."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from app.models.enums import TransitionTypeEnum


class StageTransitionRecord(Base, UUIDPrimaryKeyMixin, TimestampMixin):
	"""One row per advance/revert call, with one entry per affected crop."""

	__tablename__ = "crop_stage_transitions"
	__table_args__ = (
		Index("ix_crop_stage_transitions_batch", "batch_identifier", "transition_at"),
	)

	type: Mapped[TransitionTypeEnum] = mapped_column(
		Enum(
			TransitionTypeEnum,
			name="transition_type",
			create_constraint=False,
			native_enum=True,
		),
		nullable=False,
	)
	crop_batch_id: Mapped[uuid.UUID | None] = mapped_column(
		UUID(as_uuid=True),
		ForeignKey("crop_batches.id", ondelete="SET NULL"),
		nullable=True,
	)
	batch_identifier: Mapped[str] = mapped_column(String(255), nullable=False)
	from_stage_id: Mapped[int] = mapped_column(Integer, ForeignKey("crop_stages.id"), nullable=False)
	to_stage_id: Mapped[int] = mapped_column(Integer, ForeignKey("crop_stages.id"), nullable=False)
	transition_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
	recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
	actor: Mapped[str | None] = mapped_column(String(255), nullable=True)
	reason: Mapped[str | None] = mapped_column(Text, nullable=True)
	crop_count: Mapped[int] = mapped_column(Integer, nullable=False)
	succeeded_count: Mapped[int] = mapped_column(Integer, nullable=False)
	failed_count: Mapped[int] = mapped_column(Integer, nullable=False)
	affected_crops: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, nullable=False, default=list)
	failed_crops: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, nullable=False, default=list)
	validation_warnings: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)

	def __repr__(self) -> str:
		return (
			f"<StageTransitionRecord id={self.id} type={self.type} "
			f"batch={self.batch_identifier} crops={self.crop_count}>"
		)
