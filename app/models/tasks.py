"""One-shot scheduled task rows consumed by the task dispatcher."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Index, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class TaskSchedule(Base, UUIDPrimaryKeyMixin, TimestampMixin):
	"""Due, cancellable task tied to a crop or batch through ``conditions``."""

	__tablename__ = "task_schedules"
	__table_args__ = (
		Index("ix_task_schedules_due", "resource_type", "is_active", "due_at"),
	)

	name: Mapped[str] = mapped_column(String(255), nullable=False)
	resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
	task_name: Mapped[str] = mapped_column(String(100), nullable=False)
	frequency: Mapped[str] = mapped_column(String(20), nullable=False, default="once", server_default="once")
	conditions: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
	due_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
	is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
	last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

	def __repr__(self) -> str:
		return f"<TaskSchedule id={self.id} task={self.task_name} due={self.due_at} active={self.is_active}>"
