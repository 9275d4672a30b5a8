"""Crop lifecycle ORM models — stage catalog, recipes, batches, trays, harvests.

A ``Crop`` is one tray.  Its stage timestamps (``soaking_at`` …
``harvested_at``) are each written once, when the tray enters that stage,
and are cleared again only by a revert past that stage.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from app.models.enums import StageCodeEnum


class CropStage(Base):
    """Stage catalog row; only active stages take part in transitions."""

    __tablename__ = "crop_stages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[StageCodeEnum] = mapped_column(
        Enum(
            StageCodeEnum,
            name="stage_code",
            create_constraint=False,
            native_enum=True,
        ),
        unique=True,
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default="true"
    )

    def __repr__(self) -> str:
        return f"<CropStage id={self.id} code={self.code} order={self.sort_order}>"


class Recipe(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Growing recipe: soak hours and per-stage durations in days."""

    __tablename__ = "recipes"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    variety: Mapped[str | None] = mapped_column(String(255), nullable=True)
    seed_soak_hours: Mapped[float] = mapped_column(
        Float, nullable=False, default=0, server_default="0"
    )
    germination_days: Mapped[float] = mapped_column(
        Float, nullable=False, default=0, server_default="0"
    )
    blackout_days: Mapped[float] = mapped_column(
        Float, nullable=False, default=0, server_default="0"
    )
    light_days: Mapped[float] = mapped_column(
        Float, nullable=False, default=0, server_default="0"
    )
    suspend_water_hours: Mapped[float] = mapped_column(
        Float, nullable=False, default=0, server_default="0"
    )

    def __repr__(self) -> str:
        return f"<Recipe id={self.id} name={self.name!r}>"


class CropBatch(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Explicit grouping of trays planted together from one recipe."""

    __tablename__ = "crop_batches"

    recipe_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("recipes.id", ondelete="RESTRICT"),
        nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<CropBatch id={self.id} recipe={self.recipe_id}>"


class Crop(Base, TimestampMixin):
    """A single tray moving through the stage sequence."""

    __tablename__ = "crops"
    __table_args__ = (
        Index("ix_crops_implicit_batch", "recipe_id", "germination_at", "current_stage_id"),
        Index("ix_crops_crop_batch_id", "crop_batch_id"),
        Index(
            "uq_crops_active_tray_number",
            "tray_number",
            unique=True,
            postgresql_where=text("harvested_at IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    crop_batch_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("crop_batches.id", ondelete="SET NULL"),
        nullable=True,
    )
    recipe_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("recipes.id", ondelete="RESTRICT"),
        nullable=False,
    )
    current_stage_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("crop_stages.id"), nullable=False
    )
    tray_number: Mapped[int | None] = mapped_column(Integer, nullable=True)

    soaking_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    germination_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    blackout_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    light_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    harvested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    requires_soaking: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    watering_suspended_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Crop id={self.id} tray={self.tray_number} "
            f"stage={self.current_stage_id}>"
        )


class Harvest(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Recorded harvest for a tray; makes its harvested stage irreversible."""

    __tablename__ = "harvests"

    crop_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("crops.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    harvested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    weight_grams: Mapped[float | None] = mapped_column(Float, nullable=True)

    def __repr__(self) -> str:
        return f"<Harvest id={self.id} crop={self.crop_id}>"
