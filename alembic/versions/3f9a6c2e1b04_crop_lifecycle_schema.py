"""crop_lifecycle_schema

Revision ID: 3f9a6c2e1b04
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the stage catalog (seeded with the five cultivation stages),
recipes, crop batches, crops, harvests, task schedules and the stage
transition audit table.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "3f9a6c2e1b04"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ENUM_STAGE_CODE = postgresql.ENUM(
	"soaking",
	"germination",
	"blackout",
	"light",
	"harvested",
	name="stage_code",
	create_type=False,
)
ENUM_TRANSITION_TYPE = postgresql.ENUM(
	"advance",
	"revert",
	"bulk_advance",
	"bulk_revert",
	name="transition_type",
	create_type=False,
)

STAGE_SEED = [
	{"id": 1, "code": "soaking", "name": "Soaking", "sort_order": 1, "is_active": True},
	{"id": 2, "code": "germination", "name": "Germination", "sort_order": 2, "is_active": True},
	{"id": 3, "code": "blackout", "name": "Blackout", "sort_order": 3, "is_active": True},
	{"id": 4, "code": "light", "name": "Light", "sort_order": 4, "is_active": True},
	{"id": 5, "code": "harvested", "name": "Harvested", "sort_order": 5, "is_active": True},
]


def _timestamps() -> list[sa.Column]:
	return [
		sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
		sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
	]


def _uuid_pk() -> sa.Column:
	return sa.Column(
		"id",
		postgresql.UUID(as_uuid=True),
		server_default=sa.text("uuid_generate_v4()"),
		nullable=False,
	)


def upgrade() -> None:
	op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')
	ENUM_STAGE_CODE.create(op.get_bind(), checkfirst=True)
	ENUM_TRANSITION_TYPE.create(op.get_bind(), checkfirst=True)

	stages = op.create_table(
		"crop_stages",
		sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
		sa.Column("code", ENUM_STAGE_CODE, nullable=False),
		sa.Column("name", sa.String(length=100), nullable=False),
		sa.Column("sort_order", sa.Integer(), nullable=False),
		sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
		sa.PrimaryKeyConstraint("id"),
		sa.UniqueConstraint("code"),
	)
	op.bulk_insert(stages, STAGE_SEED)
	op.execute("SELECT setval(pg_get_serial_sequence('crop_stages', 'id'), 5)")

	op.create_table(
		"recipes",
		_uuid_pk(),
		sa.Column("name", sa.String(length=255), nullable=False),
		sa.Column("variety", sa.String(length=255), nullable=True),
		sa.Column("seed_soak_hours", sa.Float(), server_default="0", nullable=False),
		sa.Column("germination_days", sa.Float(), server_default="0", nullable=False),
		sa.Column("blackout_days", sa.Float(), server_default="0", nullable=False),
		sa.Column("light_days", sa.Float(), server_default="0", nullable=False),
		sa.Column("suspend_water_hours", sa.Float(), server_default="0", nullable=False),
		*_timestamps(),
		sa.PrimaryKeyConstraint("id"),
	)

	op.create_table(
		"crop_batches",
		_uuid_pk(),
		sa.Column("recipe_id", postgresql.UUID(as_uuid=True), nullable=False),
		sa.Column("notes", sa.Text(), nullable=True),
		*_timestamps(),
		sa.ForeignKeyConstraint(["recipe_id"], ["recipes.id"], ondelete="RESTRICT"),
		sa.PrimaryKeyConstraint("id"),
	)

	op.create_table(
		"crops",
		sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
		sa.Column("crop_batch_id", postgresql.UUID(as_uuid=True), nullable=True),
		sa.Column("recipe_id", postgresql.UUID(as_uuid=True), nullable=False),
		sa.Column("current_stage_id", sa.Integer(), nullable=False),
		sa.Column("tray_number", sa.Integer(), nullable=True),
		sa.Column("soaking_at", sa.DateTime(timezone=True), nullable=True),
		sa.Column("germination_at", sa.DateTime(timezone=True), nullable=True),
		sa.Column("blackout_at", sa.DateTime(timezone=True), nullable=True),
		sa.Column("light_at", sa.DateTime(timezone=True), nullable=True),
		sa.Column("harvested_at", sa.DateTime(timezone=True), nullable=True),
		sa.Column("requires_soaking", sa.Boolean(), server_default=sa.text("false"), nullable=False),
		sa.Column("watering_suspended_at", sa.DateTime(timezone=True), nullable=True),
		sa.Column("notes", sa.Text(), nullable=True),
		*_timestamps(),
		sa.ForeignKeyConstraint(["crop_batch_id"], ["crop_batches.id"], ondelete="SET NULL"),
		sa.ForeignKeyConstraint(["recipe_id"], ["recipes.id"], ondelete="RESTRICT"),
		sa.ForeignKeyConstraint(["current_stage_id"], ["crop_stages.id"]),
		sa.PrimaryKeyConstraint("id"),
	)
	op.create_index("ix_crops_implicit_batch", "crops", ["recipe_id", "germination_at", "current_stage_id"])
	op.create_index("ix_crops_crop_batch_id", "crops", ["crop_batch_id"])
	op.create_index(
		"uq_crops_active_tray_number",
		"crops",
		["tray_number"],
		unique=True,
		postgresql_where=sa.text("harvested_at IS NULL"),
	)

	op.create_table(
		"harvests",
		_uuid_pk(),
		sa.Column("crop_id", sa.BigInteger(), nullable=False),
		sa.Column("harvested_at", sa.DateTime(timezone=True), nullable=False),
		sa.Column("weight_grams", sa.Float(), nullable=True),
		*_timestamps(),
		sa.ForeignKeyConstraint(["crop_id"], ["crops.id"], ondelete="CASCADE"),
		sa.PrimaryKeyConstraint("id"),
	)
	op.create_index("ix_harvests_crop_id", "harvests", ["crop_id"])

	op.create_table(
		"task_schedules",
		_uuid_pk(),
		sa.Column("name", sa.String(length=255), nullable=False),
		sa.Column("resource_type", sa.String(length=50), nullable=False),
		sa.Column("task_name", sa.String(length=100), nullable=False),
		sa.Column("frequency", sa.String(length=20), server_default="once", nullable=False),
		sa.Column("conditions", postgresql.JSONB(), nullable=False),
		sa.Column("due_at", sa.DateTime(timezone=True), nullable=False),
		sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
		sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
		*_timestamps(),
		sa.PrimaryKeyConstraint("id"),
	)
	op.create_index("ix_task_schedules_due", "task_schedules", ["resource_type", "is_active", "due_at"])

	op.create_table(
		"crop_stage_transitions",
		_uuid_pk(),
		sa.Column("type", ENUM_TRANSITION_TYPE, nullable=False),
		sa.Column("crop_batch_id", postgresql.UUID(as_uuid=True), nullable=True),
		sa.Column("batch_identifier", sa.String(length=255), nullable=False),
		sa.Column("from_stage_id", sa.Integer(), nullable=False),
		sa.Column("to_stage_id", sa.Integer(), nullable=False),
		sa.Column("transition_at", sa.DateTime(timezone=True), nullable=False),
		sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
		sa.Column("actor", sa.String(length=255), nullable=True),
		sa.Column("reason", sa.Text(), nullable=True),
		sa.Column("crop_count", sa.Integer(), nullable=False),
		sa.Column("succeeded_count", sa.Integer(), nullable=False),
		sa.Column("failed_count", sa.Integer(), nullable=False),
		sa.Column("affected_crops", postgresql.JSONB(), nullable=False),
		sa.Column("failed_crops", postgresql.JSONB(), nullable=False),
		sa.Column("validation_warnings", postgresql.JSONB(), nullable=False),
		*_timestamps(),
		sa.ForeignKeyConstraint(["crop_batch_id"], ["crop_batches.id"], ondelete="SET NULL"),
		sa.ForeignKeyConstraint(["from_stage_id"], ["crop_stages.id"]),
		sa.ForeignKeyConstraint(["to_stage_id"], ["crop_stages.id"]),
		sa.PrimaryKeyConstraint("id"),
	)
	op.create_index(
		"ix_crop_stage_transitions_batch",
		"crop_stage_transitions",
		["batch_identifier", "transition_at"],
	)


def downgrade() -> None:
	op.drop_index("ix_crop_stage_transitions_batch", table_name="crop_stage_transitions")
	op.drop_table("crop_stage_transitions")
	op.drop_index("ix_task_schedules_due", table_name="task_schedules")
	op.drop_table("task_schedules")
	op.drop_index("ix_harvests_crop_id", table_name="harvests")
	op.drop_table("harvests")
	op.drop_index("uq_crops_active_tray_number", table_name="crops")
	op.drop_index("ix_crops_crop_batch_id", table_name="crops")
	op.drop_index("ix_crops_implicit_batch", table_name="crops")
	op.drop_table("crops")
	op.drop_table("crop_batches")
	op.drop_table("recipes")
	op.drop_table("crop_stages")
	ENUM_TRANSITION_TYPE.drop(op.get_bind(), checkfirst=True)
	ENUM_STAGE_CODE.drop(op.get_bind(), checkfirst=True)
