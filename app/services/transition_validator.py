"""Pure validation of stage transitions; never touches storage."""

from __future__ import annotations

from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from app.models.crops import Crop, CropStage, Recipe
from app.models.enums import StageCodeEnum
from app.models.tasks import TaskSchedule
from app.services.errors import TransitionValidationError
from app.services.stage_graph import STAGE_TIMESTAMP_FIELDS, StageGraph, get_stage_timestamp

TIMING_SPREAD_WARNING_HOURS = 1.0


@dataclass
class ValidationReport:
	errors: list[str] = field(default_factory=list)
	warnings: list[str] = field(default_factory=list)
	details: dict[str, Any] = field(default_factory=dict)

	@property
	def valid(self) -> bool:
		return not self.errors

	def merge(self, other: ValidationReport) -> ValidationReport:
		for message in other.errors:
			if message not in self.errors:
				self.errors.append(message)
		for message in other.warnings:
			if message not in self.warnings:
				self.warnings.append(message)
		self.details.update(other.details)
		return self

	def raise_for_errors(self) -> None:
		if self.errors:
			raise TransitionValidationError(self.errors, self.details)


def expected_stage_hours(code: StageCodeEnum, recipe: Recipe | None) -> float | None:
	"""Recipe duration of a stage in hours, or None when the recipe sets none."""
	if recipe is None:
		return None
	if code == StageCodeEnum.soaking:
		hours = recipe.seed_soak_hours
	elif code == StageCodeEnum.germination:
		hours = (recipe.germination_days or 0) * 24
	elif code == StageCodeEnum.blackout:
		hours = (recipe.blackout_days or 0) * 24
	elif code == StageCodeEnum.light:
		hours = (recipe.light_days or 0) * 24
	else:
		return None
	if not hours or hours <= 0:
		return None
	return float(hours)


class TransitionValidator:
	def __init__(
		self,
		graph: StageGraph,
		*,
		minimum_ratio: float = 0.9,
		early_warning_ratio: float = 0.75,
	):
		self.graph = graph
		self.minimum_ratio = minimum_ratio
		self.early_warning_ratio = early_warning_ratio

	def can_advance(
		self,
		crop: Crop,
		target: CropStage,
		when: datetime,
		recipe: Recipe | None,
		*,
		now: datetime,
		enforce_minimum_duration: bool = True,
	) -> ValidationReport:
		report = ValidationReport()
		current = self.graph.by_id(crop.current_stage_id)
		current_code = self.graph.code_of(current)
		target_code = self.graph.code_of(target)

		if not self.graph.is_forward_legal(current, target):
			report.errors.append(f"Cannot advance from {current_code} to {target_code}")

		missing = [name for name in self.graph.required_fields(current) if not getattr(crop, name)]
		if missing:
			report.errors.append(f"Missing required fields for {current_code}: {', '.join(missing)}")

		entered_at = get_stage_timestamp(crop, current_code)
		expected = expected_stage_hours(current_code, recipe)
		if entered_at is not None and expected is not None:
			elapsed = (when - entered_at).total_seconds() / 3600
			minimum = expected * self.minimum_ratio
			if enforce_minimum_duration and elapsed < minimum:
				report.errors.append(
					f"Minimum {current_code} duration not met: "
					f"{elapsed:.1f}h elapsed, {minimum:.1f}h required"
				)
			elif elapsed < expected * self.early_warning_ratio:
				report.warnings.append(
					f"Advancing early: {elapsed:.1f}h of {expected:.1f}h expected in {current_code}"
				)

		report.errors.extend(self._sequence_errors(crop, target, when))

		blackout_days = (recipe.blackout_days or 0) if recipe is not None else 0
		if recipe is not None:
			if target_code == StageCodeEnum.blackout and blackout_days <= 0:
				report.errors.append("Recipe has no blackout period; cannot enter blackout")
			if (
				current_code == StageCodeEnum.germination
				and target_code == StageCodeEnum.light
				and blackout_days > 0
			):
				report.errors.append("Recipe requires blackout before light")

		if when > now:
			report.errors.append("Transition time cannot be in the future")

		if crop.watering_suspended_at is not None:
			report.warnings.append("Watering is suspended for this crop")
		return report

	def _sequence_errors(self, crop: Crop, target: CropStage, when: datetime) -> list[str]:
		errors: list[str] = []
		for stage in self.graph.stages:
			if stage.id == target.id:
				continue
			code = self.graph.code_of(stage)
			stamped = get_stage_timestamp(crop, code)
			if stamped is None:
				continue
			if stage.sort_order < target.sort_order and when < stamped:
				errors.append(
					f"Transition time {when.isoformat()} is before {STAGE_TIMESTAMP_FIELDS[code]} "
					f"{stamped.isoformat()}"
				)
			elif stage.sort_order > target.sort_order and when > stamped:
				errors.append(
					f"Transition time {when.isoformat()} is after {STAGE_TIMESTAMP_FIELDS[code]} "
					f"{stamped.isoformat()}"
				)
		return errors

	def can_revert(
		self,
		crop: Crop,
		target: CropStage | None,
		*,
		has_harvest_records: bool,
		active_tasks: Sequence[TaskSchedule] = (),
	) -> ValidationReport:
		report = ValidationReport()
		current = self.graph.by_id(crop.current_stage_id)
		current_code = self.graph.code_of(current)
		expected_target = self.graph.revert_target(current, crop)

		if (
			target is None
			or expected_target is None
			or target.id != expected_target.id
			or not self.graph.is_backward_legal(current, target)
		):
			destination = self.graph.code_of(target) if target is not None else "previous stage"
			report.errors.append(f"Cannot revert from {current_code} to {destination}")

		if current_code == StageCodeEnum.harvested and has_harvest_records:
			report.errors.append("Cannot revert crops with harvest records")

		critical = [task for task in active_tasks if "critical" in (task.task_name or "").lower()]
		if critical:
			names = ", ".join(sorted({task.task_name for task in critical}))
			report.errors.append(f"Cannot revert while critical tasks are pending: {names}")

		if get_stage_timestamp(crop, current_code) is not None:
			report.warnings.append(f"Will clear {STAGE_TIMESTAMP_FIELDS[current_code]} timestamp")
		if active_tasks:
			report.warnings.append(f"{len(active_tasks)} active task schedules will be affected")
		return report

	def validate_batch_consistency(self, crops: Sequence[Crop]) -> ValidationReport:
		report = ValidationReport()
		if not crops:
			report.errors.append("Batch has no crops")
			return report

		stage_counts = Counter(crop.current_stage_id for crop in crops)
		if len(stage_counts) > 1:
			report.errors.append(f"Batch has crops in {len(stage_counts)} different stages")
			report.details["stage_mismatch"] = {str(key): count for key, count in stage_counts.items()}

		recipe_counts = Counter(str(crop.recipe_id) for crop in crops)
		if len(recipe_counts) > 1:
			report.errors.append(f"Batch has crops from {len(recipe_counts)} different recipes")
			report.details["recipe_mismatch"] = dict(recipe_counts)

		suspended = sum(1 for crop in crops if crop.watering_suspended_at is not None)
		if 0 < suspended < len(crops):
			report.warnings.append(f"{suspended} of {len(crops)} crops have watering suspended")
			report.details["watering_suspended"] = suspended

		for name in ("soaking_at", "germination_at"):
			stamps = [getattr(crop, name) for crop in crops if getattr(crop, name) is not None]
			if len(stamps) < 2:
				continue
			spread = (max(stamps) - min(stamps)).total_seconds() / 3600
			if spread > TIMING_SPREAD_WARNING_HOURS:
				report.warnings.append(f"{name} differs by {spread:.1f}h across batch")
				report.details[f"{name}_spread_hours"] = round(spread, 2)
		return report

	def validate_tray_assignment(
		self,
		crops: Sequence[Crop],
		tray_numbers: Mapping[int, int | None],
		trays_in_use: Mapping[int, int],
	) -> ValidationReport:
		"""Every crop needs a distinct tray that no other growing crop occupies."""
		report = ValidationReport()
		per_crop: dict[str, list[str]] = {}

		def reject(crop_id: int, message: str) -> None:
			report.errors.append(message)
			per_crop.setdefault(str(crop_id), []).append(message)

		assigned = {crop.id: tray_numbers.get(crop.id) for crop in crops}
		for crop_id, tray in assigned.items():
			if tray is None:
				reject(crop_id, f"Crop {crop_id} has no tray number")

		counts = Counter(tray for tray in assigned.values() if tray is not None)
		for crop_id, tray in assigned.items():
			if tray is None:
				continue
			if counts[tray] > 1:
				reject(crop_id, f"Tray {tray} is assigned to more than one crop in this batch")
			owner = trays_in_use.get(tray)
			if owner is not None and owner != crop_id:
				reject(crop_id, f"Tray {tray} is already in use by crop {owner}")

		if per_crop:
			report.errors = list(dict.fromkeys(report.errors))
			report.details["crops"] = per_crop
		return report
