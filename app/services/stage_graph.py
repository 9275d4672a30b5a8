"""Stage ordering, legal transitions and stage→timestamp field mapping."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from app.models.crops import Crop, CropStage, Recipe
from app.models.enums import StageCodeEnum
from app.services.errors import StageNotFoundError

if TYPE_CHECKING:
	from app.services.crop_store import CropStore


@dataclass(frozen=True)
class StageRule:
	advance: frozenset[StageCodeEnum]
	revert: frozenset[StageCodeEnum]
	required_fields: tuple[str, ...]


# ── Transition table ────────────────────────────────────────────────────────
STAGE_RULES: dict[StageCodeEnum, StageRule] = {
	StageCodeEnum.soaking: StageRule(
		advance=frozenset({StageCodeEnum.germination}),
		revert=frozenset(),
		required_fields=("soaking_at", "requires_soaking"),
	),
	StageCodeEnum.germination: StageRule(
		advance=frozenset({StageCodeEnum.blackout, StageCodeEnum.light}),
		revert=frozenset({StageCodeEnum.soaking}),
		required_fields=("germination_at",),
	),
	StageCodeEnum.blackout: StageRule(
		advance=frozenset({StageCodeEnum.light}),
		revert=frozenset({StageCodeEnum.germination}),
		required_fields=("germination_at",),
	),
	StageCodeEnum.light: StageRule(
		advance=frozenset({StageCodeEnum.harvested}),
		revert=frozenset({StageCodeEnum.blackout, StageCodeEnum.germination}),
		required_fields=("germination_at",),
	),
	StageCodeEnum.harvested: StageRule(
		advance=frozenset(),
		revert=frozenset({StageCodeEnum.light}),
		required_fields=("light_at",),
	),
}

STAGE_TIMESTAMP_FIELDS: dict[StageCodeEnum, str] = {
	StageCodeEnum.soaking: "soaking_at",
	StageCodeEnum.germination: "germination_at",
	StageCodeEnum.blackout: "blackout_at",
	StageCodeEnum.light: "light_at",
	StageCodeEnum.harvested: "harvested_at",
}


def get_stage_timestamp(crop: Crop, code: StageCodeEnum) -> datetime | None:
	return getattr(crop, STAGE_TIMESTAMP_FIELDS[StageCodeEnum(code)])


def set_stage_timestamp(crop: Crop, code: StageCodeEnum, value: datetime | None) -> None:
	setattr(crop, STAGE_TIMESTAMP_FIELDS[StageCodeEnum(code)], value)


class StageGraph:
	"""Ordered view over the stage catalog.

	Next/previous navigation only considers active stages, ordered by
	``sort_order``.  Lookups by id also resolve inactive stages so that crops
	parked on a retired stage still report a meaningful error.
	"""

	def __init__(self, stages: Iterable[CropStage]):
		all_stages = sorted(stages, key=lambda stage: stage.sort_order)
		self._all = all_stages
		self._active = [stage for stage in all_stages if stage.is_active]
		self._by_id = {stage.id: stage for stage in all_stages}
		self._by_code = {StageCodeEnum(stage.code): stage for stage in self._active}

	@classmethod
	async def load(cls, store: CropStore) -> StageGraph:
		return cls(await store.list_stages())

	@property
	def stages(self) -> list[CropStage]:
		return list(self._active)

	def by_id(self, stage_id: int) -> CropStage:
		stage = self._by_id.get(stage_id)
		if stage is None:
			raise StageNotFoundError(f"Stage {stage_id} not found")
		return stage

	def by_code(self, code: StageCodeEnum | str) -> CropStage:
		try:
			key = StageCodeEnum(code)
		except ValueError as exc:
			raise StageNotFoundError(f"Unknown stage code {code!r}") from exc
		stage = self._by_code.get(key)
		if stage is None:
			raise StageNotFoundError(f"Stage {key} is not active")
		return stage

	@staticmethod
	def code_of(stage: CropStage) -> StageCodeEnum:
		return StageCodeEnum(stage.code)

	def position(self, stage: CropStage) -> int:
		"""Rank of the stage in cultivation order (inactive stages included)."""
		for index, candidate in enumerate(self._all):
			if candidate.id == stage.id:
				return index
		raise StageNotFoundError(f"Stage {stage.id} not found")

	def next_stage(self, stage: CropStage) -> CropStage | None:
		later = [candidate for candidate in self._active if candidate.sort_order > stage.sort_order]
		return later[0] if later else None

	def previous_stage(self, stage: CropStage) -> CropStage | None:
		earlier = [candidate for candidate in self._active if candidate.sort_order < stage.sort_order]
		return earlier[-1] if earlier else None

	def stages_after(self, stage: CropStage) -> list[CropStage]:
		"""Every catalog stage ordered after ``stage``, active or not."""
		return [candidate for candidate in self._all if candidate.sort_order > stage.sort_order]

	def is_forward_legal(self, from_stage: CropStage, to_stage: CropStage) -> bool:
		if not (from_stage.is_active and to_stage.is_active):
			return False
		rule = STAGE_RULES.get(self.code_of(from_stage))
		return rule is not None and self.code_of(to_stage) in rule.advance

	def is_backward_legal(self, from_stage: CropStage, to_stage: CropStage) -> bool:
		if not (from_stage.is_active and to_stage.is_active):
			return False
		rule = STAGE_RULES.get(self.code_of(from_stage))
		return rule is not None and self.code_of(to_stage) in rule.revert

	def required_fields(self, stage: CropStage) -> tuple[str, ...]:
		rule = STAGE_RULES.get(self.code_of(stage))
		return rule.required_fields if rule else ()

	def advance_target(self, stage: CropStage, recipe: Recipe | None) -> CropStage | None:
		"""Next active stage, skipping blackout for recipes without one."""
		candidate = self.next_stage(stage)
		if (
			candidate is not None
			and self.code_of(candidate) == StageCodeEnum.blackout
			and recipe is not None
			and (recipe.blackout_days or 0) <= 0
		):
			candidate = self.next_stage(candidate)
		return candidate

	def revert_target(self, stage: CropStage, crop: Crop) -> CropStage | None:
		code = self.code_of(stage)
		if code == StageCodeEnum.light:
			# A light crop that never entered blackout goes back to germination.
			target_code = StageCodeEnum.germination if crop.blackout_at is None else StageCodeEnum.blackout
			return self._by_code.get(target_code)
		if code == StageCodeEnum.germination:
			if not crop.requires_soaking:
				return None
			return self._by_code.get(StageCodeEnum.soaking)
		candidate = self.previous_stage(stage)
		if candidate is None or not self.is_backward_legal(stage, candidate):
			return None
		return candidate

	def advance_path(self, stage: CropStage, target: CropStage, recipe: Recipe | None) -> list[CropStage]:
		"""Stages entered, in order, when moving from ``stage`` up to ``target``."""
		path: list[CropStage] = []
		current = stage
		while current.id != target.id:
			current = self.advance_target(current, recipe)
			if current is None or current.sort_order > target.sort_order:
				raise ValueError(
					f"Stage {self.code_of(target)} is not reachable from {self.code_of(stage)}"
				)
			path.append(current)
		return path

	def remaining_path(self, stage: CropStage, recipe: Recipe | None) -> list[CropStage]:
		path: list[CropStage] = []
		current = self.advance_target(stage, recipe)
		while current is not None:
			path.append(current)
			current = self.advance_target(current, recipe)
		return path
