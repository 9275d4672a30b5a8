from __future__ import annotations

import uuid
from datetime import timedelta

import pytest

from app.models.enums import StageCodeEnum
from app.services.batch_resolver import BatchKey, BatchResolver
from app.services.errors import CropNotFoundError, NoCropsFoundError


def test_implicit_identifier_parses_back(farm, clock) -> None:
    recipe = farm.recipe()
    crop = farm.crop(recipe, StageCodeEnum.germination, germination_at=clock.now(), tray_number=1)
    key = BatchKey.for_crop(crop)

    assert key.identifier.startswith(f"implicit|{recipe.id}|germination_at|")
    assert BatchKey.parse(key.identifier) == key


def test_explicit_identifier() -> None:
    batch_id = uuid.uuid4()
    key = BatchKey.parse(f"batch|{batch_id}")
    assert key.is_explicit
    assert key.crop_batch_id == batch_id


@pytest.mark.parametrize("identifier", ["", "batch|not-a-uuid", "implicit|x|y", "tray|12"])
def test_invalid_identifier_rejected(identifier: str) -> None:
    with pytest.raises(ValueError, match="Invalid batch identifier format"):
        BatchKey.parse(identifier)


@pytest.mark.asyncio
async def test_explicit_batch_resolves_every_member_in_id_order(store, farm, clock) -> None:
    recipe = farm.recipe()
    crops = farm.batch(recipe, StageCodeEnum.germination, [3, 1, 2], germination_at=clock.now())
    farm.crop(recipe, StageCodeEnum.germination, germination_at=clock.now(), tray_number=9)

    batch = await BatchResolver(store).resolve(crops[2].id)

    assert batch.key.is_explicit
    assert batch.crop_ids == [crop.id for crop in crops]
    assert batch.tray_numbers == [3, 1, 2]


@pytest.mark.asyncio
async def test_implicit_batch_groups_by_recipe_anchor_and_stage(store, farm, clock) -> None:
    recipe = farm.recipe()
    planted = clock.now() - timedelta(days=1)
    first = farm.crop(recipe, StageCodeEnum.germination, germination_at=planted, tray_number=1)
    second = farm.crop(recipe, StageCodeEnum.germination, germination_at=planted, tray_number=2)
    farm.crop(recipe, StageCodeEnum.germination, germination_at=planted - timedelta(hours=3), tray_number=3)
    farm.crop(farm.recipe(), StageCodeEnum.germination, germination_at=planted, tray_number=4)
    farm.batch(recipe, StageCodeEnum.germination, [5], germination_at=planted)

    batch = await BatchResolver(store).resolve(first)

    assert not batch.key.is_explicit
    assert batch.crop_ids == [first.id, second.id]


@pytest.mark.asyncio
async def test_implicit_soaking_batch_anchors_on_soaking_time(store, farm, clock) -> None:
    recipe = farm.recipe(seed_soak_hours=12)
    first = farm.crop(recipe, StageCodeEnum.soaking, soaking_at=clock.now())
    second = farm.crop(recipe, StageCodeEnum.soaking, soaking_at=clock.now())

    batch = await BatchResolver(store).resolve(second)

    assert batch.key.anchor_field == "soaking_at"
    assert batch.crop_ids == [first.id, second.id]


@pytest.mark.asyncio
async def test_resolve_locks_batch_rows(store, farm, clock) -> None:
    crops = farm.batch(farm.recipe(), StageCodeEnum.germination, [1, 2], germination_at=clock.now())
    await BatchResolver(store).resolve(crops[0], lock=True)
    assert store.locked_crop_ids == [crop.id for crop in crops]


@pytest.mark.asyncio
async def test_missing_crop_and_empty_batch(store) -> None:
    resolver = BatchResolver(store)
    with pytest.raises(CropNotFoundError):
        await resolver.resolve(404)
    with pytest.raises(NoCropsFoundError):
        await resolver.resolve(BatchKey(crop_batch_id=uuid.uuid4()))
