from __future__ import annotations

import uuid
from datetime import timedelta

import pytest
from httpx import AsyncClient

from app.models.enums import StageCodeEnum


@pytest.mark.asyncio
async def test_create_batch(client: AsyncClient, farm) -> None:
    recipe = farm.recipe(seed_soak_hours=12)

    response = await client.post(
        "/api/v1/crops/batches",
        json={"recipe_id": str(recipe.id), "tray_numbers": [1, 2], "mode": "bulk"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["mode"] == "bulk"
    assert [crop["tray_number"] for crop in body["crops"]] == [1, 2]
    assert body["tasks_scheduled"] == 4


@pytest.mark.asyncio
async def test_create_batch_validation(client: AsyncClient, farm) -> None:
    recipe = farm.recipe()

    missing_tray = await client.post(
        "/api/v1/crops/batches",
        json={"recipe_id": str(recipe.id), "tray_numbers": [None]},
    )
    unknown_recipe = await client.post(
        "/api/v1/crops/batches",
        json={"recipe_id": str(uuid.uuid4()), "tray_numbers": [1]},
    )
    empty = await client.post("/api/v1/crops/batches", json={"recipe_id": str(recipe.id), "tray_numbers": []})

    assert missing_tray.status_code == 422
    assert missing_tray.json()["detail"]["errors"] == ["Every crop entering germination needs a tray number"]
    assert unknown_recipe.status_code == 404
    assert empty.status_code == 422


@pytest.mark.asyncio
async def test_advance_and_revert(client: AsyncClient, farm, clock) -> None:
    recipe = farm.recipe()
    crops = farm.batch(recipe, StageCodeEnum.germination, [1, 2], germination_at=clock.now() - timedelta(days=3))

    advanced = await client.post(f"/api/v1/crops/{crops[0].id}/advance", json={"actor": "grower"})
    assert advanced.status_code == 200
    body = advanced.json()
    assert body["type"] == "bulk_advance"
    assert (body["from_stage"], body["to_stage"]) == ("germination", "light")
    assert body["succeeded_count"] == 2
    assert [crop["status"] for crop in body["crops"]] == ["advanced", "advanced"]

    reverted = await client.post(f"/api/v1/crops/{crops[1].id}/revert", json={"reason": "mislabelled"})
    assert reverted.status_code == 200
    assert reverted.json()["to_stage"] == "germination"


@pytest.mark.asyncio
async def test_advance_tray_conflict_returns_details(client: AsyncClient, farm, clock) -> None:
    recipe = farm.recipe(seed_soak_hours=12)
    crops = farm.batch(recipe, StageCodeEnum.soaking, [5, 6], soaking_at=clock.now() - timedelta(hours=12))
    holder = farm.crop(recipe, StageCodeEnum.germination, germination_at=clock.now(), tray_number=6)

    response = await client.post(f"/api/v1/crops/{crops[0].id}/advance")

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["errors"] == [f"Tray 6 is already in use by crop {holder.id}"]
    assert str(crops[1].id) in detail["details"]["crops"]


@pytest.mark.asyncio
async def test_unknown_crop_is_404(client: AsyncClient) -> None:
    assert (await client.post("/api/v1/crops/404/advance")).status_code == 404
    assert (await client.post("/api/v1/crops/404/revert")).status_code == 404
    assert (await client.get("/api/v1/crops/404/status")).status_code == 404


@pytest.mark.asyncio
async def test_status_and_tasks(client: AsyncClient, workflow, farm, clock) -> None:
    recipe = farm.recipe(germination_days=3, blackout_days=0, light_days=5)
    crop = farm.crop(recipe, StageCodeEnum.germination, germination_at=clock.now() - timedelta(days=1), tray_number=3)
    await workflow.scheduler.schedule_all(await workflow.resolver.resolve(crop))

    status_response = await client.get(f"/api/v1/crops/{crop.id}/status")
    tasks_response = await client.get(f"/api/v1/crops/{crop.id}/tasks")

    assert status_response.status_code == 200
    status_body = status_response.json()
    assert status_body["stage"] == "germination"
    assert status_body["days_in_current_stage"] == 1.0
    assert status_body["crop"]["tray_number"] == 3
    assert tasks_response.status_code == 200
    assert [task["task_name"] for task in tasks_response.json()] == ["advance_to_light", "advance_to_harvested"]


@pytest.mark.asyncio
async def test_watering_routes(client: AsyncClient, farm, clock) -> None:
    crops = farm.batch(farm.recipe(), StageCodeEnum.light, [1, 2], germination_at=clock.now() - timedelta(days=4))

    suspended = await client.post(f"/api/v1/crops/{crops[0].id}/watering/suspend")
    again = await client.post(f"/api/v1/crops/{crops[0].id}/watering/suspend")
    resumed = await client.post(f"/api/v1/crops/{crops[0].id}/watering/resume")

    assert suspended.json()["changed"] == 2
    assert again.json()["unchanged"] == 2
    assert resumed.json()["changed"] == 2


@pytest.mark.asyncio
async def test_openapi_contract_contains_lifecycle_routes(client: AsyncClient) -> None:
    response = await client.get("/openapi.json")
    assert response.status_code == 200
    paths = response.json()["paths"]
    for path in (
        "/api/v1/crops/batches",
        "/api/v1/crops/{crop_id}/advance",
        "/api/v1/crops/{crop_id}/revert",
        "/api/v1/crops/{crop_id}/status",
        "/api/v1/crops/{crop_id}/tasks",
        "/api/v1/crops/{crop_id}/watering/suspend",
        "/api/v1/crops/{crop_id}/watering/resume",
        "/api/v1/tasks/dispatch",
        "/api/v1/tasks/{task_id}/dispatch",
    ):
        assert path in paths


@pytest.mark.asyncio
async def test_naive_timestamps_are_rejected(client: AsyncClient, farm, clock) -> None:
    recipe = farm.recipe()
    crop = farm.crop(recipe, StageCodeEnum.germination, tray_number=1, germination_at=clock.now() - timedelta(days=3))

    advance = await client.post(f"/api/v1/crops/{crop.id}/advance", json={"when": "2026-03-02T07:00:00"})
    create = await client.post(
        "/api/v1/crops/batches",
        json={"recipe_id": str(recipe.id), "tray_numbers": [2], "started_at": "2026-03-02T07:00:00"},
    )
    suspend = await client.post(f"/api/v1/crops/{crop.id}/watering/suspend", json={"when": "2026-03-02T07:00:00"})

    assert [advance.status_code, create.status_code, suspend.status_code] == [422, 422, 422]
    assert crop.current_stage_id == farm.stage(StageCodeEnum.germination).id
