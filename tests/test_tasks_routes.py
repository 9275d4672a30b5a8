from __future__ import annotations

import uuid
from datetime import timedelta

import pytest
from httpx import AsyncClient

from app.models.enums import StageCodeEnum


@pytest.mark.asyncio
async def test_dispatch_due_tasks(client: AsyncClient, workflow, farm, clock) -> None:
    recipe = farm.recipe(germination_days=3, blackout_days=0, light_days=5)
    crop = farm.crop(recipe, StageCodeEnum.germination, germination_at=clock.now(), tray_number=1)
    await workflow.scheduler.schedule_all(await workflow.resolver.resolve(crop))
    clock.advance(days=3)

    response = await client.post("/api/v1/tasks/dispatch", json={"limit": 10})

    assert response.status_code == 200
    body = response.json()
    assert (body["due"], body["processed"], body["errors"]) == (1, 1, 0)
    assert body["results"][0]["task_name"] == "advance_to_light"
    assert crop.current_stage_id == farm.stage(StageCodeEnum.light).id


@pytest.mark.asyncio
async def test_dispatch_with_nothing_due(client: AsyncClient) -> None:
    response = await client.post("/api/v1/tasks/dispatch")
    assert response.status_code == 200
    assert response.json()["due"] == 0


@pytest.mark.asyncio
async def test_dispatch_rejects_bad_limit(client: AsyncClient) -> None:
    response = await client.post("/api/v1/tasks/dispatch", json={"limit": 0})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_dispatch_single_task(client: AsyncClient, farm, clock) -> None:
    crop = farm.crop(
        farm.recipe(),
        StageCodeEnum.light,
        tray_number=1,
        germination_at=clock.now() - timedelta(days=3),
        light_at=clock.now(),
    )
    task = farm.task(crop, "advance_to_light", clock.now())

    stale = await client.post(f"/api/v1/tasks/{task.id}/dispatch")
    missing = await client.post(f"/api/v1/tasks/{uuid.uuid4()}/dispatch")

    assert stale.status_code == 200
    assert stale.json()["status"] == "stale"
    assert missing.json()["status"] == "skipped"
