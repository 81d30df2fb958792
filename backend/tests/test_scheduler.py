import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from autoreply.services import scheduler as scheduler_module
from autoreply.services.scheduler import SchedulerService
from autoreply.settings import get_settings


@pytest.fixture
async def service(store):
    engine = create_async_engine("sqlite+aiosqlite://")
    svc = SchedulerService()
    svc.configure(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False), store)
    yield svc
    svc.stop()
    await engine.dispose()


async def test_slot_dispatches_opted_in_businesses(service, seed, monkeypatch):
    calls = []

    async def fake_run(business_id, user_id, slot_id, trigger_type, **kwargs):
        calls.append((business_id, slot_id, trigger_type))

    monkeypatch.setattr(scheduler_module, "run_business_automation", fake_run)
    monkeypatch.setattr(get_settings(), "celery_enabled", False)
    in_slot = seed.business(slot="slot_1")
    seed.business(slot="slot_2")
    seed.business(slot="slot_1", auto_sync=False)

    result = await service.run_slot("slot_1")

    assert calls == [(in_slot, "slot_1", "scheduled")]
    assert result == {"slot_id": "slot_1", "dispatched": 1, "failed": []}


async def test_one_failing_business_does_not_stop_the_slot(service, seed, monkeypatch):
    first = seed.business()
    second = seed.business()
    done = []

    async def fake_run(business_id, user_id, slot_id, trigger_type, **kwargs):
        if business_id == first:
            raise RuntimeError("worker unavailable")
        done.append(business_id)

    monkeypatch.setattr(scheduler_module, "run_business_automation", fake_run)
    monkeypatch.setattr(get_settings(), "celery_enabled", False)

    result = await service.run_slot("slot_1")

    assert done == [second]
    assert result["dispatched"] == 1
    assert result["failed"] == [{"business_id": first, "error": "worker unavailable"}]


async def test_unknown_slot(service):
    with pytest.raises(ValueError):
        await service.run_slot("slot_9")


async def test_start_registers_one_job_per_slot(service, monkeypatch):
    monkeypatch.setattr(get_settings(), "scheduler_enabled", True)

    service.start()

    assert service.is_running()
    jobs = {job["id"]: job for job in service.get_jobs()}
    assert set(jobs) == {"automation_slot_1", "automation_slot_2"}
    assert jobs["automation_slot_1"]["next_run"] is not None


async def test_disabled_scheduler_does_not_start(service, monkeypatch):
    monkeypatch.setattr(get_settings(), "scheduler_enabled", False)

    service.start()

    assert not service.is_running()
    assert service.get_jobs() == []


async def test_run_now(service, seed, monkeypatch):
    calls = []

    async def fake_run(business_id, user_id, slot_id, trigger_type, **kwargs):
        calls.append(slot_id)

    monkeypatch.setattr(scheduler_module, "run_business_automation", fake_run)
    monkeypatch.setattr(get_settings(), "celery_enabled", False)
    monkeypatch.setattr(get_settings(), "scheduler_enabled", True)
    seed.business(slot="slot_2")
    service.start()

    result = await service.run_now("automation_slot_2")

    assert result["ok"] is True
    assert calls == ["slot_2"]
    assert "error" in await service.run_now("missing")
