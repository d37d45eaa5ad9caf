from datetime import UTC, datetime, timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError

from src.config import get_settings
from src.services import availability
from src.utils.retry import retry_read


def storage_busy() -> OperationalError:
    return OperationalError("SELECT reservations", {}, Exception("database is locked"))


@pytest.mark.asyncio
async def test_read_recovers_after_transient_error():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise storage_busy()
        return "rows"

    assert await retry_read(flaky, retries=2, delay_seconds=0) == "rows"
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_read_gives_up_after_configured_retries():
    calls = []

    async def broken():
        calls.append(1)
        raise storage_busy()

    with pytest.raises(OperationalError):
        await retry_read(broken, retries=2, delay_seconds=0)
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_other_errors_are_not_retried():
    calls = []

    async def failing():
        calls.append(1)
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        await retry_read(failing, retries=2, delay_seconds=0)
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_availability_check_survives_transient_error(
    client: AsyncClient, customer_headers: dict, vehicle_id: int, monkeypatch
):
    original = availability.evaluate
    calls = []

    async def flaky_evaluate(*args, **kwargs):
        calls.append(1)
        if len(calls) == 1:
            raise storage_busy()
        return await original(*args, **kwargs)

    monkeypatch.setattr(availability, "evaluate", flaky_evaluate)

    start = (datetime.now(UTC) + timedelta(days=3)).replace(microsecond=0)
    response = await client.post(
        "/api/v1/bookings/availability",
        json={
            "vehicle_id": vehicle_id,
            "pickup_time": start.isoformat(),
            "dropoff_time": (start + timedelta(days=1)).isoformat(),
        },
        headers=customer_headers,
    )
    assert response.status_code == 200
    assert response.json()["available"] is True
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_availability_check_fails_once_retries_run_out(
    db_session, vehicle_id: int, monkeypatch
):
    calls = []

    async def broken_evaluate(*args, **kwargs):
        calls.append(1)
        raise storage_busy()

    monkeypatch.setattr(availability, "evaluate", broken_evaluate)

    start = datetime.now(UTC) + timedelta(days=3)
    with pytest.raises(OperationalError):
        await availability.check_availability(
            db_session, vehicle_id, start, start + timedelta(days=1)
        )
    assert len(calls) == get_settings().storage_read_retries + 1
