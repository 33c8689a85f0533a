from __future__ import annotations

import pytest

from app.utils.retry import retry_async


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    async def fake_sleep(delay):
        return None

    monkeypatch.setattr("app.utils.retry.asyncio.sleep", fake_sleep)


@pytest.mark.asyncio
async def test_retries_until_success():
    attempts = []

    async def operation():
        attempts.append(1)
        if len(attempts) < 3:
            raise ConnectionError("flaky")
        return "ok"

    assert await retry_async(operation, max_attempts=3) == "ok"
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_unlisted_errors_are_not_retried():
    attempts = []

    async def operation():
        attempts.append(1)
        raise KeyError("missing")

    with pytest.raises(KeyError):
        await retry_async(operation, retry_on=(ConnectionError,))
    assert len(attempts) == 1
