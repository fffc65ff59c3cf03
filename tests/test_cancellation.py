"""Tests for cancellation tokens and timeouts."""

import asyncio

import pytest

from vaultseek.core.cancellation import CancellationToken, OperationCancelled, run_with_timeout


@pytest.mark.asyncio
async def test_guard_returns_result():
    async def work():
        return 42

    assert await CancellationToken().guard(work()) == 42


@pytest.mark.asyncio
async def test_guard_cancels_underlying_task():
    token = CancellationToken()
    finished = []

    async def slow():
        await asyncio.sleep(5)
        finished.append(True)

    async def cancel_soon():
        await asyncio.sleep(0.01)
        token.cancel("stop")

    asyncio.ensure_future(cancel_soon())
    with pytest.raises(OperationCancelled, match="stop"):
        await token.guard(slow())
    assert finished == []


@pytest.mark.asyncio
async def test_guard_refuses_when_already_cancelled():
    token = CancellationToken()
    token.cancel()

    async def work():
        return 1

    with pytest.raises(OperationCancelled):
        await token.guard(work())


@pytest.mark.asyncio
async def test_run_with_timeout_outcomes():
    async def ok(token):
        return "done"

    async def slow(token):
        await asyncio.sleep(5)

    async def broken(token):
        raise ValueError("bad")

    success = await run_with_timeout(ok, 1.0)
    assert success.ok and success.value == "done"

    timed_out = await run_with_timeout(slow, 0.01, "slow call")
    assert timed_out.timed_out and not timed_out.ok

    failed = await run_with_timeout(broken, 1.0)
    assert isinstance(failed.error, ValueError)
    assert not failed.timed_out
