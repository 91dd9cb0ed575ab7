# tests/rhosocial/activerecord_mysql_testpool_test/test_slot.py
import asyncio

import pytest

from rhosocial.activerecord.backend.impl.mysql_testpool import Slot


@pytest.mark.asyncio
async def test_guard_gives_access_until_released():
    slot = Slot("head")
    guard = await slot.lock_owned()
    assert guard.value == "head"
    assert slot.locked

    guard.release()
    guard.release()
    assert guard.released
    assert not slot.locked
    with pytest.raises(RuntimeError):
        guard.value


@pytest.mark.asyncio
async def test_second_caller_waits_for_release():
    slot = Slot(0)
    first = await slot.lock_owned()
    waiter = asyncio.ensure_future(slot.lock_owned())

    await asyncio.sleep(0.01)
    assert not waiter.done()

    first.release()
    second = await asyncio.wait_for(waiter, 1)
    assert second.value == 0
    second.release()


@pytest.mark.asyncio
async def test_waiters_are_served_in_arrival_order():
    slot = Slot(None)
    order = []

    async def take(label):
        guard = await slot.lock_owned()
        order.append(label)
        await asyncio.sleep(0)
        guard.release()

    holder = await slot.lock_owned()
    tasks = [asyncio.ensure_future(take(label)) for label in ("a", "b", "c")]
    await asyncio.sleep(0.01)
    holder.release()
    await asyncio.gather(*tasks)

    assert order == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_guard_can_be_released_from_another_task():
    slot = Slot("value")
    guard = await slot.lock_owned()

    async def release_later():
        await asyncio.sleep(0.01)
        guard.release()

    releaser = asyncio.ensure_future(release_later())
    again = await asyncio.wait_for(slot.lock_owned(), 1)
    await releaser
    assert again.value == "value"
    again.release()


@pytest.mark.asyncio
async def test_timed_out_waiter_leaves_slot_to_holder():
    slot = Slot("value")
    holder = await slot.lock_owned()

    with pytest.raises(asyncio.TimeoutError):
        await slot.lock_owned(0.01)
    assert slot.locked

    holder.release()
    await asyncio.sleep(0)
    assert not slot.locked
    again = await slot.lock_owned(1)
    again.release()


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_keep_slot():
    slot = Slot("value")
    holder = await slot.lock_owned()
    waiter = asyncio.ensure_future(slot.lock_owned(1))
    await asyncio.sleep(0.01)

    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter
    holder.release()
    for _ in range(3):
        await asyncio.sleep(0)

    assert not slot.locked
