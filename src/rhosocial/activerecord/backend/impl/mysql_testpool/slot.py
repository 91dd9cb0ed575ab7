# src/rhosocial/activerecord/backend/impl/mysql_testpool/slot.py
"""Single-slot asynchronous lock handing out owned guards.

An ``asyncio.Lock`` on its own ties acquisition and release to one block of
code. The pool needs a guard that can be stored in a handle, moved into a
nested chain link and released later from a different call, so the lock and
the value it protects are wrapped together here.
"""
import asyncio
from typing import Generic, Optional, TypeVar

T = TypeVar('T')


class Slot(Generic[T]):
    """Holds one value that only a single guard may reach at a time."""

    def __init__(self, value: T):
        self._value = value
        self._lock = asyncio.Lock()

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    async def lock_owned(self, timeout: Optional[float] = None) -> 'SlotGuard[T]':
        """Wait for the slot and return a guard owning it.

        Raises ``asyncio.TimeoutError`` when ``timeout`` seconds pass first.
        A lock granted while the waiter is timing out or being cancelled is
        released again.
        """
        if timeout is None:
            await self._lock.acquire()
            return SlotGuard(self)

        acquire = asyncio.ensure_future(self._lock.acquire())
        try:
            done, _ = await asyncio.wait({acquire}, timeout=timeout)
        except BaseException:
            self._abandon(acquire)
            raise
        if not done:
            self._abandon(acquire)
            raise asyncio.TimeoutError()
        acquire.result()
        return SlotGuard(self)

    def _abandon(self, acquire: 'asyncio.Future') -> None:
        # cancel() is refused only once the acquisition has already finished
        if acquire.cancel():
            return
        if not acquire.cancelled() and acquire.exception() is None:
            self._lock.release()


class SlotGuard(Generic[T]):
    """Exclusive, owned access to a :class:`Slot` until :meth:`release`."""

    def __init__(self, slot: Slot[T]):
        self._slot: Optional[Slot[T]] = slot

    @property
    def released(self) -> bool:
        return self._slot is None

    @property
    def slot(self) -> Slot[T]:
        if self._slot is None:
            raise RuntimeError("Slot guard has already been released")
        return self._slot

    @property
    def value(self) -> T:
        return self.slot._value

    def release(self) -> None:
        if self._slot is None:
            return
        slot, self._slot = self._slot, None
        slot._lock.release()

    def __repr__(self) -> str:
        state = "released" if self._slot is None else "held"
        return f"<SlotGuard {state}>"
