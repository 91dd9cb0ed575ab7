# src/rhosocial/activerecord/backend/impl/mysql_testpool/chain.py
"""Chain of nested transactions on one connection.

Each :class:`ChainLink` owns a transaction together with the parent it was
begun from. The parent is either the raw connection (:class:`RootConnection`)
or an owned guard on the previous link (:class:`ChildCheckout`). Holding the
guard inside the link keeps the previous link exclusively reserved for as
long as the new one exists.

A link is always finished in the same order: its transaction is committed or
rolled back first, and only then is the parent released. Releasing a child
parent hands the slot back; releasing a root parent closes the connection.
"""
import logging
from typing import Union

from rhosocial.activerecord.backend.errors import TransactionError

from .slot import SlotGuard
from .transaction import AsyncMySQLTransaction


class RootConnection:
    """A driver connection that is not inside any transaction yet."""

    def __init__(self, connection, logger=None):
        self.connection = connection
        self.logger = logger or logging.getLogger(__name__)

    async def begin(self) -> AsyncMySQLTransaction:
        return await AsyncMySQLTransaction.start(self.connection, 0, logger=self.logger)

    async def release(self) -> None:
        await self.connection.close()
        self.logger.debug("Closed root connection")


class ChildCheckout:
    """Sole ownership of a previous chain link, through its slot guard."""

    def __init__(self, guard: 'SlotGuard[ChainLink]'):
        self.guard = guard

    @property
    def link(self) -> 'ChainLink':
        return self.guard.value

    async def begin(self) -> AsyncMySQLTransaction:
        return await self.link.transaction.begin()

    async def release(self) -> None:
        self.guard.release()


ParentReference = Union[RootConnection, ChildCheckout]


class ChainLink:
    """A transaction plus the parent it was begun from."""

    __slots__ = ('_transaction', '_parent', '_finished')

    def __init__(self, transaction: AsyncMySQLTransaction, parent: ParentReference):
        transaction.pin()
        self._transaction = transaction
        self._parent = parent
        self._finished = False

    @classmethod
    async def begin(cls, parent: ParentReference) -> 'ChainLink':
        """Begin a transaction against ``parent`` and take ownership of it.

        The parent is consumed either way: if beginning fails it is released
        and the error propagates.
        """
        try:
            transaction = await parent.begin()
        except BaseException:
            await parent.release()
            raise
        return cls(transaction, parent)

    @property
    def transaction(self) -> AsyncMySQLTransaction:
        if self._finished:
            raise TransactionError("Chain link has already been finished")
        return self._transaction

    @property
    def parent(self) -> ParentReference:
        return self._parent

    @property
    def depth(self) -> int:
        return self._transaction.depth

    @property
    def finished(self) -> bool:
        return self._finished

    def _mark_finished(self) -> None:
        if self._finished:
            raise TransactionError("Chain link has already been finished")
        self._finished = True

    async def commit(self) -> None:
        """Commit the transaction, then release the parent.

        Transactions still open below this one are rolled back first. The
        outer transaction of a root link is never committed.
        """
        if isinstance(self._parent, RootConnection):
            raise TransactionError("The outer transaction of a root chain link cannot be committed")
        self._mark_finished()
        try:
            await self._transaction.rollback_nested()
            await self._transaction._commit()
        except BaseException:
            if self._transaction.is_active:
                await self._transaction._close()
            raise
        finally:
            await self._parent.release()

    async def close(self) -> None:
        """Roll back the transaction unless already finished, then release the parent."""
        if self._finished:
            return
        self._finished = True
        try:
            await self._transaction._close()
        finally:
            await self._parent.release()

    def __repr__(self) -> str:
        kind = "root" if isinstance(self._parent, RootConnection) else "child"
        return f"<ChainLink depth={self._transaction.depth} parent={kind} finished={self._finished}>"
