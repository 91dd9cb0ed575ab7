# src/rhosocial/activerecord/backend/impl/mysql_testpool/pool.py
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from mysql.connector.errors import Error as MySQLError

from rhosocial.activerecord.backend.errors import ConnectionError

from .chain import ChainLink, ChildCheckout, RootConnection
from .config import CHECKOUT_TIMEOUT, MySQLTestPoolConfig, load_config
from .errors import CheckoutTimeoutError, PoolClosedError
from .slot import Slot, SlotGuard
from .transaction import AsyncMySQLTransaction, ExecutionResult


async def open_connection(config: MySQLTestPoolConfig):
    """Open one async MySQL connection described by ``config``."""
    from mysql.connector.aio import connect

    try:
        return await connect(**config.to_connection_args())
    except MySQLError as e:
        raise ConnectionError(f"Failed to connect to MySQL at {config.to_url()}: {e}") from e


class _PoolState:
    """State shared by every clone of one pool."""

    def __init__(self, head: ChainLink, checkout_timeout: float):
        self.slot: Slot[ChainLink] = Slot(head)
        self.checkout_timeout = checkout_timeout
        self.closed = False


class IsolatedPool:
    """Connection pool for tests that never persists anything.

    The pool owns one connection kept inside an outer transaction that is
    never committed. :meth:`acquire` hands out the current innermost
    transaction for direct use; :meth:`begin` opens a savepoint below it that
    the code under test may commit or roll back like a real transaction.
    Only one handle exists at a time. Closing the pool rolls back the outer
    transaction, which discards every change made through it.

    Usage::

        pool = await IsolatedPool.connect(config)
        async with await pool.acquire() as checkout:
            await checkout.execute("INSERT INTO users (name) VALUES (%s)", ("alice",))
        async with await pool.begin() as tx:
            await service.register_user(tx.connection)
            await tx.commit()
        await pool.close()
    """

    def __init__(self, state: _PoolState, logger=None):
        self._state = state
        self._logger = logger or logging.getLogger(__name__)

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def log(self, level: int, msg: str) -> None:
        self._logger.log(level, msg)

    @classmethod
    async def connect(cls, config: Optional[MySQLTestPoolConfig] = None, *,
                      checkout_timeout: Optional[float] = None, logger=None) -> 'IsolatedPool':
        """Open a connection and start the outer transaction on it."""
        if config is None:
            config = load_config()
        connection = await open_connection(config)
        if checkout_timeout is None:
            checkout_timeout = config.checkout_timeout
        pool = await cls.from_connection(connection, checkout_timeout=checkout_timeout, logger=logger)
        pool.log(logging.INFO, f"Opened isolated pool on {config.to_url()}")
        return pool

    @classmethod
    async def from_connection(cls, connection, *, checkout_timeout: Optional[float] = None,
                              logger=None) -> 'IsolatedPool':
        """Wrap an already open connection; the pool takes ownership of it."""
        logger = logger or logging.getLogger(__name__)
        head = await ChainLink.begin(RootConnection(connection, logger))
        if checkout_timeout is None:
            checkout_timeout = CHECKOUT_TIMEOUT
        return cls(_PoolState(head, checkout_timeout), logger)

    def clone(self) -> 'IsolatedPool':
        """Another handle serialized against the same connection slot."""
        return type(self)(self._state, self._logger)

    @property
    def closed(self) -> bool:
        return self._state.closed

    @property
    def checkout_timeout(self) -> float:
        return self._state.checkout_timeout

    async def _checkout(self, operation: str) -> 'SlotGuard[ChainLink]':
        if self._state.closed:
            raise PoolClosedError(f"IsolatedPool.{operation}() called on a closed pool")
        timeout = self._state.checkout_timeout
        try:
            guard = await self._state.slot.lock_owned(timeout)
        except asyncio.TimeoutError:
            error = CheckoutTimeoutError(operation, timeout)
            self.log(logging.CRITICAL, f"{error}; a checkout or nested transaction was never released")
            raise error from None
        if self._state.closed:
            guard.release()
            raise PoolClosedError(f"IsolatedPool.{operation}() called on a closed pool")
        return guard

    async def acquire(self) -> 'Checkout':
        """Check out the innermost transaction for direct queries."""
        guard = await self._checkout("acquire")
        self.log(logging.DEBUG, f"Checked out transaction at depth {guard.value.depth}")
        return Checkout(guard, self._logger)

    async def begin(self) -> 'NestedTransaction':
        """Begin a transaction nested one level below the innermost one."""
        guard = await self._checkout("begin")
        link = await ChainLink.begin(ChildCheckout(guard))
        self.log(logging.DEBUG, f"Began nested transaction at depth {link.depth}")
        return NestedTransaction(link, self._logger)

    async def close(self) -> None:
        """Roll back the outer transaction and close the connection.

        Waits for outstanding handles under the usual checkout bound. Closing
        an already closed pool does nothing.
        """
        try:
            guard = await self._checkout("close")
        except PoolClosedError:
            # Closed before or while waiting for the slot
            return
        self._state.closed = True
        try:
            await guard.value.close()
        finally:
            guard.release()
        self.log(logging.INFO, "Closed isolated pool; all changes rolled back")

    async def __aenter__(self) -> 'IsolatedPool':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        state = "closed" if self._state.closed else ("busy" if self._state.slot.locked else "idle")
        return f"<IsolatedPool {state}>"


class _QueryMixin(ABC):
    """Query methods forwarded to the handle's transaction."""

    @property
    @abstractmethod
    def connection(self) -> AsyncMySQLTransaction:
        """The transaction queries run on."""

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> ExecutionResult:
        return await self.connection.execute(sql, params)

    async def fetch_all(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        return await self.connection.fetch_all(sql, params)

    async def fetch_one(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Dict[str, Any]]:
        return await self.connection.fetch_one(sql, params)


class Checkout(_QueryMixin):
    """Exclusive, temporary access to the pool's innermost transaction.

    Releasing the checkout does not commit or roll back that transaction;
    only transactions the holder nested below it are rolled back. The
    transaction itself can be queried and nested into through
    :attr:`connection`, but never committed or rolled back.
    """

    def __init__(self, guard: 'SlotGuard[ChainLink]', logger=None):
        self._guard = guard
        self._logger = logger or logging.getLogger(__name__)

    @property
    def released(self) -> bool:
        return self._guard.released

    @property
    def connection(self) -> AsyncMySQLTransaction:
        return self._guard.value.transaction

    async def release(self) -> None:
        if self._guard.released:
            return
        try:
            await self._guard.value.transaction.rollback_nested()
        finally:
            self._guard.release()
        self._logger.debug("Released checkout")

    async def __aenter__(self) -> 'Checkout':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.release()


class NestedTransaction(_QueryMixin):
    """A transaction nested below the pool's innermost one.

    The previous innermost transaction stays reserved until this one is
    committed or rolled back. Leaving ``async with`` without :meth:`commit`
    rolls it back.
    """

    def __init__(self, link: ChainLink, logger=None):
        self._link = link
        self._logger = logger or logging.getLogger(__name__)

    @property
    def connection(self) -> AsyncMySQLTransaction:
        return self._link.transaction

    @property
    def depth(self) -> int:
        return self._link.depth

    @property
    def finished(self) -> bool:
        return self._link.finished

    async def commit(self) -> None:
        """Keep the changes within the enclosing transaction and release it."""
        await self._link.commit()
        self._logger.debug(f"Committed nested transaction at depth {self._link.depth}")

    async def rollback(self) -> None:
        await self._link.close()
        self._logger.debug(f"Rolled back nested transaction at depth {self._link.depth}")

    async def close(self) -> None:
        if self._link.finished:
            return
        await self.rollback()

    async def __aenter__(self) -> 'NestedTransaction':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
