# src/rhosocial/activerecord/backend/impl/mysql_testpool/transaction.py
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from mysql.connector.errors import Error as MySQLError

from rhosocial.activerecord.backend.errors import TransactionError
from rhosocial.activerecord.backend.transaction import TransactionState

from .errors import NestedTransactionActiveError, translate_error

SAVEPOINT_PREFIX = "rhosocial_testpool_sp_"


@dataclass
class ExecutionResult:
    """Outcome of a statement that does not return rows."""
    affected_rows: int = 0
    last_insert_id: Optional[int] = None


class AsyncMySQLTransaction:
    """One transaction level on an async MySQL connection.

    Depth 0 is a real transaction (``START TRANSACTION`` / ``COMMIT`` /
    ``ROLLBACK``); every deeper level is a savepoint taken inside it. A level
    that has an open child may not be used until that child is finished, so
    at most one level of a connection is usable at any time. A pinned level
    can be queried and nested into but not finished by its user.
    """

    def __init__(self, connection, depth: int = 0, parent: Optional['AsyncMySQLTransaction'] = None,
                 logger=None):
        self._connection = connection
        self._depth = depth
        self._parent = parent
        self._child: Optional[AsyncMySQLTransaction] = None
        self._state = TransactionState.INACTIVE
        self._pinned = False
        self._logger = logger or logging.getLogger(__name__)

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def log(self, level: int, msg: str) -> None:
        self._logger.log(level, msg)

    @property
    def depth(self) -> int:
        return self._depth

    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state == TransactionState.ACTIVE

    @property
    def savepoint_name(self) -> Optional[str]:
        if self._depth == 0:
            return None
        return f"{SAVEPOINT_PREFIX}{self._depth}"

    @property
    def connection(self):
        """The underlying driver connection."""
        return self._connection

    @property
    def child(self) -> Optional['AsyncMySQLTransaction']:
        return self._child

    @property
    def pinned(self) -> bool:
        return self._pinned

    def pin(self) -> None:
        """Reserve commit, rollback and close of this level for its owner.

        Queries and :meth:`begin` keep working; only the owner may finish
        the level, through the internal ``_commit`` / ``_close`` calls.
        """
        self._pinned = True

    @classmethod
    async def start(cls, connection, depth: int = 0, parent: Optional['AsyncMySQLTransaction'] = None,
                    logger=None) -> 'AsyncMySQLTransaction':
        """Open a transaction level on ``connection`` and return it active."""
        transaction = cls(connection, depth, parent, logger)
        await transaction._do_begin()
        return transaction

    def _ensure_usable(self, operation: str) -> None:
        if not self.is_active:
            error_msg = f"Cannot {operation}: transaction at depth {self._depth} is {self._state.name.lower()}"
            self.log(logging.ERROR, error_msg)
            raise TransactionError(error_msg)
        if self._child is not None:
            error_msg = (f"Cannot {operation}: nested transaction at depth {self._child.depth} "
                         f"is still active")
            self.log(logging.ERROR, error_msg)
            raise NestedTransactionActiveError(error_msg)

    def _ensure_unpinned(self, operation: str) -> None:
        if self._pinned:
            error_msg = (f"Cannot {operation}: transaction at depth {self._depth} is owned by the pool; "
                         f"use begin() to open a nested transaction instead")
            self.log(logging.ERROR, error_msg)
            raise TransactionError(error_msg)

    async def _run(self, sql: str) -> None:
        cursor = await self._connection.cursor()
        try:
            await cursor.execute(sql)
        finally:
            await cursor.close()

    async def _do_begin(self) -> None:
        try:
            if self._depth == 0:
                await self._run("START TRANSACTION")
                self.log(logging.DEBUG, "Started MySQL transaction")
            else:
                await self._run(f"SAVEPOINT {self.savepoint_name}")
                self.log(logging.DEBUG, f"Created savepoint: {self.savepoint_name}")
        except MySQLError as e:
            error_msg = f"Failed to begin transaction at depth {self._depth}: {str(e)}"
            self.log(logging.ERROR, error_msg)
            raise TransactionError(error_msg) from e
        self._state = TransactionState.ACTIVE

    async def _do_commit(self) -> None:
        try:
            if self._depth == 0:
                await self._run("COMMIT")
                self.log(logging.DEBUG, "Committed MySQL transaction")
            else:
                await self._run(f"RELEASE SAVEPOINT {self.savepoint_name}")
                self.log(logging.DEBUG, f"Released savepoint: {self.savepoint_name}")
        except MySQLError as e:
            error_msg = f"Failed to commit transaction at depth {self._depth}: {str(e)}"
            self.log(logging.ERROR, error_msg)
            raise TransactionError(error_msg) from e

    async def _do_rollback(self) -> None:
        try:
            if self._depth == 0:
                await self._run("ROLLBACK")
                self.log(logging.DEBUG, "Rolled back MySQL transaction")
            else:
                await self._run(f"ROLLBACK TO SAVEPOINT {self.savepoint_name}")
                await self._run(f"RELEASE SAVEPOINT {self.savepoint_name}")
                self.log(logging.DEBUG, f"Rolled back to savepoint: {self.savepoint_name}")
        except MySQLError as e:
            error_msg = f"Failed to rollback transaction at depth {self._depth}: {str(e)}"
            self.log(logging.ERROR, error_msg)
            raise TransactionError(error_msg) from e

    def _detach(self) -> None:
        if self._parent is not None and self._parent._child is self:
            self._parent._child = None

    async def begin(self) -> 'AsyncMySQLTransaction':
        """Begin a nested transaction one level below this one."""
        self._ensure_usable("begin nested transaction")
        child = await AsyncMySQLTransaction.start(self._connection, self._depth + 1, self, self._logger)
        self._child = child
        return child

    async def commit(self) -> None:
        self._ensure_unpinned("commit")
        await self._commit()

    async def _commit(self) -> None:
        self._ensure_usable("commit")
        try:
            await self._do_commit()
        except TransactionError:
            # A failed commit leaves the level unusable; nothing is retried.
            self._state = TransactionState.ROLLED_BACK
            raise
        finally:
            self._detach()
        self._state = TransactionState.COMMITTED

    async def rollback(self) -> None:
        self._ensure_unpinned("rollback")
        await self._rollback()

    async def _rollback(self) -> None:
        self._ensure_usable("rollback")
        self._state = TransactionState.ROLLED_BACK
        try:
            await self._do_rollback()
        finally:
            self._detach()

    async def rollback_nested(self) -> None:
        """Roll back every open transaction nested below this one, deepest first."""
        if self._child is not None:
            await self._child._close()

    async def close(self) -> None:
        """Finish this level the way dropping it would: roll back unless already finished."""
        self._ensure_unpinned("close")
        await self._close()

    async def _close(self) -> None:
        await self.rollback_nested()
        if self.is_active:
            await self._rollback()

    async def __aenter__(self) -> 'AsyncMySQLTransaction':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> ExecutionResult:
        """Execute a statement that does not return rows."""
        self._ensure_usable("execute")
        self.log(logging.DEBUG, f"Executing SQL at depth {self._depth}: {sql}, parameters: {params}")
        try:
            cursor = await self._connection.cursor()
            try:
                await cursor.execute(sql, params or ())
                return ExecutionResult(affected_rows=cursor.rowcount, last_insert_id=cursor.lastrowid)
            finally:
                await cursor.close()
        except MySQLError as e:
            raise translate_error(e) from e

    async def fetch_all(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        self._ensure_usable("fetch")
        self.log(logging.DEBUG, f"Fetching at depth {self._depth}: {sql}, parameters: {params}")
        try:
            cursor = await self._connection.cursor(dictionary=True)
            try:
                await cursor.execute(sql, params or ())
                return list(await cursor.fetchall())
            finally:
                await cursor.close()
        except MySQLError as e:
            raise translate_error(e) from e

    async def fetch_one(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Dict[str, Any]]:
        rows = await self.fetch_all(sql, params)
        return rows[0] if rows else None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} depth={self._depth} state={self._state.name}>"
