# src/rhosocial/activerecord/backend/impl/mysql_testpool/errors.py
"""Errors raised by the isolated test pool.

Driver errors are translated into the ``rhosocial.activerecord.backend.errors``
hierarchy so that code under test sees the same exception types it would see
from :class:`AsyncMySQLBackend`.
"""
from mysql.connector.errors import (
    DatabaseError as MySQLDatabaseError,
    Error as MySQLError,
    IntegrityError as MySQLIntegrityError,
    InterfaceError as MySQLInterfaceError,
    OperationalError as MySQLOperationalError,
    ProgrammingError,
)

from rhosocial.activerecord.backend.errors import (
    ConnectionError,
    DatabaseError,
    DeadlockError,
    IntegrityError,
    OperationalError,
    QueryError,
    TransactionError,
)


class NestedTransactionActiveError(TransactionError):
    """A transaction was used while one of its nested transactions is still open."""


class PoolClosedError(ConnectionError):
    """The isolated pool has already been closed."""


class CheckoutTimeoutError(BaseException):
    """Waiting for the pool's single connection slot took too long.

    This never signals ordinary contention: a handle (checkout or nested
    transaction) was leaked without being released, and carrying on would
    break test isolation. It derives from ``BaseException`` so that
    ``except Exception`` blocks in the code under test cannot swallow it and
    the calling test aborts.
    """

    def __init__(self, operation: str, timeout: float):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"IsolatedPool.{operation}() timed out after {timeout}s")


def translate_error(error: Exception) -> Exception:
    """Map a mysql-connector error onto the rhosocial error hierarchy.

    The caller is expected to ``raise translate_error(e) from e``.
    """
    if isinstance(error, MySQLIntegrityError):
        return IntegrityError(f"MySQL integrity error: {error}")
    if isinstance(error, ProgrammingError) and getattr(error, 'errno', None) == 1054:
        return OperationalError(f"MySQL operational error: {error}")
    if isinstance(error, MySQLOperationalError):
        if getattr(error, 'errno', None) == 1213:
            return DeadlockError(f"MySQL deadlock detected: {error}")
        return OperationalError(f"MySQL operational error: {error}")
    if isinstance(error, MySQLInterfaceError):
        return ConnectionError(f"MySQL connection error: {error}")
    if isinstance(error, MySQLDatabaseError):
        return DatabaseError(f"MySQL database error: {error}")
    if isinstance(error, MySQLError):
        return QueryError(f"MySQL query error: {error}")
    return error
