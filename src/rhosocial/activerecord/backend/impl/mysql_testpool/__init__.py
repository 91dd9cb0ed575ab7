# src/rhosocial/activerecord/backend/impl/mysql_testpool/__init__.py
"""
Isolated MySQL connection pool for tests.

Lets tests exercise code that opens and commits its own transactions while
guaranteeing that nothing reaches the real database:

- IsolatedPool: one connection held inside an outer transaction that is never committed
- Checkout: exclusive access to the innermost transaction for direct queries
- NestedTransaction: a savepoint the code under test may commit or roll back
- ChainLink / RootConnection / ChildCheckout: the chain of nested transactions
- Provisioning helpers for throwaway copies of a template database

Architecture:
- Built on the async driver of mysql-connector-python (mysql.connector.aio)
- Errors follow the rhosocial.activerecord backend error hierarchy
- One asyncio lock serializes every handle on the pool's single connection
"""

__version__ = "1.0.0.dev1"

from .chain import ChainLink, ChildCheckout, ParentReference, RootConnection
from .config import CHECKOUT_TIMEOUT, MySQLTestPoolConfig, load_config
from .errors import (
    CheckoutTimeoutError,
    NestedTransactionActiveError,
    PoolClosedError,
)
from .pool import Checkout, IsolatedPool, NestedTransaction, open_connection
from .provision import connect_with_retry, create_test_database, drop_test_databases
from .slot import Slot, SlotGuard
from .transaction import AsyncMySQLTransaction, ExecutionResult


__all__ = [
    # Pool and handles
    'IsolatedPool',
    'Checkout',
    'NestedTransaction',
    'open_connection',

    # Transaction chain
    'ChainLink',
    'RootConnection',
    'ChildCheckout',
    'ParentReference',
    'AsyncMySQLTransaction',
    'ExecutionResult',

    # Locking
    'Slot',
    'SlotGuard',

    # Configuration
    'MySQLTestPoolConfig',
    'load_config',
    'CHECKOUT_TIMEOUT',

    # Errors
    'CheckoutTimeoutError',
    'NestedTransactionActiveError',
    'PoolClosedError',

    # Provisioning
    'connect_with_retry',
    'create_test_database',
    'drop_test_databases',
]
