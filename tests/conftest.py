# tests/conftest.py
"""Shared fixtures for the isolated test pool tests.

Unit tests run against ``FakeMySQLServer``, an in-memory stand-in for a MySQL
server reached through ``mysql.connector.aio``. It understands the statements
the pool issues (transactions and savepoints) plus a tiny ``items`` table, and
keeps committed rows separate from each connection's uncommitted work so that
isolation between connections can be observed.
"""
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from mysql.connector.errors import InterfaceError, ProgrammingError

from rhosocial.activerecord.backend.impl.mysql_testpool import IsolatedPool
from rhosocial.activerecord.backend.impl.mysql_testpool.pytest_plugin import (  # noqa: F401
    isolated_pool,
    mysql_testpool_config,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

_INSERT = re.compile(r"^INSERT INTO items \(name\) VALUES \(%s\)$")
_SELECT = re.compile(r"^SELECT name FROM items(?: WHERE name = %s)?(?: ORDER BY name)?$")
_SAVEPOINT = re.compile(r"^(SAVEPOINT|RELEASE SAVEPOINT|ROLLBACK TO SAVEPOINT) (\w+)$")


class FakeMySQLServer:
    """Committed state shared by every connection opened on it."""

    def __init__(self):
        self.items: List[str] = []
        self.connections: List['FakeConnection'] = []
        # statement prefix -> exception raised when a statement starts with it
        self.fail_on: Dict[str, Exception] = {}

    def connect(self) -> 'FakeConnection':
        connection = FakeConnection(self)
        self.connections.append(connection)
        return connection


class FakeConnection:
    def __init__(self, server: FakeMySQLServer):
        self.server = server
        self.closed = False
        self.statements: List[str] = []
        self.working: Optional[List[str]] = None
        self.savepoints: List[Tuple[str, List[str]]] = []

    async def cursor(self, dictionary: bool = False) -> 'FakeCursor':
        if self.closed:
            raise InterfaceError(msg="Connection is closed", errno=2055)
        return FakeCursor(self, dictionary)

    async def close(self) -> None:
        # Closing a connection discards its open transaction
        self.closed = True
        self.working = None
        self.savepoints = []

    def visible(self) -> List[str]:
        return self.working if self.working is not None else self.server.items

    def _savepoint_index(self, name: str) -> int:
        for index, (saved, _) in enumerate(self.savepoints):
            if saved == name:
                return index
        raise ProgrammingError(msg=f"SAVEPOINT {name} does not exist", errno=1305)

    def run(self, sql: str, params: Tuple[Any, ...]):
        """Return ``(columns, rows, rowcount, lastrowid)`` for one statement."""
        self.statements.append(sql)
        for prefix, error in self.server.fail_on.items():
            if sql.startswith(prefix):
                raise error

        if sql == "START TRANSACTION":
            self.working = list(self.server.items)
            self.savepoints = []
            return [], [], 0, None
        if sql == "COMMIT":
            if self.working is not None:
                self.server.items = self.working
            self.working = None
            self.savepoints = []
            return [], [], 0, None
        if sql == "ROLLBACK":
            self.working = None
            self.savepoints = []
            return [], [], 0, None

        match = _SAVEPOINT.match(sql)
        if match:
            action, name = match.groups()
            if self.working is None:
                raise ProgrammingError(msg="Savepoint outside of a transaction", errno=1305)
            if action == "SAVEPOINT":
                self.savepoints.append((name, list(self.working)))
            elif action == "RELEASE SAVEPOINT":
                self.savepoints = self.savepoints[:self._savepoint_index(name)]
            else:
                index = self._savepoint_index(name)
                self.working = list(self.savepoints[index][1])
                self.savepoints = self.savepoints[:index + 1]
            return [], [], 0, None

        if _INSERT.match(sql):
            target = self.visible()
            target.append(params[0])
            return [], [], 1, len(target)

        if _SELECT.match(sql):
            names = self.visible()
            if params:
                names = [name for name in names if name == params[0]]
            if sql.endswith("ORDER BY name"):
                names = sorted(names)
            return ["name"], [(name,) for name in names], len(names), None

        if sql == "SELECT 1 AS ok":
            return ["ok"], [(1,)], 1, None

        raise ProgrammingError(msg=f"Fake server cannot run: {sql}", errno=1064)


class FakeCursor:
    def __init__(self, connection: FakeConnection, dictionary: bool):
        self._connection = connection
        self._dictionary = dictionary
        self._columns: List[str] = []
        self._rows: List[Tuple[Any, ...]] = []
        self.rowcount = -1
        self.lastrowid = None
        self.closed = False

    async def execute(self, sql: str, params=()) -> None:
        columns, rows, rowcount, lastrowid = self._connection.run(sql, tuple(params or ()))
        self._columns, self._rows = columns, rows
        self.rowcount, self.lastrowid = rowcount, lastrowid

    async def fetchall(self):
        rows, self._rows = self._rows, []
        if self._dictionary:
            return [dict(zip(self._columns, row)) for row in rows]
        return rows

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_server() -> FakeMySQLServer:
    return FakeMySQLServer()


@pytest.fixture
def fake_connection(fake_server) -> FakeConnection:
    return fake_server.connect()


@pytest_asyncio.fixture
async def pool(fake_server):
    """An isolated pool on the fake server with a short checkout bound."""
    pool = await IsolatedPool.from_connection(fake_server.connect(), checkout_timeout=0.2)
    yield pool
    await pool.close()


async def fetch_names(handle) -> List[str]:
    rows = await handle.fetch_all("SELECT name FROM items ORDER BY name")
    return [row['name'] for row in rows]


@pytest.fixture
def read_names():
    """Read the names in ``items`` through a checkout, nested transaction or transaction."""
    return fetch_names
