# tests/rhosocial/activerecord_mysql_testpool_test/integration/conftest.py
"""Fixtures for tests against a real MySQL server.

These tests run only when a server is configured through
``MYSQL_TESTPOOL_CONFIG_PATH``, ``MYSQL_TESTPOOL_URL`` or ``MYSQL_HOST``.
"""
import os

import pytest
import pytest_asyncio

from rhosocial.activerecord.backend.errors import ConnectionError
from rhosocial.activerecord.backend.impl.mysql_testpool import load_config, open_connection

TABLE = "testpool_items"

_CONFIGURED = any(os.getenv(name) for name in ("MYSQL_TESTPOOL_CONFIG_PATH", "MYSQL_TESTPOOL_URL", "MYSQL_HOST"))


@pytest.fixture(scope="session")
def mysql_testpool_config():
    if not _CONFIGURED:
        pytest.skip("No MySQL server configured for integration tests")
    return load_config()


async def _run(config, *statements):
    connection = await open_connection(config)
    try:
        cursor = await connection.cursor()
        try:
            for sql in statements:
                await cursor.execute(sql)
        finally:
            await cursor.close()
    finally:
        await connection.close()


@pytest_asyncio.fixture
async def items_table(mysql_testpool_config):
    """Create the table outside any pool: DDL would implicitly commit the outer transaction."""
    try:
        await _run(
            mysql_testpool_config,
            f"DROP TABLE IF EXISTS {TABLE}",
            f"CREATE TABLE {TABLE} (id INT AUTO_INCREMENT PRIMARY KEY, name VARCHAR(64) NOT NULL)",
        )
    except ConnectionError as e:
        pytest.skip(f"MySQL server not reachable: {e}")
    yield TABLE
    await _run(mysql_testpool_config, f"DROP TABLE IF EXISTS {TABLE}")
