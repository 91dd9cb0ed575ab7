# src/rhosocial/activerecord/backend/impl/mysql_testpool/pytest_plugin.py
"""pytest fixtures for isolated pools.

Enable in a ``conftest.py``::

    pytest_plugins = ["rhosocial.activerecord.backend.impl.mysql_testpool.pytest_plugin"]

Every test that requests ``isolated_pool`` gets its own pool; whatever the test
writes is rolled back when the fixture is torn down.
"""
import pytest
import pytest_asyncio

from .config import MySQLTestPoolConfig, load_config
from .pool import IsolatedPool


def pytest_addoption(parser):
    group = parser.getgroup("mysql-testpool")
    group.addoption(
        "--mysql-testpool-url",
        default=None,
        help="MySQL URL for isolated pools (default: resolved from MYSQL_TESTPOOL_* environment variables)",
    )


@pytest.fixture(scope="session")
def mysql_testpool_config(request) -> MySQLTestPoolConfig:
    url = request.config.getoption("--mysql-testpool-url", default=None)
    if url:
        return MySQLTestPoolConfig.from_url(url)
    return load_config()


@pytest_asyncio.fixture
async def isolated_pool(mysql_testpool_config):
    pool = await IsolatedPool.connect(mysql_testpool_config)
    yield pool
    await pool.close()
