# src/rhosocial/activerecord/backend/impl/mysql_testpool/provision.py
"""Throwaway test databases.

A test run can copy its template database into a fresh schema named
``<prefix><random 64-bit number>`` and point its pools at the copy. Copies
that earlier runs left behind are removed by :func:`drop_test_databases`.
Neither helper touches a pool's transaction chain.
"""
import asyncio
import logging
import random
import re
from typing import List, Optional

from mysql.connector.errors import InterfaceError, OperationalError as MySQLOperationalError

from rhosocial.activerecord.backend.errors import ConnectionError

from .config import MySQLTestPoolConfig

logger = logging.getLogger(__name__)

_DATABASE_NAME = re.compile(r'^[A-Za-z0-9_$-]{1,64}$')


def validate_database_name(name: str) -> str:
    """Reject names that cannot be safely quoted as a MySQL identifier."""
    if not name or not _DATABASE_NAME.match(name):
        raise ValueError(f"Invalid database name: {name!r}")
    return name


def _quote(name: str) -> str:
    return f"`{validate_database_name(name)}`"


async def connect_with_retry(config: MySQLTestPoolConfig, attempts: int = 50, delay: float = 0.1):
    """Connect, retrying while the server is not accepting connections yet."""
    from mysql.connector.aio import connect

    last_error: Optional[Exception] = None
    for attempt in range(1, attempts + 1):
        try:
            return await connect(**config.to_connection_args())
        except (InterfaceError, MySQLOperationalError) as e:
            last_error = e
            logger.warning(f"Connection attempt {attempt}/{attempts} to {config.to_url()} failed: {e}")
            await asyncio.sleep(delay)
    raise ConnectionError(f"Failed to connect to MySQL at {config.to_url()}: {last_error}") from last_error


async def _execute(connection, sql: str, params=None) -> None:
    cursor = await connection.cursor()
    try:
        await cursor.execute(sql, params or ())
    finally:
        await cursor.close()


async def _fetch_column(connection, sql: str, params=None) -> List[str]:
    cursor = await connection.cursor()
    try:
        await cursor.execute(sql, params or ())
        return [row[0] for row in await cursor.fetchall()]
    finally:
        await cursor.close()


def generate_database_name(prefix: str) -> str:
    return f"{prefix}{random.getrandbits(64)}"


async def create_test_database(config: MySQLTestPoolConfig, template: Optional[str] = None,
                               prefix: Optional[str] = None) -> MySQLTestPoolConfig:
    """Copy the template database into a new uniquely named one.

    ``template`` defaults to ``config.database``; without a template an empty
    database is created. Table structure and rows are copied; foreign keys,
    views and routines are not. Returns ``config`` pointed at the copy.
    """
    template = template if template is not None else config.database
    prefix = prefix if prefix is not None else config.database_prefix
    name = generate_database_name(prefix)

    connection = await connect_with_retry(config.without_database())
    try:
        await _execute(connection, f"CREATE DATABASE {_quote(name)}")
        logger.info(f"Created test database {name}")
        if template:
            try:
                await _copy_tables(connection, template, name)
            except Exception:
                logger.warning(f"Copying {template} failed; dropping partial test database {name}")
                await _execute(connection, f"DROP DATABASE {_quote(name)}")
                raise
    finally:
        await connection.close()
    return config.with_database(name)


async def _copy_tables(connection, template: str, target: str) -> None:
    tables = await _fetch_column(
        connection,
        "SELECT TABLE_NAME FROM information_schema.TABLES "
        "WHERE TABLE_SCHEMA = %s AND TABLE_TYPE = 'BASE TABLE' ORDER BY TABLE_NAME",
        (template,),
    )
    await _execute(connection, "SET FOREIGN_KEY_CHECKS = 0")
    try:
        for table in tables:
            source = f"{_quote(template)}.{_quote(table)}"
            copy = f"{_quote(target)}.{_quote(table)}"
            await _execute(connection, f"CREATE TABLE {copy} LIKE {source}")
            await _execute(connection, f"INSERT INTO {copy} SELECT * FROM {source}")
            logger.debug(f"Copied table {table} from {template} into {target}")
    finally:
        await _execute(connection, "SET FOREIGN_KEY_CHECKS = 1")


async def drop_test_databases(config: MySQLTestPoolConfig, prefix: Optional[str] = None) -> List[str]:
    """Drop leftover test databases that no session is using.

    Returns the names of the dropped databases.
    """
    prefix = prefix if prefix is not None else config.database_prefix
    if not prefix:
        raise ValueError("Refusing to drop test databases without a name prefix")

    connection = await connect_with_retry(config.without_database())
    dropped = []
    try:
        candidates = await _fetch_column(
            connection,
            "SELECT SCHEMA_NAME FROM information_schema.SCHEMATA WHERE SCHEMA_NAME LIKE %s "
            "AND SCHEMA_NAME NOT IN (SELECT DB FROM information_schema.PROCESSLIST WHERE DB IS NOT NULL)",
            (_escape_like(prefix) + '%',),
        )
        for name in candidates:
            if not name.startswith(prefix):
                continue
            await _execute(connection, f"DROP DATABASE {_quote(name)}")
            logger.info(f"Dropped test database {name}")
            dropped.append(name)
    finally:
        await connection.close()
    return dropped


def _escape_like(value: str) -> str:
    return value.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
