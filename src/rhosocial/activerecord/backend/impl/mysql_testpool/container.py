# src/rhosocial/activerecord/backend/impl/mysql_testpool/container.py
"""Disposable MySQL server in a Docker container.

Requires the ``container`` extra (testcontainers).
"""
import logging

from .config import MySQLTestPoolConfig

logger = logging.getLogger(__name__)

DEFAULT_IMAGE = "mysql:8.0"


class MySQLTestContainer:
    """Start a MySQL container and describe it as a :class:`MySQLTestPoolConfig`."""

    def __init__(self, image: str = DEFAULT_IMAGE, username: str = "test", password: str = "test",
                 database: str = "test_db"):
        self.image = image
        self.username = username
        self.password = password
        self.database = database
        self._container = None

    @property
    def running(self) -> bool:
        return self._container is not None

    def start(self) -> MySQLTestPoolConfig:
        from testcontainers.mysql import MySqlContainer

        if self._container is not None:
            raise RuntimeError("MySQL test container is already running")

        logger.warning(f"Starting MySQL container from {self.image}")
        container = MySqlContainer(
            self.image,
            username=self.username,
            password=self.password,
            dbname=self.database,
        )
        container.start()
        self._container = container
        config = self.config
        logger.warning(f"MySQL container is up at {config.to_url()}")
        return config

    @property
    def config(self) -> MySQLTestPoolConfig:
        if self._container is None:
            raise RuntimeError("MySQL test container is not running")
        return MySQLTestPoolConfig(
            host=self._container.get_container_host_ip(),
            port=int(self._container.get_exposed_port(3306)),
            database=self.database,
            username=self.username,
            password=self.password,
            ssl_disabled=True,
        )

    def stop(self) -> None:
        container, self._container = self._container, None
        if container is None:
            return
        container.stop()
        logger.info("Stopped MySQL container")

    def __enter__(self) -> MySQLTestPoolConfig:
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()
