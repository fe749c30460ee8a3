"""SQLAlchemy engine holder for the relational (MySQL) backend."""

import logging

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import SQLAlchemyError

from statshttpd.core.types import RelationalDescriptor

_DRIVER = "mysql+pymysql"
_POOL_SIZE = 2
_CONNECT_TIMEOUT_S = 10


def build_url(descriptor: RelationalDescriptor) -> URL:
    return URL.create(
        _DRIVER,
        username=descriptor.username,
        password=descriptor.password,
        host=descriptor.host,
        port=descriptor.port,
        database=descriptor.dbname,
        query={"charset": "utf8mb4"},
    )


class MySQLStore:
    """Relational store connection with explicit open/close."""

    def __init__(self, descriptor: RelationalDescriptor) -> None:
        self.descriptor = descriptor
        self.logger = logging.getLogger(__name__)
        self.engine: Engine | None = None

    def open(self) -> None:
        """Create the engine and run a round trip; raises ``SQLAlchemyError``."""

        if self.engine is not None:
            return

        engine = create_engine(
            build_url(self.descriptor),
            pool_size=_POOL_SIZE,
            pool_pre_ping=True,
            connect_args={"connect_timeout": _CONNECT_TIMEOUT_S},
        )
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            engine.dispose()
            raise

        self.engine = engine
        self.logger.info(
            "mysql_connected",
            extra={
                "host": self.descriptor.host,
                "port": self.descriptor.port,
                "dbname": self.descriptor.dbname,
            },
        )

    def ping(self) -> bool:
        if self.engine is None:
            return False
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            self.logger.warning("mysql_ping_failed", extra={"error": str(exc)})
            return False
        return True

    def close(self) -> None:
        if self.engine is None:
            return
        engine, self.engine = self.engine, None
        engine.dispose()
        self.logger.info("mysql_disconnected", extra={"host": self.descriptor.host})
