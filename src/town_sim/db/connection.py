from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

import psycopg2
from psycopg2.extensions import connection as PgConnection

from town_sim.config.settings import DBSettings

logger = logging.getLogger("town_sim.db")


class DBClient:
    """One PostgreSQL connection shared by every run of a batch.

    Each ``cursor()`` block is one transaction: committed when the block
    exits cleanly, rolled back when it raises.
    """

    def __init__(self, settings: DBSettings, application_name: str = "town_sim") -> None:
        self._settings = settings
        self._application_name = application_name
        self._conn: PgConnection | None = None

    @property
    def connected(self) -> bool:
        return self._conn is not None and not self._conn.closed

    def connect(self) -> PgConnection:
        if self._conn is not None and not self._conn.closed:
            return self._conn
        try:
            conn = psycopg2.connect(self._settings.dsn, application_name=self._application_name)
        except psycopg2.OperationalError:
            logger.error(
                "PostgreSQL unreachable host=%s port=%d db=%s",
                self._settings.host, self._settings.port, self._settings.name,
            )
            raise
        conn.autocommit = False
        self._conn = conn
        logger.info("Connected to PostgreSQL host=%s db=%s", self._settings.host, self._settings.name)
        return conn

    @property
    def conn(self) -> PgConnection:
        return self.connect()

    @contextmanager
    def cursor(self) -> Iterator:
        conn = self.conn
        cur = conn.cursor()
        try:
            yield cur
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cur.close()

    def close(self) -> None:
        if self._conn is None:
            return
        if not self._conn.closed:
            self._conn.close()
        self._conn = None
        logger.info("PostgreSQL connection closed db=%s", self._settings.name)
