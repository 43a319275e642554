"""Durable key-value storage, where each collection is one text blob."""
import logging
import sqlite3
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Optional

import psycopg2

from patientregistry.errors import StorageFailure

logger = logging.getLogger(__name__)

DEFAULT_TABLE = "local_storage"


class Storage(ABC):
    """Shared by every store opened on it, like a browser origin's storage."""

    def __init__(self, name: str = "storage"):
        self.name = name

    def __enter__(self):
        return self

    def __exit__(self, *args):
        pass

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        """Return the value stored under key, or None if absent."""

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Remove key.  Returns silently if the key is absent."""

    @abstractmethod
    def keys(self) -> list[str]:
        pass


class MemoryStorage(Storage):
    """An in-memory transient storage, only useful for testing."""

    def __init__(self, name: str = "memory"):
        super().__init__(name)
        self.items = OrderedDict()

    def get_item(self, key: str) -> Optional[str]:
        return self.items.get(key, None)

    def set_item(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StorageFailure(f"value for {key} must be str, not {type(value)}")
        self.items[key] = value

    def remove_item(self, key: str) -> None:
        self.items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self.items.keys())


def create_table(conn, tablename: str = DEFAULT_TABLE) -> None:
    """Create the key-value table in conn's database, if it is missing."""
    cursor = conn.cursor()
    try:
        cursor.execute(
            f"CREATE TABLE IF NOT EXISTS {tablename}"
            " (key text UNIQUE not null, value text)"
        )
    finally:
        cursor.close()


class NoSuchTable(Exception):
    pass


class VersionError(Exception):
    pass


class DatabaseStorage(Storage, ABC):
    """Base storage for a relational database: one row per key."""

    # errors from the driver that mean the read or write did not happen
    driver_errors = (sqlite3.Error, psycopg2.Error)

    def __init__(
        self,
        conn,
        tablename: str = DEFAULT_TABLE,
        name: str = "database",
        create_table: bool = False,
    ):
        super().__init__(name)
        self.tablename = tablename
        self.conn = conn
        self.create_table = create_table
        self.cursor = None

        # set in child class
        self.placeholder = None

    def __enter__(self):
        super().__enter__()

        if self.create_table:
            create_table(self.conn, self.tablename)
        self.cursor = self.conn.cursor()

        try:
            self.cursor.execute(f"SELECT * FROM {self.tablename} LIMIT 0")
        # connection wrappers may re-wrap driver errors, so catch broadly here
        except (
            sqlite3.OperationalError,
            psycopg2.errors.UndefinedTable,
            Exception,
        ) as err:
            raise NoSuchTable(self.tablename) from err
        columnnames = [desc[0] for desc in self.cursor.description]

        for field in ("key", "value"):
            if field not in columnnames:
                raise NameError(f"Field '{field}' not in table '{self.tablename}'")

        return self

    def __exit__(self, *args):
        super().__exit__()
        if self.cursor:
            self.cursor.close()
            self.cursor = None

    def _execute(self, statement: str, params: tuple = ()):
        if self.cursor is None:
            raise StorageFailure(f"{self.name}: storage is not open")
        try:
            self.cursor.execute(statement, params)
        except self.driver_errors as err:
            logger.error(f"{self.name}: {statement} failed: {err}")
            raise StorageFailure(str(err)) from err

    def get_item(self, key: str) -> Optional[str]:
        self._execute(
            f"SELECT value FROM {self.tablename} WHERE key={self.placeholder}", (key,)
        )
        row = self.cursor.fetchone()
        return row[0] if row else None

    def set_item(self, key: str, value: str) -> None:
        # "ON CONFLICT" added to sqlite upsert in version 3.24.0 (2018-06-04)
        # "ON CONFLICT" requires Postgres 9.5+
        self._execute(
            f"INSERT INTO {self.tablename} (key, value)"
            f" VALUES ({self.placeholder}, {self.placeholder})"
            " ON CONFLICT (key) DO UPDATE SET value=EXCLUDED.value",
            (key, value),
        )

    def remove_item(self, key: str) -> None:
        self._execute(
            f"DELETE FROM {self.tablename} WHERE key={self.placeholder}", (key,)
        )

    def keys(self) -> list[str]:
        self._execute(f"SELECT key FROM {self.tablename} ORDER BY key")
        return [row[0] for row in self.cursor.fetchall()]


class SqliteStorage(DatabaseStorage):
    """Sqlite storage.

    Open the connection with isolation_level=None (autocommit) so that
    other connections to the same file see each write."""

    def __init__(
        self,
        conn,
        tablename: str = DEFAULT_TABLE,
        name: str = "sqlite",
        create_table: bool = False,
    ):
        super().__init__(conn, tablename, name, create_table)
        # check sqlite version
        if sqlite3.sqlite_version_info < (3, 24, 0):
            raise VersionError(
                f"sqlite version is {sqlite3.sqlite_version},"
                " must be at least 3.24.0"
            )
        self.placeholder = "?"


class PostgresStorage(DatabaseStorage):
    """Postgres storage.

    The caller owns the commit policy; set conn.autocommit for
    write-through behavior."""

    def __init__(
        self,
        conn,
        tablename: str = DEFAULT_TABLE,
        name: str = "postgres",
        create_table: bool = False,
    ):
        super().__init__(conn, tablename, name, create_table)
        self.placeholder = "%s"
