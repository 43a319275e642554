"""Storages and records shared by the tests."""
import logging
import os
import shutil
import sqlite3
import tempfile
from datetime import date, timedelta

import psycopg2

from patientregistry import util
from patientregistry.storage import MemoryStorage, PostgresStorage, SqliteStorage

logger = logging.getLogger(__name__)


def patient_fields(**overrides):
    fields = {
        "firstName": "John",
        "lastName": "Smith",
        "dob": "1990-05-15",
        "gender": "male",
        "email": "john.smith@example.com",
        "phone": "(555) 123-4567",
        "address": "123 Main St, Anytown, USA",
        "insuranceProvider": "Blue Cross",
        "medicalHistory": "No significant medical history.",
    }
    fields.update(overrides)
    return fields


def years_ago(years: int, today: date = None) -> date:
    """The date years before today; Feb 29 falls back to Feb 28."""
    if today is None:
        today = date.today()
    try:
        return today.replace(year=today.year - years)
    except ValueError:
        return today.replace(year=today.year - years, day=28)


def day_after(the_date: date) -> date:
    return the_date + timedelta(days=1)


class _TestStorageFactory:
    """Makes storages for a test, and cleans them up after."""

    def make(self):
        raise NotImplementedError

    def make_shared(self, storage):
        """Another storage on the same durable data as storage."""
        raise NotImplementedError

    def close(self):
        pass


class MemoryStorageFactory(_TestStorageFactory):
    def make(self):
        return MemoryStorage()

    def make_shared(self, storage):
        # same object: memory storage is shared by reference
        return storage


class SqliteStorageFactory(_TestStorageFactory):
    def __init__(self):
        self.tmpdir = tempfile.mkdtemp()
        self.dbname = os.path.join(self.tmpdir, "registry.db")
        self._conns = []
        self._storages = []

    def _connect(self):
        conn = sqlite3.connect(
            self.dbname,
            # Use autocommit to not need transactions:
            isolation_level=None,
        )
        self._conns.append(conn)
        storage = SqliteStorage(conn, create_table=True)
        # pylint: disable-next=unnecessary-dunder-call
        storage.__enter__()
        self._storages.append(storage)
        return storage

    def make(self):
        return self._connect()

    def make_shared(self, storage):
        return self._connect()

    def close(self):
        for storage in self._storages:
            storage.__exit__()
        for conn in self._conns:
            conn.close()
        shutil.rmtree(self.tmpdir)


class PostgresStorageFactory(_TestStorageFactory):
    """Needs a server: set POSTGRES_HOST (and POSTGRES_USER, POSTGRES_DB)."""

    def __init__(self):
        self.tablename = "test_storage_" + util.uuid4_string()[:8]
        self._conns = []
        self._storages = []

    def _connect(self, create_table):
        conn = psycopg2.connect(util.postgres_connstr())
        conn.autocommit = True
        self._conns.append(conn)
        storage = PostgresStorage(conn, self.tablename, create_table=create_table)
        # pylint: disable-next=unnecessary-dunder-call
        storage.__enter__()
        self._storages.append(storage)
        return storage

    def make(self):
        return self._connect(create_table=True)

    def make_shared(self, storage):
        return self._connect(create_table=False)

    def close(self):
        if self._conns:
            with self._conns[0].cursor() as cursor:
                cursor.execute(f"DROP TABLE IF EXISTS {self.tablename}")
        for storage in self._storages:
            storage.__exit__()
        for conn in self._conns:
            conn.close()
