import logging
import os
import sqlite3
import unittest

from patientregistry import util
from patientregistry.errors import StorageFailure
from patientregistry.storage import (
    MemoryStorage,
    NoSuchTable,
    SqliteStorage,
    create_table,
)
from tests.fixtures import (
    MemoryStorageFactory,
    PostgresStorageFactory,
    SqliteStorageFactory,
)

logger = logging.getLogger(__name__)

# Get log level from environment so we can set it for python -m unittest
util.logging_basic_config()


class _TestStorage(unittest.TestCase):
    """Base class for testing storages."""

    factory_class = None

    def setUp(self):
        if self.__class__ == _TestStorage:
            # Skipping here allows us to derive _TestStorage from TestCase
            self.skipTest("Skip base class test (_TestStorage)")
        self.factory = self.factory_class()
        self.addCleanup(self.factory.close)
        self.storage = self.factory.make()

    def test_absent_key(self):
        self.assertIsNone(self.storage.get_item("patients_data"))

    def test_set_and_get(self):
        self.storage.set_item("patients_data", "[]")
        self.assertEqual("[]", self.storage.get_item("patients_data"))

        # setting again overwrites
        self.storage.set_item("patients_data", '[{"id": 1}]')
        self.assertEqual('[{"id": 1}]', self.storage.get_item("patients_data"))

    def test_keys_and_remove(self):
        self.storage.set_item("b", "2")
        self.storage.set_item("a", "1")
        self.assertEqual(["a", "b"], sorted(self.storage.keys()))

        self.storage.remove_item("a")
        self.assertIsNone(self.storage.get_item("a"))
        self.assertEqual(["b"], self.storage.keys())

        # removing an absent key is fine
        self.storage.remove_item("a")

    def test_shared(self):
        other = self.factory.make_shared(self.storage)
        self.storage.set_item("allergies_data", "[]")
        self.assertEqual("[]", other.get_item("allergies_data"))
        other.set_item("allergies_data", '[{"id": 7}]')
        self.assertEqual('[{"id": 7}]', self.storage.get_item("allergies_data"))


class TestMemoryStorage(_TestStorage):
    factory_class = MemoryStorageFactory

    def test_value_must_be_str(self):
        with self.assertRaises(StorageFailure):
            MemoryStorage().set_item("patients_data", [])


class TestSqliteStorage(_TestStorage):
    factory_class = SqliteStorageFactory

    def test_no_such_table(self):
        conn = sqlite3.connect(":memory:")
        self.addCleanup(conn.close)
        storage = SqliteStorage(conn, "whoops")
        with self.assertRaises(NoSuchTable):
            # pylint: disable-next=unnecessary-dunder-call
            storage.__enter__()
        storage.__exit__()

    def test_wrong_columns(self):
        conn = sqlite3.connect(":memory:")
        self.addCleanup(conn.close)
        conn.execute("CREATE TABLE kv (name text, value text)")
        with self.assertRaises(NameError):
            with SqliteStorage(conn, "kv"):
                pass

    def test_create_table(self):
        conn = sqlite3.connect(":memory:")
        self.addCleanup(conn.close)
        create_table(conn, "kv")
        # again is fine
        create_table(conn, "kv")
        with SqliteStorage(conn, "kv") as storage:
            storage.set_item("a", "1")
            self.assertEqual("1", storage.get_item("a"))

    def test_not_open(self):
        conn = sqlite3.connect(":memory:")
        self.addCleanup(conn.close)
        storage = SqliteStorage(conn, create_table=True)
        with self.assertRaises(StorageFailure):
            storage.get_item("patients_data")

    def test_driver_error_is_storage_failure(self):
        conn = sqlite3.connect(":memory:")
        storage = SqliteStorage(conn, create_table=True)
        with storage:
            conn.execute("DROP TABLE local_storage")
            with self.assertRaises(StorageFailure):
                storage.set_item("patients_data", "[]")
        conn.close()


@unittest.skipUnless(os.getenv("POSTGRES_HOST"), "POSTGRES_HOST not set")
class TestPostgresStorage(_TestStorage):
    factory_class = PostgresStorageFactory
