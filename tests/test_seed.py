import unittest

from patientregistry import util
from patientregistry.seed import seed
from patientregistry.storage import MemoryStorage
from patientregistry.store import PatientStore
from tests.fixtures import patient_fields

# Get log level from environment so we can set it for python -m unittest
util.logging_basic_config()


class TestSeed(unittest.TestCase):
    def setUp(self):
        self.store = PatientStore(MemoryStorage()).open()

    def test_seed_empty(self):
        self.assertEqual(5, seed(self.store))
        self.assertEqual(5, len(self.store.get_patients()))
        self.assertEqual(3, len(self.store.get_saved_queries()))
        self.assertTrue(self.store.check())

        by_name = {p.last_name: p for p in self.store.get_patients()}
        self.assertEqual(
            ["Peanuts", "Penicillin"],
            sorted(a.name for a in
                   self.store.get_allergies_by_patient_id(by_name["Smith"].id)))
        self.assertEqual(
            3, len(self.store.get_allergies_by_patient_id(by_name["Wilson"].id)))
        self.assertEqual(
            [], self.store.get_allergies_by_patient_id(by_name["Johnson"].id))

    def test_seed_skips_populated(self):
        self.store.create_patient(patient_fields())
        self.assertEqual(0, seed(self.store))
        self.assertEqual(1, len(self.store.get_patients()))
        self.assertEqual([], self.store.get_saved_queries())
