import unittest
from datetime import datetime, timedelta, timezone

from patientregistry.json import JsonDecoder, JsonEncoder
from patientregistry.records import Allergy


class TestJson(unittest.TestCase):
    def setUp(self) -> None:
        self.dt_aware = datetime.strptime(
            '2021-02-04 13:10:03 -0600', '%Y-%m-%d %H:%M:%S %z')
        self.assertEqual(timezone(-timedelta(hours=6)), self.dt_aware.tzinfo)
        self.allergy = Allergy(id=1, patientId=2, name='Dust',
                               createdAt=self.dt_aware)

    def test_encode_record(self):
        self.assertEqual(
            '{"id": 1, "patientId": 2, "name": "Dust", "severity": null,'
            ' "createdAt": "2021-02-04T13:10:03-06:00"}',
            JsonEncoder().encode(self.allergy))

    def test_encode_list(self):
        blob = JsonEncoder().encode([self.allergy, {'id': 7}])
        self.assertTrue(blob.startswith('[{"id": 1, "patientId": 2'))
        self.assertTrue(blob.endswith('{"id": 7}]'))

    def test_encode_unknown_type(self):
        with self.assertRaises(TypeError):
            JsonEncoder().encode({'when': object()})

    def test_decode(self):
        blob = JsonEncoder().encode([self.allergy])
        docs = JsonDecoder().decode(blob)

        # dates come back as strings, the record class parses them
        self.assertEqual('2021-02-04T13:10:03-06:00', docs[0]['createdAt'])
        self.assertEqual(self.allergy, Allergy.model_validate(docs[0]))

    def test_decode_empty(self):
        self.assertEqual([], JsonDecoder().decode(None))
        self.assertEqual([], JsonDecoder().decode(''))
        self.assertEqual([], JsonDecoder().decode('[]'))

    def test_decode_corrupt(self):
        with self.assertRaises(ValueError):
            JsonDecoder().decode('[{"id": 1')
        with self.assertRaises(ValueError):
            JsonDecoder().decode('{"id": 1}')
