"""The local store: the one authority for reading and writing the collections.

Each operation reads the whole collection from storage, works on it, and
writes the whole collection back.  The cycle is not atomic across stores
sharing a storage, so two writers can lose each other's updates or hand out
the same id.  Run one writer per storage.

Failure policy: create raises; reads, update and delete log the failure and
return an empty result ([], None or False).  A malformed filter is a read
failure too.

Validation is limited to required fields being present, with one addition:
an allergy can only be created for a patient that exists.
"""
import logging
from collections.abc import Sequence
from datetime import date, datetime, time, timezone
from typing import Optional, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from patientregistry import util
from patientregistry.broadcast import BroadcastChannel, ChangeEvent
from patientregistry.errors import RegistryError, StorageFailure, ValidationError
from patientregistry.json import JsonDecoder, JsonEncoder
from patientregistry.query import QueryExecutor, QueryResult
from patientregistry.records import Allergy, Patient, Record, SavedQuery
from patientregistry.schema import (
    ALLERGIES,
    COLLECTIONS,
    PATIENTS,
    SAVED_QUERIES,
    Collection,
    build_record,
    get_collection,
    missing_required,
)
from patientregistry.storage import Storage

logger = logging.getLogger(__name__)


class FilterCriteria(BaseModel):
    """Patient filter.  Criteria left out (None or empty) are not applied."""

    model_config = ConfigDict(populate_by_name=True)

    age_min: Optional[int] = Field(alias="ageMin", default=None)
    age_max: Optional[int] = Field(alias="ageMax", default=None)
    genders: Optional[list[str]] = Field(alias="gender", default=None)
    # a bare date covers that whole day (UTC)
    registration_start: Union[datetime, date, None] = Field(
        alias="registrationDateStart", default=None
    )
    registration_end: Union[datetime, date, None] = Field(
        alias="registrationDateEnd", default=None
    )
    insurance_provider: Optional[str] = Field(alias="insuranceProvider", default=None)

    @field_validator("registration_start", "registration_end", mode="before")
    @classmethod
    def _parse_bound(cls, val):
        if isinstance(val, str):
            val = val.strip()
            if not val:
                return None
            if len(val) == 10:
                return date.fromisoformat(val)
            return datetime.fromisoformat(val.replace("Z", "+00:00"))
        return val

    @field_validator("genders", mode="before")
    @classmethod
    def _single_gender(cls, val):
        if isinstance(val, str):
            return [val]
        return val


def _as_utc(when: datetime) -> datetime:
    if when.tzinfo is None:
        return when.replace(tzinfo=timezone.utc)
    return when


def _after_start(registered: datetime, start) -> bool:
    if isinstance(start, datetime):
        return _as_utc(registered) >= _as_utc(start)
    return _as_utc(registered) >= datetime.combine(start, time.min, timezone.utc)


def _before_end(registered: datetime, end) -> bool:
    if isinstance(end, datetime):
        return _as_utc(registered) <= _as_utc(end)
    return _as_utc(registered).date() <= end


class PatientStore:
    def __init__(
        self,
        storage: Storage,
        channel: Optional[BroadcastChannel] = None,
        name: str = "store",
    ):
        """Init a store.

        :param storage  Durable storage, possibly shared with other stores
        :param channel  Where to publish changes.  If None, changes are
                        not broadcast.
        :param name  Human-readable name, used in log messages
        """
        self.storage = storage
        self.channel = channel
        self.name = name
        self.ready = False
        self._encoder = JsonEncoder()
        self._decoder = JsonDecoder()

    def __enter__(self):
        return self.open()

    def __exit__(self, *args):
        self.close()

    def open(self) -> "PatientStore":
        """Create empty collections for absent keys.  Return the ready store.

        Raises StorageFailure if storage can't be read or written."""
        if self.ready:
            return self
        logger.debug(f"{self.name}: initializing on {self.storage.name}")
        for collection in COLLECTIONS.values():
            if self.storage.get_item(collection.storage_key) is None:
                logger.debug(f"{self.name}: creating empty {collection.storage_key}")
                self.storage.set_item(collection.storage_key, self._encoder.encode([]))
        self.ready = True
        return self

    def close(self) -> None:
        if self.channel:
            self.channel.close()
        self.ready = False

    def on_remote_change(self, handler):
        """Register handler for changes other stores broadcast."""
        if not self.channel:
            raise RegistryError(f"{self.name}: store has no channel")
        return self.channel.on_receive(handler)

    # storage

    def _check_ready(self):
        if not self.ready:
            raise RegistryError(f"{self.name}: store is not open")

    def _read(self, collection: Collection) -> Sequence[Record]:
        self._check_ready()
        blob = self.storage.get_item(collection.storage_key)
        try:
            rows = self._decoder.decode(blob)
            # pydantic's ValidationError is a ValueError
            return [collection.record_class.model_validate(row) for row in rows]
        except ValueError as err:
            raise StorageFailure(f"{collection.storage_key} is corrupt: {err}") from err

    def _write(self, collection: Collection, records: Sequence[Record]) -> None:
        self.storage.set_item(collection.storage_key, self._encoder.encode(records))

    def _publish(self, event: ChangeEvent) -> None:
        if self.channel:
            self.channel.publish(event)

    @staticmethod
    def _newest_first(collection: Collection, records):
        return sorted(records, key=collection.timestamp, reverse=True)

    # generic operations

    def list(self, table: str) -> Sequence[Record]:
        """All records of table, newest first."""
        collection = get_collection(table)
        try:
            records = self._read(collection)
        except StorageFailure as err:
            logger.error(f"{self.name}: error getting {table}: {err}")
            return []
        return self._newest_first(collection, records)

    def get_by_id(self, table: str, the_id: int) -> Optional[Record]:
        """Return record, or None if not present."""
        collection = get_collection(table)
        try:
            records = self._read(collection)
        except StorageFailure as err:
            logger.error(f"{self.name}: error getting {table} {the_id}: {err}")
            return None
        for record in records:
            if record.id == the_id:
                return record
        return None

    def create(self, table: str, fields: dict) -> Record:
        """Add a record built from fields, with a new id and timestamp.

        Only checks that the required fields are present; forms run the
        full validation in patientregistry.schema first.  The caller's id and
        timestamp, if any, are ignored.

        :raises ValidationError  required field missing or malformed
        :raises StorageFailure  collection could not be read or written
        """
        collection = get_collection(table)
        fields = collection.normalize(fields)
        missing = missing_required(collection, fields)
        if missing:
            raise ValidationError(missing)

        try:
            if table == ALLERGIES:
                self._check_patient_exists(fields["patientId"])
            records = list(self._read(collection))
            # NOTE: another store on the same storage can compute the same id
            new_id = max((record.id for record in records), default=0) + 1
            data = dict(fields)
            data["id"] = new_id
            data[collection.timestamp_field] = util.utcnow()
            record = build_record(collection, data)
            records.append(record)
            self._write(collection, records)
        except StorageFailure as err:
            logger.error(f"{self.name}: error creating {table}: {err}")
            raise

        logger.debug(f"{self.name}: created {table} {new_id}")
        self._publish(ChangeEvent(type="insert", table=table, data=record.to_dict()))
        return record

    def _check_patient_exists(self, patient_id) -> None:
        try:
            patient_id = int(patient_id)
        except (TypeError, ValueError):
            raise ValidationError({"patientId": "Must be an integer"}) from None
        patients = self._read(COLLECTIONS[PATIENTS])
        if not any(patient.id == patient_id for patient in patients):
            raise ValidationError({"patientId": f"No patient with id {patient_id}"})

    def update(self, table: str, the_id: int, patch: dict) -> Optional[Record]:
        """Merge patch over record the_id.  Fields not in patch are unchanged.

        Return the merged record, or None if there is no such record or
        storage failed.  id and the creation timestamp never change.

        :raises ValidationError  the merged record is malformed
        """
        collection = get_collection(table)
        patch = collection.normalize(patch)
        patch.pop("id", None)
        patch.pop(collection.timestamp_field, None)

        try:
            records = list(self._read(collection))
            for idx, record in enumerate(records):
                if record.id == the_id:
                    break
            else:
                logger.debug(f"{self.name}: no {table} {the_id} to update")
                return None
            merged = record.to_dict()
            merged.update(patch)
            updated = build_record(collection, merged)
            records[idx] = updated
            self._write(collection, records)
        except StorageFailure as err:
            logger.error(f"{self.name}: error updating {table} {the_id}: {err}")
            return None

        logger.debug(f"{self.name}: updated {table} {the_id} with {patch}")
        self._publish(
            ChangeEvent(type="update", table=table, data=updated.to_dict(), id=the_id)
        )
        return updated

    def delete(self, table: str, the_id: int) -> bool:
        """Delete record the_id.  Deleting a patient deletes its allergies.

        Returns True if the record is gone afterwards, including when it was
        never there; False if storage failed.  Every successful call writes
        and broadcasts one delete event, even when nothing matched.  Only
        the deleted record's own event is broadcast, not the cascaded
        allergies.

        The patient is written before its allergies.  If the allergy write
        fails, the patient stays deleted, its allergies stay behind, and the
        call returns False without broadcasting.
        """
        collection = get_collection(table)
        try:
            records = self._read(collection)
            remaining = [record for record in records if record.id != the_id]
            if len(remaining) == len(records):
                logger.debug(f"{self.name}: no {table} {the_id} present")
            self._write(collection, remaining)

            if table == PATIENTS:
                allergies = COLLECTIONS[ALLERGIES]
                records = self._read(allergies)
                remaining = [rec for rec in records if rec.patient_id != the_id]
                self._write(allergies, remaining)
                logger.debug(
                    f"{self.name}: cascaded {len(records) - len(remaining)}"
                    f" allergies of patient {the_id}"
                )
        except StorageFailure as err:
            logger.error(f"{self.name}: error deleting {table} {the_id}: {err}")
            return False

        logger.debug(f"{self.name}: deleted {table} {the_id}")
        self._publish(ChangeEvent(type="delete", table=table, id=the_id))
        return True

    def check(self) -> bool:
        """Do some sanity checks.  Return True if they pass.

        Note: this reads every collection into memory.
        """
        ret = True
        for collection in COLLECTIONS.values():
            seen = set()
            for record in self._read(collection):
                if record.id in seen:
                    logger.warning(
                        f"{collection.table} id {record.id} is repeated"
                    )
                    ret = False
                seen.add(record.id)

        patient_ids = {patient.id for patient in self._read(COLLECTIONS[PATIENTS])}
        for allergy in self._read(COLLECTIONS[ALLERGIES]):
            if allergy.patient_id not in patient_ids:
                logger.warning(
                    f"allergy {allergy.id} refers to missing patient"
                    f" {allergy.patient_id}"
                )
                ret = False
        return ret

    # patients

    def get_patients(self) -> Sequence[Patient]:
        return self.list(PATIENTS)

    def get_patient_by_id(self, the_id: int) -> Optional[Patient]:
        return self.get_by_id(PATIENTS, the_id)

    def create_patient(self, fields: dict) -> Patient:
        return self.create(PATIENTS, fields)

    def update_patient(self, the_id: int, patch: dict) -> Optional[Patient]:
        return self.update(PATIENTS, the_id, patch)

    def delete_patient(self, the_id: int) -> bool:
        return self.delete(PATIENTS, the_id)

    def search_patients(self, term: str) -> Sequence[Patient]:
        """Patients with term in a name, email, phone, address or insurer.

        Case-insensitive.  A blank term returns every patient."""
        patients = self.list(PATIENTS)
        if not term or not term.strip():
            return patients

        term = term.lower()
        return [
            patient
            for patient in patients
            if any(
                term in value.lower()
                for value in (
                    patient.first_name,
                    patient.last_name,
                    patient.email,
                    patient.phone,
                    patient.address,
                    patient.insurance_provider,
                )
                if value
            )
        ]

    def filter_patients(self, criteria=None, **kwargs) -> Sequence[Patient]:
        """Patients matching every given criterion, newest first.

        :param criteria  FilterCriteria, or a dict of its fields (snake_case
                         or camelCase).  Keyword arguments work too.
                         Malformed criteria match nothing.
        """
        if not isinstance(criteria, FilterCriteria):
            try:
                criteria = FilterCriteria.model_validate(criteria or kwargs)
            except pydantic.ValidationError as err:
                logger.error(f"{self.name}: bad patient filter: {err}")
                return []
        today = date.today()

        def matches(patient: Patient) -> bool:
            if criteria.age_min is not None or criteria.age_max is not None:
                age = util.calendar_age(patient.dob, today)
                if criteria.age_min is not None and age < criteria.age_min:
                    return False
                if criteria.age_max is not None and age > criteria.age_max:
                    return False

            if criteria.genders and patient.gender not in criteria.genders:
                return False

            if criteria.registration_start and not _after_start(
                patient.registration_date, criteria.registration_start
            ):
                return False
            if criteria.registration_end and not _before_end(
                patient.registration_date, criteria.registration_end
            ):
                return False

            if (
                criteria.insurance_provider
                and patient.insurance_provider != criteria.insurance_provider
            ):
                return False
            return True

        return [patient for patient in self.list(PATIENTS) if matches(patient)]

    # generic names for the patient-only reads
    search = search_patients
    filter = filter_patients

    # allergies

    def get_allergies_by_patient_id(self, patient_id: int) -> Sequence[Allergy]:
        return [
            allergy
            for allergy in self.list(ALLERGIES)
            if allergy.patient_id == patient_id
        ]

    def create_allergy(self, fields: dict) -> Allergy:
        return self.create(ALLERGIES, fields)

    def delete_allergy(self, the_id: int) -> bool:
        return self.delete(ALLERGIES, the_id)

    # saved queries

    def get_saved_queries(self) -> Sequence[SavedQuery]:
        return self.list(SAVED_QUERIES)

    def create_saved_query(self, fields: dict) -> SavedQuery:
        return self.create(SAVED_QUERIES, fields)

    def delete_saved_query(self, the_id: int) -> bool:
        return self.delete(SAVED_QUERIES, the_id)

    def execute_query(self, text: str) -> QueryResult:
        return QueryExecutor(self).execute(text)
