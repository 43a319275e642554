"""Collection descriptors and the validation applied at the form boundary.

The store only checks that required fields are present; the length and
format rules below are enforced by the validate_* functions, which forms
call before handing fields to the store.
"""
from dataclasses import dataclass
from datetime import date
from typing import Optional

import pydantic
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from patientregistry.errors import ValidationError
from patientregistry.records import Allergy, Patient, SavedQuery

PATIENTS = "patients"
ALLERGIES = "allergies"
SAVED_QUERIES = "saved_queries"


@dataclass(frozen=True)
class Collection:
    table: str
    storage_key: str
    record_class: type
    # immutable creation timestamp, also the default sort key
    timestamp_field: str
    required_fields: tuple

    def normalize(self, fields: dict) -> dict:
        """Return fields keyed by alias, dropping keys the record doesn't have."""
        aliases = self.record_class.aliases()
        return {aliases[key]: val for key, val in fields.items() if key in aliases}

    def timestamp(self, record):
        """The creation timestamp of record."""
        return record.to_dict()[self.timestamp_field]


COLLECTIONS = {
    PATIENTS: Collection(
        PATIENTS,
        "patients_data",
        Patient,
        "registrationDate",
        ("firstName", "lastName", "dob", "phone"),
    ),
    ALLERGIES: Collection(
        ALLERGIES, "allergies_data", Allergy, "createdAt", ("patientId", "name")
    ),
    SAVED_QUERIES: Collection(
        SAVED_QUERIES, "saved_queries_data", SavedQuery, "createdAt", ("name", "query")
    ),
}


def get_collection(table: str) -> Collection:
    try:
        return COLLECTIONS[table]
    except KeyError:
        raise KeyError(f"Unknown table '{table}'") from None


class _InsertSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    @field_validator("*", mode="before")
    @classmethod
    def _blank_to_none(cls, val):
        # forms send "" for untouched optional inputs
        if isinstance(val, str) and not val.strip():
            return None
        return val


class PatientInsert(_InsertSchema):
    first_name: str = Field(..., alias="firstName", min_length=2)
    last_name: str = Field(..., alias="lastName", min_length=2)
    dob: date
    gender: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: str = Field(..., min_length=10)
    address: Optional[str] = None
    insurance_provider: Optional[str] = Field(alias="insuranceProvider", default=None)
    medical_history: Optional[str] = Field(alias="medicalHistory", default=None)


class AllergyInsert(_InsertSchema):
    patient_id: int = Field(..., alias="patientId", gt=0)
    name: str = Field(..., min_length=2)
    severity: Optional[str] = None


class SavedQueryInsert(_InsertSchema):
    name: str = Field(..., min_length=2)
    query: str = Field(..., min_length=5)
    description: Optional[str] = None


def _validation_error(err: pydantic.ValidationError) -> ValidationError:
    errors = {}
    for error in err.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.setdefault(field, error["msg"])
    return ValidationError(errors)


def _validate(schema_class, fields: dict) -> dict:
    try:
        model = schema_class.model_validate(fields)
    except pydantic.ValidationError as err:
        raise _validation_error(err) from err
    return model.model_dump(by_alias=True, exclude_none=True)


def validate_patient(fields: dict) -> dict:
    return _validate(PatientInsert, fields)


def validate_allergy(fields: dict) -> dict:
    return _validate(AllergyInsert, fields)


def validate_saved_query(fields: dict) -> dict:
    return _validate(SavedQueryInsert, fields)


def missing_required(collection: Collection, fields: dict) -> dict:
    """Required fields absent (or None/blank) from fields, keyed by alias."""
    missing = {}
    for field in collection.required_fields:
        val = fields.get(field)
        if val is None or (isinstance(val, str) and not val.strip()):
            missing[field] = "Field required"
    return missing


def build_record(collection: Collection, data: dict):
    """Make a record of the collection's class from alias-keyed data."""
    try:
        return collection.record_class.model_validate(data)
    except pydantic.ValidationError as err:
        raise _validation_error(err) from err
