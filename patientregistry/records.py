"""Record shapes for the three collections.

Attributes are snake_case; the persisted and broadcast form uses the
camelCase aliases.
"""
from datetime import date, datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Record(BaseModel):
    # Allow initialization by either field names or aliases
    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(..., gt=0)

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)

    @classmethod
    def aliases(cls) -> dict:
        """Map of every accepted key (field name and alias) to its alias."""
        ret = {}
        for name, info in cls.model_fields.items():
            alias = info.alias or name
            ret[name] = alias
            ret[alias] = alias
        return ret


def _utc_if_naive(when: datetime) -> datetime:
    # older data may carry timestamps without an offset
    if when.tzinfo is None:
        return when.replace(tzinfo=timezone.utc)
    return when


class Patient(Record):
    first_name: str = Field(..., alias="firstName")
    last_name: str = Field(..., alias="lastName")
    dob: date
    gender: Optional[str] = None
    email: Optional[str] = None
    phone: str
    address: Optional[str] = None
    insurance_provider: Optional[str] = Field(alias="insuranceProvider", default=None)
    medical_history: Optional[str] = Field(alias="medicalHistory", default=None)
    # set once at creation
    registration_date: datetime = Field(..., alias="registrationDate")

    registration_utc = field_validator("registration_date")(_utc_if_naive)


class Allergy(Record):
    patient_id: int = Field(..., alias="patientId")
    name: str
    severity: Optional[str] = None
    created_at: datetime = Field(..., alias="createdAt")

    created_utc = field_validator("created_at")(_utc_if_naive)


class SavedQuery(Record):
    name: str
    query: str
    description: Optional[str] = None
    created_at: datetime = Field(..., alias="createdAt")

    created_utc = field_validator("created_at")(_utc_if_naive)
