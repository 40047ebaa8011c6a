import datetime as dt

from pydantic import BaseModel, Field

from .db import Appointment, Patient


class AppointmentRequest(BaseModel):
    """Bulk creation payload; reasons and dates are paired by position."""
    patient_name: str = Field(alias="patientName")
    ssn: str
    reasons: list[str]
    dates: list[dt.date]  # ISO-8601 calendar dates

    model_config = {
        "populate_by_name": True
    }

class PatientRequest(BaseModel):
    patient_name: str = Field(alias="patientName")
    ssn: str

    model_config = {
        "populate_by_name": True
    }

class AppointmentResponse(BaseModel):
    id: int
    reason: str
    date: dt.date
    created_at: dt.datetime | None = Field(None, alias="createdAt")
    updated_at: dt.datetime | None = Field(None, alias="updatedAt")

    model_config = {
        "populate_by_name": True
    }

    @classmethod
    def from_record(cls, appointment: Appointment) -> "AppointmentResponse":
        return cls(
            id=appointment.id,
            reason=appointment.reason,
            date=dt.date.fromisoformat(appointment.date),
            created_at=appointment.created_at,
            updated_at=appointment.updated_at,
        )

class PatientResponse(BaseModel):
    id: int
    name: str
    ssn: str

    @classmethod
    def from_record(cls, patient: Patient) -> "PatientResponse":
        return cls(id=patient.id, name=patient.name, ssn=patient.ssn)

class DeleteResponse(BaseModel):
    message: str
    ssn: str
    deleted: int

class ErrorResponse(BaseModel):
    """Body returned for every service error."""
    message: str
    error_code: str = Field(alias="errorCode")
    timestamp: dt.datetime

    model_config = {
        "populate_by_name": True
    }
