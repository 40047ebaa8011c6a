"""
Appointment engine: patient resolution and appointment batch handling.

Every public coroutine records exactly one usage event, whether it
succeeds or fails.

Known race: ``resolve_or_create_patient`` reads then writes without a lock.
Two concurrent first-time calls for the same SSN can both miss the lookup;
the unique index on ``patients.ssn`` makes the second insert fail with
``Conflict`` instead of creating a duplicate.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from .db import Appointment, Patient, transaction
from .exceptions import NotFound, ValidationError
from .stores import AppointmentStore, PatientStore
from .usage import UsageRecorder

logger = logging.getLogger(__name__)


def _require(value: str | None, field: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field} cannot be null or empty")
    return value


def canonical_date(value: date | str) -> str:
    """Return ``value`` as a YYYY-MM-DD string (four-digit, zero-padded year)."""
    if isinstance(value, datetime):
        value = value.date()
    elif isinstance(value, str):
        try:
            value = date.fromisoformat(value)
        except ValueError as e:
            raise ValidationError(f"Invalid date format: {value}") from e
    elif not isinstance(value, date):
        raise ValidationError(f"Appointment date must be a date or ISO string, got {value!r}")
    return value.isoformat()


def _pair(reason: str | None, day: date | str | None) -> tuple[str, str]:
    if not isinstance(reason, str) or not reason.strip():
        raise ValidationError("Appointment reason cannot be null or empty")
    return reason, canonical_date(day)


class AppointmentService:
    def __init__(
        self,
        session: AsyncSession,
        usage: UsageRecorder | None = None,
        patients: PatientStore | None = None,
        appointments: AppointmentStore | None = None,
    ) -> None:
        self._session = session
        self.usage = usage or UsageRecorder()
        self.patients = patients or PatientStore(session)
        self.appointments = appointments or AppointmentStore(session)

    # Identity -----------------------------------------------------------------

    async def _resolve_or_create(self, ssn: str, name: str) -> Patient:
        patient = await self.patients.find_by_ssn(ssn)
        if patient is not None:
            return patient
        logger.info("Creating new patient with SSN: %s", ssn)
        return await self.patients.save(Patient(name=name, ssn=ssn))

    async def resolve_or_create_patient(self, ssn: str, name: str) -> Patient:
        """Return the patient with ``ssn``, registering it as ``name`` if absent.

        An existing patient is returned unchanged; its name is never overwritten.
        """
        self.usage.record("Resolve or create patient")
        _require(ssn, "SSN")
        _require(name, "Patient name")
        async with transaction(self._session):
            return await self._resolve_or_create(ssn, name)

    async def get_patient(self, ssn: str) -> Patient:
        self.usage.record("Get patient")
        patient = await self.patients.find_by_ssn(ssn)
        if patient is None:
            raise NotFound(f"No patient found with SSN: {ssn}")
        return patient

    async def list_patients(self) -> list[Patient]:
        self.usage.record("List patients")
        return await self.patients.list_all()

    # Appointments -------------------------------------------------------------

    async def create_appointments(
        self,
        ssn: str,
        name: str,
        reasons: Sequence[str] | None,
        dates: Sequence[date | str] | None,
    ) -> list[Appointment]:
        """Create one appointment per (reason, date) pair for the patient ``ssn``.

        The lists are paired by index. When their lengths differ only
        ``min(len(reasons), len(dates))`` appointments are built and the
        surplus is dropped. The patient (if new) and the whole batch are
        committed together or not at all.
        """
        self.usage.record("Bulk create appointments")
        _require(ssn, "SSN")
        _require(name, "Patient name")
        if not reasons or not dates:
            raise ValidationError("Incomplete request: reasons and dates cannot be null or empty")
        pairs = [_pair(reason, day) for reason, day in zip(reasons, dates)]

        async with transaction(self._session):
            patient = await self._resolve_or_create(ssn, name)
            batch = [Appointment(reason=reason, date=day, patient_id=patient.id) for reason, day in pairs]
            saved = await self.appointments.save_batch(batch)

        logger.info("Successfully created %d appointments for patient with SSN: %s", len(saved), ssn)
        return saved

    async def find_by_reason(self, keyword: str | None) -> list[Appointment]:
        """Appointments whose reason equals ``keyword`` ignoring case.

        This is a whole-string match, not a substring search: "Checkup"
        matches "checkup" but not "Annual Checkup".
        """
        self.usage.record("Get appointments by reason")
        if keyword is None or not keyword.strip():
            raise ValidationError("Reason keyword cannot be null or empty")
        return await self.appointments.find_by_reason(keyword)

    async def find_latest(self, ssn: str) -> Appointment | None:
        """The patient's appointment with the greatest date, or None.

        Ties on the date go to the earliest-created appointment.
        """
        self.usage.record("Find latest appointment")
        patient = await self.patients.find_by_ssn(ssn)
        if patient is None:
            return None
        owned = await self.appointments.find_by_owner(patient.id)
        if not owned:
            return None
        # max() keeps the first maximal element; owned is in id order
        return max(owned, key=lambda appointment: appointment.date)

    async def delete_by_owner(self, ssn: str) -> int:
        """Delete every appointment of the patient ``ssn``; returns how many.

        Unknown patients and patients without appointments yield 0. The
        patient record itself is kept.
        """
        self.usage.record("Delete appointments by owner")
        patient = await self.patients.find_by_ssn(ssn)
        if patient is None:
            logger.warning("No patient found with SSN: %s", ssn)
            return 0
        owned = await self.appointments.find_by_owner(patient.id)
        if not owned:
            logger.info("No appointments found for patient with SSN: %s", ssn)
            return 0

        async with transaction(self._session):
            deleted = await self.appointments.delete_batch(owned)

        logger.info("Successfully deleted %d appointments for patient with SSN: %s", deleted, ssn)
        return deleted
