"""
Patient and appointment stores.

Thin async repositories over one ``AsyncSession``. They only flush; the
caller owns the transaction (see ``db.transaction``). Database failures are
translated into the service's error kinds here so the engine never sees a
raw SQLAlchemy exception.

Usage:
    patients = PatientStore(session)
    patient = await patients.find_by_ssn("23454555")
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from contextlib import contextmanager

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .db import Appointment, Patient
from .exceptions import Conflict, StoreUnavailable

logger = logging.getLogger(__name__)


@contextmanager
def _store_errors(operation: str):
    try:
        yield
    except IntegrityError as e:
        logger.warning("Constraint violated during %s: %s", operation, e.orig)
        raise Conflict(f"Constraint violated during '{operation}'") from e
    except SQLAlchemyError as e:
        logger.error("Store failure during %s: %s", operation, e)
        raise StoreUnavailable(operation, str(e)) from e


class PatientStore:
    """Identity store: patients keyed by their unique SSN."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def find_by_ssn(self, ssn: str) -> Patient | None:
        """Exact-match lookup on the unique ssn index."""
        with _store_errors("find patient"):
            result = await self._db.execute(select(Patient).where(Patient.ssn == ssn))
            return result.scalar_one_or_none()

    async def save(self, patient: Patient) -> Patient:
        """Insert a patient and flush so its id is assigned."""
        with _store_errors("save patient"):
            self._db.add(patient)
            await self._db.flush()
        return patient

    async def list_all(self) -> list[Patient]:
        with _store_errors("list patients"):
            result = await self._db.execute(select(Patient).order_by(Patient.id))
            return list(result.scalars().all())


class AppointmentStore:
    """Appointment store: every appointment is owned by exactly one patient."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def save_batch(self, appointments: Sequence[Appointment]) -> list[Appointment]:
        """Insert the whole batch in one flush."""
        with _store_errors("save appointments"):
            self._db.add_all(appointments)
            await self._db.flush()
        return list(appointments)

    async def find_all(self) -> list[Appointment]:
        with _store_errors("list appointments"):
            result = await self._db.execute(select(Appointment).order_by(Appointment.id))
            return list(result.scalars().all())

    async def find_by_owner(self, patient_id: int) -> list[Appointment]:
        """Appointments of one patient, in insertion (id) order."""
        with _store_errors("find appointments by owner"):
            stmt = select(Appointment).where(Appointment.patient_id == patient_id).order_by(Appointment.id)
            result = await self._db.execute(stmt)
            return list(result.scalars().all())

    async def find_by_reason(self, keyword: str) -> list[Appointment]:
        """Appointments whose whole reason equals ``keyword`` ignoring case.

        Folding happens in Python so non-ASCII letters compare the same on
        every backend (SQLite's lower() only folds ASCII).
        """
        wanted = keyword.casefold()
        with _store_errors("find appointments by reason"):
            result = await self._db.execute(select(Appointment).order_by(Appointment.id))
            return [a for a in result.scalars() if a.reason.casefold() == wanted]

    async def delete_batch(self, appointments: Sequence[Appointment]) -> int:
        """Delete the given appointments in one statement; returns the row count."""
        ids = [appointment.id for appointment in appointments]
        if not ids:
            return 0
        with _store_errors("delete appointments"):
            result = await self._db.execute(delete(Appointment).where(Appointment.id.in_(ids)))
            await self._db.flush()
        return result.rowcount
