from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from appointment_service.db import Appointment, Patient
from appointment_service.exceptions import Conflict, StoreUnavailable
from appointment_service.stores import AppointmentStore, PatientStore


@pytest.mark.asyncio
async def test_find_by_ssn_is_exact(session):
    store = PatientStore(session)
    await store.save(Patient(name="John Doe", ssn="23454555"))

    assert (await store.find_by_ssn("23454555")).name == "John Doe"
    assert await store.find_by_ssn("2345455") is None
    assert await store.find_by_ssn("23454555 ") is None


@pytest.mark.asyncio
async def test_save_duplicate_ssn_raises_conflict(session):
    store = PatientStore(session)
    await store.save(Patient(name="John Doe", ssn="23454555"))
    with pytest.raises(Conflict):
        await store.save(Patient(name="Jane Doe", ssn="23454555"))
    await session.rollback()


@pytest.mark.asyncio
async def test_find_by_owner_in_insertion_order(session):
    patients = PatientStore(session)
    owner = await patients.save(Patient(name="Ann", ssn="A"))
    other = await patients.save(Patient(name="Bob", ssn="B"))

    store = AppointmentStore(session)
    await store.save_batch([
        Appointment(reason="X-Ray", date="2025-03-01", patient_id=owner.id),
        Appointment(reason="Checkup", date="2025-01-01", patient_id=other.id),
        Appointment(reason="Follow-up", date="2025-02-01", patient_id=owner.id),
    ])

    owned = await store.find_by_owner(owner.id)
    assert [a.reason for a in owned] == ["X-Ray", "Follow-up"]
    assert len(await store.find_all()) == 3


@pytest.mark.asyncio
async def test_delete_batch(session):
    owner = await PatientStore(session).save(Patient(name="Ann", ssn="A"))
    store = AppointmentStore(session)
    saved = await store.save_batch([
        Appointment(reason="Checkup", date="2025-01-01", patient_id=owner.id),
        Appointment(reason="X-Ray", date="2025-03-01", patient_id=owner.id),
    ])

    assert await store.delete_batch([]) == 0
    assert await store.delete_batch(saved) == 2
    assert await store.find_by_owner(owner.id) == []


@pytest.mark.asyncio
async def test_database_errors_become_store_unavailable():
    broken = AsyncMock()
    broken.execute.side_effect = OperationalError("SELECT", {}, Exception("db down"))

    with pytest.raises(StoreUnavailable) as exc_info:
        await AppointmentStore(broken).find_by_reason("Checkup")
    assert exc_info.value.operation == "find appointments by reason"
    assert isinstance(exc_info.value.__cause__, OperationalError)


@pytest.mark.asyncio
async def test_find_by_reason_matches_non_ascii_case_insensitively(session):
    owner = await PatientStore(session).save(Patient(name="Ann", ssn="A"))
    store = AppointmentStore(session)
    await store.save_batch([
        Appointment(reason="Échographie", date="2025-01-01", patient_id=owner.id),
        Appointment(reason="Annual Échographie", date="2025-02-01", patient_id=owner.id),
    ])

    assert [a.reason for a in await store.find_by_reason("ÉCHOGRAPHIE")] == ["Échographie"]
