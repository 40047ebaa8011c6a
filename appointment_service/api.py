import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from . import config
from .db import get_engine, get_session, init_models
from .exceptions import AppointmentServiceError, Conflict, NotFound, StoreUnavailable, ValidationError
from .models import (
    AppointmentRequest,
    AppointmentResponse,
    DeleteResponse,
    ErrorResponse,
    PatientRequest,
    PatientResponse,
)
from .service import AppointmentService
from .usage import UsageRecorder

logger = logging.getLogger(__name__)

ROUTE_PATH = "/api"

# HTTPBearer scheme so Swagger-UI can attach the Authorization header globally
auth_scheme = HTTPBearer(auto_error=False)

# One recorder for the process, injected into every per-request service
usage_recorder = UsageRecorder()

_STATUS_BY_ERROR = {
    ValidationError: 400,
    NotFound: 404,
    Conflict: 409,
    StoreUnavailable: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    config.configure_logging()
    await init_models(get_engine())
    logger.info("Appointment service started")
    yield
    await get_engine().dispose()


app = FastAPI(title="Appointment Service", lifespan=lifespan)


def verify_api_key(credentials: HTTPAuthorizationCredentials = Depends(auth_scheme)):
    """Validate Bearer token provided via Authorization header (skipped when API_KEY is unset)"""
    if not config.API_KEY:
        return
    if credentials is None or credentials.scheme.lower() != "bearer" or credentials.credentials != config.API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")


def get_service(session: AsyncSession = Depends(get_session)) -> AppointmentService:
    return AppointmentService(session, usage=usage_recorder)


@app.exception_handler(AppointmentServiceError)
async def service_error_handler(request: Request, exc: AppointmentServiceError):
    status = _STATUS_BY_ERROR.get(type(exc), 500)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    body = ErrorResponse(message=exc.message, error_code=exc.error_code, timestamp=datetime.now(UTC))
    return JSONResponse(status_code=status, content=body.model_dump(mode="json", by_alias=True))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    body = ErrorResponse(message=f"Invalid request: {problems}", error_code="REQUEST_INVALID", timestamp=datetime.now(UTC))
    return JSONResponse(status_code=422, content=body.model_dump(mode="json", by_alias=True))


@app.get("/health")
async def health():
    return {"status": "ok"}

# Appointment endpoints -----------------------------------------------------

@app.post(
    f"{ROUTE_PATH}/bulk-appointments",
    dependencies=[Depends(verify_api_key)],
    response_model=list[AppointmentResponse],
    status_code=201,
)
async def create_bulk_appointments(req: AppointmentRequest, service: AppointmentService = Depends(get_service)):
    """Create one appointment per (reason, date) pair; extra items in the longer list are ignored.

    Example: {"patientName": "John Doe", "ssn": "23454555",
              "reasons": ["Checkup", "Follow-up", "X-Ray"],
              "dates": ["2025-02-01", "2025-02-15", "2025-03-01"]}
    """
    logger.debug("REST request to create bulk appointments: %s", req)
    created = await service.create_appointments(req.ssn, req.patient_name, req.reasons, req.dates)
    return [AppointmentResponse.from_record(a) for a in created]

@app.get(
    f"{ROUTE_PATH}/appointments-by-reason",
    dependencies=[Depends(verify_api_key)],
    response_model=list[AppointmentResponse],
)
async def appointments_by_reason(
    keyword: str = Query(..., description="Reason to match, whole string, case-insensitive"),
    service: AppointmentService = Depends(get_service),
):
    matched = await service.find_by_reason(keyword)
    return [AppointmentResponse.from_record(a) for a in matched]

@app.get(
    f"{ROUTE_PATH}/appointments/latest",
    dependencies=[Depends(verify_api_key)],
    response_model=Optional[AppointmentResponse],
)
async def latest_appointment(
    ssn: str = Query(..., description="Patient SSN"),
    service: AppointmentService = Depends(get_service),
):
    """Return the patient's most recent appointment, or null when there is none."""
    latest = await service.find_latest(ssn)
    if latest is None:
        return None
    return AppointmentResponse.from_record(latest)

@app.post(
    f"{ROUTE_PATH}/delete-appointments",
    dependencies=[Depends(verify_api_key)],
    response_model=DeleteResponse,
)
async def delete_appointments(
    ssn: str = Query(..., description="Patient SSN"),
    service: AppointmentService = Depends(get_service),
):
    deleted = await service.delete_by_owner(ssn)
    return DeleteResponse(
        message=f"Successfully deleted all appointments for SSN: {ssn}",
        ssn=ssn,
        deleted=deleted,
    )

# Patient endpoints ---------------------------------------------------------

@app.post(
    f"{ROUTE_PATH}/patients",
    dependencies=[Depends(verify_api_key)],
    response_model=PatientResponse,
    status_code=201,
)
async def register_patient(req: PatientRequest, service: AppointmentService = Depends(get_service)):
    """Register a patient; an existing SSN returns the stored patient unchanged."""
    patient = await service.resolve_or_create_patient(req.ssn, req.patient_name)
    return PatientResponse.from_record(patient)

@app.get(f"{ROUTE_PATH}/patients", dependencies=[Depends(verify_api_key)], response_model=list[PatientResponse])
async def list_patients(service: AppointmentService = Depends(get_service)):
    return [PatientResponse.from_record(p) for p in await service.list_patients()]

@app.get(f"{ROUTE_PATH}/patients/{{ssn}}", dependencies=[Depends(verify_api_key)], response_model=PatientResponse)
async def get_patient(ssn: str, service: AppointmentService = Depends(get_service)):
    return PatientResponse.from_record(await service.get_patient(ssn))


def run() -> None:
    import uvicorn

    uvicorn.run("appointment_service.api:app", host=config.APP_HOST, port=config.APP_PORT)
