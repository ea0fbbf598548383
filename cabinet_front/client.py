"""Async client for the CabinetX API gateway.
Covers the clinic directory, patient registration and appointment booking.
"""
from __future__ import annotations
import os
from urllib.parse import quote

import httpx
from dotenv import load_dotenv
from loguru import logger

from .models import (
    ChatMessageResponse,
    ClinicDTO,
    ClinicLoad,
    PatientDTO,
    PatientIdentity,
    PersonalInfoDraft,
    RDVRequest,
    RDVResponse,
    Sex,
)
from .validation import normalize_cin, normalize_phone, parse_insurance

load_dotenv()

_BASE_URL = os.getenv("CABINETX_GATEWAY_URL", "http://localhost:8080")
_TIMEOUT = float(os.getenv("CABINETX_HTTP_TIMEOUT", "15"))

_SEX_MAPPING = {"M": Sex.MASCULINE, "F": Sex.FEMININE}

# Shown when the directory service is down or has nothing to offer.
DEFAULT_CLINICS: list[ClinicDTO] = [
    ClinicDTO(id=1, name="Cabinet Dr. Martin", specialty="Médecine générale", phone="0612345678",
              address="Centre Ville", status="ACTIVE", service_end_date="2027-12-31"),
    ClinicDTO(id=2, name="Cabinet Dr. Dupont", specialty="Dermatologie", phone="0623456789",
              address="Quartier Nord", status="ACTIVE", service_end_date="2027-12-31"),
    ClinicDTO(id=3, name="Cabinet Dr. Bernard", specialty="Cardiologie", phone="0634567890",
              address="Zone Sud", status="ACTIVE", service_end_date="2027-12-31"),
]


class BackendError(Exception):
    """Transport or server failure. `message` is the server's, when it sent one."""

    def __init__(self, message: str | None = None, status_code: int | None = None):
        super().__init__(message or f"backend error (status={status_code})")
        self.message = message
        self.status_code = status_code


class PatientConflict(BackendError):
    """Patient creation rejected because the CIN is already registered."""


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=_BASE_URL, http2=True, timeout=_TIMEOUT)


def _raise_for_status(resp: httpx.Response) -> None:
    if resp.is_success:
        return
    message = None
    try:
        body = resp.json()
        if isinstance(body, dict):
            message = body.get("message")
    except ValueError:
        pass
    raise BackendError(message, resp.status_code)


async def _request(method: str, path: str, **kwargs) -> httpx.Response:
    try:
        async with _client() as client:
            resp = await client.request(method, path, **kwargs)
    except httpx.HTTPError as exc:
        raise BackendError(None) from exc
    _raise_for_status(resp)
    return resp


# Clinic directory -----------------------------------------------------------

async def get_clinics_active() -> list[ClinicDTO]:
    resp = await _request("GET", "/api/clinics/active")
    return [ClinicDTO.model_validate(c) for c in resp.json()]


async def get_all_clinics() -> list[ClinicDTO]:
    resp = await _request("GET", "/api/clinics")
    return [ClinicDTO.model_validate(c) for c in resp.json()]


async def get_clinic_by_id(clinic_id: int) -> ClinicDTO:
    resp = await _request("GET", f"/api/clinics/{clinic_id}")
    return ClinicDTO.model_validate(resp.json())


async def load_active_clinics() -> ClinicLoad:
    """Return the active clinics, or the built-in list if there are none to show.

    Never raises: a broken directory must not make the booking form unusable.
    """
    try:
        clinics = await get_clinics_active()
    except (BackendError, ValueError) as exc:
        logger.warning(f"Clinic directory unavailable, using default clinics: {exc!r}")
        return ClinicLoad(source="fallback", clinics=list(DEFAULT_CLINICS))
    if not clinics:
        logger.warning("Clinic directory returned no active clinic, using default clinics")
        return ClinicLoad(source="fallback", clinics=list(DEFAULT_CLINICS))
    return ClinicLoad(source="remote", clinics=clinics)


# Patients --------------------------------------------------------------------

def build_patient(draft: PersonalInfoDraft) -> PatientDTO:
    """Map a validated draft to the backend's PatientDTO."""
    return PatientDTO(
        cin=normalize_cin(draft.cin),
        last_name=draft.last_name,
        first_name=draft.first_name,
        birth_date=draft.birth_date,
        sex=_SEX_MAPPING.get(draft.sex, Sex.OTHER),
        phone=normalize_phone(draft.phone),
        insurance_type=parse_insurance(draft.insurance_type),
        clinic_id=draft.clinic_id,
    )


async def create_patient(patient: PatientDTO) -> PatientDTO:
    try:
        resp = await _request("POST", "/api/patients", json=patient.model_dump(by_alias=True, exclude_none=True, mode="json"))
    except BackendError as exc:
        if exc.status_code in (400, 409):
            raise PatientConflict(exc.message, exc.status_code) from exc
        raise
    return PatientDTO.model_validate(resp.json())


async def get_patient_by_cin(cin: str) -> PatientDTO:
    resp = await _request("GET", f"/api/patients/cin/{quote(cin, safe='')}")
    return PatientDTO.model_validate(resp.json())


async def get_patient_by_id(patient_id: int) -> PatientDTO:
    resp = await _request("GET", f"/api/patients/{patient_id}")
    return PatientDTO.model_validate(resp.json())


async def create_or_fetch_patient(draft: PersonalInfoDraft) -> PatientIdentity:
    """Create the patient, or resolve to the existing record on a CIN conflict.

    Raises the creation error if both the creation and the lookup fail.
    """
    patient = build_patient(draft)
    try:
        created = await create_patient(patient)
        return PatientIdentity(id=created.id, cin=patient.cin)
    except PatientConflict as conflict:
        logger.info(f"Patient {patient.cin} already exists (status={conflict.status_code}), fetching by CIN")
        try:
            existing = await get_patient_by_cin(patient.cin)
        except (BackendError, ValueError) as exc:
            logger.error(f"Lookup of patient {patient.cin} after conflict failed: {exc!r}")
            raise conflict from exc
        return PatientIdentity(id=existing.id, cin=patient.cin, from_conflict=True)


# Appointments ----------------------------------------------------------------

async def create_appointment(rdv: RDVRequest) -> RDVResponse:
    payload = rdv.model_dump(by_alias=True, exclude_none=True, mode="json")
    resp = await _request("POST", "/api/appointments/rendezvous", json=payload)
    return RDVResponse.model_validate(resp.json())


async def get_appointments_by_date(date_iso: str, clinic_id: int) -> list[RDVResponse]:
    """Appointments booked at a clinic on a given date (YYYY-MM-DD)."""
    params = {"date": date_iso, "cabinetId": str(clinic_id)}
    resp = await _request("GET", "/api/appointments/by-date", params=params)
    return [RDVResponse.model_validate(r) for r in resp.json()]


# Chatbot ---------------------------------------------------------------------

async def post_chat_message(message: str, session_id: int | None = None) -> ChatMessageResponse:
    payload: dict = {"message": message}
    if session_id is not None:
        payload["sessionId"] = session_id
    resp = await _request("POST", "/api/chatbot/message", json=payload)
    return ChatMessageResponse.model_validate(resp.json())
