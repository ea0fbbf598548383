from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class Sex(str, Enum):
    MASCULINE = "MASCULIN"
    FEMININE = "FEMININ"
    OTHER = "AUTRE"


class InsuranceType(str, Enum):
    NONE = "AUCUNE"
    CNSS = "CNSS"
    CNOPS = "CNOPS"
    PRIVATE = "PRIVEE"


class AppointmentReason(str, Enum):
    CONSULTATION = "CONSULTATION"
    CONTROL = "CONTROL"


class ClinicStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


class WizardStep(str, Enum):
    COLLECTING_PERSONAL = "CollectingPersonal"
    COLLECTING_APPOINTMENT = "CollectingAppointment"
    CONFIRMED = "Confirmed"


# Drafts, as typed by the user ----------------------------------------------

class PersonalInfoDraft(BaseModel):
    cin: str = ""
    last_name: str = ""
    first_name: str = ""
    phone: str = ""
    sex: str = ""  # "M" or "F"
    birth_date: str = ""  # ISO-8601 date
    insurance_type: str = ""
    clinic_id: int | None = None


class AppointmentDraft(BaseModel):
    date: str = ""  # YYYY-MM-DD
    start_time: str = ""  # HH:MM, 24h
    reason: str = ""  # "Consultation" / "Contrôle"
    notes: str = ""


class ValidationResult(BaseModel):
    valid: bool
    errors: dict[str, str] = Field(default_factory=dict)


# Wire DTOs ------------------------------------------------------------------

class _Wire(BaseModel):
    model_config = {
        "populate_by_name": True
    }


class ClinicDTO(_Wire):
    """Clinic directory entry as served by /api/clinics."""
    id: int
    name: str
    specialty: str = ""
    phone: str = ""
    address: str = ""
    logo_url: str | None = Field(default=None, alias="logoUrl")
    status: ClinicStatus = ClinicStatus.ACTIVE
    service_end_date: str | None = Field(default=None, alias="serviceEndDate")


class Address(_Wire):
    street: str | None = Field(default=None, alias="rue")
    city: str | None = Field(default=None, alias="ville")
    postal_code: str | None = Field(default=None, alias="codePostal")


class PatientDTO(_Wire):
    id: int | None = None
    cin: str
    last_name: str = Field(alias="nom")
    first_name: str = Field(alias="prenom")
    birth_date: str = Field(alias="dateNaissance")
    sex: Sex = Field(alias="sexe")
    phone: str = Field(alias="numTel")
    insurance_type: InsuranceType = Field(alias="typeMutuelle")
    clinic_id: int = Field(alias="cabinetId")
    address: Address | None = Field(default=None, alias="adresse")
    created_at: str | None = Field(default=None, alias="createdAt")


class RDVRequest(_Wire):
    patient_id: int = Field(alias="patientId")
    clinic_id: int = Field(alias="cabinetId")
    date: str
    start: str = Field(alias="Heure_debut")  # HH:MM
    end: str = Field(alias="Heure_fin")
    reason: AppointmentReason = Field(alias="motifRDV")
    notes: str | None = None


class RDVResponse(_Wire):
    """Appointment confirmation returned by the appointment service."""
    id: int
    patient_id: int | None = Field(default=None, alias="patientId")
    clinic_id: int | None = Field(default=None, alias="cabinetId")
    date: str | None = None
    start: str | None = Field(default=None, alias="heureDebut")
    end: str | None = Field(default=None, alias="heureFin")
    reason: str | None = Field(default=None, alias="motifRDV")
    status: str | None = Field(default=None, alias="statut")
    notes: str | None = None


# Gateway results --------------------------------------------------------------

class ClinicLoad(BaseModel):
    """Outcome of a directory load: remote data or the built-in fallback."""
    source: Literal["remote", "fallback"]
    clinics: list[ClinicDTO]

    @property
    def is_fallback(self) -> bool:
        return self.source == "fallback"


class PatientIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    cin: str
    from_conflict: bool = False


class WizardState(BaseModel):
    """Serializable snapshot of one booking session."""
    step: WizardStep = WizardStep.COLLECTING_PERSONAL
    personal: PersonalInfoDraft = Field(default_factory=PersonalInfoDraft)
    appointment: AppointmentDraft = Field(default_factory=AppointmentDraft)
    patient: PatientIdentity | None = None
    confirmation: RDVResponse | None = None
    validation_errors: dict[str, str] = Field(default_factory=dict)
    error_message: str = ""
    is_loading: bool = False
    clinics: list[ClinicDTO] = Field(default_factory=list)


# Chatbot ------------------------------------------------------------------------

class DoctorInfo(_Wire):
    id: int
    first_name: str = Field(alias="firstName")
    last_name: str = Field(alias="lastName")
    email: str | None = None
    phone: str | None = None
    role: str | None = None
    specialty: str | None = None
    clinic_id: int | None = Field(default=None, alias="clinicId")
    active: bool = True


class SlotInfo(_Wire):
    start_time: str = Field(alias="startTime")
    end_time: str = Field(alias="endTime")
    available: bool = True


class ChatMessageResponse(_Wire):
    session_id: int = Field(alias="sessionId")
    reply: str
    clinics: list[ClinicDTO] | None = None
    doctors: list[DoctorInfo] | None = None
    available_slots: list[SlotInfo] | None = Field(default=None, alias="availableSlots")
    selected_clinic_id: int | None = Field(default=None, alias="selectedClinicId")
