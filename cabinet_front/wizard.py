"""Two-step registration and booking wizard.

Step 1 collects the patient's identity and creates (or recovers) the patient
record, step 2 books the appointment, after which the session is confirmed
until reset. The controller owns one session's state and notifies subscribers
with a snapshot after every change; it knows nothing about rendering.
"""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable

from loguru import logger

from . import client
from .client import BackendError
from .models import (
    AppointmentDraft,
    AppointmentReason,
    ClinicLoad,
    PersonalInfoDraft,
    RDVRequest,
    WizardState,
    WizardStep,
)
from .validation import normalize_cin, validate, validate_appointment

CONSULTATION_MINUTES = 60
APPOINTMENT_SLOTS = ["08:00", "09:00", "10:00", "11:00", "12:00", "14:00", "15:00", "16:00", "17:00", "18:00"]

FORM_ERRORS_MESSAGE = "Veuillez corriger les erreurs dans le formulaire"
PATIENT_ERROR_MESSAGE = "Erreur lors de la création du patient"
APPOINTMENT_ERROR_MESSAGE = "Erreur lors de la création du rendez-vous"

Listener = Callable[[WizardState], None]


class InvalidTransition(Exception):
    """Operation not allowed in the wizard's current step."""


def compute_end_time(start: str, minutes: int = CONSULTATION_MINUTES) -> str:
    """Wall-clock end of a slot: "10:00" -> "11:00". Hours are not wrapped past 23."""
    hours, mins = (int(part) for part in start.split(":"))
    total = hours * 60 + mins + minutes
    return f"{total // 60:02d}:{total % 60:02d}"


def _server_message(exc: Exception) -> str | None:
    return exc.message if isinstance(exc, BackendError) else None


def map_reason(label: str) -> AppointmentReason:
    if label.strip().lower() == "consultation":
        return AppointmentReason.CONSULTATION
    return AppointmentReason.CONTROL


class BookingWizard:
    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self._clock = clock
        self._state = WizardState()
        self._listeners: list[Listener] = []
        self._clinics_task: asyncio.Task | None = None
        # Bumped by reset(); a response from an older generation is dropped.
        self._generation = 0

    # Observation -------------------------------------------------------------

    @property
    def state(self) -> WizardState:
        return self._state.model_copy(deep=True)

    @property
    def step(self) -> WizardStep:
        return self._state.step

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.state
        for listener in list(self._listeners):
            listener(snapshot)

    def _require(self, step: WizardStep, action: str) -> None:
        if self._state.step is not step:
            raise InvalidTransition(f"cannot {action} while in {self._state.step.value}")

    def _require_idle(self, action: str) -> None:
        if self._state.is_loading:
            raise InvalidTransition(f"cannot {action} while a request is in flight")

    # Clinic directory ----------------------------------------------------------

    def start(self) -> asyncio.Task:
        """Kick off the clinic load without waiting for it. Needs a running loop."""
        if self._clinics_task is None:
            self._clinics_task = asyncio.create_task(self.load_clinics())
        return self._clinics_task

    async def load_clinics(self) -> ClinicLoad:
        result = await client.load_active_clinics()
        self._state.clinics = result.clinics
        logger.debug(f"Loaded {len(result.clinics)} clinics from {result.source}")
        self._notify()
        return result

    # Drafts -------------------------------------------------------------------

    def update_personal(self, **fields) -> None:
        self._require(WizardStep.COLLECTING_PERSONAL, "edit personal information")
        self._require_idle("edit personal information")
        self._state.personal = PersonalInfoDraft.model_validate({**self._state.personal.model_dump(), **fields})
        self._notify()

    def update_appointment(self, **fields) -> None:
        self._require(WizardStep.COLLECTING_APPOINTMENT, "edit the appointment")
        self._require_idle("edit the appointment")
        self._state.appointment = AppointmentDraft.model_validate({**self._state.appointment.model_dump(), **fields})
        self._notify()

    # Transitions ---------------------------------------------------------------

    def _begin_request(self) -> int:
        self._state.is_loading = True
        self._state.error_message = ""
        self._notify()
        return self._generation

    def _end_request(self, generation: int, what: str) -> bool:
        """Clear the loading flag; False if the session was reset meanwhile."""
        if generation != self._generation:
            logger.info(f"Discarding {what} result: the wizard was reset while it was in flight")
            return False
        self._state.is_loading = False
        return True

    async def submit_personal(self) -> bool:
        """Validate step 1 and resolve the patient; True if the wizard advanced."""
        self._require(WizardStep.COLLECTING_PERSONAL, "submit personal information")
        if self._state.is_loading:
            logger.warning("Ignoring personal submission while a request is in flight")
            return False

        result = validate(self._state.personal, now=self._clock())
        self._state.validation_errors = result.errors
        if not result.valid:
            self._state.error_message = FORM_ERRORS_MESSAGE
            self._notify()
            return False

        draft = self._state.personal.model_copy()
        known = self._state.patient
        if known is not None and known.cin == normalize_cin(draft.cin):
            # Returning from step 2 with the same patient.
            self._advance_to_appointment()
            return True

        generation = self._begin_request()
        identity = failure = None
        try:
            identity = await client.create_or_fetch_patient(draft)
        except (BackendError, ValueError) as exc:
            failure = exc
        finally:
            current = self._end_request(generation, "patient registration")
        if not current:
            return False

        if failure is not None:
            logger.error(f"Patient registration failed for {normalize_cin(draft.cin)}: {failure!r}")
            self._state.error_message = _server_message(failure) or PATIENT_ERROR_MESSAGE
            self._notify()
            return False

        self._state.patient = identity
        logger.info(f"Patient {identity.id} resolved (from_conflict={identity.from_conflict})")
        self._advance_to_appointment()
        return True

    def _advance_to_appointment(self) -> None:
        self._state.step = WizardStep.COLLECTING_APPOINTMENT
        self._state.error_message = ""
        self._notify()

    def back(self) -> None:
        self._require(WizardStep.COLLECTING_APPOINTMENT, "go back")
        self._require_idle("go back")
        self._state.step = WizardStep.COLLECTING_PERSONAL
        self._state.error_message = ""
        self._notify()

    async def submit_appointment(self) -> bool:
        """Book the appointment; True once the wizard is confirmed."""
        self._require(WizardStep.COLLECTING_APPOINTMENT, "submit the appointment")
        if self._state.is_loading:
            logger.warning("Ignoring appointment submission while a request is in flight")
            return False

        patient = self._state.patient
        clinic_id = self._state.personal.clinic_id
        if patient is None or clinic_id is None:
            raise InvalidTransition("no registered patient for this session")

        result = validate_appointment(self._state.appointment, now=self._clock())
        self._state.validation_errors = result.errors
        if not result.valid:
            self._state.error_message = FORM_ERRORS_MESSAGE
            self._notify()
            return False

        draft = self._state.appointment
        rdv = RDVRequest(
            patient_id=patient.id,
            clinic_id=clinic_id,
            date=draft.date,
            start=draft.start_time,
            end=compute_end_time(draft.start_time),
            reason=map_reason(draft.reason),
            notes=draft.notes or None,
        )

        generation = self._begin_request()
        confirmation = failure = None
        try:
            confirmation = await client.create_appointment(rdv)
        except (BackendError, ValueError) as exc:
            failure = exc
        finally:
            current = self._end_request(generation, "booking")
        if not current:
            return False

        if failure is not None:
            logger.error(f"Booking failed for patient {patient.id}: {failure!r}")
            self._state.error_message = _server_message(failure) or APPOINTMENT_ERROR_MESSAGE
            self._notify()
            return False

        self._state.confirmation = confirmation
        self._state.step = WizardStep.CONFIRMED
        logger.info(f"Appointment {confirmation.id} booked for patient {patient.id}")
        self._notify()
        return True

    def reset(self) -> None:
        """Start over: drafts, identity, errors and confirmation are cleared.

        Allowed while a request is in flight; its response is then discarded.
        """
        self._generation += 1
        clinics = self._state.clinics
        self._state = WizardState(clinics=clinics)
        self._notify()
