"""Client-side validation of the booking wizard drafts.

Every rule runs on every pass so the form can show all its errors at once.
Messages are user-facing and therefore in French, like the rest of the UI.
"""
from __future__ import annotations

import re
from datetime import date, datetime

from .models import AppointmentDraft, InsuranceType, PersonalInfoDraft, ValidationResult

CIN_PATTERN = re.compile(r"^[A-Z]{1,2}[0-9]{5,7}$")
NAME_PATTERN = re.compile(r"^[a-zA-ZÀ-ÿ\s'-]+$")
PHONE_PATTERN = re.compile(r"^(\+212|0)[5-7][0-9]{8}$")
TIME_PATTERN = re.compile(r"^([01][0-9]|2[0-3]):[0-5][0-9]$")

NAME_MIN, NAME_MAX = 2, 50
# Last start hour whose one-hour slot still ends on the same day.
LAST_START_HOUR = 22


def normalize_cin(cin: str) -> str:
    return cin.upper()


def normalize_phone(phone: str) -> str:
    return re.sub(r"\s", "", phone)


def parse_insurance(value: str) -> InsuranceType | None:
    """Accept either the enum name (PRIVATE) or the wire value (PRIVEE)."""
    if not value:
        return None
    try:
        return InsuranceType(value)
    except ValueError:
        return InsuranceType.__members__.get(value.upper())


def _check_name(value: str, label: str) -> str | None:
    if not value:
        return f"Le {label} est obligatoire"
    if len(value) < NAME_MIN or len(value) > NAME_MAX:
        return f"Le {label} doit contenir entre {NAME_MIN} et {NAME_MAX} caractères"
    if not NAME_PATTERN.match(value):
        return f"Le {label} contient des caractères invalides"
    return None


def _is_before_now(value: str, now: datetime) -> bool | None:
    """True if value is strictly earlier than now, None if unparseable.

    A bare date is compared against today's date, so a birth date of today
    is not in the past.
    """
    try:
        if len(value) == 10:
            return date.fromisoformat(value) < now.date()
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is not None and now.tzinfo is None:
        # naive now is local time
        parsed = parsed.astimezone().replace(tzinfo=None)
    elif parsed.tzinfo is None and now.tzinfo is not None:
        now = now.astimezone().replace(tzinfo=None)
    return parsed < now


def validate(draft: PersonalInfoDraft, now: datetime | None = None) -> ValidationResult:
    """Validate the step-one draft and return every violated field."""
    now = now or datetime.now()
    errors: dict[str, str] = {}

    if not draft.cin:
        errors["cin"] = "Le CIN est obligatoire"
    elif not CIN_PATTERN.match(normalize_cin(draft.cin)):
        errors["cin"] = "Format de CIN invalide (ex: AB123456)"

    for field, label in (("last_name", "nom"), ("first_name", "prénom")):
        message = _check_name(getattr(draft, field), label)
        if message:
            errors[field] = message

    if not draft.phone:
        errors["phone"] = "Le numéro de téléphone est obligatoire"
    elif not PHONE_PATTERN.match(normalize_phone(draft.phone)):
        errors["phone"] = "Format de téléphone invalide (ex: 0612345678 ou +212612345678)"

    if not draft.sex:
        errors["sex"] = "Le sexe est obligatoire"

    if not draft.birth_date:
        errors["birth_date"] = "La date de naissance est obligatoire"
    else:
        in_past = _is_before_now(draft.birth_date, now)
        if in_past is None:
            errors["birth_date"] = "La date de naissance est invalide"
        elif not in_past:
            errors["birth_date"] = "La date de naissance doit être dans le passé"

    if not draft.insurance_type:
        errors["insurance_type"] = "Le type de mutuelle est obligatoire"
    elif parse_insurance(draft.insurance_type) is None:
        errors["insurance_type"] = "Type de mutuelle inconnu"

    if not draft.clinic_id:
        errors["clinic_id"] = "Le cabinet est obligatoire"

    return ValidationResult(valid=not errors, errors=errors)


def validate_appointment(draft: AppointmentDraft, now: datetime | None = None) -> ValidationResult:
    """Validate the step-two draft: required fields, date not past, bookable start time."""
    now = now or datetime.now()
    errors: dict[str, str] = {}

    if not draft.date:
        errors["date"] = "La date du rendez-vous est obligatoire"
    else:
        try:
            if date.fromisoformat(draft.date) < now.date():
                errors["date"] = "La date du rendez-vous ne peut pas être dans le passé"
        except ValueError:
            errors["date"] = "La date du rendez-vous est invalide"

    if not draft.start_time:
        errors["start_time"] = "L'heure du rendez-vous est obligatoire"
    elif not TIME_PATTERN.match(draft.start_time):
        errors["start_time"] = "Format d'heure invalide (ex: 10:00)"
    elif int(draft.start_time[:2]) > LAST_START_HOUR:
        errors["start_time"] = "Le rendez-vous doit se terminer avant minuit"

    if not draft.reason:
        errors["reason"] = "Le motif du rendez-vous est obligatoire"

    return ValidationResult(valid=not errors, errors=errors)
