"""Thin proxy to the backend chatbot.

The conversation id lives in a `ChatSession` owned by the caller instead of
a process-wide singleton.
"""
from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from . import client
from .client import BackendError
from .models import ChatMessageResponse, ClinicDTO, DoctorInfo, SlotInfo

FALLBACK_REPLY = "Désolé, je rencontre des difficultés techniques. Veuillez réessayer plus tard."


@dataclass
class ChatSession:
    session_id: int | None = None

    def reset(self) -> None:
        self.session_id = None


async def send_message(session: ChatSession, message: str) -> ChatMessageResponse:
    """Send one message; the reply's session id is remembered on `session`.

    Backend failures are answered with a canned apology instead of raising.
    """
    try:
        reply = await client.post_chat_message(message, session.session_id)
    except (BackendError, ValueError) as exc:
        logger.warning(f"Chatbot unavailable: {exc!r}")
        return ChatMessageResponse(session_id=session.session_id or 0, reply=FALLBACK_REPLY)
    if reply.session_id:
        session.session_id = reply.session_id
    return reply


def format_clinics(clinics: list[ClinicDTO] | None) -> str:
    if not clinics:
        return ""
    return "\n\n".join(
        f"📍 {c.name}\n   Spécialité: {c.specialty}\n   Adresse: {c.address}\n   Tél: {c.phone}"
        for c in clinics
    )


def format_doctors(doctors: list[DoctorInfo] | None) -> str:
    if not doctors:
        return ""
    blocks = []
    for d in doctors:
        text = f"👨‍⚕️ Dr. {d.first_name} {d.last_name}"
        if d.specialty:
            text += f"\n   Spécialité: {d.specialty}"
        if d.phone:
            text += f"\n   Tél: {d.phone}"
        blocks.append(text)
    return "\n\n".join(blocks)


def format_slots(slots: list[SlotInfo] | None) -> str:
    if not slots:
        return ""
    return "\n".join(f"🕐 {s.start_time} - {s.end_time}" for s in slots)
