import json

import pytest, respx

from cabinet_front import client as cl
from cabinet_front.chatbot import FALLBACK_REPLY, ChatSession, format_clinics, format_doctors, format_slots, send_message
from cabinet_front.models import ClinicDTO, DoctorInfo, SlotInfo

BASE = "http://localhost:8080"
cl._BASE_URL = BASE


@pytest.mark.asyncio
async def test_session_id_is_carried_between_messages():
    session = ChatSession()
    with respx.mock(base_url=BASE) as m:
        route = m.post("/api/chatbot/message").respond(200, json={"sessionId": 17, "reply": "Bonjour !"})

        first = await send_message(session, "Bonjour")
        assert first.reply == "Bonjour !"
        assert session.session_id == 17
        assert json.loads(route.calls.last.request.content) == {"message": "Bonjour"}

        await send_message(session, "Je cherche un dermatologue")
        assert json.loads(route.calls.last.request.content) == {
            "message": "Je cherche un dermatologue",
            "sessionId": 17,
        }

    session.reset()
    assert session.session_id is None


@pytest.mark.asyncio
async def test_backend_failure_returns_apology():
    session = ChatSession(session_id=5)
    with respx.mock(base_url=BASE) as m:
        m.post("/api/chatbot/message").respond(502)

        reply = await send_message(session, "Bonjour")
    assert reply.reply == FALLBACK_REPLY
    assert reply.session_id == 5
    assert session.session_id == 5


@pytest.mark.asyncio
async def test_reply_with_suggestions_is_parsed():
    payload = {
        "sessionId": 3,
        "reply": "Voici les créneaux",
        "selectedClinicId": 7,
        "availableSlots": [{"startTime": "09:00", "endTime": "10:00", "available": True}],
        "doctors": [{"id": 1, "firstName": "Karim", "lastName": "Alami", "clinicId": 7, "specialty": "Pédiatrie"}],
    }
    with respx.mock(base_url=BASE) as m:
        m.post("/api/chatbot/message").respond(200, json=payload)
        reply = await send_message(ChatSession(), "Demain matin ?")

    assert reply.selected_clinic_id == 7
    assert reply.available_slots[0].start_time == "09:00"
    assert reply.doctors[0].last_name == "Alami"


def test_formatters():
    assert format_clinics([]) == ""
    assert format_doctors(None) == ""
    assert format_slots([]) == ""

    clinic = ClinicDTO(id=1, name="Cabinet Dr. Martin", specialty="Médecine générale",
                       address="Centre Ville", phone="0612345678")
    assert format_clinics([clinic]) == (
        "📍 Cabinet Dr. Martin\n   Spécialité: Médecine générale\n   Adresse: Centre Ville\n   Tél: 0612345678"
    )

    doctor = DoctorInfo(id=1, first_name="Karim", last_name="Alami")
    assert format_doctors([doctor]) == "👨‍⚕️ Dr. Karim Alami"

    slots = [SlotInfo(start_time="09:00", end_time="10:00"), SlotInfo(start_time="10:00", end_time="11:00")]
    assert format_slots(slots) == "🕐 09:00 - 10:00\n🕐 10:00 - 11:00"
