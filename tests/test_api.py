import json, pathlib

import pytest, respx
from fastapi.testclient import TestClient

from cabinet_front import api as api_module
from cabinet_front import client as cl
from cabinet_front.api import app
from cabinet_front.wizard import APPOINTMENT_SLOTS

FIX = pathlib.Path(__file__).parent / "fixtures"
BASE = "http://localhost:8080"
cl._BASE_URL = BASE

PERSONAL = {"cin": "ab123456", "last_name": "El Amrani", "first_name": "Salma", "phone": "0612345678",
            "sex": "F", "birth_date": "1990-05-14", "insurance_type": "CNSS", "clinic_id": 7}
APPOINTMENT = {"date": "2099-11-02", "start_time": "10:00", "reason": "Contrôle"}


@pytest.fixture
def api():
    api_module._SESSIONS.clear()
    with TestClient(app) as c:
        yield c


def _wait_for_clinics(api, session_id):
    """Block until the session's background directory load has finished."""
    task = api_module._SESSIONS[session_id][1].start()

    async def _wait():
        return await task

    return api.portal.call(_wait)


def test_clinics_fallback(api):
    with respx.mock(base_url=BASE) as m:
        m.get("/api/clinics/active").respond(500)
        resp = api.get("/clinics")
    assert resp.status_code == 200
    body = resp.json()
    assert body["source"] == "fallback"
    assert len(body["clinics"]) == 3
    assert body["clinics"][0]["serviceEndDate"] == "2027-12-31"


def test_slots(api):
    resp = api.get("/slots")
    assert resp.status_code == 200
    assert resp.json() == APPOINTMENT_SLOTS


def test_full_booking_flow(api):
    clinics = json.loads((FIX / "clinics_active.json").read_text())
    patient = json.loads((FIX / "patient.json").read_text())
    rdv = json.loads((FIX / "rdv.json").read_text())
    with respx.mock(base_url=BASE) as m:
        m.get("/api/clinics/active").respond(200, json=clinics)
        m.post("/api/patients").respond(201, json=patient)
        booking = m.post("/api/appointments/rendezvous").respond(201, json=rdv)

        created = api.post("/wizard")
        assert created.status_code == 201
        sid = created.json()["session_id"]
        assert created.json()["state"]["step"] == "CollectingPersonal"

        assert _wait_for_clinics(api, sid).source == "remote"
        state = api.get(f"/wizard/{sid}").json()["state"]
        assert [c["id"] for c in state["clinics"]] == [7, 9]

        step2 = api.post(f"/wizard/{sid}/personal", json=PERSONAL).json()["state"]
        assert step2["step"] == "CollectingAppointment"
        assert step2["patient"]["id"] == 42

        done = api.post(f"/wizard/{sid}/appointment", json=APPOINTMENT).json()["state"]
        assert done["step"] == "Confirmed"
        assert done["confirmation"]["id"] == 310
        assert json.loads(booking.calls.last.request.content)["motifRDV"] == "CONTROL"

    reset = api.post(f"/wizard/{sid}/reset").json()["state"]
    assert reset["step"] == "CollectingPersonal"
    assert reset["patient"] is None


def test_validation_errors_are_returned_in_state(api):
    with respx.mock(base_url=BASE) as m:
        m.get("/api/clinics/active").respond(200, json=[])
        sid = api.post("/wizard").json()["session_id"]
        _wait_for_clinics(api, sid)

    resp = api.post(f"/wizard/{sid}/personal", json={**PERSONAL, "phone": "06123456"})
    assert resp.status_code == 200
    state = resp.json()["state"]
    assert state["step"] == "CollectingPersonal"
    assert list(state["validation_errors"]) == ["phone"]
    assert len(state["clinics"]) == 3

    patched = api.patch(f"/wizard/{sid}/personal", json={"phone": "0612345678"}).json()["state"]
    assert patched["personal"]["phone"] == "0612345678"
    assert patched["personal"]["cin"] == "ab123456"


def test_wrong_step_and_unknown_session(api):
    with respx.mock(base_url=BASE) as m:
        m.get("/api/clinics/active").respond(200, json=[])
        sid = api.post("/wizard").json()["session_id"]
        _wait_for_clinics(api, sid)

    assert api.post(f"/wizard/{sid}/back").status_code == 409
    assert api.patch(f"/wizard/{sid}/appointment", json={"date": "2099-11-02"}).status_code == 409
    assert api.get("/wizard/nope").status_code == 404

    assert api.delete(f"/wizard/{sid}").status_code == 204
    assert api.get(f"/wizard/{sid}").status_code == 404


def test_idle_session_expires(api, monkeypatch):
    now = [1000.0]
    monkeypatch.setattr(api_module, "_clock", lambda: now[0])
    with respx.mock(base_url=BASE) as m:
        m.get("/api/clinics/active").respond(200, json=[])
        sid = api.post("/wizard").json()["session_id"]
        _wait_for_clinics(api, sid)

    now[0] += api_module.SESSION_TTL - 1
    assert api.get(f"/wizard/{sid}").status_code == 200

    # the read above refreshed it
    now[0] += api_module.SESSION_TTL - 1
    assert api.get(f"/wizard/{sid}").status_code == 200

    now[0] += api_module.SESSION_TTL + 1
    assert api.get(f"/wizard/{sid}").status_code == 404
    assert sid not in api_module._SESSIONS


def test_least_recently_used_session_is_evicted(api, monkeypatch):
    monkeypatch.setattr(api_module, "MAX_SESSIONS", 2)
    with respx.mock(base_url=BASE, assert_all_called=False) as m:
        m.get("/api/clinics/active").respond(200, json=[])
        first = api.post("/wizard").json()["session_id"]
        second = api.post("/wizard").json()["session_id"]
        for sid in (first, second):
            _wait_for_clinics(api, sid)

        # touching the first makes the second the oldest
        assert api.get(f"/wizard/{first}").status_code == 200
        third = api.post("/wizard").json()["session_id"]
        _wait_for_clinics(api, third)

    assert api.get(f"/wizard/{second}").status_code == 404
    assert api.get(f"/wizard/{first}").status_code == 200
    assert api.get(f"/wizard/{third}").status_code == 200
    assert len(api_module._SESSIONS) == 2


def test_chat_message_proxy(api):
    with respx.mock(base_url=BASE) as m:
        m.post("/api/chatbot/message").respond(200, json={"sessionId": 11, "reply": "Bonjour"})
        resp = api.post("/chat/message", json={"message": "Salut"})
    assert resp.status_code == 200
    assert resp.json()["sessionId"] == 11
    assert resp.json()["reply"] == "Bonjour"
