import os
import secrets
import time
from collections import OrderedDict
from typing import Optional

from fastapi import Body, FastAPI, HTTPException
from pydantic import BaseModel, Field

from .chatbot import ChatSession, send_message
from .client import load_active_clinics
from .logging_config import configure_logging
from .models import AppointmentDraft, ChatMessageResponse, ClinicLoad, PersonalInfoDraft, WizardState
from .wizard import APPOINTMENT_SLOTS, BookingWizard, InvalidTransition


class WizardSession(BaseModel):
    session_id: str
    state: WizardState


class ChatRequest(BaseModel):
    session_id: Optional[int] = Field(default=None, alias="sessionId")
    message: str

    model_config = {
        "populate_by_name": True
    }


configure_logging()

app = FastAPI(title="CabinetX Front Office")

SESSION_TTL = float(os.getenv("CABINETX_SESSION_TTL", "1800"))
MAX_SESSIONS = int(os.getenv("CABINETX_MAX_SESSIONS", "1000"))

# One wizard per visitor, kept in memory only, least recently used first.
_SESSIONS: "OrderedDict[str, tuple[float, BookingWizard]]" = OrderedDict()
_clock = time.monotonic


def _evict(now: float) -> None:
    """Drop idle sessions, then the least recently used ones beyond the cap."""
    while _SESSIONS:
        session_id, (touched, _) = next(iter(_SESSIONS.items()))
        if now - touched <= SESSION_TTL and len(_SESSIONS) <= MAX_SESSIONS:
            break
        del _SESSIONS[session_id]


def _wizard(session_id: str) -> BookingWizard:
    now = _clock()
    _evict(now)
    entry = _SESSIONS.get(session_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Unknown wizard session")
    _SESSIONS[session_id] = (now, entry[1])
    _SESSIONS.move_to_end(session_id)
    return entry[1]


def _view(session_id: str, wizard: BookingWizard) -> WizardSession:
    return WizardSession(session_id=session_id, state=wizard.state)


def _fields(draft: BaseModel) -> dict:
    return draft.model_dump(exclude_unset=True)


@app.get("/clinics", response_model=ClinicLoad)
async def list_clinics():
    """Active clinics, or the default list when the directory is down."""
    return await load_active_clinics()


@app.get("/slots", response_model=list[str])
async def list_slots():
    """Start times offered by the appointment form."""
    return APPOINTMENT_SLOTS


@app.post("/wizard", response_model=WizardSession, status_code=201)
async def create_wizard():
    session_id = secrets.token_urlsafe(16)
    wizard = BookingWizard()
    now = _clock()
    _SESSIONS[session_id] = (now, wizard)
    _evict(now)
    # the directory fills in the state when it answers
    wizard.start()
    return _view(session_id, wizard)


@app.get("/wizard/{session_id}", response_model=WizardSession)
async def get_wizard(session_id: str):
    return _view(session_id, _wizard(session_id))


@app.delete("/wizard/{session_id}", status_code=204)
async def delete_wizard(session_id: str):
    _wizard(session_id)
    del _SESSIONS[session_id]
    return None


@app.patch("/wizard/{session_id}/personal", response_model=WizardSession)
async def edit_personal(session_id: str, draft: PersonalInfoDraft):
    wizard = _wizard(session_id)
    try:
        wizard.update_personal(**_fields(draft))
    except InvalidTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return _view(session_id, wizard)


@app.post("/wizard/{session_id}/personal", response_model=WizardSession)
async def submit_personal(session_id: str, draft: Optional[PersonalInfoDraft] = Body(None)):
    """Apply the optional draft fields, then submit step 1.

    A rejected submission is not an HTTP error: the state carries the errors.
    """
    wizard = _wizard(session_id)
    try:
        if draft is not None:
            wizard.update_personal(**_fields(draft))
        await wizard.submit_personal()
    except InvalidTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return _view(session_id, wizard)


@app.patch("/wizard/{session_id}/appointment", response_model=WizardSession)
async def edit_appointment(session_id: str, draft: AppointmentDraft):
    wizard = _wizard(session_id)
    try:
        wizard.update_appointment(**_fields(draft))
    except InvalidTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return _view(session_id, wizard)


@app.post("/wizard/{session_id}/appointment", response_model=WizardSession)
async def submit_appointment(session_id: str, draft: Optional[AppointmentDraft] = Body(None)):
    wizard = _wizard(session_id)
    try:
        if draft is not None:
            wizard.update_appointment(**_fields(draft))
        await wizard.submit_appointment()
    except InvalidTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return _view(session_id, wizard)


@app.post("/wizard/{session_id}/back", response_model=WizardSession)
async def go_back(session_id: str):
    wizard = _wizard(session_id)
    try:
        wizard.back()
    except InvalidTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return _view(session_id, wizard)


@app.post("/wizard/{session_id}/reset", response_model=WizardSession)
async def reset_wizard(session_id: str):
    wizard = _wizard(session_id)
    wizard.reset()
    return _view(session_id, wizard)


# Chatbot proxy -------------------------------------------------------------

@app.post("/chat/message", response_model=ChatMessageResponse, response_model_by_alias=True)
async def chat_message(req: ChatRequest):
    """Forward one message; the client echoes back the returned sessionId."""
    session = ChatSession(session_id=req.session_id)
    return await send_message(session, req.message)
