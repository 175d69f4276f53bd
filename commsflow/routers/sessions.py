from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from commsflow.database import get_db
from commsflow.models import ChatSession
from commsflow.schemas.session import AppendMessageRequest, SessionResponse
from commsflow.services.session_service import append_message, get_history

router = APIRouter()


def _get_session_or_404(db: Session, session_id: UUID) -> ChatSession:
    session = db.query(ChatSession).filter(ChatSession.id == session_id).first()
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return session


def _session_response(db: Session, session: ChatSession) -> SessionResponse:
    return SessionResponse(
        id=session.id,
        channel_type=session.channel_type,
        channel_identifier=session.channel_identifier,
        company_id=session.company_id,
        contact_id=session.contact_id,
        project_id=session.project_id,
        last_activity=session.last_activity,
        conversation_history=get_history(db, session.id),
    )


@router.get("/sessions/{session_id}", response_model=SessionResponse)
def get_session(session_id: UUID, db: Session = Depends(get_db)):
    return _session_response(db, _get_session_or_404(db, session_id))


@router.post("/sessions/{session_id}/messages", response_model=SessionResponse)
def add_message(session_id: UUID, request: AppendMessageRequest, db: Session = Depends(get_db)):
    session = _get_session_or_404(db, session_id)
    append_message(db, session.id, role=request.role, content=request.content)
    db.commit()
    db.refresh(session)
    return _session_response(db, session)
