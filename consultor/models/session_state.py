# consultor/models/session_state.py

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from consultor.models.consultation import FinalDiagnosisPart
from consultor.models.flow_models import ConsultationView, NotificationLevel

logger = logging.getLogger(__name__)


class ConsultationState(BaseModel):
    """
    Root aggregate of one consultation run.

    Frozen: every change goes through the reducer, which returns a new instance.
    Answer and feedback maps are keyed by question ids generated from the
    loaded interview definition.
    """
    model_config = ConfigDict(frozen=True)

    view: ConsultationView = ConsultationView.WELCOME
    initial_form_completed: bool = False
    initial_form_data: Dict[str, Any] = Field(default_factory=dict)
    current_block_index: int = 0
    current_question_index: int = 0
    user_answers: Dict[str, str] = Field(default_factory=dict)
    ai_feedbacks: Dict[str, str] = Field(default_factory=dict)
    final_diagnosis_parts: List[FinalDiagnosisPart] = Field(default_factory=list)
    is_loading: bool = False
    is_typing: bool = False


class Notification(BaseModel):
    level: NotificationLevel = NotificationLevel.INFO
    title: str
    message: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ConsultationSession(BaseModel):
    """
    Holds the state of one active consultation plus the bookkeeping the
    orchestrator needs around it (run identity, in-flight guard, notifications).
    """
    session_id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: Optional[str] = None
    run_id: str = Field(default_factory=lambda: str(uuid4()))
    state: ConsultationState = Field(default_factory=ConsultationState)
    notifications: List[Notification] = Field(default_factory=list)
    in_flight: bool = False
    completion_persisted: bool = False
    consultation_id: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_active: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ConsultationTranscript(BaseModel):
    """Payload handed to the persistence collaborator once a run completes"""
    user_id: str
    initial_form_data: Dict[str, Any]
    user_answers: Dict[str, str]
    ai_feedbacks: Dict[str, str]
    final_diagnosis_parts: List[FinalDiagnosisPart]
    completed_at: datetime


class ConsultationHistoryItem(BaseModel):
    consultation_id: str
    completed_at: datetime
    final_diagnosis_parts: List[FinalDiagnosisPart] = Field(default_factory=list)


class SessionStore:
    """
    Simple in-memory management of several consultation sessions.

    Sessions idle for longer than max_idle_seconds are evicted whenever a
    new session is created. Sessions with an operation in flight are kept.
    """
    def __init__(self, max_idle_seconds: int = 3600):
        self.sessions: Dict[str, ConsultationSession] = {}
        self.max_idle = timedelta(seconds=max_idle_seconds)

    def create_session(self, user_id: Optional[str] = None) -> ConsultationSession:
        self.evict_idle()
        session = ConsultationSession(user_id=user_id)
        self.sessions[session.session_id] = session
        return session

    def get(self, session_id: str) -> Optional[ConsultationSession]:
        session = self.sessions.get(session_id)
        if session is not None:
            session.last_active = datetime.now(timezone.utc)
        return session

    def evict_idle(self, now: Optional[datetime] = None) -> int:
        """Drop idle sessions and return how many were removed"""
        cutoff = (now or datetime.now(timezone.utc)) - self.max_idle
        expired = [
            sid for sid, s in self.sessions.items()
            if s.last_active < cutoff and not s.in_flight
        ]
        for sid in expired:
            del self.sessions[sid]
        if expired:
            logger.info(f"Evicted {len(expired)} idle consultation sessions")
        return len(expired)
