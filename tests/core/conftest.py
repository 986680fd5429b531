# tests/core/conftest.py
"""
Fixtures for reducer and orchestrator tests: mocked generation and
persistence collaborators and a ready-to-use orchestrator.
"""

import pytest
from unittest.mock import AsyncMock

from consultor.core.orchestrator import ConsultationOrchestrator
from consultor.core.reducer import ConsultationReducer
from consultor.models.consultation import FinalDiagnosisPart
from consultor.models.session_state import SessionStore


@pytest.fixture
def mock_feedback_generator():
    """Returns 'F<n>' for the answer 'A<n>', otherwise a generic feedback"""
    mock = AsyncMock()

    async def generate_feedback(request):
        if request.user_answer.startswith("A"):
            return "F" + request.user_answer[1:]
        return f"Feedback para: {request.user_answer}"

    mock.generate_feedback.side_effect = generate_feedback
    mock.health_check.return_value = {"healthy": True}
    return mock


@pytest.fixture
def mock_diagnosis_generator():
    """Echoes the requested part with content 'Conteúdo <part_id>'"""
    mock = AsyncMock()

    async def generate_diagnosis_part(request):
        return FinalDiagnosisPart(
            part_id=request.part_id,
            title=request.part_title,
            content=f"Conteúdo {request.part_id}"
        )

    mock.generate_diagnosis_part.side_effect = generate_diagnosis_part
    mock.health_check.return_value = {"healthy": True}
    return mock


@pytest.fixture
def mock_transcript_store():
    mock = AsyncMock()
    mock.save.return_value = "consultation-123"
    mock.list_for_user.return_value = []
    mock.health_check.return_value = {"healthy": True}
    return mock


@pytest.fixture
def reducer(small_config):
    return ConsultationReducer(small_config)


@pytest.fixture
def orchestrator(small_config, mock_feedback_generator, mock_diagnosis_generator, mock_transcript_store):
    return ConsultationOrchestrator(
        small_config,
        feedback_generator=mock_feedback_generator,
        diagnosis_generator=mock_diagnosis_generator,
        transcript_store=mock_transcript_store,
        session_store=SessionStore()
    )
