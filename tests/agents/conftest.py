# tests/agents/conftest.py
"""
Shared fixtures for agent tests.
"""

import pytest
from unittest.mock import AsyncMock

from consultor.core.prompt_manager import PromptManager
from consultor.models.consultation import ConsultantIdentity


@pytest.fixture
def mock_gpt_service():
    """Mock GPTService returning a fixed consultant reply"""
    mock = AsyncMock()
    mock.complete.return_value = "Você está no caminho certo, mas falta método."
    mock.health_check.return_value = {"healthy": True}
    return mock


@pytest.fixture
def prompt_manager():
    manager = PromptManager()
    manager.load_prompts()
    return manager


@pytest.fixture
def identity():
    return ConsultantIdentity(
        name="Maestro",
        mission="Ajudar pequenos negócios a crescer",
        style="Direto e reflexivo",
        tone_of_voice="Firme e acolhedor",
        opening="Vamos olhar para isso com calma."
    )
