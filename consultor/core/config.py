# consultor/core/config.py
import logging
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_DEFINITION_PATH = Path(__file__).parent.parent / "data" / "consultation_definition.json"


class Settings(BaseSettings):
    """Basic application settings"""
    APP_NAME: str = "Consultor"
    DEBUG: bool = False

    # LLM settings
    OPENAI_API_KEY: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("OPENAI_API_KEY", "OPENAI_APIKEY")
    )
    GPT_MODEL: str = "gpt-4o-mini"
    GPT_TEMPERATURE: float = 0.7

    # Storage settings
    REDIS_URL: Optional[str] = Field(default=None)

    # Interview settings
    CONSULTATION_DEFINITION_PATH: str = str(DEFAULT_DEFINITION_PATH)
    AGENT_NAME: Optional[str] = None
    SESSION_TTL_SECONDS: int = 3600

    # API settings
    CONSULTOR_API_KEY: Optional[str] = Field(default=None)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore"
    }


def get_settings() -> Settings:
    """Read settings from the environment (and .env) at call time"""
    return Settings()


def validate_required_settings(settings: Optional[Settings] = None) -> bool:
    """Check that all required settings are present"""
    settings = settings or get_settings()
    missing = []

    if not settings.OPENAI_API_KEY:
        missing.append("OPENAI_API_KEY/OPENAI_APIKEY")

    if not settings.REDIS_URL:
        missing.append("REDIS_URL")

    if missing:
        logger.warning(f"Missing environment variables: {', '.join(missing)}")
        logger.warning("The application may not be able to provide all features.")
        return False

    return True
