from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "Intervuo"
    APP_ADDRESS: str = "0.0.0.0"
    APP_PORT: int = 5210
    CORS_ORIGINS: List[str] = ["*"]

    ULTRAVOX_API_KEY: str = ""
    ULTRAVOX_API_URL: str = "https://api.ultravox.ai/api/calls"
    ULTRAVOX_MODEL: str = "fixie-ai/ultravox"
    ULTRAVOX_TEMPERATURE: float = 0.7
    ULTRAVOX_LANGUAGE_HINT: str = "en-US"
    ULTRAVOX_JOIN_TIMEOUT: str = "30s"
    ULTRAVOX_MAX_DURATION: str = "1800s"
    ULTRAVOX_REQUEST_TIMEOUT_SECONDS: float = 15.0

    MISTRAL_API_KEY: str = ""
    MISTRAL_MODEL: str = "mistral-large-latest"
    ANALYSIS_TEMPERATURE: float = 0.3
    ANALYSIS_MAX_TOKENS: int = 1500
    ANALYSIS_TIMEOUT_SECONDS: float = 60.0

    TRANSPORT_CLOSE_TIMEOUT_SECONDS: float = 5.0
    BACKEND_URL: str = "http://localhost:5210"

    STORAGE_BACKEND: str = "memory"
    FIREBASE_CREDENTIALS: str | None = None
    FIREBASE_PROJECT_ID: str | None = None

    LOG_DIR: str = "logs"

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


settings = Settings()
