"""
SMARTCARE+ Configuration

Environment variables and application settings.
"""

from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "SMARTCARE+ Cones"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173", "http://10.0.2.2:8000"]

    # Cones exercise defaults (per-session values may override)
    CONES_MIN_POSE_CONFIDENCE: float = 0.5
    CONES_MIN_HAND_CONFIDENCE: float = 0.5
    CONES_REP_COOLDOWN_MS: float = 500
    CONES_HOLD_GRIP_THRESHOLD: float = 0.12
    CONES_RELEASE_GRIP_THRESHOLD: float = 0.18
    CONES_DURATION_SEC: float = 300
    CONES_TARGET_REPS: int = 10
    CONES_SELFIE_MODE: bool = True

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
