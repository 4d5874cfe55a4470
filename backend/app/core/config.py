"""
ErgoPulse Configuration
Central configuration loaded from environment variables.
"""

from pathlib import Path
from pydantic_settings import BaseSettings
from typing import List

from ergo_engine.config import EngineConfig


class Settings(BaseSettings):
    # App
    APP_NAME: str = "ErgoPulse"
    ERGO_ENV: str = "development"
    DEBUG: bool = True

    # Database
    DATABASE_URL: str = "sqlite:///./ergopulse.db"
    METRIC_RETENTION_DAYS: int = 90

    # CORS
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000,http://localhost:8000"

    # Telegram Notifications
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_CHAT_ID: str = ""
    TELEGRAM_ENABLED: bool = False

    # Engine horizons (seconds)
    FLUSH_INTERVAL_SECONDS: float = 60.0
    PRESENCE_TIMEOUT_SECONDS: float = 5.0
    BREAK_TICK_SECONDS: float = 10.0
    CALIBRATION_SECONDS: float = 60.0

    # MediaPipe
    MEDIAPIPE_MODELS_DIR: str = "models"

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",")]

    @property
    def base_dir(self) -> Path:
        return Path(__file__).resolve().parent.parent.parent

    @property
    def models_path(self) -> Path:
        p = Path(self.MEDIAPIPE_MODELS_DIR)
        if not p.is_absolute():
            p = self.base_dir / p
        return p

    def engine_config(self) -> EngineConfig:
        """Engine thresholds with the environment-tunable horizons applied"""
        return EngineConfig(
            FLUSH_INTERVAL_SECONDS=self.FLUSH_INTERVAL_SECONDS,
            DISTRIBUTION_FLUSH_INTERVAL_SECONDS=self.FLUSH_INTERVAL_SECONDS,
            PRESENCE_TIMEOUT_SECONDS=self.PRESENCE_TIMEOUT_SECONDS,
            BREAK_TICK_SECONDS=self.BREAK_TICK_SECONDS,
            CALIBRATION_SECONDS=self.CALIBRATION_SECONDS,
        )

    class Config:
        env_file = Path(__file__).resolve().parent.parent.parent / ".env"
        extra = "allow"


settings = Settings()
