# app/core/config.py

from pathlib import Path
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

# Get the project root directory (where .env should be located)
BASE_DIR = Path(__file__).resolve().parent.parent.parent

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(BASE_DIR / ".env"),
        env_file_encoding='utf-8',
        case_sensitive=True,
        extra="ignore"
    )

    # App Configuration
    APP_NAME: str = "WayToPoint API"
    DEBUG: bool = False
    VERSION: str = "1.0.0"

    # Database Configuration
    DATABASE_URL: str

    # JWT / Security Configuration
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 10080

    # CORS Configuration
    FRONTEND_URL: str = "http://localhost:3000"

    # Backend Configuration
    BACKEND_BASE_URL: str = "http://localhost:8000"

    # AI Configuration (OpenAI-compatible chat completions)
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    CONTENT_MODEL: str = "gpt-4o"
    FALLBACK_MODEL: str = "gpt-4o-mini"
    CHAT_MODEL: str = "gpt-4o-mini"
    SUMMARY_MODEL: str = "gpt-4o-mini"
    AI_TIMEOUT_SECONDS: float = 60.0

    # Image generation (Replicate)
    REPLICATE_API_TOKEN: str = ""
    REPLICATE_MODEL: str = "black-forest-labs/flux-schnell"

    # Goal image URL classification
    STATIC_IMAGE_PREFIX: str = "/static/goal-images/"
    STORAGE_IMAGE_MARKER: str = "/storage/v1/object/public/goal_images/"
    # Comma separated host markers of generated images
    GENERATED_IMAGE_MARKERS: str = "replicate.delivery"

    # Goal image polling (seconds)
    IMAGE_POLL_INITIAL_DELAY: float = 1.0
    IMAGE_POLL_INTERVAL: float = 2.0
    IMAGE_POLL_MAX_ATTEMPTS: int = 15
    IMAGE_POLL_DEADLINE: float = 30.0
    IMAGE_SWEEP_INTERVAL: float = 3.0
    IMAGE_PROBE_TIMEOUT: float = 10.0
    IMAGE_PROBE_TIMEOUT_SECONDARY: float = 5.0
    IMAGE_REFRESH_DEBOUNCE: float = 1.0

    # Plan limits (None means unlimited)
    FREE_GOAL_LIMIT: Optional[int] = 1
    FREE_MESSAGE_LIMIT: Optional[int] = 5
    MONTHLY_GOAL_LIMIT: Optional[int] = 5
    MONTHLY_MESSAGE_LIMIT: Optional[int] = 25
    ANNUAL_GOAL_LIMIT: Optional[int] = None
    ANNUAL_MESSAGE_LIMIT: Optional[int] = None

    # Optional: Environment
    ENVIRONMENT: str = "development"

    @property
    def generated_image_markers(self) -> List[str]:
        return [part.strip() for part in self.GENERATED_IMAGE_MARKERS.split(",") if part.strip()]

    @property
    def is_supabase(self) -> bool:
        """Check if we're using Supabase database"""
        # Cover both to ensure DB engine gets the right settings
        return any(d in self.DATABASE_URL for d in [
            "supabase.co",
            "supabase.com",
            "pooler.supabase",
        ])

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

# Create a global settings instance
settings = Settings()
