from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Basic settings
    PROJECT_NAME: str = "CareBook"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # Remote marketplace API
    CAREBOOK_API_URL: str = "http://localhost:8000/api"
    API_TIMEOUT_SECONDS: float = 15.0
    API_MAX_RETRIES: int = 2

    # Redis (booking draft persistence)
    REDIS_URL: str = "redis://localhost:6379/0"
    BOOKING_DRAFT_TTL_SECONDS: int = 60 * 60 * 24

    # Scheduling policy
    BOOKING_HORIZON_DAYS: int = 90
    SLOT_STEP_MINUTES: Optional[int] = None  # None steps by the booked duration

    # Appointment listing
    DEFAULT_PER_PAGE: int = 25
    MAX_PER_PAGE: int = 100

    # Query cache
    QUERY_CACHE_TTL_SECONDS: float = 300.0
    MAX_SESSION_CACHES: int = 1000

    # CORS
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000"]

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v):
        if isinstance(v, str):
            return [i.strip() for i in v.split(",")]
        return v

    @field_validator("SLOT_STEP_MINUTES")
    @classmethod
    def validate_slot_step(cls, v):
        if v is not None and v <= 0:
            raise ValueError("SLOT_STEP_MINUTES must be positive")
        return v

    # Logging
    LOG_LEVEL: str = "INFO"

    model_config = {"env_file": ".env", "case_sensitive": True}


# Global settings instance
settings = Settings()
