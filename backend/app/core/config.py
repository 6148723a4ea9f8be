"""Application configuration using Pydantic Settings"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database
    DATABASE_URL: str = "sqlite:///./data/app.db"

    # Application
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[str] = None  # Defaults to backend/data/logs
    STAGE_NAME: str = "dev"

    # API
    API_V1_PREFIX: str = "/api/v1"

    # Face matching collaborator
    # Empty URL selects the in-process client (local development and tests)
    FACE_MATCHING_URL: str = ""
    FACE_MATCHING_API_KEY: Optional[str] = None
    FACE_MATCHING_TIMEOUT_SECONDS: float = 10.0
    FACE_MATCHING_MAX_ATTEMPTS: int = 4
    FACE_MATCH_THRESHOLD: int = 80  # T_high, gates every face-based grant

    # Feed materialization
    FEED_BATCH_SIZE: int = 10
    FEED_MAX_RECORD_ATTEMPTS: int = 3
    CHANGE_FEED_POLL_SECONDS: int = 5
    CHANGE_FEED_GAP_GRACE_SECONDS: int = 30  # How long a missing seq may still commit
    PENDING_CONTENT_POLL_SECONDS: int = 30  # Upload notifications that never ran
    PROCESSING_LEASE_SECONDS: int = 600  # PROCESSING content older than this is re-run

    # Retroactive matching
    RETROACTIVE_PAGE_SIZE: int = 100
    RETROACTIVE_SWEEP_MINUTES: int = 10

    # Cleanup of grants for deleted content
    CLEANUP_INTERVAL_MINUTES: int = 60

    SCHEDULER_ENABLED: bool = True

    @field_validator('FACE_MATCH_THRESHOLD', mode='after')
    @classmethod
    def validate_threshold(cls, v: int) -> int:
        """Confidence scores are integers in 0..100."""
        if not 0 <= v <= 100:
            raise ValueError("FACE_MATCH_THRESHOLD must be between 0 and 100")
        return v

    @field_validator('FEED_BATCH_SIZE', 'FEED_MAX_RECORD_ATTEMPTS', 'RETROACTIVE_PAGE_SIZE', mode='after')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @property
    def use_remote_face_matching(self) -> bool:
        """True when an external face matching endpoint is configured."""
        return bool(self.FACE_MATCHING_URL.strip())

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


# Global settings instance
settings = Settings()
