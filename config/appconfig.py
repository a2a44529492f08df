# config/appconfig.py
"""
Clinic Records Core Configuration
Record Gateway endpoints, history ranking limits and logging setup
"""
from typing import Any, Dict, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class AppSettings(BaseSettings):
    """Configuration for the submission pipeline and history stores"""

    # ============================================================================
    # RECORD GATEWAY (REST backend)
    # ============================================================================
    RECORD_GATEWAY_URL: str = "http://localhost:3002"
    # Defaults to {RECORD_GATEWAY_URL}/history when left empty
    HISTORY_BASE_URL: Optional[str] = None
    REQUEST_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)

    # ============================================================================
    # HISTORY / AUTOCOMPLETE
    # ============================================================================
    HISTORY_LIST_LIMIT: int = Field(default=20, ge=1)   # Entries fetched per category
    SUGGESTION_LIMIT: int = Field(default=10, ge=1)     # Suggestions shown per field

    # ============================================================================
    # LOGGING
    # ============================================================================
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"

    # ========================================================================
    # COMPUTED PROPERTIES
    # ========================================================================
    @property
    def resolved_history_base_url(self) -> str:
        """History collections live under the gateway unless overridden."""
        if self.HISTORY_BASE_URL:
            return self.HISTORY_BASE_URL.rstrip("/")
        return f"{self.RECORD_GATEWAY_URL.rstrip('/')}/history"

    @property
    def LOGGING_CONFIG(self) -> Dict[str, Any]:
        """dictConfig payload applied once at bootstrap."""
        return {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "loggers": {
                "clinic_records": {
                    "handlers": ["console"],
                    "level": self.LOG_LEVEL,
                    "propagate": False,
                },
                "httpx": {
                    "handlers": ["console"],
                    "level": "WARNING",
                    "propagate": False,
                },
            },
        }


settings = AppSettings()
