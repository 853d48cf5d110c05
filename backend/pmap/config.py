"""
Server configuration.

Read from environment variables (a .env file is loaded first when present)
and validated into HandlerConfig.

Environment variables
---------------------
PORT                      Port the server listens on (default: 8080).
PROJECT_ID                Google Cloud project of the topics (required).
SUCCESS_TOPIC_ID          Topic receiving successfully processed mappings (required).
FAILURE_TOPIC_ID          Topic receiving terminal failures (optional).
LOG_LEVEL                 Logging level (default: INFO).
PUBLISH_TIMEOUT_SECONDS   Seconds to wait for a publish ack (default: 30).
REQUEST_TIMEOUT_SECONDS   Deadline for one handling attempt (default: none).
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class HandlerConfig(BaseModel):
    port: int = 8080
    project_id: str = ""
    success_topic_id: str = ""
    failure_topic_id: str = ""
    log_level: str = "INFO"
    publish_timeout_seconds: float = Field(30.0, gt=0)
    request_timeout_seconds: Optional[float] = Field(None, gt=0)

    def validate_required(self) -> None:
        """Raise ValueError naming the first missing required variable."""
        if not self.project_id:
            raise ValueError("PROJECT_ID is empty and requires a value")
        if not self.success_topic_id:
            raise ValueError("SUCCESS_TOPIC_ID is empty and requires a value")


def _env(name: str) -> Optional[str]:
    value = os.getenv(name, "").strip()
    return value or None


def load_config(dotenv: bool = True) -> HandlerConfig:
    """
    Build a HandlerConfig from the environment.

    Unset variables fall back to the model defaults.  Malformed numbers raise
    pydantic.ValidationError; missing required values are reported by
    HandlerConfig.validate_required().
    """
    if dotenv:
        load_dotenv()

    values = {
        "port": _env("PORT"),
        "project_id": _env("PROJECT_ID"),
        "success_topic_id": _env("SUCCESS_TOPIC_ID"),
        "failure_topic_id": _env("FAILURE_TOPIC_ID"),
        "log_level": _env("LOG_LEVEL"),
        "publish_timeout_seconds": _env("PUBLISH_TIMEOUT_SECONDS"),
        "request_timeout_seconds": _env("REQUEST_TIMEOUT_SECONDS"),
    }
    return HandlerConfig(**{k: v for k, v in values.items() if v is not None})
