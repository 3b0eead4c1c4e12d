from typing import Literal
from functools import lru_cache
from pydantic import BaseModel, Field
import os


class ProtocolSettings(BaseModel):
    """Runtime settings for the protocol layer"""
    log_level: str = Field(default="INFO", description="Root log level")
    log_format: Literal["json", "console"] = Field(default="json", description="Log renderer")
    service_name: str = Field(default="promptwire", description="Service name bound to every log entry")
    environment: str = Field(default="development")
    max_marker_length: int = Field(
        default=1024,
        gt=0,
        description="Longest undecided opening marker the parser holds back before treating it as prose"
    )

    @classmethod
    def from_env(cls) -> "ProtocolSettings":
        """Build settings from environment variables"""

        values = {
            "log_level": os.getenv("PROMPTWIRE_LOG_LEVEL"),
            "log_format": os.getenv("PROMPTWIRE_LOG_FORMAT"),
            "service_name": os.getenv("SERVICE_NAME"),
            "environment": os.getenv("ENVIRONMENT"),
            "max_marker_length": os.getenv("PROMPTWIRE_MAX_MARKER_LENGTH"),
        }
        return cls(**{key: value for key, value in values.items() if value is not None})


@lru_cache(maxsize=1)
def get_settings() -> ProtocolSettings:
    """Settings read once from the environment"""
    return ProtocolSettings.from_env()
