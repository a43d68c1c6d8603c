"""
Service configuration.

Every knob has a default and an FFJOBS_* environment override.
Values are validated once at startup; a bad value stops the service
instead of surfacing later as a confusing runtime failure.
"""

import os
from typing import List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

ENV_PREFIX = "FFJOBS_"

DEFAULT_CORS_ORIGINS = ["http://localhost:5173", "http://127.0.0.1:5173"]


class SettingsError(Exception):
    """Raised when the environment holds an invalid setting."""
    pass


class ServiceSettings(BaseModel):
    """
    Runtime settings of the ffjobs service.

    Timeouts are in seconds; 0 means unbounded.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    run_timeout: float = Field(default=0.0, ge=0)
    probe_timeout: float = Field(default=15.0, gt=0)
    retention_seconds: float = Field(default=1800.0, ge=0)
    subscriber_buffer: int = Field(default=16, ge=1)
    stderr_limit: int = Field(default=64 * 1024, ge=1)
    log_level: str = "INFO"
    cors_origins: List[str] = Field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    work_dir: Optional[str] = None

    @field_validator("log_level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value!r}")
        return level

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServiceSettings":
        """
        Build settings from FFJOBS_* environment variables.

        Raises:
            SettingsError: If any variable fails validation
        """
        env = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = env.get(ENV_PREFIX + name.upper())
            if raw is None or raw == "":
                continue
            if name == "cors_origins":
                values[name] = [o.strip() for o in raw.split(",") if o.strip()]
            else:
                values[name] = raw
        try:
            return cls(**values)
        except ValidationError as e:
            raise SettingsError(f"Invalid ffjobs settings: {e}") from e
