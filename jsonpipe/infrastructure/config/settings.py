from typing import Mapping, Optional
import os
from pydantic import BaseModel, Field

ENV_PREFIX = "JSONPIPE_"


class Settings(BaseModel):
    """Service settings, read from JSONPIPE_* environment variables"""
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="json or console")
    service_name: str = Field(default="jsonpipe")
    runtime_cache_ttl: int = Field(default=300, ge=1, description="Seconds a run's entry list stays cached")
    whole_text_fallback: bool = Field(default=False, description="Try whole message text as a JSON object")
    config_path: Optional[str] = Field(None, description="YAML file with webhooks and jobs")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from the environment; unset variables keep their defaults"""

        env = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = env.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None and raw != "":
                values[name] = raw
        return cls.model_validate(values)
