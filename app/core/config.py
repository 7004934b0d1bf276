"""Application configuration and settings."""

from typing import List, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Service Configuration
    service_name: str = Field(default="agent-orchestrator", env="SERVICE_NAME")
    service_version: str = Field(default="1.0.0", env="SERVICE_VERSION")
    port: int = Field(default=8000, env="PORT")
    host: str = Field(default="::", env="HOST")
    debug: bool = Field(default=False, env="DEBUG")
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_sample_rate: float = Field(default=1.0, env="LOG_SAMPLE_RATE")
    api_prefix: str = Field(default="/api/v1", env="API_PREFIX")

    # Supabase Configuration (unset means development mode, in-memory registry)
    supabase_url: Optional[str] = Field(default=None, env="SUPABASE_URL")
    supabase_key: Optional[str] = Field(default=None, env="SUPABASE_KEY")
    agents_table: str = Field(default="agents", env="AGENTS_TABLE")

    # Scheduler Configuration
    scheduler_enabled: bool = Field(default=True, env="SCHEDULER_ENABLED")
    scheduler_timezone: str = Field(default="Africa/Johannesburg", env="SCHEDULER_TIMEZONE")
    max_concurrent_runs: int = Field(default=4, env="MAX_CONCURRENT_RUNS")
    misfire_grace_time_seconds: int = Field(default=300, env="MISFIRE_GRACE_TIME_SECONDS")

    # Executor Configuration
    handler_timeout_seconds: Optional[float] = Field(default=None, env="HANDLER_TIMEOUT_SECONDS")
    metrics_update_max_attempts: int = Field(default=5, env="METRICS_UPDATE_MAX_ATTEMPTS")

    # Registration: "reset" wipes status/metrics on every boot, "preserve" keeps history
    register_default_agents: bool = Field(default=True, env="REGISTER_DEFAULT_AGENTS")
    agent_registration_mode: str = Field(default="reset", env="AGENT_REGISTRATION_MODE")

    # Monitoring thresholds
    overdue_threshold_hours: float = Field(default=25.0, env="OVERDUE_THRESHOLD_HOURS")
    slow_execution_threshold_ms: float = Field(default=300000.0, env="SLOW_EXECUTION_THRESHOLD_MS")

    enable_cors: bool = Field(default=True, env="ENABLE_CORS")
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        env="CORS_ORIGINS"
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    @field_validator("scheduler_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @field_validator("agent_registration_mode")
    @classmethod
    def validate_registration_mode(cls, v: str) -> str:
        v = v.lower()
        if v not in ("reset", "preserve"):
            raise ValueError("agent_registration_mode must be 'reset' or 'preserve'")
        return v

    @field_validator("max_concurrent_runs", "metrics_update_max_attempts")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    @property
    def reset_on_register(self) -> bool:
        return self.agent_registration_mode == "reset"

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore",
    }


# Create global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
