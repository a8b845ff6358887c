"""
Placement Guard - Runtime Settings

Loads tunables from the environment (or .env) using pydantic-settings.
The engine receives them through the EngineContext.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine configuration. Each field reads the upper-cased env var of the same name."""

    # Auth
    jwt_secret_key: str = "placement-guard-secret-key-change-in-production"
    jwt_algorithm: str = "HS256"
    internal_api_key: str = "scheduler-internal-key-change-in-production"

    # Enforcement ledger
    success_fee_rate: float = 15.0          # percent of first-year salary
    success_fee_due_days: int = 30
    hire_bypass_penalty: float = 2000.0     # confirmed off-platform hire
    minor_bypass_penalty: float = 500.0     # lesser violation
    penalty_due_days: int = 14
    currency: str = "GBP"

    # Activity monitor
    local_timezone: str = "Europe/London"

    # Candidate profiles, one <candidate_id>.json per file
    profile_dir: str = "profiles"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )
