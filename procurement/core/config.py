from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # App
    app_name: str = "Procurement Approvals"
    debug: bool = False

    # Logging
    log_level: str = "INFO"
    log_dir: str = "./var/log/procurement"
    file_logging: bool = False

    # Policies
    policy_file: Optional[str] = None  # YAML file with approval policies
    use_preset_policies: bool = True

    # Approval engine
    duplicate_decisions: Literal["reject", "overwrite", "append"] = "reject"

    # Cost delta threshold feeding the cost_delta_exceeded trigger
    cost_percent_threshold: float = 0.05
    cost_absolute_threshold: float = 1000.00
    cost_threshold_mode: Literal["OR", "AND"] = "OR"

    # Persistence
    database_url: str = "sqlite:///./var/procurement.db"

    model_config = SettingsConfigDict(
        env_prefix="PROCUREMENT_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
