# src/settings.py
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    # postgresql://postgres:root@db:5432/dp-db in the docker deployment
    database_url: str = "sqlite:///./documents.db"

    # Auth
    secret_key: str = "change-me"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30

    # Storage
    upload_dir: str = "uploads"
    archive_dir: str = "archive"
    max_file_size: int = 10 * 1024 * 1024

    # Workflow
    default_attestation: str = "OK SIGNÉ"
    # Roles notified when a finalized document becomes downloadable
    download_authorized_roles: List[str] = Field(
        default=["saf", "appariteur", "receptionniste", "bibliothecaire"]
    )
    # "omit": a required role without an active holder is dropped from the chain (logged)
    # "fail": initialization is refused instead
    missing_signer_policy: Literal["omit", "fail"] = "omit"
    # Optional JSON file overriding the built-in workflow templates
    workflow_templates_file: Optional[str] = None

    # Reminder sweep
    reminders_enabled: bool = True
    reminder_interval_hours: int = 24
    reminder_after_hours: int = 72

    # App
    allowed_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    log_level: str = "INFO"
    seed_demo_data: bool = True

    model_config = ConfigDict(
        env_file=str(Path(__file__).resolve().parent / ".env"),
        extra="ignore",
    )

    def get_origins_list(self) -> List[str]:
        """Parse comma-separated origins into a list."""
        if not self.allowed_origins:
            return ["*"]
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


_settings_instance = None

def get_settings() -> Settings:
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
