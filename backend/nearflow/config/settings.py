# /nearflow/config/settings.py

import sys
from typing import List
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="NEARFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # MongoDB
    mongo_uri: str | None = None
    mongo_database: str = "nearflow"
    sessions_collection: str = "conversation_sessions"
    max_pool_size: int = 10
    min_pool_size: int = 1
    mongo_ssl: bool = False

    # Redis
    redis_url: str = "redis://localhost:6379"
    expiry_stream_name: str = "session_expiry_intents"
    processed_message_ttl_seconds: int = 300
    redis_enabled: bool = True

    # Sessions
    session_timeout_minutes: int = 30  # fallback when a flow declares none
    suspended_stack_depth: int = 5
    default_entry_flow: str = "main_menu"
    registration_flow: str = "registration"
    handler_timeout_seconds: float = 5.0

    # Sweeper
    sweep_interval_minutes: int = 5
    scheduler_timezone: str = "Asia/Kolkata"

    # Global keywords (comma separated in the environment)
    menu_keywords: List[str] = Field(default=["menu", "home", "start", "main", "reset"])
    cancel_keywords: List[str] = Field(default=["cancel", "exit", "quit", "stop", "end"])
    resume_keywords: List[str] = Field(default=["resume", "continue", "back to it"])
    help_keywords: List[str] = Field(default=["help", "?", "support"])
    skip_keywords: List[str] = Field(default=["skip", "-", "none"])

    # Deployment
    environment: str = "production"
    api_version: str = "v1"
    workers: int = 4
    api_key: str | None = None  # guards /metrics and admin routes when set

    # ---------------- Validators ---------------- #

    @field_validator(
        "menu_keywords",
        "cancel_keywords",
        "resume_keywords",
        "help_keywords",
        "skip_keywords",
        mode="before",
    )
    @classmethod
    def parse_keyword_list(cls, v):
        """
        Accept both a comma-separated string and a list so keywords can be
        overridden from plain environment variables.
        """
        if isinstance(v, str):
            v = [item for item in v.split(",")]
        if isinstance(v, list):
            return [str(item).strip().lower() for item in v if str(item).strip()]
        return v

    @field_validator("suspended_stack_depth", "session_timeout_minutes", "sweep_interval_minutes")
    @classmethod
    def must_be_positive(cls, v):
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @model_validator(mode="after")
    def keywords_must_not_overlap(self):
        groups = {
            "menu": set(self.menu_keywords),
            "cancel": set(self.cancel_keywords),
            "resume": set(self.resume_keywords),
            "help": set(self.help_keywords),
        }
        seen = {}
        for name, words in groups.items():
            for word in words:
                if word in seen:
                    raise ValueError(f"Keyword '{word}' is configured for both {seen[word]} and {name}")
                seen[word] = name
        return self


def validate_environment(settings_obj: Settings):
    try:
        if settings_obj.environment == "production" and not settings_obj.mongo_uri:
            raise ValueError("NEARFLOW_MONGO_URI is required in production")
        return settings_obj

    except Exception as e:
        print(f"--- [ERROR] Environment validation failed: {e}")
        sys.exit(1)


settings = Settings()
