"""Schedule sync configuration loaded from environment variables.

The resulting SyncConfig is injected into the engine and stores at
construction time; nothing below the composition root reads the environment.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


class SyncConfig(BaseSettings):
    """Schedule sync configuration loaded from environment variables.

    Settings are loaded from environment variables with sensible defaults.
    For local development, create a .env file in the project root.
    """

    # Namespacing (artifacts/{app_id}/users/{uid}/dailySchedules/{date})
    app_id: str = Field(
        default="default-app-id",
        description="Application namespace that prefixes every document path",
    )

    # Backend selection
    store_backend: Literal["memory", "json", "firestore"] = Field(
        default="json",
        description="DocumentStore implementation to use",
    )
    data_file: str = Field(
        default="data/schedules.json",
        description="JSON file used by the 'json' store backend",
    )
    subject_id: str = Field(
        default="local-user",
        description="Static subject identifier for the local store backends",
    )

    # Firebase settings (only used by the 'firestore' backend)
    firebase_api_key: str = Field(
        default="",
        description="Web API key used for Identity Toolkit sign-in",
    )
    firebase_project_id: str = Field(
        default="",
        description="Firestore project id",
    )
    firebase_auth_token: str = Field(
        default="",
        description="Optional custom auth token; anonymous sign-in when empty",
    )

    # Remote behaviour
    poll_interval_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Interval between Firestore change polls",
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for a single HTTP request",
    )

    # Template handling
    reconcile_template: bool = Field(
        default=False,
        description="Merge documents created under an older template on read",
    )

    # Logging
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (for production)",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    model_config = {
        "env_prefix": "",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


# Singleton pattern
_config: SyncConfig | None = None


def get_config() -> SyncConfig:
    """Get the schedule sync configuration singleton.

    Returns:
        SyncConfig: Schedule sync configuration instance
    """
    global _config
    if _config is None:
        _config = SyncConfig()
    return _config
