"""Application configuration.

Pydantic Settings reads every value from the environment so local runs and
deployments only differ in ``CLINICALFORGE_*`` variables.
"""

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Core settings.

    - ``database_url``: SQLAlchemy URL of the submission store, SQLite by default.
    - ``storage_timeout_seconds``: deadline applied to every storage call.
    - ``cache_ttl_seconds``: freshness window of the query cache.
    - ``placeholder_scores_enabled``: emit the labelled random stand-in scores.
    - ``admin_usernames``: the only accounts that may register themselves as
      administrators (JSON list in the environment). Any other admin account
      must be created by a signed-in administrator.
    """

    database_url: str = Field(
        default="sqlite:///./storage/clinicalforge.db", description="SQLAlchemy database URL"
    )
    secret_key: str = Field(
        default="clinicalforge-dev-secret-change-me", description="HMAC key for bearer tokens"
    )
    token_expire_hours: int = Field(default=24, description="Bearer token lifetime")
    admin_usernames: List[str] = Field(
        default_factory=list, description="Usernames allowed to self-register as admin"
    )
    storage_timeout_seconds: float = Field(
        default=10.0, gt=0, description="Deadline for a single storage call"
    )
    cache_ttl_seconds: float = Field(default=30.0, ge=0, description="Query cache TTL")
    cache_max_entries: int = Field(default=256, ge=1, description="Query cache capacity")
    dashboard_window: int = Field(
        default=500, ge=1, description="Max submissions read per dashboard aggregation"
    )
    recent_days: int = Field(default=7, ge=1, description="Horizon of recent submissions")
    top_n: int = Field(default=5, ge=1, description="Size of ranking lists")
    monthly_buckets: int = Field(default=6, ge=1, description="Monthly buckets kept")
    log_level: str = Field(default="INFO", description="Root log level")
    placeholder_scores_enabled: bool = Field(
        default=False, description="Attach random stand-in quality scores"
    )
    live_dashboard_enabled: bool = Field(
        default=True, description="Recompute dashboard stats on every submission change"
    )

    model_config = {
        "env_prefix": "CLINICALFORGE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached global settings instance."""

    return Settings()
