"""
HydraCat Configuration
======================
All environment variables in one place. Pydantic Settings validates
types at startup so a bad window or queue limit fails fast instead of
silently corrupting the offline queue.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Loaded from environment variables or a .env file."""

    # --- Supabase ---
    supabase_url: str = "http://localhost:54321"
    supabase_service_key: str = ""  # service_role key for backend operations

    # --- Local storage ---
    local_store_path: str = "hydracat_local.sqlite3"

    # --- App settings ---
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:8081", "http://localhost:19006"]

    # --- Logging rules ---
    # One window for both the cached duplicate check and the write-time
    # comparison against existing sessions.
    duplicate_window_minutes: int = 120
    schedule_match_window_minutes: int = 120
    # Recent / completed timestamps kept per medication in the daily cache
    recent_times_limit: int = 8

    # --- Offline queue ---
    queue_soft_limit: int = 50
    queue_hard_limit: int = 200
    queue_entry_ttl_days: int = 30
    replay_max_attempts: int = 3
    replay_backoff_seconds: list[float] = [1.0, 2.0, 4.0]

    # --- Remote summary reader ---
    daily_summary_ttl_seconds: int = 300
    monthly_summary_ttl_seconds: int = 900

    # --- Connectivity ---
    connectivity_probe_url: str = "https://www.gstatic.com/generate_204"
    connectivity_timeout_seconds: float = 5.0
    connectivity_poll_seconds: float = 15.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
