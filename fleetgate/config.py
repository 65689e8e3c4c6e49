"""FleetGate — Application configuration via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class FleetGateSettings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # ── PostgreSQL (record store + audit log) ──────────────────
    postgres_user: str = "fleetgate"
    postgres_password: str = "change-me-in-production"
    postgres_db: str = "trufleet"
    postgres_host: str = "localhost"
    postgres_port: int = 5432

    # Full URL override, e.g. sqlite:///./fleetgate.db for local runs
    database_url: str = ""

    @property
    def database_url_sync(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+psycopg2://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # ── API ────────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 3000

    # ── Authorization codes ────────────────────────────────────
    dispatch_code_prefix: str = "AUTH"
    identity_code_prefix: str = "IDV"

    # ── Verification policy ────────────────────────────────────
    expiry_warning_days: int = 7
    kyc_pending_denies: bool = False

    # ── Attempt throttling (0 disables) ────────────────────────
    attempt_limit: int = 30
    attempt_window_seconds: int = 60

    # ── Logging ────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"


settings = FleetGateSettings()
