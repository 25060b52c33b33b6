"""Stratus configuration — loads from environment and local config files."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


def _find_repo_root() -> Path:
    """Walk up from this file to find the repo root (where pyproject.toml lives)."""
    p = Path(__file__).resolve().parent
    while p != p.parent:
        if (p / "pyproject.toml").exists():
            return p
        p = p.parent
    return Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Application settings — populated from env vars or .env file."""

    # App
    app_name: str = "Stratus"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = False

    # Database
    database_url: str = ""

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Auth — set STRATUS_API_KEY to enable API key auth
    api_key: Optional[str] = None

    # Sync pipeline
    sync_enabled: bool = False
    sync_cron: str = "0 */6 * * *"
    sync_cost_days: int = 30
    metrics_sample_size: int = 50
    metrics_concurrency: int = 4
    metrics_lookback_hours: int = 24

    # Upstream gateways
    upstream_timeout: float = 30.0
    upstream_retries: int = 3
    azure_tenant_id: str = ""
    azure_client_id: str = ""
    azure_client_secret: str = ""
    azure_subscription_ids: str = ""  # comma-separated

    # Analysis
    anomaly_lookback_days: int = 30
    anomaly_z_threshold: float = 2.0
    forecast_history_days: int = 90
    forecast_horizon_days: int = 30

    # Notifications
    slack_webhook_url: str = ""
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    email_from: str = ""

    # Paths
    repo_root: Path = _find_repo_root()

    model_config = {"env_prefix": "STRATUS_", "env_file": ".env", "extra": "ignore"}

    @property
    def local_dir(self) -> Path:
        return self.repo_root / "local"

    @property
    def data_dir(self) -> Path:
        d = self.local_dir / "data"
        d.mkdir(parents=True, exist_ok=True)
        return d

    @property
    def effective_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.data_dir / 'stratus.db'}"

    @property
    def subscription_id_list(self) -> list[str]:
        return [s.strip() for s in self.azure_subscription_ids.split(",") if s.strip()]

    @property
    def secret_values(self) -> list[str]:
        """Configured secret values that must never leave the process unmasked."""
        candidates = [
            self.api_key or "",
            self.azure_client_secret,
            self.azure_client_id,
            self.azure_tenant_id,
            self.smtp_password,
            self.slack_webhook_url,
        ]
        return [v for v in candidates if len(v) > 4]


settings = Settings()
