from pathlib import Path

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SLOTKEEPER_", env_file=".env", extra="ignore")

    database_url: str = "sqlite+pysqlite:///./slotkeeper.db"
    seed_path: Path = Path(__file__).resolve().parents[1] / "seed/facilities.yaml"
    log_level: str = "INFO"

    rate_per_minute: int = 10
    currency: str = "npr"
    min_hold_minutes: int = 1
    max_hold_minutes: int = 60
    default_hold_minutes: int = 15
    reconcile_grace_minutes: int = 60
    lock_timeout_seconds: float = 10.0

    sweep_interval_seconds: float = 60.0
    lazy_sweep: bool = True
    notifier_queue_size: int = 100

    stripe_secret_key: SecretStr | None = None
    stripe_webhook_secret: SecretStr | None = None
    public_base_url: str = "http://localhost:8000"
    success_redirect_url: str = "http://localhost:3000/my-bookings"
    failure_redirect_url: str = "http://localhost:3000/booking-failed"
    ticket_secret: SecretStr = SecretStr("change-me")


settings = Settings()
