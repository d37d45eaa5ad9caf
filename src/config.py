from functools import lru_cache
from threading import Lock

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
    )

    # Application
    app_name: str = "Rental Booking API"
    debug: bool = False
    environment: str = "production"
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite+aiosqlite:///./rental.db"

    # Security (tokens are issued by the identity provider)
    secret_key: str = "change-this-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30

    # CORS
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:8080"]

    # Pricing
    currency: str = "INR"
    tax_rate: float = 0.18
    driver_hourly_rate: float = 100.0

    # Cancellation policy
    cancellation_full_window_hours: int = 24
    cancellation_full_fee_ratio: float = 0.5
    cancellation_partial_window_hours: int = 48
    cancellation_partial_fee_ratio: float = 0.25

    # Booking commit and sweeps
    booking_commit_max_attempts: int = 3
    storage_read_retries: int = 2
    pending_payment_timeout_minutes: int = 30
    sweep_interval_seconds: int = 60

    # Outbox relay
    outbox_batch_size: int = 100
    outbox_max_retries: int = 5

    # Payment gateway
    payment_gateway_url: str = "https://api.razorpay.com"
    payment_key_id: str = ""
    payment_key_secret: str = "change-this-in-production"
    payment_webhook_secret: str = "change-this-in-production"
    payment_timeout_seconds: float = 10.0


class _SettingsHolder:
    """Holds the active settings snapshot and the version token guarding reloads."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._snapshot = Settings()
        self._version = 1

    @property
    def version(self) -> int:
        return self._version

    def current(self) -> Settings:
        return self._snapshot

    def reload(self, expected_version: int | None = None, **overrides) -> Settings:
        with self._lock:
            if expected_version is not None and expected_version != self._version:
                raise RuntimeError(
                    f"Settings version mismatch: expected {expected_version}, "
                    f"current {self._version}"
                )
            self._snapshot = Settings(**overrides)
            self._version += 1
            return self._snapshot


@lru_cache
def _holder() -> _SettingsHolder:
    return _SettingsHolder()


def get_settings() -> Settings:
    return _holder().current()


def settings_version() -> int:
    return _holder().version


def reload_settings(expected_version: int | None = None, **overrides) -> Settings:
    return _holder().reload(expected_version, **overrides)


settings = get_settings()
