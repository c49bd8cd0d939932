from decimal import Decimal
from pathlib import Path
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env from the project root so it loads regardless of cwd
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(str(_ENV_FILE), ".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str
    database_ssl: bool = False

    # Bearer tokens issued by the identity service (shared secret)
    secret_key: str
    access_token_expire_minutes: int = 60
    algorithm: str = "HS256"

    # CORS
    cors_origins: str = "http://localhost:3000"

    # Env
    env: str = "development"

    # Scheduling rules
    # Weekly windows are wall-clock times in this zone
    schedule_timezone: str = "Africa/Lagos"
    consultation_duration_minutes: int = 45
    booking_buffer_minutes: int = 15
    # When set, the commit guard also applies the buffer (stricter than offer-only)
    enforce_buffer_on_commit: bool = False
    consultation_price: Decimal = Decimal("50.00")
    currency: str = "NGN"
    refund_window_hours: int = 12

    # Read retries for slot listing when the store is unreachable
    slot_read_attempts: int = 3
    slot_read_backoff_seconds: float = 0.2

    # Payment gateway. Leave paystack_secret_key empty to disable initiation.
    paystack_secret_key: str = ""
    paystack_base_url: str = "https://api.paystack.co"
    payment_callback_url: str = ""
    payment_timeout_seconds: float = 10.0

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def schedule_tz(self) -> ZoneInfo:
        return ZoneInfo(self.schedule_timezone)

    @property
    def payments_enabled(self) -> bool:
        return bool(self.paystack_secret_key)


settings = Settings()
