"""Application configuration from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    app_name: str = "VenueBook"
    debug: bool = True
    secret_key: str = "dev-secret-change-in-production"
    api_prefix: str = "/api/v1"
    log_level: str = "INFO"

    # Facility wall clock. Reservation dates and times are local to this zone.
    timezone: str = "Asia/Hong_Kong"

    # Database
    database_url: str = "postgresql+asyncpg://venuebook:venuebook@db:5432/venuebook"
    database_echo: bool = False

    # Redis
    redis_url: str = "redis://redis:6379/0"

    # Auth
    access_token_expire_minutes: int = 60
    jwt_algorithm: str = "HS256"

    # Booking rules
    min_duration_minutes: int = 60
    max_duration_minutes: int = 120
    cancellation_cutoff_hours: int = 2
    max_advance_days_by_role: dict[str, int] = {"member": 7, "vip": 14, "admin": 365}
    full_venue_court_types: list[str] = ["solo", "training", "competition"]
    opening_time: str = "07:00"
    closing_time: str = "23:00"

    # Pricing
    weekend_days: list[int] = [5, 6]  # date.weekday(): Saturday, Sunday
    peak_start: str = "18:00"
    peak_end: str = "23:00"
    vip_discount_percent: int = 20

    # External calendar (Google Calendar v3)
    calendar_enabled: bool = False
    calendar_public_id: str = "primary"
    calendar_private_id: str | None = None
    calendar_client_email: str = ""
    calendar_private_key: str = ""
    calendar_token_uri: str = "https://oauth2.googleapis.com/token"
    calendar_api_base: str = "https://www.googleapis.com/calendar/v3"
    calendar_request_timeout: float | None = 30.0

    # Reconciliation
    sync_lock_backend: str = "memory"  # "memory" or "redis"
    sync_lock_key: str = "venuebook:calendar-sync"
    sync_lease_seconds: int = 600
    sync_short_interval_minutes: int = 5
    sync_nightly_hour: int = 2

    # Access control
    access_lead_minutes: int = 15

    # Notifications / SMTP
    notifications_enabled: bool = False
    smtp_host: str = "localhost"
    smtp_port: int = 1025
    smtp_from: str = "noreply@venuebook.io"

    # Stripe (points top-ups)
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_currency: str = "hkd"
    cents_per_point: int = 100

    model_config = {"env_prefix": "VB_", "env_file": ".env", "extra": "ignore"}


settings = Settings()
