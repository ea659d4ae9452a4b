"""
Application settings configuration for the XSCard events backend.

Centralized settings loaded from environment variables.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class AppSettings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment Variables:
        XSCARD_LOOKAHEAD_DAYS: Rolling window for instance materialization (default: 90)
        XSCARD_MAX_INSTANCES_PER_QUERY: Safety cap on occurrences per expansion (default: 100)
        XSCARD_DEFAULT_TIMEZONE: Timezone used when a pattern omits one
            (default: "Africa/Johannesburg")
        XSCARD_PAYMENT_ABANDON_MINUTES: Age after which an unconfirmed payment
            is treated as abandoned (default: 60)
        XSCARD_TRIAL_JOB_INTERVAL_HOURS: Trial expiration sweep interval (default: 12)
        XSCARD_INACTIVE_JOB_INTERVAL_MINUTES: Inactive user check interval
            (default: 6 months in minutes)
        XSCARD_INACTIVE_THRESHOLD_DAYS: Days an account must be inactive before
            archival (default: 180)
        XSCARD_ARCHIVE_INACTIVE_USERS: Enable archival of inactive users (default: False)
        XSCARD_DELETE_AUTH_USERS: Also delete the external auth identity (default: False)
        XSCARD_CLEANUP_DRY_RUN: Default dry-run mode for the past cleanup job (default: False)
        XSCARD_CLEANUP_GRACE_DAYS: Days a past instance is kept before cleanup (default: 0)
        XSCARD_JOB_MIN_INTERVAL_MINUTES: Minimum gap between two runs of the same job
            (default: 60)
        XSCARD_SCHEDULER_AUTOSTART: Start background jobs with the API process
            (default: False)
        PAYSTACK_SECRET_KEY: Paystack API secret (default: "" = gateway disabled)
        PAYSTACK_BASE_URL: Paystack API base URL (default: "https://api.paystack.co")
        XSCARD_PAYMENT_CALLBACK_URL: Callback URL handed to the gateway
        XSCARD_CURRENCY: ISO currency code for ticket prices (default: "ZAR")
    """

    # Recurrence / materialization
    lookahead_days: int = Field(
        default=90,
        validation_alias="XSCARD_LOOKAHEAD_DAYS",
        ge=1,
        le=366,
    )

    max_instances_per_query: int = Field(
        default=100,
        validation_alias="XSCARD_MAX_INSTANCES_PER_QUERY",
        ge=1,
    )

    default_timezone: str = Field(
        default="Africa/Johannesburg",
        validation_alias="XSCARD_DEFAULT_TIMEZONE",
        description="IANA timezone used when a recurrence pattern has none"
    )

    # Registrations
    payment_abandon_minutes: int = Field(
        default=60,
        validation_alias="XSCARD_PAYMENT_ABANDON_MINUTES",
        ge=1,
    )

    bulk_min_quantity: int = Field(default=2, validation_alias="XSCARD_BULK_MIN_QUANTITY", ge=2)
    bulk_max_quantity: int = Field(default=50, validation_alias="XSCARD_BULK_MAX_QUANTITY", ge=2)

    # Background jobs
    trial_job_interval_hours: int = Field(
        default=12,
        validation_alias="XSCARD_TRIAL_JOB_INTERVAL_HOURS",
        ge=1,
    )

    inactive_job_interval_minutes: int = Field(
        default=6 * 30 * 24 * 60,
        validation_alias="XSCARD_INACTIVE_JOB_INTERVAL_MINUTES",
        description="Interval between inactive user checks. Values below 60 disable the job."
    )

    inactive_threshold_days: int = Field(
        default=180,
        validation_alias="XSCARD_INACTIVE_THRESHOLD_DAYS",
        ge=0,
    )

    archive_inactive_users: bool = Field(
        default=False,
        validation_alias="XSCARD_ARCHIVE_INACTIVE_USERS",
    )

    delete_auth_users: bool = Field(
        default=False,
        validation_alias="XSCARD_DELETE_AUTH_USERS",
    )

    cleanup_dry_run: bool = Field(
        default=False,
        validation_alias="XSCARD_CLEANUP_DRY_RUN",
    )

    cleanup_grace_days: int = Field(
        default=0,
        validation_alias="XSCARD_CLEANUP_GRACE_DAYS",
        ge=0,
    )

    cleanup_timezone: str = Field(
        default="Africa/Johannesburg",
        validation_alias="XSCARD_CLEANUP_TIMEZONE",
        description="Timezone whose midnight triggers the daily cleanup run"
    )

    job_min_interval_minutes: int = Field(
        default=60,
        validation_alias="XSCARD_JOB_MIN_INTERVAL_MINUTES",
        ge=0,
    )

    materialization_interval_hours: int = Field(
        default=6,
        validation_alias="XSCARD_MATERIALIZATION_INTERVAL_HOURS",
        ge=1,
    )

    payment_sweep_interval_minutes: int = Field(
        default=15,
        validation_alias="XSCARD_PAYMENT_SWEEP_INTERVAL_MINUTES",
        ge=1,
    )

    scheduler_autostart: bool = Field(
        default=False,
        validation_alias="XSCARD_SCHEDULER_AUTOSTART",
    )

    # Payment gateway
    paystack_secret_key: str = Field(
        default="",
        validation_alias="PAYSTACK_SECRET_KEY",
        description="Paystack secret key used as bearer token"
    )

    paystack_base_url: str = Field(
        default="https://api.paystack.co",
        validation_alias="PAYSTACK_BASE_URL",
    )

    payment_callback_url: str = Field(
        default="",
        validation_alias="XSCARD_PAYMENT_CALLBACK_URL",
    )

    currency: str = Field(
        default="ZAR",
        validation_alias="XSCARD_CURRENCY",
        min_length=3,
        max_length=3,
    )

    class Config:
        env_file = ".env"
        extra = "ignore"

    @field_validator("default_timezone", "cleanup_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate that the timezone is a known IANA zone."""
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @property
    def paystack_configured(self) -> bool:
        """Check if the Paystack gateway is configured."""
        return bool(self.paystack_secret_key)

    @property
    def inactive_job_enabled(self) -> bool:
        """The inactive user job only runs with an interval of at least one hour."""
        return self.inactive_job_interval_minutes >= 60


@lru_cache()
def get_settings() -> AppSettings:
    """
    Get cached application settings instance.

    Returns:
        AppSettings: Configured application settings from environment
    """
    return AppSettings()
