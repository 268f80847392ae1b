from dataclasses import dataclass
import os

from dotenv import load_dotenv


load_dotenv()


@dataclass(frozen=True)
class Settings:
    app_name: str
    database_url: str
    log_level: str
    log_dir: str
    trial_lead_days: int
    payable_days: int
    admin_email: str
    mail_from: str
    smtp_host: str
    smtp_port: int
    smtp_username: str
    smtp_password: str
    smtp_use_tls: bool
    max_delivery_retries: int
    retry_backoff_seconds: float
    schedule_hour_utc: int
    schedule_minute_utc: int


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def get_settings() -> Settings:
    return Settings(
        app_name=os.getenv("APP_NAME", "billrun"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./billing.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_dir=os.getenv("LOG_DIR", ""),
        trial_lead_days=int(os.getenv("TRIAL_LEAD_DAYS", "7")),
        payable_days=int(os.getenv("PAYABLE_DAYS", "10")),
        admin_email=os.getenv("ADMIN_EMAIL", "admin@localhost"),
        mail_from=os.getenv("MAIL_FROM", "billing@localhost"),
        smtp_host=os.getenv("SMTP_HOST", ""),
        smtp_port=int(os.getenv("SMTP_PORT", "25")),
        smtp_username=os.getenv("SMTP_USERNAME", ""),
        smtp_password=os.getenv("SMTP_PASSWORD", ""),
        smtp_use_tls=_env_flag("SMTP_USE_TLS", "false"),
        max_delivery_retries=int(os.getenv("MAX_DELIVERY_RETRIES", "2")),
        retry_backoff_seconds=float(os.getenv("RETRY_BACKOFF_SECONDS", "1")),
        schedule_hour_utc=int(os.getenv("SCHEDULE_HOUR_UTC", "3")),
        schedule_minute_utc=int(os.getenv("SCHEDULE_MINUTE_UTC", "0")),
    )
