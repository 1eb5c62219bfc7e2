import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        secret_key: str,
        session_max_age_hours: int,
        default_currency: str,
        default_language: str,
        default_theme: str,
        app_url: str,
        admin_token: str,
        stripe_secret_key: str,
        stripe_webhook_secret: str,
        stripe_price_id: str,
        billing_max_attempts: int,
        billing_retry_minutes: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.secret_key = secret_key
        self.session_max_age_hours = session_max_age_hours
        self.default_currency = default_currency
        self.default_language = default_language
        self.default_theme = default_theme
        self.app_url = app_url
        self.admin_token = admin_token
        self.stripe_secret_key = stripe_secret_key
        self.stripe_webhook_secret = stripe_webhook_secret
        self.stripe_price_id = stripe_price_id
        self.billing_max_attempts = billing_max_attempts
        self.billing_retry_minutes = billing_retry_minutes


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "America/Sao_Paulo")
    secret_key = os.getenv(
        "FINANCE_SECRET_KEY",
        "4c1f0d9e2b7a58e3f6d1c0b9a8e7f6d5c4b3a29180f7e6d5c4b3a2918070f6e5",
    )
    session_max_age_hours = int(os.getenv("FINANCE_SESSION_MAX_AGE_HOURS", "720"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        secret_key=secret_key,
        session_max_age_hours=session_max_age_hours,
        default_currency=os.getenv("FINANCE_DEFAULT_CURRENCY", "BRL"),
        default_language=os.getenv("FINANCE_DEFAULT_LANGUAGE", "pt"),
        default_theme=os.getenv("FINANCE_DEFAULT_THEME", "light"),
        app_url=os.getenv("FINANCE_APP_URL", "http://localhost:8000"),
        admin_token=os.getenv("FINANCE_ADMIN_TOKEN", ""),
        stripe_secret_key=os.getenv("STRIPE_SECRET_KEY", ""),
        stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET", ""),
        stripe_price_id=os.getenv("STRIPE_PRICE_ID", ""),
        billing_max_attempts=int(os.getenv("FINANCE_BILLING_MAX_ATTEMPTS", "5")),
        billing_retry_minutes=int(os.getenv("FINANCE_BILLING_RETRY_MINUTES", "15")),
    )
