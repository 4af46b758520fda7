import os
from pathlib import Path
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv

from ..domain.pricing import BILLING_CYCLES, TIERS


class Settings:
    """Centralised application configuration sourced from environment variables."""

    def __init__(self) -> None:
        load_dotenv()
        self.stripe_secret_key = os.getenv("STRIPE_SECRET_KEY")
        self.stripe_webhook_secret = os.getenv("STRIPE_WEBHOOK_SECRET")
        self.stripe_api_version = os.getenv("STRIPE_API_VERSION", "2024-06-20")
        self.stripe_price_ids = self._price_overrides()
        self.identity_token_secret = os.getenv("IDENTITY_TOKEN_SECRET", "change-me")
        self.identity_token_algorithm = os.getenv("IDENTITY_TOKEN_ALGORITHM", "HS256")
        self.identity_token_audience = os.getenv("IDENTITY_TOKEN_AUDIENCE") or None
        self.database_path = Path(os.getenv("DATABASE_PATH", "data/sitecare.db")).resolve()
        self.app_base_url = os.getenv("APP_BASE_URL", "http://localhost:3000").rstrip("/")
        self.smtp_host = os.getenv("SMTP_HOST", "")
        self.smtp_port = self._get_int("SMTP_PORT", default=587)
        self.smtp_username = os.getenv("SMTP_USERNAME", "")
        self.smtp_password = os.getenv("SMTP_PASSWORD", "")
        self.smtp_from_email = os.getenv("SMTP_FROM_EMAIL", "")
        self.password_reset_email_mode = os.getenv("PASSWORD_RESET_EMAIL_MODE", "smtp").lower()
        self.redis_url = os.getenv("REDIS_URL") or None
        self.reset_rate_limit = self._get_int("RESET_RATE_LIMIT", default=5)
        self.reset_rate_window_seconds = self._get_int("RESET_RATE_WINDOW_SECONDS", default=60 * 60)
        self.coupon_rate_limit_per_minute = self._get_int("COUPON_RATE_LIMIT_PER_MINUTE", default=10)
        self.webhook_dedup_ttl_seconds = self._get_int("WEBHOOK_DEDUP_TTL_SECONDS", default=60 * 60)
        origins = os.getenv("CORS_ALLOW_ORIGINS")
        if origins:
            self.cors_allow_origins = [item.strip() for item in origins.split(",") if item.strip()]
        else:
            self.cors_allow_origins = ["*"]

    @staticmethod
    def _price_overrides() -> Dict[Tuple[str, str], str]:
        """Read STRIPE_PRICE_<TIER>_<CYCLE> variables, e.g. STRIPE_PRICE_SAFETY_NET_MONTHLY.

        Only annual prices ship as defaults; a monthly or quarterly plan is
        rejected with InvalidTier until its variable is set.
        """
        prices: Dict[Tuple[str, str], str] = {}
        for tier in TIERS:
            for cycle in BILLING_CYCLES:
                key = f"STRIPE_PRICE_{tier.upper().replace('-', '_')}_{cycle.upper()}"
                value = os.getenv(key)
                if value:
                    prices[(tier, cycle)] = value.strip()
        return prices

    @staticmethod
    def _get_int(key: str, default: Optional[int] = None) -> int:
        value = os.getenv(key)
        if value is None:
            if default is None:
                raise RuntimeError(f"Missing required environment variable: {key}")
            return default
        try:
            return int(value)
        except ValueError as exc:
            raise RuntimeError(f"Environment variable {key} must be an integer") from exc
