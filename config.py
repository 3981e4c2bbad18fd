"""
應用程式設定

所有設定都從環境變數（或 .env）讀取，透過 get_settings() 取得快取後的單例。
"""
from functools import lru_cache
from typing import List
from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


ALLOWED_ROUND_MINUTES = (5, 10, 15, 20)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "Forex Spin API"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = "development"
    log_level: str = "INFO"

    database_url: str = "sqlite:///./forex_spin.db"
    cors_origins: List[str] = ["*"]

    # Auth
    secret_key: str = "change-me-in-production"
    access_token_expire_minutes: int = 60 * 24 * 7

    # Round timing
    round_duration_minutes: int = 20
    freeze_offset_seconds: int = 60
    premium_cutoff_seconds: int = 5
    regular_cutoff_seconds: int = 5

    # Settlement / bet limits
    house_fee_bps: int = 200
    min_bet_usd: Decimal = Decimal("1")
    max_bet_regular_usd: Decimal = Decimal("1000")
    max_bet_premium_usd: Decimal = Decimal("200")

    # Scheduler / seeding
    scheduler_enabled: bool = True
    scheduler_interval_seconds: int = 10
    seeding_enabled: bool = True
    seed_amount_usd: Decimal = Decimal("0.01")

    demo_starting_balance: Decimal = Decimal("10000")

    # Chat
    chat_max_length: int = 500
    chat_rate_limit_seconds: int = 2

    # Password reset OTP
    otp_ttl_seconds: int = 300
    otp_max_attempts: int = 3

    @property
    def default_round_duration_seconds(self) -> int:
        """ROUND_DURATION_MINUTES 只允許 5/10/15/20，其他值一律退回 20 分鐘"""
        minutes = self.round_duration_minutes
        if minutes not in ALLOWED_ROUND_MINUTES:
            minutes = 20
        return minutes * 60


@lru_cache()
def get_settings() -> Settings:
    return Settings()
