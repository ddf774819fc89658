from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = "postgresql+asyncpg://autobid:autobid@db:5432/autobid"
    tz: str = "Asia/Jakarta"
    log_level: str = "INFO"
    web_host: str = "0.0.0.0"
    web_port: int = 8080
    session_secret: str = "change-me"
    session_max_age_seconds: int = 86400
    admin_bootstrap_user_ids: str = ""
    auction_watcher_interval_seconds: int = 300
    default_minimum_increment: int = 50000
    invoice_due_days: int = 7
    company_name: str = "3D Auction"
    company_legal_name: str = "PT Auctioneer Tridaya"
    company_bank_name: str = "Bank Central Asia (BCA)"
    company_account_number: str = "1234567890"
    company_account_name: str = "PT Auctioneer Tridaya"
    company_support_email: str = "support@e-auction.id"
    company_phone: str = "+62-21-1234-5678"
    company_address: str = "Jl. Sudirman No. 123, Jakarta 10220, Indonesia"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    def parsed_admin_bootstrap_user_ids(self) -> list[int]:
        raw = [x.strip() for x in self.admin_bootstrap_user_ids.split(",") if x.strip()]
        return [int(x) for x in raw]


@lru_cache(1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
