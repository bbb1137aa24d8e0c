# libs/py_common/config.py
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "MarketplacePayments"
    environment: str = "development"
    log_level: str = "INFO"
    log_json: bool = True

    # Shared transactional store for orders, wallets, ledger and payout requests
    database_url: str = "sqlite:///./payments.db"
    database_echo: bool = False

    # Payment processor (Paystack-compatible API)
    paystack_secret_key: str = ""
    paystack_webhook_secret: Optional[str] = None  # Paystack signs with the secret key unless overridden
    paystack_base_url: str = "https://api.paystack.co"
    currency: str = "NGN"
    callback_url: Optional[str] = None
    http_timeout_seconds: float = 15.0
    processor_fail_max: int = 5
    processor_reset_timeout: int = 60

    # A transfer lease older than this is considered abandoned
    transfer_claim_ttl_seconds: int = 900

    # Event feed; empty bootstrap servers means events are only logged
    kafka_bootstrap_servers: str = ""
    payout_events_topic: str = "payout.events"

    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend_url: str = "redis://localhost:6379/0"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding='utf-8', extra='ignore', case_sensitive=False)

    @property
    def webhook_secret(self) -> str:
        return self.paystack_webhook_secret or self.paystack_secret_key


@lru_cache()
def get_settings() -> Settings:
    return Settings()
