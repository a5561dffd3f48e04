from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "scrapbridge"
    # False keeps everything in process memory (dev / tests)
    use_mongo: bool = False

    # offer lifecycle
    offer_window_seconds: float = 10.0
    vendor_send_timeout_seconds: float = 10.0
    vendor_connect_timeout_seconds: float = 5.0
    vendor_signing_secret: str = "dev"
    # 0 = presence never goes stale
    vendor_stale_after_seconds: int = 0

    # reconciliation sweep
    sweep_enabled: bool = True
    sweep_interval_seconds: float = 10.0
    stall_after_seconds: float = 30.0

    log_level: str = "INFO"
    log_file: Optional[str] = None

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
