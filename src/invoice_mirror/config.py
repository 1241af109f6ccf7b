from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    erp_base_url: str = "https://api.oneup.com/v1/"
    erp_api_email: str = ""
    erp_api_key: str = ""
    erp_request_timeout_seconds: float = 60.0
    erp_max_concurrent_requests: int = 2
    erp_max_retries: int = 1
    erp_retry_base_delay_seconds: float = 2.0
    erp_page_size: int = 100  # hard cap enforced by the ERP
    employee_cache_ttl_minutes: int = 30
    database_url: str = "sqlite:///./invoice_mirror.db"
    upsert_batch_size: int = 500
    delete_batch_size: int = 100
    page_delay_seconds: float = 0.5
    max_failed_pages: int = 5
    preload_employees_on_sync: bool = True
    sync_employees_first: bool = False
    sync_hour: int = 2

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
