"""Engine configuration, read from the environment and an optional .env file"""
from functools import lru_cache
from typing import Dict, List
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


class Settings(BaseSettings):
    """Every field maps to an upper-case environment variable of the same name"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Service identity
    app_name: str = "Approval Workflow Engine"
    app_version: str = "1.0.0"
    api_prefix: str = "/api/v1"
    environment: str = "development"
    debug: bool = True

    # Storage
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "approval_engine_dev"

    # Logs
    logs_path: str = "./logs"
    log_level: str = "INFO"

    # HTTP surface; "*" opens CORS to every origin
    cors_origins: str = "*"
    frontend_url: str = "http://localhost:3000"

    # Outbox dispatcher
    scheduler_interval_seconds: int = 10
    notification_max_retries: int = 5
    notification_lock_duration_seconds: int = 60
    stale_lock_cleanup_minutes: int = 10
    notification_webhook_url: str = ""  # blank: delivery is logged only
    notification_cc_employee_ids: str = ""

    # Originating-module callbacks, "LEAVE=http://leave-svc/cb,EXPENSE=..."
    status_callback_urls: str = ""
    callback_timeout_seconds: float = 5.0

    # Approval rules
    business_timezone: str = "UTC"
    department_head_min_level: int = 3
    max_supervisor_hops: int = 20
    decision_max_retries: int = 3

    @property
    def cors_origins_list(self) -> List[str]:
        return _split_csv(self.cors_origins)

    @property
    def cc_employee_ids_list(self) -> List[str]:
        return _split_csv(self.notification_cc_employee_ids)

    @property
    def status_callback_url_map(self) -> Dict[str, str]:
        """Request type (upper-cased) -> callback URL"""
        mapping: Dict[str, str] = {}
        for pair in _split_csv(self.status_callback_urls):
            request_type, sep, url = pair.partition("=")
            if sep and request_type.strip() and url.strip():
                mapping[request_type.strip().upper()] = url.strip()
        return mapping


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
