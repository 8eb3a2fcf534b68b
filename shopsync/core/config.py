from typing import Optional, List
from pydantic_settings import BaseSettings
from pydantic import validator

class Settings(BaseSettings):
    PROJECT_NAME: str = "ShopSync"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"

    # Локальное хранилище
    DATABASE_URL: str = "sqlite:///./shopsync.db"

    # Арендатор (магазин). Без него облачная синхронизация невозможна
    SHOP_ID: Optional[str] = None

    # Облачный бэкенд (PostgREST)
    CLOUD_URL: str = "http://localhost:54321"
    CLOUD_API_KEY: str = ""
    CLOUD_SERVICE_KEY: Optional[str] = None
    CLOUD_TIMEOUT: int = 30
    CLOUD_MAX_RETRIES: int = 3

    # POS платформа
    POS_BASE_URL: str = "https://connect.squareupsandbox.com"
    POS_ACCESS_TOKEN: Optional[str] = None
    POS_REFRESH_TOKEN: Optional[str] = None
    POS_CLIENT_ID: Optional[str] = None
    POS_CLIENT_SECRET: Optional[str] = None
    POS_API_VERSION: str = "2023-12-13"
    POS_LOCATION_ID: Optional[str] = None
    POS_TIMEOUT: int = 30
    POS_MAX_RETRIES: int = 3

    # Вебхуки POS
    POS_WEBHOOK_SIGNATURE_KEY: Optional[str] = None
    POS_WEBHOOK_NOTIFICATION_URL: Optional[str] = None
    WEBHOOK_SIGNATURE_HEADER: str = "x-square-hmacsha256-signature"
    WEBHOOK_IMPORT_NEW_OBJECTS: bool = False
    WEBHOOK_EVENT_TYPES: List[str] = [
        "inventory.count.updated",
        "catalog.version.updated",
        "customer.updated",
    ]

    # Настройки синхронизации
    CONFLICT_STRATEGY: str = "newest_wins"  # server_wins, local_wins, newest_wins
    AUTO_SYNC_ENABLED: bool = True
    SYNC_INTERVAL_SECONDS: int = 30
    POS_SYNC_INTERVAL_SECONDS: int = 900    # 0 - отключено
    NETWORK_PROBE_INTERVAL_SECONDS: int = 15
    SYNC_BATCH_SIZE: int = 100
    SYNC_MAX_ATTEMPTS: int = 5
    SYNC_BACKOFF_BASE_SECONDS: int = 30
    SYNC_BACKOFF_MAX_SECONDS: int = 3600

    # Celery
    REDIS_URL: str = "redis://localhost:6379"
    CELERY_BROKER_URL: Optional[str] = None
    CELERY_RESULT_BACKEND: Optional[str] = None
    CELERY_TIMEZONE: str = "UTC"

    @validator("CELERY_BROKER_URL", pre=True, always=True)
    def assemble_celery_broker_url(cls, v: Optional[str], values: dict) -> str:
        if isinstance(v, str):
            return v
        return str(values.get("REDIS_URL")) + "/0"

    @validator("CELERY_RESULT_BACKEND", pre=True, always=True)
    def assemble_celery_result_backend(cls, v: Optional[str], values: dict) -> str:
        if isinstance(v, str):
            return v
        return str(values.get("REDIS_URL")) + "/1"

    @validator("CONFLICT_STRATEGY")
    def check_conflict_strategy(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("server_wins", "local_wins", "newest_wins"):
            raise ValueError(f"Unknown conflict strategy: {v}")
        return v

    # Настройки логирования
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = "logs/shopsync.log"

    class Config:
        case_sensitive = True
        env_file = ".env"

settings = Settings()
