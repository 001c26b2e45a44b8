from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    PROJECT_NAME: str = "Bulk Operations Engine"
    LOG_LEVEL: str = "INFO"

    # Persistence
    SQLALCHEMY_DATABASE_URI: str = "sqlite+aiosqlite:///./bulkops.db"
    CREATE_TABLES_ON_STARTUP: bool = True
    STORE_BACKEND: Literal["sql", "memory"] = "sql"

    # Executor
    # Pause between two items of the same operation
    ITEM_DELAY_SECONDS: float = 0.01
    MAX_CONCURRENT_OPERATIONS: int = 4
    MAX_ITEMS_PER_OPERATION: int = 10000
    # None means an operation may run for as long as it needs
    OPERATION_TIMEOUT_SECONDS: Optional[float] = None

    # Retention sweeper
    RETENTION_DAYS: int = 30
    SWEEP_INTERVAL_SECONDS: int = 3600
    STALE_RUNNING_SECONDS: int = 900


settings = Settings()
