import os
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .orchestrator import QueueConfig


class Settings(BaseModel):
    """Runtime configuration, normally read from SHEETGATE_* variables."""

    api_url: str
    api_token: str = ""
    timeout: float = Field(30.0, gt=0)
    max_concurrent: int = Field(3, ge=1)
    request_delay: float = Field(0.1, ge=0)
    max_retries: int = Field(2, ge=0)
    retry_delay: float = Field(1.0, ge=0)
    max_retry_delay: float = Field(5.0, ge=0)
    cache_max_size: int = Field(1000, ge=1)
    cache_enabled: bool = True
    cache_strategy: Literal["lru", "fifo"] = "lru"
    related_data_ttl: float = Field(300.0, ge=0)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        """Build settings from the environment after loading ``.env``.

        Raises:
            pydantic.ValidationError: If a variable is missing or malformed
        """
        load_dotenv(env_file)
        values = {
            name: os.getenv(f"SHEETGATE_{name.upper()}")
            for name in cls.model_fields
        }
        return cls(**{name: value for name, value in values.items() if value is not None})

    def queue_config(self) -> QueueConfig:
        return QueueConfig(
            max_concurrent=self.max_concurrent,
            request_delay=self.request_delay,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
            max_retry_delay=self.max_retry_delay,
        )
