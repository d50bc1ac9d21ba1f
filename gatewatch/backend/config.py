"""
backend/config.py

Application configuration via Pydantic Settings.
All values can be overridden with environment variables or a .env file,
and most of them again on the command line (see main.py).

Example .env in the working directory:
    INTERFACE=wlan0
    MODE=count
    PRINT_INTERVAL=30
    EXCLUDE_HOSTS=192.168.1.1,192.168.1.2
"""

from __future__ import annotations

from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .models import AggregationMode


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Capture (passed straight through to tcpdump)
    INTERFACE: str = "eth0"
    USE_SUDO: bool = True
    TCPDUMP_PATH: str = "tcpdump"
    EXCLUDE_HOSTS: Annotated[list[str], NoDecode] = []

    # Aggregation
    MODE: AggregationMode = AggregationMode.PAIR_SUM
    PRINT_INTERVAL: float = Field(default=30.0, gt=0)
    TOP_N: int = Field(default=10, gt=0)   # pair-sum only

    # Logging
    LOG_LEVEL: str = "INFO"

    @field_validator("EXCLUDE_HOSTS", mode="before")
    @classmethod
    def parse_exclude_hosts(cls, v):
        if isinstance(v, str):
            import json as _json
            v = v.strip()
            if v.startswith("["):
                try:
                    return _json.loads(v)
                except ValueError:
                    pass
            return [host.strip() for host in v.split(",") if host.strip()]
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def upper_log_level(cls, v: str) -> str:
        return v.upper()


settings = Settings()
