from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings
from pydantic import Field

logger = logging.getLogger(__name__)

DEFAULT_ORIGINS = ["http://localhost:5173"]


class Settings(BaseSettings):
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8080, alias="PORT")
    origin: str = Field(default="", alias="ORIGIN")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True

    def allowed_origins(self) -> List[str]:
        """
        Splits ORIGIN by commas, dropping blanks.
        Example: "https://cards.example.com, https://www.cards.example.com"
        """
        return DEFAULT_ORIGINS + [x.strip() for x in self.origin.split(",") if x.strip()]

    def log_status(self) -> None:
        env_name = os.getenv("ENV", "unknown")
        logger.info(
            "Lobby settings: host=%s, port=%s, origins=%s, log_level=%s, env=%s",
            self.host,
            self.port,
            self.allowed_origins(),
            self.log_level,
            env_name,
        )


@lru_cache()
def get_settings() -> Settings:
    settings = Settings()
    settings.log_status()
    return settings


settings = get_settings()
