"""
Runtime Settings

Resolved once at process start and handed to create_app(); components
receive the values they need through their constructors instead of
reading environment variables on their own.
"""
import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEV_SECRET_KEY = "dev-secret-key-change-in-production"

DEFAULT_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5500",
    "http://localhost:8000",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5500",
    "http://127.0.0.1:8000",
]


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration."""

    database_url: str = "sqlite+aiosqlite:///./judging.db"
    jwt_secret_key: str = DEV_SECRET_KEY
    jwt_algorithm: str = "HS256"
    master_password: Optional[str] = None
    redis_url: Optional[str] = None
    environment: str = "development"
    allowed_origins: List[str] = field(default_factory=lambda: list(DEFAULT_ORIGINS))
    rate_limit_enabled: bool = True
    log_level: str = "INFO"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def use_redis(self) -> bool:
        return bool(self.redis_url)

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "Settings":
        """
        Build settings from the environment.

        A .env file (project root by default) is loaded first and takes
        precedence over variables already set in the process.

        Raises:
            EnvironmentError: production environment without JWT_SECRET_KEY
        """
        if env_file is None:
            env_file = Path(__file__).resolve().parent.parent.parent / ".env"
        if env_file.exists():
            load_dotenv(dotenv_path=env_file, override=True)

        environment = os.getenv("ENVIRONMENT", "development")
        secret = os.getenv("JWT_SECRET_KEY")
        if not secret:
            if environment == "production":
                raise EnvironmentError("Missing required environment variable: JWT_SECRET_KEY")
            logger.warning("JWT_SECRET_KEY not set - using development secret")
            secret = DEV_SECRET_KEY

        origins = list(DEFAULT_ORIGINS)
        extra = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "").split(",") if o.strip()]
        origins.extend(extra)

        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            jwt_secret_key=secret,
            jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
            master_password=os.getenv("MASTER_PASSWORD") or None,
            redis_url=os.getenv("REDIS_URL") or None,
            environment=environment,
            allowed_origins=origins,
            rate_limit_enabled=get_bool_env("RATE_LIMIT_ENABLED", True),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
