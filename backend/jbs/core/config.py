import logging
import os
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


def _get_version() -> str:
    """Read version from pyproject.toml or environment variable."""
    if env_version := os.getenv("JBS_VERSION"):
        return env_version

    try:
        pyproject_path = Path(__file__).parent.parent.parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            content = pyproject_path.read_text()
            for line in content.split("\n"):
                if line.startswith("version"):
                    # Parse: version = "0.1.0"
                    return line.split("=")[1].strip().strip('"').strip("'")
    except OSError:
        pass

    return "0.0.0-dev"


APP_VERSION = _get_version()

INSECURE_SECRET_DEFAULTS = (
    "dev-secret-key-change-in-prod",
    "secret",
    "changeme",
)


class Settings(BaseSettings):
    # Database
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "jbs"
    POSTGRES_PASSWORD: str = "devpassword"
    POSTGRES_DB: str = "jbs"

    # Any SQLAlchemy async URL, e.g. sqlite+aiosqlite:///./jbs.db
    DATABASE_URL_OVERRIDE: str | None = None

    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    # JWT / sessions
    JWT_SECRET_KEY: str = "dev-secret-key-change-in-prod"  # In production, ALWAYS override via env var
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440  # 24 hours
    JWT_REMEMBER_ME_EXPIRE_DAYS: int = 30
    MAX_ACTIVE_SESSIONS: int = 10  # 0 disables the cap
    PASSWORD_RESET_EXPIRE_MINUTES: int = 60

    # Lockout policy
    LOCKOUT_MAX_ATTEMPTS: int = 5
    LOCKOUT_MINUTES: int = 15

    # Per-address limit on failed sign-ins across all accounts; None disables it
    IP_RATE_LIMIT_MAX_FAILURES: int | None = 20
    IP_RATE_LIMIT_WINDOW_MINUTES: int = 15

    # Credential policy
    PASSWORD_HISTORY_SIZE: int = 5
    PASSWORD_MIN_LENGTH: int = 8
    BCRYPT_ROUNDS: int = 12
    AUTH_TIMEOUT_SECONDS: float = 10.0

    # Login risk scoring weights and thresholds
    RISK_WINDOW_HOURS: int = 24
    RISK_FAILED_ATTEMPTS_THRESHOLD: int = 5
    RISK_FAILED_ATTEMPTS_WEIGHT: int = 30
    RISK_NEW_IP_WEIGHT: int = 20
    RISK_NEW_DEVICE_WEIGHT: int = 15
    RISK_RAPID_LOGIN_THRESHOLD: int = 3
    RISK_RAPID_LOGIN_WINDOW_MINUTES: int = 60
    RISK_RAPID_LOGIN_WEIGHT: int = 25
    RISK_UNUSUAL_HOUR_DELTA: float = 6.0
    RISK_DEFAULT_LOGIN_HOUR: float = 12.0
    RISK_UNUSUAL_TIME_WEIGHT: int = 10
    RISK_SUSPICIOUS_THRESHOLD: int = 50
    # Lock the account outright when a login scores at or above this value
    RISK_LOCK_THRESHOLD: int | None = None

    # GeoIP enrichment of login events (MaxMind GeoLite2-City)
    GEOIP_DB_PATH: str = "/data/geoip/GeoLite2-City.mmdb"

    # App
    APP_NAME: str = "JBS"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Used to build password reset links
    FRONTEND_URL: str = "http://localhost:3000"

    ALLOWED_ORIGINS: str = "http://localhost:3000"

    @field_validator('JWT_SECRET_KEY')
    @classmethod
    def validate_secrets(cls, v: str, info) -> str:
        """Validate that secret keys are set and not default values in production."""
        if not v or v.strip() == "":
            raise ValueError(
                f"{info.field_name} must be set in environment variables. "
                f"Generate a secure random key using: openssl rand -base64 32"
            )

        if v.lower() in INSECURE_SECRET_DEFAULTS:
            # DEBUG is read from the environment because field order is not guaranteed
            debug_mode = os.environ.get("DEBUG", "").lower() in ("true", "1", "yes")

            if not debug_mode:
                raise ValueError(
                    f"{info.field_name} is using an insecure default value. "
                    f"This is NEVER acceptable in production. "
                    f"Generate a secure key using: openssl rand -base64 32"
                )

            logger.warning(
                f"{info.field_name} is using an insecure default value in DEBUG mode. "
                f"This is acceptable for development but MUST be changed in production!"
            )
        elif len(v) < 32:
            raise ValueError(
                f"{info.field_name} must be at least 32 characters long for security. "
                f"Generate a secure key using: openssl rand -base64 32"
            )

        return v

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
