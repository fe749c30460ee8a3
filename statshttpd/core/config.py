"""Environment-driven process settings; backend configuration lives in the YAML config file."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_LOG_MAX_BYTES = 100 * 1024 * 1024


class Settings(BaseSettings):
    """Ambient settings loaded from environment variables or a local .env file."""

    APP_NAME: str = "statshttpd"
    ENV: str = "dev"
    VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"
    LOG_STDERR_LEVEL: str = "CRITICAL"
    LOG_FILE_NAME: str = "statshttpd.log"
    LOG_MAX_BYTES: int = _DEFAULT_LOG_MAX_BYTES
    LOG_BACKUP_COUNT: int = 10

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def version_string(self) -> str:
        """Return the banner printed in usage output and logged at startup."""

        return f"{self.APP_NAME} version {self.VERSION} ({self.ENV})"

    def log_max_bytes(self) -> int:
        """Return the rotation threshold, falling back to the default for non-positive values."""

        if self.LOG_MAX_BYTES <= 0:
            return _DEFAULT_LOG_MAX_BYTES
        return self.LOG_MAX_BYTES


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings to avoid repeated environment parsing."""

    return Settings()
