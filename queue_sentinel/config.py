from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"

DEFAULT_KNOWN_SERVICES = [
    "google.com",
    "outlook.com",
    "microsoft.com",
    "hotmail.com",
    "yahoo.com",
]


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    log_level: str = "INFO"

    # Zimbra admin SOAP settings
    ZIMBRA_ADMIN_URL: str = ""
    ZIMBRA_ADMIN_USER: str = ""
    ZIMBRA_ADMIN_PASSWORD: str = ""
    ZIMBRA_VERIFY_TLS: bool = False  # admin consoles usually run self-signed certs
    ZIMBRA_REQUEST_TIMEOUT: float = 30.0

    # Queue scan settings
    MAIL_SERVER_HOSTNAME: str = ""
    QUEUE_SCAN_LIMIT: int = 300
    QUEUE_SCAN_WAIT: int = 10

    # =================================================================
    # CLASSIFICATION SETTINGS
    # =================================================================
    COUNT_THRESHOLD: int = 10
    INSTITUTIONAL_DOMAIN: str = "ufcg.edu.br"
    KNOWN_SERVICES: list[str] = DEFAULT_KNOWN_SERVICES
    HOME_COUNTRY: str = "BR"
    UNKNOWN_COUNTRY_IS_FOREIGN: bool = True

    # Geolocation settings
    IPINFO_TOKEN: str | None = None

    # Telegram settings
    TELEGRAM_BOT_TOKEN: str | None = None
    TELEGRAM_CHAT_ID: str | None = None

    # Historical IP state settings
    STATE_BACKEND: str = "file"
    STATE_FILE_PATH: str = "addressIpData.json"
    REDIS_URL: str | None = None
    REDIS_STATE_KEY: str = "queue_sentinel:ip_history"

    ALERT_DEDUP_WINDOW_SECONDS: int = 600  # 10 minutes
    POLL_INTERVAL_SECONDS: int = 60

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("COUNT_THRESHOLD")
    @classmethod
    def _threshold_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("COUNT_THRESHOLD must be a positive integer")
        return value

    @field_validator("STATE_BACKEND")
    @classmethod
    def _known_backend(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in {"file", "redis"}:
            raise ValueError("STATE_BACKEND must be 'file' or 'redis'")
        return value

    def known_services(self) -> tuple[str, ...]:
        """Allow-list entries, lowercased and without blanks."""
        return tuple(s.strip().lower() for s in self.KNOWN_SERVICES if s.strip())

    def telegram_configured(self) -> bool:
        return bool(self.TELEGRAM_BOT_TOKEN and self.TELEGRAM_CHAT_ID)


settings = Settings()
