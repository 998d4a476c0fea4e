import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

DEFAULT_DATA_DIR = Path(__file__).resolve().parents[1] / "data"


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _read_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _read_positive_int_env(name: str, default: int) -> int:
    try:
        value = int(os.getenv(name, str(default)))
    except ValueError:
        return default
    return value if value > 0 else default


def _read_positive_float_env(name: str, default: float) -> float:
    try:
        value = float(os.getenv(name, str(default)))
    except ValueError:
        return default
    return value if value > 0 else default


@dataclass
class Settings:
    gateway_backend: str = "sqlite"
    db_path: str = str(DEFAULT_DATA_DIR / "huddle.sqlite3")
    storage_dir: str = str(DEFAULT_DATA_DIR / "storage")
    public_storage_url: str = "/storage"
    gateway_url: str = ""
    gateway_key: str = ""
    gateway_timeout: float = 10.0
    timezone: str = "UTC"
    platform_admin_user_ids: set[str] = field(default_factory=set)
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    trusted_hosts: list[str] = field(default_factory=lambda: ["*"])
    openai_model: str = "gpt-4.1-mini"
    firebase_credentials_path: str = ""
    auth_secret: str = "dev-insecure-secret-change-me"
    auth_token_ttl_hours: int = 24
    auth_dev_login_enabled: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        backend = os.getenv("HUDDLE_GATEWAY", "sqlite").strip().lower()
        if backend not in {"sqlite", "rest"}:
            backend = "sqlite"
        return cls(
            gateway_backend=backend,
            db_path=os.getenv("HUDDLE_DB_PATH", str(DEFAULT_DATA_DIR / "huddle.sqlite3")),
            storage_dir=os.getenv("HUDDLE_STORAGE_DIR", str(DEFAULT_DATA_DIR / "storage")),
            public_storage_url=os.getenv("HUDDLE_PUBLIC_STORAGE_URL", "/storage").rstrip("/"),
            gateway_url=os.getenv("HUDDLE_GATEWAY_URL", "").rstrip("/"),
            gateway_key=os.getenv("HUDDLE_GATEWAY_KEY", ""),
            gateway_timeout=_read_positive_float_env("HUDDLE_GATEWAY_TIMEOUT", 10.0),
            timezone=os.getenv("HUDDLE_TIMEZONE", "UTC").strip() or "UTC",
            platform_admin_user_ids=set(_parse_csv_env("PLATFORM_ADMIN_USER_IDS", "")),
            cors_origins=_parse_csv_env("CORS_ORIGINS", "*"),
            trusted_hosts=_parse_csv_env("TRUSTED_HOSTS", "*"),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4.1-mini"),
            firebase_credentials_path=os.getenv("FIREBASE_CREDENTIALS_PATH", ""),
            auth_secret=os.getenv("AUTH_SECRET", "dev-insecure-secret-change-me"),
            auth_token_ttl_hours=_read_positive_int_env("AUTH_TOKEN_TTL_HOURS", 24),
            auth_dev_login_enabled=_read_bool_env("AUTH_DEV_LOGIN_ENABLED", True),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    def is_platform_admin(self, user_id: Optional[str]) -> bool:
        return bool(user_id) and user_id in self.platform_admin_user_ids


settings = Settings.from_env()
