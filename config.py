import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        secret_key: str,
        environment: str = "development",
        password_rounds: int = 10,
        auto_create_tables: bool = True,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_secure: bool = False,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_from: Optional[str] = None,
    ) -> None:
        self.database_url = database_url
        self.secret_key = secret_key
        self.environment = environment
        self.password_rounds = password_rounds
        self.auto_create_tables = auto_create_tables
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_secure = smtp_secure
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_from = smtp_from

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def mail_sender(self) -> str:
        return self.smtp_from or self.smtp_user or "no-reply@example.com"


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("FINANCE_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "finance.db"
        database_url = f"sqlite:///{default_db}"
    secret_key = os.getenv(
        "FINANCE_SECRET_KEY",
        "3f0c2a9d5e61b7a84c1d9e2f6a7b8c90d1e2f3a4b5c6d7e8f9a0b1c2d3e4f5a6",
    )
    return Settings(
        database_url=database_url,
        secret_key=secret_key,
        environment=os.getenv("FINANCE_ENV", "development"),
        password_rounds=int(os.getenv("FINANCE_PASSWORD_ROUNDS", "10")),
        auto_create_tables=_env_flag("FINANCE_AUTO_CREATE_TABLES", "1"),
        smtp_host=os.getenv("FINANCE_SMTP_HOST") or None,
        smtp_port=int(os.getenv("FINANCE_SMTP_PORT", "587")),
        smtp_secure=_env_flag("FINANCE_SMTP_SECURE", "0"),
        smtp_user=os.getenv("FINANCE_SMTP_USER") or None,
        smtp_password=os.getenv("FINANCE_SMTP_PASSWORD") or None,
        smtp_from=os.getenv("FINANCE_SMTP_FROM") or None,
    )
