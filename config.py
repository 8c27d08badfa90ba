import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        secret_key: str,
        token_max_age_hours: int,
        invoice_due_offset_months: int,
        llm_base_url: str,
        llm_model: str,
        llm_timeout_secs: float,
        notify_webhook_url: Optional[str],
        scheduler_enabled: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.secret_key = secret_key
        self.token_max_age_hours = token_max_age_hours
        self.invoice_due_offset_months = invoice_due_offset_months
        self.llm_base_url = llm_base_url
        self.llm_model = llm_model
        self.llm_timeout_secs = llm_timeout_secs
        self.notify_webhook_url = notify_webhook_url
        self.scheduler_enabled = scheduler_enabled


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANZ_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finanz.db"
    database_url = os.getenv("FINANZ_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANZ_TIMEZONE", "America/Sao_Paulo")
    secret_key = os.getenv(
        "FINANZ_SECRET_KEY",
        "4f1d9a0c7be24a65b1f0f1a37c2c8d0e6a9b3e5d7f2c4a6b8d0e1f3a5c7e9b2d",
    )
    token_max_age_hours = int(os.getenv("FINANZ_TOKEN_MAX_AGE_HOURS", "24"))
    invoice_due_offset_months = int(
        os.getenv("FINANZ_INVOICE_DUE_OFFSET_MONTHS", "1")
    )
    llm_base_url = os.getenv("FINANZ_LLM_BASE_URL", "http://127.0.0.1:11434")
    llm_model = os.getenv("FINANZ_LLM_MODEL", "llama3.1:8b")
    llm_timeout_secs = float(os.getenv("FINANZ_LLM_TIMEOUT_SECS", "60"))
    notify_webhook_url = os.getenv("FINANZ_NOTIFY_WEBHOOK_URL") or None
    scheduler_enabled = _env_flag("FINANZ_SCHEDULER_ENABLED", "true")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        secret_key=secret_key,
        token_max_age_hours=token_max_age_hours,
        invoice_due_offset_months=invoice_due_offset_months,
        llm_base_url=llm_base_url,
        llm_model=llm_model,
        llm_timeout_secs=llm_timeout_secs,
        notify_webhook_url=notify_webhook_url,
        scheduler_enabled=scheduler_enabled,
    )
