from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .roles import DEFAULT_SPECTATOR_EMAIL

REPO_ROOT = Path(__file__).resolve().parents[3]


def load_env_file(repo_root: Path = REPO_ROOT) -> None:
    env_path = repo_root / "config" / ".env"
    if env_path.exists():
        load_dotenv(dotenv_path=env_path, override=False)


def _csv(name: str, default: str = "") -> tuple[str, ...]:
    raw = os.environ.get(name, default)
    return tuple(s.strip() for s in raw.split(",") if s.strip())


def _float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise RuntimeError(f"{name} must be positive")
    return value


@dataclass(frozen=True)
class Settings:
    store_backend: str = "inmemory"
    ddb_table_name: str = ""
    root_admin_emails: tuple[str, ...] = ()
    spectator_email: str = DEFAULT_SPECTATOR_EMAIL
    submit_timeout_seconds: float = 15.0
    log_level: str = "INFO"
    cors_origins: tuple[str, ...] = ("*",)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            store_backend=os.environ.get("STORE_BACKEND", "inmemory").strip().lower(),
            ddb_table_name=os.environ.get("DDB_TABLE_NAME", "").strip(),
            root_admin_emails=tuple(e.lower() for e in _csv("ROOT_ADMIN_EMAILS")),
            spectator_email=os.environ.get("SPECTATOR_EMAIL", DEFAULT_SPECTATOR_EMAIL).strip().lower(),
            submit_timeout_seconds=_float("SUBMIT_TIMEOUT_SECONDS", 15.0),
            log_level=os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
            cors_origins=_csv("CORS_ORIGINS", "*"),
        )
