from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from sqlalchemy.engine import make_url

from eventmail.errors import ConfigurationError


DEFAULT_SQLITE_PATH = Path("data") / "eventmail.db"
DEFAULT_DATABASE_URL = f"sqlite:///{DEFAULT_SQLITE_PATH.as_posix()}"
CONFIG_ENV_VAR = "EVENT_MAIL_CONFIG"
SECRET_ENV_PREFIX = "env:"

ALLOWED_SENDERS = {"smtp", "graph"}
ALLOWED_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR"}


@dataclass(frozen=True)
class PollingSettings:
    time_events_seconds: float = 1.0
    stored_procedures_seconds: float = 30.0
    batch_size: int = 10
    drift_tolerance_ms: int = 500


@dataclass(frozen=True)
class LoggingSettings:
    path: str | None = None
    retained_file_count: int = 14
    level: str = "INFO"


@dataclass(frozen=True)
class SmtpSettings:
    host: str = "smtp.office365.com"
    port: int = 587
    use_tls: bool = False
    username: str = ""
    password: str = ""


@dataclass(frozen=True)
class GraphSettings:
    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    sender_address: str = ""


@dataclass(frozen=True)
class EmailSettings:
    sender: str = "graph"
    smtp: SmtpSettings = field(default_factory=SmtpSettings)
    graph: GraphSettings = field(default_factory=GraphSettings)


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    polling: PollingSettings = field(default_factory=PollingSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    email: EmailSettings = field(default_factory=EmailSettings)


def resolve_secret(value: str | None) -> str:
    """`env:NAME` reads NAME from the process environment; anything else is literal."""
    raw = value or ""
    if raw[: len(SECRET_ENV_PREFIX)].lower() == SECRET_ENV_PREFIX:
        return os.environ.get(raw[len(SECRET_ENV_PREFIX):], "")
    return raw


def _section(obj: dict[str, Any], key: str) -> dict[str, Any]:
    v = obj.get(key, {})
    if v is None:
        return {}
    if not isinstance(v, dict):
        raise ConfigurationError(f"section '{key}' must be a mapping")
    return v


def _as_bool(v: Any, default: bool) -> bool:
    if v is None:
        return default
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in {"1", "true", "yes", "on"}


def _positive_float(v: Any, default: float, name: str) -> float:
    if v is None or str(v).strip() == "":
        return default
    try:
        out = float(v)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be a number, got {v!r}") from e
    if out <= 0:
        raise ConfigurationError(f"{name} must be positive, got {v!r}")
    return out


def _positive_int(v: Any, default: int, name: str) -> int:
    if v is None or str(v).strip() == "":
        return default
    try:
        out = int(v)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be an integer, got {v!r}") from e
    if out <= 0:
        raise ConfigurationError(f"{name} must be positive, got {v!r}")
    return out


def _normalize_sender(v: Any) -> str:
    vv = str(v or "graph").strip().lower()
    return vv if vv in ALLOWED_SENDERS else "graph"


def _normalize_log_level(v: Any) -> str:
    vv = str(v or "INFO").strip().upper()
    return vv if vv in ALLOWED_LOG_LEVELS else "INFO"


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        obj = yaml.safe_load(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigurationError(f"config file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid yaml: {path}: {e}") from e
    if obj is None:
        return {}
    if not isinstance(obj, dict):
        raise ConfigurationError(f"invalid yaml: {path}")
    return obj


def load_settings(path: Path | None = None, *, environ: dict[str, str] | None = None) -> Settings:
    env = os.environ if environ is None else environ
    if path is None and env.get(CONFIG_ENV_VAR, "").strip():
        path = Path(env[CONFIG_ENV_VAR].strip())
    raw = _load_yaml(path) if path is not None else {}

    db = _section(raw, "database")
    polling = _section(raw, "polling")
    log = _section(raw, "logging")
    email = _section(raw, "email")
    smtp = _section(email, "smtp")
    graph = _section(email, "graph")

    database_url = (env.get("DATABASE_URL", "").strip() or resolve_secret(db.get("url")).strip() or DEFAULT_DATABASE_URL)
    try:
        make_url(database_url)
    except Exception as e:
        raise ConfigurationError(f"invalid database url: {e}") from e

    return Settings(
        database_url=database_url,
        polling=PollingSettings(
            time_events_seconds=_positive_float(
                env.get("EVENT_MAIL_TIME_TICK_SECONDS") or polling.get("time_events_seconds"), 1.0, "time_events_seconds"
            ),
            stored_procedures_seconds=_positive_float(
                env.get("EVENT_MAIL_PROC_TICK_SECONDS") or polling.get("stored_procedures_seconds"),
                30.0,
                "stored_procedures_seconds",
            ),
            batch_size=_positive_int(env.get("EVENT_MAIL_BATCH_SIZE") or polling.get("batch_size"), 10, "batch_size"),
            drift_tolerance_ms=_positive_int(polling.get("drift_tolerance_ms"), 500, "drift_tolerance_ms"),
        ),
        logging=LoggingSettings(
            path=(env.get("EVENT_MAIL_LOG_PATH", "").strip() or str(log.get("path") or "").strip() or None),
            retained_file_count=_positive_int(log.get("retained_file_count"), 14, "retained_file_count"),
            level=_normalize_log_level(log.get("level")),
        ),
        email=EmailSettings(
            sender=_normalize_sender(env.get("EVENT_MAIL_EMAIL_SENDER") or email.get("sender")),
            smtp=SmtpSettings(
                host=str(smtp.get("host") or "smtp.office365.com").strip(),
                port=_positive_int(smtp.get("port"), 587, "smtp.port"),
                use_tls=_as_bool(smtp.get("use_tls"), False),
                username=str(smtp.get("username") or "").strip(),
                password=resolve_secret(smtp.get("password")),
            ),
            graph=GraphSettings(
                tenant_id=str(graph.get("tenant_id") or "").strip(),
                client_id=str(graph.get("client_id") or "").strip(),
                client_secret=resolve_secret(graph.get("client_secret")),
                sender_address=str(graph.get("sender_address") or "").strip(),
            ),
        ),
    )


def redact_database_url(url: str) -> str:
    raw = (url or "").strip()
    if not raw:
        return ""
    try:
        return make_url(raw).render_as_string(hide_password=True)
    except Exception:
        return raw
