from __future__ import annotations

import os
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import InterfaceError, OperationalError

from eventmail.config import redact_database_url
from eventmail.errors import ConfigurationError, StoreUnavailable

REQUIRED_TABLES = (
    "Event_Mail_Service_Time_Events",
    "Event_Mail_Service_Stored_Procedure_Events",
    "SpParameters",
)


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def run_alembic_upgrade(database_url: str, project_root: Path | None = None) -> None:
    root = project_root or _project_root()
    alembic_ini = root / "alembic.ini"
    script_location = root / "alembic"
    if not alembic_ini.exists() or not script_location.exists():
        raise ConfigurationError("Alembic configuration not found")
    cfg = Config(str(alembic_ini))
    cfg.set_main_option("script_location", str(script_location))
    cfg.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))
    prev = os.environ.get("DATABASE_URL")
    try:
        os.environ["DATABASE_URL"] = database_url
        command.upgrade(cfg, "head")
    finally:
        if prev is None:
            os.environ.pop("DATABASE_URL", None)
        else:
            os.environ["DATABASE_URL"] = prev


def missing_tables(engine: Engine) -> list[str]:
    insp = inspect(engine)
    return [name for name in REQUIRED_TABLES if not insp.has_table(name)]


def ensure_schema(engine: Engine, *, migrate: bool = True) -> None:
    url = engine.url.render_as_string(hide_password=False)
    try:
        with engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        missing = missing_tables(engine)
    except (OperationalError, InterfaceError) as e:
        raise StoreUnavailable(f"url={redact_database_url(url)} error={e}") from e
    if not missing:
        return
    if not migrate:
        raise ConfigurationError(f"missing tables: {missing}; run `alembic upgrade head`")
    try:
        run_alembic_upgrade(url)
    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(
            "Database schema is not ready; run `alembic upgrade head` "
            f"(url={redact_database_url(url)}): {e}"
        ) from e
    still_missing = missing_tables(engine)
    if still_missing:
        raise ConfigurationError(f"missing tables after migration: {still_missing}")
