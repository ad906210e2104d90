from __future__ import annotations

from contextlib import contextmanager
from collections.abc import Generator

from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from eventmail.db.engine import make_engine


class StoreSessionProvider:
    """Hands out one short-lived session per tick; always closed on exit."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    @classmethod
    def from_url(cls, url: str) -> "StoreSessionProvider":
        return cls(make_engine(url))

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @contextmanager
    def open(self) -> Generator[Session, None, None]:
        session: Session = self._Session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
