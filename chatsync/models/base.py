from datetime import datetime, timezone

import ulid
from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    # время хранится как naive UTC, одинаково для SQLite и PostgreSQL
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Приведение к naive UTC для сравнения с колонками DateTime"""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def generate_id() -> str:
    return str(ulid.ULID())


class BaseModel(Base):
    __abstract__ = True

    id = Column(String(26), primary_key=True, index=True, default=generate_id)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
