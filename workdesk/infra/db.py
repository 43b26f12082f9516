from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import create_engine

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "postgresql+psycopg://workdesk:workdesk@db:5432/workdesk",
)

engine = create_engine(DATABASE_URL, pool_pre_ping=True)

logger = logging.getLogger(__name__)


class InfrastructureError(Exception):
    """A data-store call failed; the request may be retried."""


def get_engine() -> Engine:
    return engine


@contextmanager
def store_call(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("store.failed operation=%s error=%s", operation, exc.__class__.__name__)
        raise InfrastructureError(f"{operation} failed") from exc


def check_db_ready() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
