from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Generic, Sequence, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class DataSource(Generic[T]):
    """A named lookup; a failure or an empty result means "no data"."""

    name: str
    fetch: Callable[[], T]


def fetch_or_default(db: Session | None, source: DataSource[T], default: T) -> T:
    """
    Run one lookup. Database errors are logged and degrade to ``default``.
    With a session the lookup runs in a SAVEPOINT so a failed statement does
    not abort the surrounding transaction.
    """
    try:
        if db is None:
            return source.fetch()
        with db.begin_nested():
            return source.fetch()
    except SQLAlchemyError:
        logger.warning("data source %r failed; treating as empty", source.name, exc_info=True)
        return default


def first_success(
    db: Session | None,
    sources: Sequence[DataSource[T]],
    default: T,
) -> tuple[str | None, T]:
    """Return (source name, result) for the first source yielding a non-empty result."""
    for source in sources:
        result = fetch_or_default(db, source, default)
        if result:
            return source.name, result
    return None, default
