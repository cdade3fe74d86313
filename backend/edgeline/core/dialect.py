from datetime import UTC, datetime

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def upsert_insert(db: AsyncSession, table):
    """INSERT statement supporting ON CONFLICT for the session's dialect.

    Production runs on PostgreSQL; the test suite runs on SQLite. Both
    dialects expose ``on_conflict_do_nothing``/``on_conflict_do_update``
    and ``.excluded`` with the same signature.
    """
    if db.bind.dialect.name == "sqlite":
        return sqlite.insert(table)
    return postgresql.insert(table)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
