from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Set

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.engine import Connection, make_url
from sqlalchemy.orm import sessionmaker

from .tables import metadata


MigrationFn = Callable[[Connection], None]


@dataclass(frozen=True)
class Migration:
    version: str
    upgrade: MigrationFn


_MIGRATIONS: List[Migration] = []


def register_migration(version: str, upgrade: MigrationFn) -> None:
    """Register a migration step; versions must be unique."""
    if any(m.version == version for m in _MIGRATIONS):
        raise ValueError(f"Migration '{version}' already registered")
    _MIGRATIONS.append(Migration(version, upgrade))
    _MIGRATIONS.sort(key=lambda m: m.version)


def _sqlite_connect_pragmas(dbapi_connection, _connection_record) -> None:  # type: ignore[override]
    """Apply pragmas that keep SQLite sturdy and fast."""
    if not isinstance(dbapi_connection, sqlite3.Connection):
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def create_database_engine(url: str, *, echo: bool = False) -> Engine:
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        database = parsed.database
        if database and database != ":memory:":
            Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(
            url,
            future=True,
            echo=echo,
            connect_args={"check_same_thread": False},
        )
        event.listen(engine, "connect", _sqlite_connect_pragmas)
        return engine

    return create_engine(url, future=True, echo=echo, pool_pre_ping=True)


def _ensure_schema_table(connection: Connection) -> None:
    connection.execute(
        text(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version VARCHAR(64) PRIMARY KEY,
                applied_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
    )


def _applied_versions(connection: Connection) -> Set[str]:
    result = connection.execute(text("SELECT version FROM schema_migrations"))
    return {row[0] for row in result}


def _record_version(connection: Connection, version: str) -> None:
    connection.execute(
        text("INSERT INTO schema_migrations(version) VALUES (:version)"),
        {"version": version},
    )


def run_migrations(engine: Engine) -> None:
    """Apply any outstanding migrations."""
    migrations = list(_MIGRATIONS)
    if not migrations:
        return

    with engine.begin() as connection:
        _ensure_schema_table(connection)
        applied = _applied_versions(connection)
        for migration in migrations:
            if migration.version in applied:
                continue
            migration.upgrade(connection)
            _record_version(connection, migration.version)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
        future=True,
    )


def initialize_database(url: str, *, echo: bool = False) -> Engine:
    """
    Public entry point: build the engine for ``url`` and apply migrations.
    Raises SQLAlchemyError when the database cannot be reached.
    """
    engine = create_database_engine(url, echo=echo)
    run_migrations(engine)
    return engine


def _initial_schema(connection: Connection) -> None:
    metadata.create_all(connection)


# Register migrations at import time.
register_migration("0001_initial", _initial_schema)
