"""odds_etl.schema

Apply the SQL files under migrations/ in filename order.  Every migration
uses CREATE ... IF NOT EXISTS, so applying them on each run is a no-op
once the schema exists.
"""

from __future__ import annotations

from pathlib import Path

import psycopg

from odds_etl.config import ConfigError


def migration_paths(migrations_dir: Path) -> list[Path]:
    if not migrations_dir.is_dir():
        raise ConfigError(f"migrations directory not found: {migrations_dir}")
    paths = sorted(migrations_dir.glob("*.sql"))
    if not paths:
        raise ConfigError(f"no *.sql migrations in {migrations_dir}")
    return paths


def ensure_schema(db_dsn: str, migrations_dir: Path) -> list[str]:
    """Apply every migration in one transaction; return the applied file names."""
    paths = migration_paths(migrations_dir)
    conn = psycopg.connect(db_dsn, autocommit=False)
    try:
        for path in paths:
            conn.execute(path.read_text(encoding="utf-8"))
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
    return [p.name for p in paths]
