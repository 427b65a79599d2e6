from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

if __package__ is None:  # Allow running as a script.
    sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from soundstats.db.connection import close_pool, transaction
from soundstats.db.store import StoreError

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

_MIGRATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version TEXT PRIMARY KEY,
    applied_at TIMESTAMPTZ DEFAULT NOW()
)
"""


def migration_files() -> list[Path]:
    return sorted(MIGRATIONS_DIR.glob("*.sql"))


def applied_versions() -> set[str]:
    with transaction("migration lookup") as cur:
        cur.execute(_MIGRATIONS_TABLE)
        cur.execute("SELECT version FROM schema_migrations")
        return {row[0] for row in cur.fetchall()}


def pending_migrations() -> list[Path]:
    applied = applied_versions()
    return [path for path in migration_files() if path.name not in applied]


def apply_pending_migrations() -> list[str]:
    """
    Apply every listening schema migration that has not been recorded yet.

    Each file runs in its own transaction together with its bookkeeping row,
    so a failing file leaves earlier ones applied and itself untouched.

    Returns:
        Versions applied by this call, in order
    """
    applied_now: list[str] = []
    for path in pending_migrations():
        logger.info(f"Applying migration {path.name}")
        with transaction(f"migration {path.name}") as cur:
            cur.execute(path.read_text(encoding="utf-8"))
            cur.execute(
                "INSERT INTO schema_migrations (version) VALUES (%s)",
                (path.name,),
            )
        applied_now.append(path.name)
    return applied_now


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Apply listening store migrations.")
    parser.add_argument(
        "--status",
        action="store_true",
        help="List pending migrations without applying them.",
    )
    args = parser.parse_args(argv)

    if not migration_files():
        print("No migration files found.", file=sys.stderr)
        return 1

    try:
        if args.status:
            pending = pending_migrations()
            for path in pending:
                print(f"Pending {path.name}")
            print(f"{len(pending)} pending migration(s).")
            return 0

        for version in apply_pending_migrations():
            print(f"Applied {version}")
    except StoreError as e:
        print(str(e), file=sys.stderr)
        return 1
    finally:
        close_pool()

    print("Migrations complete.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
