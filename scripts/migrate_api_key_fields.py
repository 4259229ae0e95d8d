"""Rename legacy credential columns to the canonical key/salt field set.

Older deployments stored the Odoo API key as ``token`` or ``encrypted_key``.
Run once against PostgreSQL before starting a release that reads ``key``.
"""

import sys
import os

# Add parent dir to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import text

from app.infrastructure.database import SessionLocal

LEGACY_KEY_COLUMNS = ("token", "encrypted_key")
LEGACY_ID_COLUMNS = {"token_id": "key_id"}

COLUMNS_SQL = text(
    "SELECT column_name FROM information_schema.columns WHERE table_name = 'api_keys'"
)


def migrate():
    print("Migrating api_keys table...")
    db = SessionLocal()
    try:
        columns = {row[0] for row in db.execute(COLUMNS_SQL).fetchall()}
        if not columns:
            print("Table 'api_keys' not found, nothing to migrate.")
            return

        renames = {}
        if "key" not in columns:
            legacy = [c for c in LEGACY_KEY_COLUMNS if c in columns]
            if len(legacy) > 1:
                raise RuntimeError(f"Ambiguous legacy key columns: {legacy}")
            if legacy:
                renames[legacy[0]] = "key"
        for old, new in LEGACY_ID_COLUMNS.items():
            if old in columns and new not in columns:
                renames[old] = new

        if not renames:
            print("Columns already canonical.")
            return

        for old, new in renames.items():
            print(f"Renaming '{old}' to '{new}'...")
            db.execute(text(f'ALTER TABLE api_keys RENAME COLUMN "{old}" TO "{new}"'))
        db.commit()
        print(f"Migration successful: {len(renames)} column(s) renamed.")

    except Exception as e:
        print(f"Migration failed: {e}")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    migrate()
