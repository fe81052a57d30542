#!/usr/bin/env python
"""Seed development database with a case to sync.

Seeds one case owned by SEED_USER_ID, optionally mapped to a remote folder,
so the sync endpoints can be exercised locally after connecting a provider.

Constraints:
- Refuses to run in staging or prod (CASESYNC_ENV check)
- Idempotent via ON CONFLICT DO NOTHING
- Never runs automatically (manual invocation only)

Usage:
    cd python && DATABASE_URL=... SEED_USER_ID=<uuid> python ../scripts/seed_dev.py

    # Map the case to a folder as well:
    SEED_PROVIDER=dropbox SEED_FOLDER_PATH=/Clients/Smith python ../scripts/seed_dev.py
"""

import os
import sys
from uuid import UUID

# Stable id so repeated runs hit the same row
SEED_CASE_ID = "5eed0000-0000-4000-8000-000000000001"
SEED_CASE_NAME = "Smith v. Jones (dev)"


def main():
    # 1. Environment check (hard fail in staging/prod)
    casesync_env = os.getenv("CASESYNC_ENV", "local")
    if casesync_env not in ("local", "test"):
        print(f"ERROR: seed_dev.py refuses to run in CASESYNC_ENV={casesync_env}")
        sys.exit(1)

    # 2. Check DATABASE_URL and the owning user
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        print("ERROR: DATABASE_URL environment variable must be set")
        sys.exit(1)

    user_id = os.getenv("SEED_USER_ID")
    try:
        UUID(user_id or "")
    except ValueError:
        print("ERROR: SEED_USER_ID must be set to the UUID of your dev user (JWT sub)")
        sys.exit(1)

    provider = os.getenv("SEED_PROVIDER")
    folder_path = os.getenv("SEED_FOLDER_PATH")
    if provider and provider not in ("dropbox", "onedrive"):
        print(f"ERROR: SEED_PROVIDER must be dropbox or onedrive, got {provider}")
        sys.exit(1)

    from sqlalchemy import create_engine, text

    engine = create_engine(database_url)

    with engine.connect() as conn:
        # 3. Idempotent seeding
        result = conn.execute(
            text("""
                INSERT INTO cases (id, user_id, name, cloud_storage_provider, cloud_folder_path)
                VALUES (:case_id, :user_id, :name, :provider, :folder_path)
                ON CONFLICT (id) DO NOTHING
                RETURNING id
            """),
            {
                "case_id": SEED_CASE_ID,
                "user_id": user_id,
                "name": SEED_CASE_NAME,
                "provider": provider if folder_path else None,
                "folder_path": folder_path if provider else None,
            },
        )
        case_created = result.fetchone() is not None

        conn.commit()

    # 4. Report
    db_display = database_url.split("@")[1] if "@" in database_url else database_url
    print(f"Database: {db_display}")
    print(f"CASESYNC_ENV: {casesync_env}")
    print()
    print(f"{'✓ Created' if case_created else '• Exists'}: case {SEED_CASE_ID}")
    if provider and folder_path:
        print(f"  mapped to {provider}:{folder_path}")
    else:
        print("  no folder mapping (PUT /cases/{id}/folder to add one)")


if __name__ == "__main__":
    main()
