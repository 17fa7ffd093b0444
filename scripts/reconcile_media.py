#!/usr/bin/env python3
"""Find (and optionally delete) uploaded photos that no media row references.

Photos are uploaded before the batch insert commits; when that insert fails the
blobs stay behind. This sweep finds them.

Usage:
    python scripts/reconcile_media.py            # Interactive mode
    python scripts/reconcile_media.py --dry-run  # Preview only
    python scripts/reconcile_media.py --yes      # Delete without confirmation
    python scripts/reconcile_media.py --min-age-minutes 240
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Ensure repo root is on sys.path when running as a script
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dotenv import load_dotenv  # noqa: E402

from app.agritrace.config import load_config  # noqa: E402
from app.agritrace.modules.media.service import (  # noqa: E402
    ORPHAN_MIN_AGE_SECONDS,
    find_orphaned_media,
    reconcile_orphaned_media,
)
from app.agritrace.storage import storage_from_config  # noqa: E402
from scripts._db_utils import script_database_url, script_session  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser(description="Reconcile orphaned media uploads")
    parser.add_argument("--dry-run", action="store_true", help="Preview only, don't delete")
    parser.add_argument("--yes", "-y", action="store_true", help="Delete without confirmation")
    parser.add_argument(
        "--min-age-minutes",
        type=float,
        default=ORPHAN_MIN_AGE_SECONDS / 60,
        help="Only consider uploads at least this old (default: %(default)s)",
    )
    args = parser.parse_args()

    load_dotenv()
    config = load_config()
    storage = storage_from_config(config)
    db_url = script_database_url()

    print(f"Database: {db_url[:50]}...")
    print(f"Storage backend: {config['STORAGE_BACKEND']}")
    print(f"Minimum age: {args.min_age_minutes:g} minute(s)")
    print()

    with script_session(db_url) as s:
        min_age_seconds = args.min_age_minutes * 60
        orphans = find_orphaned_media(s, storage, min_age_seconds=min_age_seconds)
        if not orphans:
            print("OK: No orphaned uploads found.")
            return

        print(f"Found {len(orphans)} orphaned upload(s):")
        print("-" * 60)
        for i, key in enumerate(orphans[:50], 1):
            print(f"  {i:3}. {key}")
        if len(orphans) > 50:
            print(f"  ... and {len(orphans) - 50} more")
        print("-" * 60)

        if args.dry_run:
            print("\n[DRY RUN] No changes made.")
            return

        if not args.yes:
            response = input(f"\nDelete these {len(orphans)} object(s)? (yes/no): ")
            if response.lower() != "yes":
                print("Cancelled.")
                return

        deleted = reconcile_orphaned_media(s, storage, delete=True, min_age_seconds=min_age_seconds)
        print(f"\nOK: Deleted {len(deleted)} object(s).")


if __name__ == "__main__":
    main()
