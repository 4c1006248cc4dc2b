"""
Upgrade a key file workbook to the next key file version.

Fetches the key from the source directory, archives its location and profile
tabs as CSV, applies the version config (default: config/key_v2.json), saves
`<name>_KEY_V<version>.xlsx` to the upload directory and, when a ledger path
is configured, appends one row to the update log.

Directories default to the KEY_FILE_*_PATH environment variables (a `.env`
file is read) and fall back to the shared lter-som directories.

Usage:
    python scripts/update_key_file.py 621_Key_Key_test
    python scripts/update_key_file.py cap.557.Key_Key_master --dry-run
    python scripts/update_key_file.py path/to/key.xlsx --upload-dir out/ --ledger key_file_update_log.csv
    python scripts/update_key_file.py key --rename-profile renames.csv --column-policy unique
"""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace

KEYUPDATE_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "keyupdate")
if KEYUPDATE_DIR not in sys.path:
    sys.path.insert(0, KEYUPDATE_DIR)

from column_locator import COLUMN_POLICIES  # noqa: E402
from key_config import DEFAULT_VERSION_CONFIG, load_paths, load_rename_tables, load_version_spec  # noqa: E402
from key_errors import KeyUpdateError  # noqa: E402
from key_update import run_key_update  # noqa: E402


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Upgrade a key file to the next key file version.")
    parser.add_argument("key", help="Key file name (looked up in the source directory) or path to an .xlsx key file.")
    parser.add_argument("--config", default=DEFAULT_VERSION_CONFIG, help="Version config JSON (default: config/key_v2.json).")
    parser.add_argument("--source-dir", help="Directory holding the key files.")
    parser.add_argument("--download-dir", help="Staging directory the key file is fetched into.")
    parser.add_argument("--archive-dir", help="Directory for the CSV snapshots of the location and profile tabs.")
    parser.add_argument("--upload-dir", help="Directory the migrated key file is saved to.")
    parser.add_argument("--ledger", help="Key file update log (CSV); the run is logged only when set.")
    parser.add_argument("--rename-location", help="Rename table CSV for the location tab (Var_long, var_new_name).")
    parser.add_argument("--rename-profile", help="Rename table CSV for the profile tab (Var_long, Level, var_new_name).")
    parser.add_argument(
        "--column-policy",
        choices=sorted(COLUMN_POLICIES),
        help="How a Units header pattern matching several columns is handled.",
    )
    parser.add_argument("--publish", action="store_true", help="Copy the migrated key next to the original.")
    parser.add_argument("--dry-run", action="store_true", help="Run every stage in memory without writing anything.")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        plan = load_version_spec(args.config)
        if args.column_policy:
            plan = replace(plan, column_policy=args.column_policy)
        renames = load_rename_tables(plan, args.rename_location, args.rename_profile)
    except (OSError, ValueError) as exc:
        print(f"[ERROR] Could not load version config: {exc}", file=sys.stderr)
        return 1

    paths = load_paths({
        "source_dir": args.source_dir,
        "download_dir": args.download_dir,
        "archive_dir": args.archive_dir,
        "upload_dir": args.upload_dir,
        "ledger_path": args.ledger,
    })

    print(f"[INFO] Key file version {plan.version} update: {args.key}")
    try:
        result = run_key_update(
            args.key,
            plan,
            renames,
            paths,
            dry_run=args.dry_run,
            publish=args.publish,
        )
    except (FileNotFoundError, KeyError) as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 1
    except KeyUpdateError as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 1

    print(result["report"].summary())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
