"""
One key file update run: fetch, migrate, persist, publish, log.

Nothing is written to the upload directory, the store or the ledger unless
every migration stage succeeds.
"""

from __future__ import annotations

import os

from key_archive import archive_path, archive_tab
from key_config import KeyUpdatePaths, MigrationPlan, RenameTables
from key_migration import MigrationReport, migrate_key_workbook
from key_transport import LocalKeyFileStore
from key_workbook import KeyWorkbook
from migration_ledger import record_migration

ARCHIVE_SUFFIXES = {"location": "location", "profile": "profile"}


def artifact_name(key_name: str, version: int) -> str:
    return f"{key_name}_KEY_V{version}.xlsx"


def run_key_update(
    identifier: str,
    plan: MigrationPlan,
    renames: RenameTables,
    paths: KeyUpdatePaths,
    store: LocalKeyFileStore | None = None,
    dry_run: bool = False,
    publish: bool = False,
) -> dict:
    """
    Migrate one key file and return a result dict:
      {"key_name", "report", "output_path", "published_path", "ledger_entry"}
    output_path / published_path / ledger_entry are None on a dry run.
    """
    store = store or LocalKeyFileStore(paths.source_dir)
    key_name = store.key_name(identifier)
    # a dry run edits the workbook in memory, straight from the source file
    local_path = store.resolve(identifier) if dry_run else store.fetch(identifier, paths.download_dir)

    print(f"[INFO] Opening: {local_path}")
    workbook = KeyWorkbook.load(local_path)
    print(f"[INFO] Tabs: {workbook.tab_names}")

    suffix_by_tab = {
        plan.location_tab: ARCHIVE_SUFFIXES["location"],
        plan.profile_tab: ARCHIVE_SUFFIXES["profile"],
    }

    def _archive(tab, frame):
        return archive_tab(frame, archive_path(paths.archive_dir, key_name, suffix_by_tab[tab]))

    report: MigrationReport = migrate_key_workbook(
        workbook,
        plan,
        renames,
        archive=None if dry_run else _archive,
    )

    result = {
        "key_name": key_name,
        "report": report,
        "output_path": None,
        "published_path": None,
        "ledger_entry": None,
    }
    if dry_run:
        print(f"[DRY RUN] Would write {artifact_name(key_name, plan.version)}. No file saved.")
        return result

    output_path = workbook.save(os.path.join(paths.upload_dir, artifact_name(key_name, plan.version)))
    result["output_path"] = output_path
    print(f"[DONE] Saved: {output_path}")

    if publish:
        result["published_path"] = store.store(output_path, os.path.dirname(store.resolve(identifier)))

    if paths.ledger_path:
        result["ledger_entry"] = record_migration(
            paths.ledger_path,
            key_name,
            store.origin_directory(identifier),
        )
    return result
