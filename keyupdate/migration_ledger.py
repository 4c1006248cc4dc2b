"""
Append-only CSV ledger of successful key file migrations.

One row per run: keyFileName, keyFileDirectory, timestamp. Rows are only ever
appended; the header is written when the ledger file does not exist yet.
"""

import os
from datetime import datetime

import pandas as pd

LEDGER_COLUMNS = ["keyFileName", "keyFileDirectory", "timestamp"]


def record_migration(
    ledger_path: str,
    key_file_name: str,
    key_file_directory: str,
    timestamp: datetime | None = None,
) -> dict:
    stamp = (timestamp or datetime.now()).isoformat(timespec="seconds")
    entry = {
        "keyFileName": key_file_name,
        "keyFileDirectory": key_file_directory,
        "timestamp": stamp,
    }
    abs_path = os.path.abspath(ledger_path)
    os.makedirs(os.path.dirname(abs_path), exist_ok=True)
    write_header = not os.path.exists(abs_path) or os.path.getsize(abs_path) == 0
    pd.DataFrame([entry], columns=LEDGER_COLUMNS).to_csv(
        abs_path,
        mode="a",
        header=write_header,
        index=False,
    )
    print(f"[OK]   logged migration of '{key_file_name}' -> {abs_path}")
    return entry


def read_ledger(ledger_path: str) -> pd.DataFrame:
    if not os.path.exists(ledger_path):
        return pd.DataFrame(columns=LEDGER_COLUMNS)
    return pd.read_csv(ledger_path, dtype=str, keep_default_na=False)
