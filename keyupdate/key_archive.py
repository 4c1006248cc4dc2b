"""CSV snapshots of key tabs, written before a migration touches them."""

import os

import pandas as pd


def archive_path(archive_dir: str, key_name: str, suffix: str) -> str:
    return os.path.join(archive_dir, f"{key_name}_{suffix}.csv")


def archive_tab(frame: pd.DataFrame, path: str) -> str:
    """Write one tab frame as CSV, replacing any earlier snapshot."""
    abs_path = os.path.abspath(path)
    os.makedirs(os.path.dirname(abs_path), exist_ok=True)
    frame.to_csv(abs_path, index=False)
    print(f"[OK]   archived {len(frame)} rows -> {abs_path}")
    return abs_path


def read_archived_tab(path: str) -> pd.DataFrame:
    """Read a snapshot back as text; empty cells come back as ''."""
    return pd.read_csv(path, dtype=str, keep_default_na=False)


def frame_as_text(frame: pd.DataFrame) -> pd.DataFrame:
    """Render a tab frame the way its CSV snapshot reads back, for comparison."""
    out = frame.copy()
    for col in out.columns:
        out[col] = out[col].map(lambda v: "" if v is None or (isinstance(v, float) and pd.isna(v)) else str(v))
    return out.reset_index(drop=True)
