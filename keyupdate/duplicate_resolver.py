"""
Give colliding `var` names in a key tab unique replacements.

The rename table lists the rows to rename by their description (`Var_long`,
plus `Level` on the profile tab) and the new `var` for each. A row is found
with two independent lookups:

  - pattern: regex search of the description inside `Var_long`, exact match
    on any other key column;
  - exact:   equality on every key column.

Descriptions often contain regex metacharacters ("(CN analyzer)") or are
substrings of longer descriptions, so either lookup can miss or over-match
on its own. A unique exact match wins; a unique pattern match is used only
when the exact lookup does not single out a row. A description with regex
metacharacters can pattern-match a different row than its own.
"""

from __future__ import annotations

import re

import pandas as pd

from key_errors import AmbiguousRenameTargetError
from key_workbook import KeyWorkbook, cell_text, sheet_row

DESCRIPTION_KEY = "Var_long"
VAR_COLUMN = "var"


def pattern_matches(frame: pd.DataFrame, entry: dict, match_keys: list[str]) -> list[int]:
    """Row indices whose Var_long contains the entry's description as a regex."""
    term = cell_text(entry.get(DESCRIPTION_KEY))
    if not term or DESCRIPTION_KEY not in frame.columns:
        return []
    try:
        rx = re.compile(term)
    except re.error:
        return []
    others = [k for k in match_keys if k != DESCRIPTION_KEY]
    hits = []
    for i, (_, row) in enumerate(frame.iterrows()):
        if not rx.search(cell_text(row.get(DESCRIPTION_KEY))):
            continue
        if all(cell_text(row.get(k)) == cell_text(entry.get(k)) for k in others):
            hits.append(i)
    return hits


def exact_matches(frame: pd.DataFrame, entry: dict, match_keys: list[str]) -> list[int]:
    """Row indices whose key columns all equal the entry's values."""
    if any(k not in frame.columns for k in match_keys):
        return []
    hits = []
    for i, (_, row) in enumerate(frame.iterrows()):
        if all(cell_text(row.get(k)) == cell_text(entry.get(k)) for k in match_keys):
            hits.append(i)
    return hits


def resolve_target_row(
    frame: pd.DataFrame,
    entry: dict,
    match_keys: list[str],
    tab: str = "",
) -> int | None:
    """
    Pick the single row an entry refers to.

    Returns None when neither lookup finds anything; raises
    AmbiguousRenameTargetError when rows are found but neither lookup
    narrows them to one.
    """
    by_pattern = pattern_matches(frame, entry, match_keys)
    by_exact = exact_matches(frame, entry, match_keys)
    if not by_pattern and not by_exact:
        return None
    if len(by_exact) == 1:
        return by_exact[0]
    if len(by_pattern) == 1:
        return by_pattern[0]
    raise AmbiguousRenameTargetError(tab, cell_text(entry.get(DESCRIPTION_KEY)), by_pattern, by_exact)


def resolve_duplicates(
    workbook: KeyWorkbook,
    tab: str,
    rename_table: pd.DataFrame,
    match_keys: list[str],
) -> list[dict]:
    """Apply a rename table to one tab in place; return the renames made."""
    if rename_table is None or len(rename_table) == 0:
        return []

    var_col = workbook.column_index(tab, f"^{VAR_COLUMN}$", policy="unique")
    frame = workbook.read_tab(tab)
    applied: list[dict] = []

    for entry in rename_table.to_dict("records"):
        new_name = cell_text(entry.get("var_new_name"))
        if not new_name:
            continue
        idx = resolve_target_row(frame, entry, match_keys, tab=tab)
        if idx is None:
            keys = ", ".join(f"{k}={cell_text(entry.get(k))!r}" for k in match_keys)
            print(f"[WARN] {tab}: no row matches {keys}; rename to '{new_name}' skipped.")
            continue
        old_name = cell_text(frame.iloc[idx][VAR_COLUMN]) if VAR_COLUMN in frame.columns else ""
        workbook.write_cell(tab, sheet_row(idx), var_col, new_name)
        frame.iat[idx, var_col - 1] = new_name
        applied.append({
            "tab": tab,
            "row": sheet_row(idx),
            "Var_long": cell_text(frame.iloc[idx].get(DESCRIPTION_KEY)),
            "old_var": old_name,
            "new_var": new_name,
        })

    print(f"[INFO] {tab}: renamed {len(applied)} var(s) from the rename table.")
    return applied
