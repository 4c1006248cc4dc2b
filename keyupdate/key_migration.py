"""
Key file schema migration (one version step).

Upgrades a loaded key workbook in place:
 1. Refuses workbooks that already carry the target version's fields.
 2. Snapshots the location and profile tabs through the archive callback.
 3. Writes revised / new controlled-vocabulary columns on the Units tab.
 4. Appends the new metadata rows to the location tab.
 5. Binds drop-down validations to Units vocabulary columns.
 6. Rewrites ambiguous profile descriptions.
 7. Renames colliding vars from the rename tables.
 8. Fails if any var is still duplicated.
 9. Converts serial dates in date fields to ISO strings.
10. Normalizes fonts on the location, profile and Units tabs.

Every stage re-reads the sheets it needs; positions are never carried over a
write. Persisting the result is left to the caller (see key_update.py).
"""

from __future__ import annotations

import re
from typing import Callable

import pandas as pd
from openpyxl.styles import Font

from column_locator import column_letter, locate
from duplicate_resolver import VAR_COLUMN, resolve_duplicates
from key_config import LOCATION_MATCH_KEYS, PROFILE_MATCH_KEYS, MigrationPlan, RenameTables
from key_errors import AlreadyMigratedError, DuplicateVarError, ValidationRangeError
from key_workbook import HEADER_ROW, KeyWorkbook, cell_text, sheet_row
from value_formats import needs_date_conversion, serial_to_iso_date

ArchiveCallback = Callable[[str, pd.DataFrame], object]

LONG_FORMAT_COLUMNS = {
    "Value": "value",
    "Unit": "unit",
    "Var_long": "var_long",
    "var": "var",
    "Level": "level",
}


class MigrationReport:
    """What a migration changed, stage by stage."""

    def __init__(self, version: int):
        self.version = version
        self.archived: list[str] = []
        self.vocabulary: list[dict] = []
        self.inserted_fields: list[dict] = []
        self.validations: list[dict] = []
        self.corrected_labels: list[dict] = []
        self.renamed: list[dict] = []
        self.converted_dates: list[dict] = []
        self.warnings: list[str] = []

    def warn(self, msg: str) -> None:
        print(f"[WARN] {msg}")
        self.warnings.append(msg)

    def summary(self) -> str:
        lines = [f"[INFO] key file v{self.version} migration summary"]
        lines.append(f"  - Tabs archived: {len(self.archived)}")
        lines.append(f"  - Vocabulary columns written: {[v['name'] for v in self.vocabulary]}")
        lines.append(f"  - Metadata rows inserted: {[f['var'] for f in self.inserted_fields]}")
        lines.append(f"  - Validations bound: {len(self.validations)}")
        lines.append(f"  - Labels corrected: {len(self.corrected_labels)}")
        lines.append(f"  - Vars renamed: {len(self.renamed)}")
        lines.append(f"  - Dates converted: {len(self.converted_dates)}")
        for w in self.warnings:
            lines.append(f"  [WARN]  {w}")
        return "\n".join(lines)


def _var_values(frame: pd.DataFrame) -> list[str]:
    if VAR_COLUMN not in frame.columns:
        return []
    return [cell_text(v) for v in frame[VAR_COLUMN].tolist()]


# ── 1. Version guard ──────────────────────────────────────────────────────────

def check_not_migrated(workbook: KeyWorkbook, plan: MigrationPlan) -> None:
    present = set(_var_values(workbook.read_tab(plan.location_tab)))
    if plan.required_fields and all(f in present for f in plan.required_fields):
        raise AlreadyMigratedError(plan.version, plan.required_fields)


# ── 3. Vocabulary extension ───────────────────────────────────────────────────

def extend_vocabulary(workbook: KeyWorkbook, plan: MigrationPlan, report: MigrationReport) -> None:
    tab = plan.units_tab
    for vocab in plan.vocabulary:
        if vocab.mode == "overwrite":
            workbook.write_column(tab, vocab.values, vocab.start_row, vocab.start_col)
            report.vocabulary.append({"name": vocab.name, "column": column_letter(vocab.start_col)})
            print(
                f"[INFO] {tab}: wrote {len(vocab.values)} '{vocab.name}' options at "
                f"{column_letter(vocab.start_col)}{vocab.start_row}."
            )
            continue

        if vocab.name in workbook.header(tab):
            report.warn(f"{tab}: column '{vocab.name}' already exists; not appended again.")
            continue
        col = workbook.current_column_count(tab) + 1
        workbook.write_column(tab, [vocab.name] + list(vocab.values), HEADER_ROW, col)
        report.vocabulary.append({"name": vocab.name, "column": column_letter(col)})
        print(f"[INFO] {tab}: appended '{vocab.name}' column at {column_letter(col)}.")


# ── 4. Metadata insertion ─────────────────────────────────────────────────────

def metadata_insert_row(workbook: KeyWorkbook, tab: str) -> int:
    """Sheet row for new metadata: the last data row + 2 (N data rows -> row N + 3)."""
    last_data_row = workbook.current_row_count(tab) + HEADER_ROW
    return last_data_row + 2


def insert_metadata(workbook: KeyWorkbook, plan: MigrationPlan, report: MigrationReport) -> None:
    tab = plan.location_tab
    present = set(_var_values(workbook.read_tab(tab)))
    fields = []
    for f in plan.metadata_fields:
        if f.var in present:
            report.warn(f"{tab}: '{f.var}' already present; row not added.")
            continue
        fields.append(f)
    if not fields:
        return

    header = workbook.header(tab)
    positions = {}
    for column, attr in LONG_FORMAT_COLUMNS.items():
        if column in header:
            positions[attr] = header.index(column) + 1
    missing = [c for c, a in LONG_FORMAT_COLUMNS.items() if a not in positions]
    if missing:
        raise ValueError(f"{tab} is missing column(s) {missing}; cannot add metadata rows")

    start_row = metadata_insert_row(workbook, tab)
    for offset, f in enumerate(fields):
        value = f.value
        if f.var == plan.version_field and value is None:
            value = plan.version
        row_values = {
            "value": value,
            "unit": f.unit,
            "var_long": f.var_long,
            "var": f.var,
            "level": f.level,
        }
        for attr, col in positions.items():
            workbook.write_cell(tab, start_row + offset, col, row_values[attr])
        report.inserted_fields.append({"var": f.var, "row": start_row + offset})
    print(f"[INFO] {tab}: added {len(fields)} metadata rows starting at row {start_row}.")


# ── 5. Validation wiring ──────────────────────────────────────────────────────

def validation_rows(workbook: KeyWorkbook, rule) -> tuple[int, int]:
    """Sheet row range a validation rule targets, from the live tab."""
    if rule.var:
        hits = workbook.find_rows(rule.tab, lambda row: cell_text(row.get(VAR_COLUMN)) == rule.var)
        if len(hits) != 1:
            raise ValidationRangeError(rule.label, detail=f"{len(hits)} rows with var={rule.var!r}")
        return sheet_row(hits[0]), sheet_row(hits[0])

    rx = re.compile(rule.match_pattern)
    hits = workbook.find_rows(rule.tab, lambda row: bool(rx.search(cell_text(row.get(rule.match_column)))))
    if not hits:
        raise ValidationRangeError(
            rule.label, detail=f"no {rule.match_column} matches {rule.match_pattern!r}"
        )
    first, last = sheet_row(min(hits)), sheet_row(max(hits))
    if first > last:
        raise ValidationRangeError(rule.label, first, last)
    return first, last


def vocabulary_formula(units_tab: str, letter: str, first_row: int, last_row: int) -> str:
    return f"'{units_tab}'!${letter}${first_row}:${letter}${last_row}"


def wire_validations(workbook: KeyWorkbook, plan: MigrationPlan, report: MigrationReport) -> None:
    for rule in plan.validations:
        if rule.vocab_first_row > rule.vocab_last_row:
            raise ValidationRangeError(rule.label, rule.vocab_first_row, rule.vocab_last_row)
        letter = locate(workbook.header(plan.units_tab), rule.vocabulary, plan.column_policy)
        target_col = workbook.column_index(rule.tab, f"^{re.escape(rule.column)}$", policy="unique")
        first, last = validation_rows(workbook, rule)
        formula = vocabulary_formula(plan.units_tab, letter, rule.vocab_first_row, rule.vocab_last_row)
        cells = workbook.add_list_validation(rule.tab, target_col, first, last, formula)
        report.validations.append({"label": rule.label, "tab": rule.tab, "cells": cells, "formula": formula})
        print(f"[INFO] {rule.tab}: {rule.label} -> {cells} limited to {formula}")


# ── 6. Label correction ───────────────────────────────────────────────────────

def correct_labels(workbook: KeyWorkbook, plan: MigrationPlan, report: MigrationReport) -> None:
    for fix in plan.label_corrections:
        hits = workbook.find_rows(fix.tab, lambda row: fix.find in cell_text(row.get(fix.column)))
        if not hits:
            print(f"[INFO] {fix.tab}: no '{fix.find}' description to correct.")
            continue
        if len(hits) > 1:
            report.warn(f"{fix.tab}: '{fix.find}' found on {len(hits)} rows; only the first is corrected.")
        col = workbook.column_index(fix.tab, f"^{re.escape(fix.column)}$", policy="unique")
        row = sheet_row(hits[0])
        workbook.write_cell(fix.tab, row, col, fix.replace)
        report.corrected_labels.append({"tab": fix.tab, "row": row, "text": fix.replace})
        print(f"[INFO] {fix.tab}: row {row} description -> '{fix.replace}'")


# ── 8. Post-condition ─────────────────────────────────────────────────────────

def duplicate_vars(frame: pd.DataFrame) -> list[str]:
    """var names held by more than one row; blank vars are ignored."""
    names = pd.Series([v for v in _var_values(frame) if v], dtype=object)
    if names.empty:
        return []
    counts = names.groupby(names).size()
    return sorted(counts[counts > 1].index.tolist())


def verify_unique_vars(workbook: KeyWorkbook, plan: MigrationPlan) -> None:
    found = {}
    for tab in (plan.location_tab, plan.profile_tab):
        dupes = duplicate_vars(workbook.read_tab(tab))
        if dupes:
            found[tab] = dupes
    if found:
        raise DuplicateVarError(found)


# ── 9. Value-format normalization ─────────────────────────────────────────────

def normalize_dates(workbook: KeyWorkbook, plan: MigrationPlan, report: MigrationReport) -> None:
    tab = plan.location_tab
    for field_name in plan.date_fields:
        hits = workbook.find_rows(tab, lambda row: cell_text(row.get(VAR_COLUMN)) == field_name)
        if not hits:
            continue
        value_col = workbook.column_index(tab, "^Value$", policy="unique")
        for idx in hits:
            row = sheet_row(idx)
            raw = workbook.cell_value(tab, row, value_col)
            if not needs_date_conversion(raw):
                continue
            try:
                iso = serial_to_iso_date(raw)
            except (ValueError, TypeError, OverflowError) as exc:
                report.warn(f"{tab}: {field_name} value {raw!r} left as is ({exc}).")
                continue
            workbook.write_cell(tab, row, value_col, iso)
            report.converted_dates.append({"var": field_name, "row": row, "from": raw, "to": iso})
            print(f"[INFO] {tab}: {field_name} {raw!r} -> '{iso}'")


# ── 10. Presentation normalization ────────────────────────────────────────────

def normalize_fonts(workbook: KeyWorkbook, plan: MigrationPlan) -> None:
    body = Font(name=plan.font_name, size=plan.font_size)
    bold = Font(name=plan.font_name, size=plan.font_size, bold=True)
    for tab in plan.styled_tabs:
        nrows = workbook.current_row_count(tab)
        ncols = workbook.current_column_count(tab)
        workbook.apply_font(tab, body, HEADER_ROW + 1, nrows + HEADER_ROW, 1, ncols)
        workbook.apply_font(tab, bold, HEADER_ROW, HEADER_ROW, 1, ncols)


# ── Pipeline ──────────────────────────────────────────────────────────────────

def migrate_key_workbook(
    workbook: KeyWorkbook,
    plan: MigrationPlan,
    renames: RenameTables,
    archive: ArchiveCallback | None = None,
) -> MigrationReport:
    """Run stages 1-10 on `workbook` in place and report what changed."""
    report = MigrationReport(plan.version)

    check_not_migrated(workbook, plan)

    if archive is not None:
        for tab in (plan.location_tab, plan.profile_tab):
            archive(tab, workbook.read_tab(tab))
            report.archived.append(tab)

    extend_vocabulary(workbook, plan, report)
    insert_metadata(workbook, plan, report)
    wire_validations(workbook, plan, report)
    correct_labels(workbook, plan, report)

    report.renamed.extend(resolve_duplicates(workbook, plan.location_tab, renames.location, LOCATION_MATCH_KEYS))
    report.renamed.extend(resolve_duplicates(workbook, plan.profile_tab, renames.profile, PROFILE_MATCH_KEYS))

    verify_unique_vars(workbook, plan)
    normalize_dates(workbook, plan, report)
    normalize_fonts(workbook, plan)
    return report
