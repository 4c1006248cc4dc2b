"""
Run configuration for key file migrations.

Two kinds of input:
  - directory paths, from CLI flags, then environment variables (a `.env`
    file is honoured), then the shared-server defaults;
  - the version spec: a JSON document describing one schema generation step
    (new metadata fields, vocabulary columns, validations, label fixes) plus
    the CSV rename tables it points to.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field

import pandas as pd
from dotenv import load_dotenv

from column_locator import COLUMN_POLICIES
from key_workbook import LOCATION_TAB, PROFILE_TAB, UNITS_TAB

KEYUPDATE_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(KEYUPDATE_DIR)
DEFAULT_VERSION_CONFIG = os.path.join(PROJECT_ROOT, "config", "key_v2.json")

_SHARED_ROOT = "/home/shares/lter-som"
PATH_DEFAULTS = {
    "source_dir": ("KEY_FILE_SOURCE_PATH", os.path.join(_SHARED_ROOT, "key_file_source")),
    "download_dir": ("KEY_FILE_DOWNLOAD_PATH", os.path.join(_SHARED_ROOT, "key_file_download")),
    "archive_dir": ("KEY_FILE_ARCHIVE_PATH", os.path.join(_SHARED_ROOT, "key_file_archive")),
    "upload_dir": ("KEY_FILE_UPLOAD_PATH", os.path.join(_SHARED_ROOT, "key_file_upload")),
    "ledger_path": ("KEY_FILE_UPDATE_LOG_PATH", None),
}

LOCATION_MATCH_KEYS = ["Var_long"]
PROFILE_MATCH_KEYS = ["Var_long", "Level"]


# ── Paths ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class KeyUpdatePaths:
    source_dir: str
    download_dir: str
    archive_dir: str
    upload_dir: str
    ledger_path: str | None = None


def _resolve_path(raw: str | None) -> str | None:
    if not raw:
        return None
    raw = os.path.expanduser(raw)
    if not os.path.isabs(raw):
        return os.path.join(PROJECT_ROOT, raw)
    return raw


def load_paths(overrides: dict | None = None) -> KeyUpdatePaths:
    """Resolve run directories: explicit override > environment > default."""
    load_dotenv()
    overrides = overrides or {}
    resolved = {}
    for name, (env_name, default) in PATH_DEFAULTS.items():
        explicit = overrides.get(name)
        if explicit:
            resolved[name] = os.path.abspath(os.path.expanduser(explicit))
            continue
        resolved[name] = _resolve_path(os.environ.get(env_name)) or default
    return KeyUpdatePaths(**resolved)


# ── Version spec ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class MetadataField:
    var: str
    var_long: str
    value: object = None
    unit: object = None
    level: str = "location"


@dataclass(frozen=True)
class VocabularyColumn:
    name: str
    values: list
    mode: str = "append"  # "append" after the last column, or "overwrite" at start_col/start_row
    start_col: int | None = None
    start_row: int = 2


@dataclass(frozen=True)
class ValidationRule:
    label: str
    tab: str
    column: str
    vocabulary: str
    vocab_first_row: int
    vocab_last_row: int
    var: str | None = None
    match_column: str | None = None
    match_pattern: str | None = None


@dataclass(frozen=True)
class LabelCorrection:
    tab: str
    column: str
    find: str
    replace: str


@dataclass(frozen=True)
class MigrationPlan:
    version: int
    location_tab: str = LOCATION_TAB
    profile_tab: str = PROFILE_TAB
    units_tab: str = UNITS_TAB
    required_fields: list = field(default_factory=list)
    vocabulary: list = field(default_factory=list)
    metadata_fields: list = field(default_factory=list)
    version_field: str = "key_version"
    validations: list = field(default_factory=list)
    label_corrections: list = field(default_factory=list)
    date_fields: list = field(default_factory=list)
    font_name: str = "Arial"
    font_size: int = 10
    column_policy: str = "first"
    rename_location_path: str | None = None
    rename_profile_path: str | None = None

    @property
    def styled_tabs(self) -> list[str]:
        return [self.location_tab, self.profile_tab, self.units_tab]


@dataclass(frozen=True)
class RenameTables:
    location: pd.DataFrame
    profile: pd.DataFrame


def _require(doc: dict, key: str, where: str):
    if key not in doc:
        raise ValueError(f"version config is missing '{key}' in {where}")
    return doc[key]


def _parse_vocabulary(items: list) -> list[VocabularyColumn]:
    out = []
    for i, item in enumerate(items):
        where = f"vocabulary[{i}]"
        mode = str(item.get("mode", "append")).strip().lower()
        if mode not in {"append", "overwrite"}:
            raise ValueError(f"{where}: mode must be 'append' or 'overwrite', got {mode!r}")
        start_col = item.get("start_col")
        if mode == "overwrite" and start_col is None:
            raise ValueError(f"{where}: overwrite mode needs 'start_col'")
        out.append(
            VocabularyColumn(
                name=str(_require(item, "name", where)),
                values=list(_require(item, "values", where)),
                mode=mode,
                start_col=int(start_col) if start_col is not None else None,
                start_row=int(item.get("start_row", 2)),
            )
        )
    return out


def _parse_metadata_fields(items: list) -> list[MetadataField]:
    out = []
    for i, item in enumerate(items):
        where = f"metadata_fields[{i}]"
        out.append(
            MetadataField(
                var=str(_require(item, "var", where)),
                var_long=str(_require(item, "Var_long", where)),
                value=item.get("Value"),
                unit=item.get("Unit"),
                level=str(item.get("Level", "location")),
            )
        )
    return out


def _parse_validations(items: list, tabs: dict[str, str]) -> list[ValidationRule]:
    out = []
    for i, item in enumerate(items):
        where = f"validations[{i}]"
        tab_key = str(_require(item, "tab", where))
        tab = tabs.get(tab_key, tab_key)
        vocab_rows = _require(item, "vocab_rows", where)
        if len(vocab_rows) != 2:
            raise ValueError(f"{where}: vocab_rows must be [first, last]")
        var = item.get("var")
        match = item.get("match") or {}
        if not var and not match:
            raise ValueError(f"{where}: needs either 'var' or 'match'")
        out.append(
            ValidationRule(
                label=str(item.get("label") or var or match.get("pattern")),
                tab=tab,
                column=str(_require(item, "column", where)),
                vocabulary=str(_require(item, "vocabulary", where)),
                vocab_first_row=int(vocab_rows[0]),
                vocab_last_row=int(vocab_rows[1]),
                var=str(var) if var else None,
                match_column=str(match["column"]) if match else None,
                match_pattern=str(match["pattern"]) if match else None,
            )
        )
    return out


def _parse_label_corrections(items: list, tabs: dict[str, str]) -> list[LabelCorrection]:
    out = []
    for i, item in enumerate(items):
        where = f"label_corrections[{i}]"
        tab_key = str(_require(item, "tab", where))
        out.append(
            LabelCorrection(
                tab=tabs.get(tab_key, tab_key),
                column=str(item.get("column", "Var_long")),
                find=str(_require(item, "find", where)),
                replace=str(_require(item, "replace", where)),
            )
        )
    return out


def parse_version_spec(doc: dict, base_dir: str | None = None) -> MigrationPlan:
    """Build a MigrationPlan from an already-decoded version config mapping."""
    version = int(_require(doc, "version", "the document root"))
    tab_doc = doc.get("tabs", {})
    tabs = {
        "location": str(tab_doc.get("location", LOCATION_TAB)),
        "profile": str(tab_doc.get("profile", PROFILE_TAB)),
        "units": str(tab_doc.get("units", UNITS_TAB)),
    }
    style = doc.get("style", {})
    policy = str(doc.get("column_policy", "first")).strip().lower()
    if policy not in COLUMN_POLICIES:
        raise ValueError(f"column_policy must be one of {sorted(COLUMN_POLICIES)}, got {policy!r}")

    renames = doc.get("rename_tables", {})

    def _rel(path):
        if not path:
            return None
        if os.path.isabs(path) or base_dir is None:
            return path
        return os.path.join(base_dir, path)

    return MigrationPlan(
        version=version,
        location_tab=tabs["location"],
        profile_tab=tabs["profile"],
        units_tab=tabs["units"],
        required_fields=[str(f) for f in _require(doc, "required_fields", "the document root")],
        vocabulary=_parse_vocabulary(doc.get("vocabulary", [])),
        metadata_fields=_parse_metadata_fields(doc.get("metadata_fields", [])),
        version_field=str(doc.get("version_field", "key_version")),
        validations=_parse_validations(doc.get("validations", []), tabs),
        label_corrections=_parse_label_corrections(doc.get("label_corrections", []), tabs),
        date_fields=[str(f) for f in doc.get("date_fields", [])],
        font_name=str(style.get("font_name", "Arial")),
        font_size=int(style.get("font_size", 10)),
        column_policy=policy,
        rename_location_path=_rel(renames.get("location")),
        rename_profile_path=_rel(renames.get("profile")),
    )


def load_version_spec(path: str = DEFAULT_VERSION_CONFIG) -> MigrationPlan:
    abs_path = os.path.abspath(path)
    with open(abs_path, encoding="utf-8") as fh:
        doc = json.load(fh)
    return parse_version_spec(doc, base_dir=os.path.dirname(abs_path))


# ── Rename tables ─────────────────────────────────────────────────────────────

def empty_rename_table(match_keys: list[str]) -> pd.DataFrame:
    return pd.DataFrame(columns=list(match_keys) + ["var_new_name"])


def load_rename_table(path: str | None, match_keys: list[str]) -> pd.DataFrame:
    """Read a rename table CSV: match key columns plus `var_new_name`."""
    if not path:
        return empty_rename_table(match_keys)
    table = pd.read_csv(path, dtype=str, keep_default_na=False)
    table.columns = [str(c).strip() for c in table.columns]
    missing = [c for c in list(match_keys) + ["var_new_name"] if c not in table.columns]
    if missing:
        raise ValueError(f"rename table {path} is missing column(s): {missing}")
    table = table[list(match_keys) + ["var_new_name"]].copy()
    for col in table.columns:
        table[col] = table[col].astype(str).str.strip()
    return table[table["var_new_name"] != ""].reset_index(drop=True)


def load_rename_tables(
    plan: MigrationPlan,
    location_path: str | None = None,
    profile_path: str | None = None,
) -> RenameTables:
    return RenameTables(
        location=load_rename_table(location_path or plan.rename_location_path, LOCATION_MATCH_KEYS),
        profile=load_rename_table(profile_path or plan.rename_profile_path, PROFILE_MATCH_KEYS),
    )
