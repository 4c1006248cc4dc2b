"""
Tests for the key file v2 migration stages and the full pipeline.

All keys are synthetic (see key_fixtures.py). The default key has 7 location
rows, so the new metadata rows start on sheet row 10.
"""

import os
from dataclasses import replace

import pandas as pd
import pytest

from key_archive import frame_as_text
from key_config import DEFAULT_VERSION_CONFIG, load_version_spec
from key_errors import (
    AlreadyMigratedError,
    AmbiguousColumnError,
    ColumnNotFoundError,
    DuplicateVarError,
    ValidationRangeError,
)
from key_fixtures import (
    LOCATION_ROWS,
    PROFILE_ROWS,
    UNITS_COLUMNS,
    build_key_workbook,
    default_renames,
    migrated_location_rows,
    rename_tables,
)
from key_migration import (
    duplicate_vars,
    metadata_insert_row,
    migrate_key_workbook,
    validation_rows,
)
from key_workbook import LOCATION_TAB, PROFILE_TAB, UNITS_TAB, KeyWorkbook


@pytest.fixture
def plan():
    return load_version_spec(DEFAULT_VERSION_CONFIG)


@pytest.fixture
def key_wb():
    return KeyWorkbook(build_key_workbook())


def _migrate(key_wb, plan, renames=None, archive=None):
    return migrate_key_workbook(key_wb, plan, renames or default_renames(), archive=archive)


# -----------------------------------------------------------------------------
# 1) Version guard
# -----------------------------------------------------------------------------

class TestVersionGuard:
    def test_already_migrated_key_is_refused(self, plan):
        kw = KeyWorkbook(build_key_workbook(location_rows=migrated_location_rows()))
        with pytest.raises(AlreadyMigratedError) as exc:
            _migrate(kw, plan)
        assert exc.value.version == 2

    def test_refused_key_is_left_untouched(self, plan):
        kw = KeyWorkbook(build_key_workbook(location_rows=migrated_location_rows()))
        before = {tab: frame_as_text(kw.read_tab(tab)) for tab in (LOCATION_TAB, PROFILE_TAB, UNITS_TAB)}
        archived = []
        with pytest.raises(AlreadyMigratedError):
            _migrate(kw, plan, archive=lambda tab, frame: archived.append(tab))
        assert archived == []
        for tab, frame in before.items():
            assert frame_as_text(kw.read_tab(tab)).equals(frame)
        assert kw.list_validations(PROFILE_TAB) == []

    def test_partial_v2_fields_do_not_trip_the_guard(self, plan):
        rows = LOCATION_ROWS + [(None, None, "includes time-series data", "time_series", "location")]
        kw = KeyWorkbook(build_key_workbook(location_rows=rows))
        report = _migrate(kw, plan)
        assert "time_series" not in [f["var"] for f in report.inserted_fields]
        assert any("time_series" in w for w in report.warnings)
        assert kw.read_tab(LOCATION_TAB)["var"].tolist().count("time_series") == 1


# -----------------------------------------------------------------------------
# 2) Archive snapshot
# -----------------------------------------------------------------------------

class TestArchiveSnapshot:
    def test_location_and_profile_archived_before_mutation(self, key_wb, plan):
        snapshots = {}
        _migrate(key_wb, plan, archive=lambda tab, frame: snapshots.setdefault(tab, frame))
        assert list(snapshots) == [LOCATION_TAB, PROFILE_TAB]
        assert len(snapshots[LOCATION_TAB]) == len(LOCATION_ROWS)
        assert "key_version" not in snapshots[LOCATION_TAB]["var"].tolist()
        assert "Bulk Layer Total Carbon" in snapshots[PROFILE_TAB]["Var_long"].tolist()


# -----------------------------------------------------------------------------
# 3-4) Vocabulary extension and metadata insertion
# -----------------------------------------------------------------------------

class TestVocabularyAndMetadata:
    def test_units_gains_exactly_one_named_column(self, key_wb, plan):
        before = key_wb.header(UNITS_TAB)
        _migrate(key_wb, plan)
        after = key_wb.header(UNITS_TAB)
        assert after[: len(before)] == before
        assert after[len(before):] == ["logical"]
        units = key_wb.read_tab(UNITS_TAB)
        assert units["logical"].tolist()[:2] == ["YES", "NO"]

    def test_treatment_options_overwritten_in_place(self, key_wb, plan):
        _migrate(key_wb, plan)
        units = key_wb.read_tab(UNITS_TAB)
        assert units["treatment"].tolist()[:11] == plan.vocabulary[0].values
        assert units["Unit"].tolist()[:3] == UNITS_COLUMNS["Unit"]

    def test_insert_row_is_last_data_row_plus_two(self, key_wb):
        n = len(LOCATION_ROWS)
        assert metadata_insert_row(key_wb, LOCATION_TAB) == n + 3

    def test_new_rows_follow_offset_law(self, key_wb, plan):
        n = len(LOCATION_ROWS)
        _migrate(key_wb, plan)
        ws = key_wb.worksheet(LOCATION_TAB)
        assert all(ws.cell(row=n + 2, column=c).value is None for c in range(1, 6))
        written = [
            tuple(ws.cell(row=r, column=c).value for c in range(1, 6))
            for r in range(n + 3, n + 3 + len(plan.metadata_fields))
        ]
        expected = [
            (2 if f.var == "key_version" else None, None, f.var_long, f.var, "location")
            for f in plan.metadata_fields
        ]
        assert written == expected

    def test_last_rows_are_the_new_fields(self, key_wb, plan):
        _migrate(key_wb, plan)
        frame = key_wb.read_tab(LOCATION_TAB)
        tail = frame.tail(len(plan.metadata_fields))
        assert tail["var"].tolist() == [f.var for f in plan.metadata_fields]
        assert tail["Var_long"].tolist() == [f.var_long for f in plan.metadata_fields]

    def test_existing_values_preserved(self, key_wb, plan):
        _migrate(key_wb, plan)
        frame = key_wb.read_tab(LOCATION_TAB)
        assert frame.iloc[0].tolist() == list(LOCATION_ROWS[0])
        assert frame.iloc[1]["Value"] == 39.1
        profile = key_wb.read_tab(PROFILE_TAB)
        assert profile["Value"].tolist() == [r[0] for r in PROFILE_ROWS]

    def test_units_column_appended_after_grown_tab(self, plan):
        units = dict(UNITS_COLUMNS)
        units.update({f"extra_{i}": ["x"] for i in range(25)})
        kw = KeyWorkbook(build_key_workbook(units_columns=units))
        report = _migrate(kw, plan)
        assert report.vocabulary[-1] == {"name": "logical", "column": "AD"}


# -----------------------------------------------------------------------------
# 5) Validation wiring
# -----------------------------------------------------------------------------

class TestValidations:
    def test_treatment_range_spans_treatment_rows(self, key_wb, plan):
        _migrate(key_wb, plan)
        assert ("B5:B9", "'Units'!$B$2:$B$12") in key_wb.list_validations(PROFILE_TAB)

    def test_logical_fields_bound_to_logical_column(self, key_wb, plan):
        _migrate(key_wb, plan)
        validations = key_wb.list_validations(LOCATION_TAB)
        # time_series, gradient, experiments start at row 10; merge_align is row 15
        for cells in ("A10", "A11", "A12", "A15"):
            assert (cells, "'Units'!$E$2:$E$11") in validations

    def test_lit_lig_bound_to_soil_column(self, key_wb, plan):
        _migrate(key_wb, plan)
        assert ("B6", "'Units'!$C$2:$C$6") in key_wb.list_validations(LOCATION_TAB)

    def test_validation_count(self, key_wb, plan):
        report = _migrate(key_wb, plan)
        assert len(report.validations) == 6
        assert len(key_wb.list_validations(LOCATION_TAB)) == 5
        assert len(key_wb.list_validations(PROFILE_TAB)) == 1

    def test_missing_treatment_rows_rejected(self, plan):
        rows = [r for r in PROFILE_ROWS if not r[2].startswith("Treatment_")]
        kw = KeyWorkbook(build_key_workbook(profile_rows=rows))
        with pytest.raises(ValidationRangeError) as exc:
            _migrate(kw, plan)
        assert exc.value.rule_label == "treatment levels"
        assert kw.list_validations(PROFILE_TAB) == []

    def test_missing_lit_lig_rejected(self, plan):
        rows = [r for r in LOCATION_ROWS if r[3] != "lit_lig"]
        kw = KeyWorkbook(build_key_workbook(location_rows=rows))
        with pytest.raises(ValidationRangeError, match="lit_lig"):
            _migrate(kw, plan)

    def test_inverted_vocabulary_rows_rejected(self, key_wb, plan):
        bad = replace(plan.validations[0], vocab_first_row=12, vocab_last_row=2)
        with pytest.raises(ValidationRangeError):
            _migrate(key_wb, replace(plan, validations=[bad]))

    def test_rows_follow_live_tab(self, key_wb, plan):
        rule = plan.validations[0]
        assert validation_rows(key_wb, rule) == (5, 9)
        key_wb.write_block(PROFILE_TAB, [["x", None, "Treatment_6 level", "tx_L6", "treatment"]], 14, 1)
        assert validation_rows(key_wb, rule) == (5, 14)

    def test_missing_units_column(self, plan):
        units = {k: v for k, v in UNITS_COLUMNS.items() if not k.startswith("soil")}
        kw = KeyWorkbook(build_key_workbook(units_columns=units))
        with pytest.raises(ColumnNotFoundError) as exc:
            _migrate(kw, plan)
        assert exc.value.pattern == "soil"

    def test_unique_policy_flags_ambiguous_units_header(self, plan):
        units = dict(UNITS_COLUMNS)
        units["soil texture"] = ["sand", "clay"]
        kw = KeyWorkbook(build_key_workbook(units_columns=units))
        with pytest.raises(AmbiguousColumnError):
            _migrate(kw, replace(plan, column_policy="unique"))

    def test_first_policy_takes_first_ambiguous_header(self, plan):
        units = dict(UNITS_COLUMNS)
        units["soil texture"] = ["sand", "clay"]
        kw = KeyWorkbook(build_key_workbook(units_columns=units))
        _migrate(kw, plan)
        assert ("B6", "'Units'!$C$2:$C$6") in kw.list_validations(LOCATION_TAB)


# -----------------------------------------------------------------------------
# 6) Label correction
# -----------------------------------------------------------------------------

class TestLabelCorrection:
    def test_carbon_descriptions_clarified(self, key_wb, plan):
        _migrate(key_wb, plan)
        var_long = key_wb.read_tab(PROFILE_TAB)["Var_long"].tolist()
        assert var_long[8] == "Bulk Layer Total Carbon, not acid treated to remove inorganic C"
        assert var_long[9] == (
            "Bulk Layer Organic Carbon (CN analyzer) concentration, "
            "inorganic C removed or not present"
        )

    def test_only_first_match_corrected(self, plan):
        rows = PROFILE_ROWS + [("x", "percent", "Bulk Layer Total Carbon stock", "c_stock", "layer")]
        kw = KeyWorkbook(build_key_workbook(profile_rows=rows))
        report = _migrate(kw, plan)
        var_long = kw.read_tab(PROFILE_TAB)["Var_long"].tolist()
        assert var_long[-1] == "Bulk Layer Total Carbon stock"
        assert any("only the first" in w for w in report.warnings)

    def test_case_sensitive(self, plan):
        rows = [
            (r[0], r[1], r[2].lower(), r[3], r[4]) if r[3] == "c_tot" else r
            for r in PROFILE_ROWS
        ]
        kw = KeyWorkbook(build_key_workbook(profile_rows=rows))
        _migrate(kw, plan)
        assert "bulk layer total carbon" in kw.read_tab(PROFILE_TAB)["Var_long"].tolist()


# -----------------------------------------------------------------------------
# 7-8) Duplicate names and the uniqueness post-condition
# -----------------------------------------------------------------------------

class TestUniqueVars:
    def test_vars_unique_after_migration(self, key_wb, plan):
        _migrate(key_wb, plan)
        assert duplicate_vars(key_wb.read_tab(LOCATION_TAB)) == []
        assert duplicate_vars(key_wb.read_tab(PROFILE_TAB)) == []

    def test_total_soil_carbon_layer_renamed(self, key_wb, plan):
        renames = rename_tables(
            location=[("Mean annual temperature range", "mat_range")],
            profile=[("Total Soil Carbon", "layer", "soc_tot")],
        )
        _migrate(key_wb, plan, renames=renames)
        profile = key_wb.read_tab(PROFILE_TAB)
        assert profile["var"].tolist().count("soc_tot") == 1
        pair = profile[(profile["Var_long"] == "Total Soil Carbon") & (profile["Level"] == "layer")]
        assert pair["var"].tolist() == ["soc_tot"]

    def test_remaining_duplicates_reported_for_both_tabs(self, key_wb, plan):
        with pytest.raises(DuplicateVarError) as exc:
            _migrate(key_wb, plan, renames=rename_tables())
        assert exc.value.duplicates == {LOCATION_TAB: ["mat"], PROFILE_TAB: ["soc"]}
        assert "mat" in str(exc.value) and "soc" in str(exc.value)

    def test_all_duplicate_names_listed(self):
        frame = pd.DataFrame({"var": ["a", "b", "a", "c", "b", None, None]})
        assert duplicate_vars(frame) == ["a", "b"]


# -----------------------------------------------------------------------------
# 9) modification_date normalization
# -----------------------------------------------------------------------------

class TestModificationDate:
    def _date_value(self, kw):
        frame = kw.read_tab(LOCATION_TAB)
        return frame[frame["var"] == "modification_date"]["Value"].iloc[0]

    def test_serial_date_converted(self, key_wb, plan):
        report = _migrate(key_wb, plan)
        assert self._date_value(key_wb) == "2020-01-01"
        assert report.converted_dates[0]["from"] == 43831

    def test_malformed_date_passes_through(self, plan, capsys):
        rows = [
            ("sometime in 2019", r[1], r[2], r[3], r[4]) if r[3] == "modification_date" else r
            for r in LOCATION_ROWS
        ]
        kw = KeyWorkbook(build_key_workbook(location_rows=rows))
        report = _migrate(kw, plan)
        assert self._date_value(kw) == "sometime in 2019"
        assert report.converted_dates == []
        assert "modification_date" in capsys.readouterr().out

    def test_iso_date_left_alone(self, plan):
        rows = [
            ("2018-05-01", r[1], r[2], r[3], r[4]) if r[3] == "modification_date" else r
            for r in LOCATION_ROWS
        ]
        kw = KeyWorkbook(build_key_workbook(location_rows=rows))
        report = _migrate(kw, plan)
        assert self._date_value(kw) == "2018-05-01"
        assert report.warnings == []


# -----------------------------------------------------------------------------
# 10) Fonts
# -----------------------------------------------------------------------------

class TestFonts:
    def test_every_tab_styled_to_current_extent(self, key_wb, plan):
        _migrate(key_wb, plan)
        for tab in (LOCATION_TAB, PROFILE_TAB, UNITS_TAB):
            ws = key_wb.worksheet(tab)
            nrows = key_wb.current_row_count(tab) + 1
            ncols = key_wb.current_column_count(tab)
            header = ws.cell(row=1, column=ncols).font
            body = ws.cell(row=nrows, column=ncols).font
            assert (header.name, header.sz, bool(header.b)) == ("Arial", 10, True)
            assert (body.name, body.sz, bool(body.b)) == ("Arial", 10, False)


# -----------------------------------------------------------------------------
# Report
# -----------------------------------------------------------------------------

def test_summary_lists_inserted_fields(key_wb, plan):
    report = _migrate(key_wb, plan)
    text = report.summary()
    assert "key_version" in text
    assert "Validations bound: 6" in text


def test_default_config_file_exists():
    assert os.path.isfile(DEFAULT_VERSION_CONFIG)
