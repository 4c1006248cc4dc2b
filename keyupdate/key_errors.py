"""
Error types raised by the key file migration.

All of them derive from KeyUpdateError so the CLI can turn any migration
failure into a single `[ERROR]` line and a non-zero exit status.
"""


class KeyUpdateError(ValueError):
    """Base class for failures that abort a key file migration."""


class AlreadyMigratedError(KeyUpdateError):
    def __init__(self, version, present_fields: list[str]):
        self.version = version
        self.present_fields = list(present_fields)
        super().__init__(
            f"the key file already carries the version {version} fields "
            f"({', '.join(self.present_fields)}); it seems to be at or above version {version}"
        )


class ColumnNotFoundError(KeyUpdateError):
    def __init__(self, pattern: str, headers: list[str]):
        self.pattern = pattern
        self.headers = list(headers)
        super().__init__(f"no column header matches {pattern!r}; headers: {self.headers}")


class AmbiguousColumnError(KeyUpdateError):
    def __init__(self, pattern: str, matches: list[str]):
        self.pattern = pattern
        self.matches = list(matches)
        super().__init__(f"column pattern {pattern!r} matches more than one header: {self.matches}")


class AmbiguousRenameTargetError(KeyUpdateError):
    def __init__(self, tab: str, search_term: str, pattern_rows: list[int], exact_rows: list[int]):
        self.tab = tab
        self.search_term = search_term
        self.pattern_rows = list(pattern_rows)
        self.exact_rows = list(exact_rows)
        super().__init__(
            f"cannot pick a unique row in {tab!r} for {search_term!r} "
            f"(pattern matches at sheet rows {[r + 2 for r in self.pattern_rows]}, "
            f"exact matches at sheet rows {[r + 2 for r in self.exact_rows]})"
        )


class DuplicateVarError(KeyUpdateError):
    def __init__(self, duplicates: dict[str, list[str]]):
        self.duplicates = {tab: list(names) for tab, names in duplicates.items()}
        detail = "; ".join(f"{tab}: {', '.join(names)}" for tab, names in self.duplicates.items())
        super().__init__(f"key update failed, there are still duplicate vars ({detail})")


class ValidationRangeError(KeyUpdateError):
    def __init__(self, rule_label: str, first_row=None, last_row=None, detail: str = ""):
        self.rule_label = rule_label
        self.first_row = first_row
        self.last_row = last_row
        reason = detail or f"rows {first_row}..{last_row}"
        super().__init__(
            f"validation {rule_label!r} resolves to an empty or inverted row range "
            f"({reason}); check the key file and the version config"
        )
