import re

from key_errors import AmbiguousColumnError, ColumnNotFoundError

COLUMN_POLICIES = {"first", "unique"}


def column_letter(index: int) -> str:
    """
    Converts a 1-based column index to its spreadsheet letter.
    1 -> 'A', 26 -> 'Z', 27 -> 'AA', 703 -> 'AAA'
    Uses bijective base-26 (digits 1..26), so there is no zero digit.
    """
    if index < 1:
        raise ValueError(f"column index must be >= 1, got {index}")
    letters = []
    n = index
    while n > 0:
        n, rem = divmod(n - 1, 26)
        letters.append(chr(ord("A") + rem))
    return "".join(reversed(letters))


def column_letters(count: int) -> list[str]:
    """Return the first `count` spreadsheet column letters in order."""
    return [column_letter(i) for i in range(1, count + 1)]


def matching_columns(header_names: list, pattern: str) -> list[int]:
    """0-based positions of every header the regex `pattern` finds a match in."""
    rx = re.compile(pattern)
    return [
        i for i, name in enumerate(header_names)
        if name is not None and rx.search(str(name))
    ]


def locate_index(header_names: list, pattern: str, policy: str = "first") -> int:
    """
    Return the 1-based column position of the header matching `pattern`.

    policy:
      - "first":  take the first match, even when several headers match
      - "unique": raise AmbiguousColumnError when several headers match
    """
    if policy not in COLUMN_POLICIES:
        raise ValueError(f"unknown column policy {policy!r}; expected one of {sorted(COLUMN_POLICIES)}")
    headers = [str(h) if h is not None else "" for h in header_names]
    hits = matching_columns(headers, pattern)
    if not hits:
        raise ColumnNotFoundError(pattern, headers)
    if len(hits) > 1:
        if policy == "unique":
            raise AmbiguousColumnError(pattern, [headers[i] for i in hits])
        print(
            f"[WARN] Column pattern {pattern!r} matches {len(hits)} headers "
            f"{[headers[i] for i in hits]}; using the first."
        )
    return hits[0] + 1


def locate(header_names: list, pattern: str, policy: str = "first") -> str:
    """Spreadsheet column letter (e.g. 'D', 'AB') of the header matching `pattern`."""
    letters = column_letters(len(header_names))
    return letters[locate_index(header_names, pattern, policy) - 1]
