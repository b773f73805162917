"""Keep-info input parsing and the tabular refunds report."""

from __future__ import annotations

import csv
import io
from typing import Any, Iterable

from keeprefund.pipeline.row import KeepRow

KEEP_COLUMN = "keep"


class InputError(Exception):
    """The keep-info table cannot be used."""
    pass


def normalize_header(header: str) -> str:
    """`" Keep "` -> `keep`, `"Bitcoin Address"` -> `bitcoinAddress`.

    The `keep` column matches in any capitalization (`KEEP`, `K eep`).
    """
    unspaced = header.strip().replace(" ", "")
    if unspaced.lower() == KEEP_COLUMN:
        return KEEP_COLUMN
    return unspaced[:1].lower() + unspaced[1:]


def parse_keep_table(text: str) -> list[dict[str, str]]:
    """Rows of a CSV with a header, keyed by normalized column name.

    Raises:
        InputError: malformed CSV, or no `keep` column.
    """
    try:
        reader = csv.DictReader(io.StringIO(text))
        if reader.fieldnames is None:
            raise InputError("keep-info table is empty")
        reader.fieldnames = [normalize_header(h) for h in reader.fieldnames]
        if KEEP_COLUMN not in reader.fieldnames:
            raise InputError(f"keep-info table has no `{KEEP_COLUMN}` column (got {reader.fieldnames})")
        return list(reader)
    except csv.Error as e:
        raise InputError(f"keep-info table could not be parsed: {e}") from e


def keep_ids(rows: Iterable[dict[str, Any]]) -> list[str]:
    return [row.get(KEEP_COLUMN) or "" for row in rows]


def field_union(records: Iterable[dict[str, Any]]) -> list[str]:
    """All field names across records, in first-seen order."""
    columns: dict[str, None] = {}
    for record in records:
        for key in record:
            columns.setdefault(key, None)
    return list(columns)


def tabulate(rows: Iterable[KeepRow]) -> tuple[list[str], list[list[str]]]:
    """Header and blank-filled value rows."""
    records = [row.to_record() for row in rows]
    columns = field_union(records)
    values = [
        ["" if record.get(column) is None else str(record[column]) for column in columns]
        for record in records
    ]
    return columns, values


def render_csv(rows: Iterable[KeepRow]) -> str:
    columns, values = tabulate(rows)
    out = io.StringIO()
    writer = csv.writer(out, lineterminator="\n")
    writer.writerow(columns)
    writer.writerows(values)
    return out.getvalue()
