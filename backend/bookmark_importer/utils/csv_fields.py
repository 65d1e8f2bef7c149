"""Small CSV reader/writer for bookmark exports.

Export files from read-later services are loosely quoted, so this is a plain
state machine rather than the csv module: ``""`` inside a quoted field is a
literal quote, commas split fields, and while a quote is open neither commas
nor line breaks end the field.
"""

from __future__ import annotations

from typing import Iterable

DELIMITER = ","
QUOTE = '"'
BOM = "\ufeff"


def parse_csv_rows(text: str) -> list[list[str]]:
    """Split ``text`` into rows of trimmed fields, skipping blank lines."""
    rows: list[list[str]] = []
    row: list[str] = []
    field: list[str] = []
    in_quotes = False
    saw_content = False
    i = 0
    length = len(text)

    def end_field() -> None:
        row.append("".join(field).strip())
        field.clear()

    def end_row() -> None:
        nonlocal row, saw_content
        end_field()
        if saw_content:
            rows.append(row)
        row = []
        saw_content = False

    while i < length:
        char = text[i]

        if in_quotes:
            if char == QUOTE:
                if i + 1 < length and text[i + 1] == QUOTE:
                    field.append(QUOTE)
                    i += 2
                    continue
                in_quotes = False
            else:
                field.append(char)
            i += 1
            continue

        if char == QUOTE:
            in_quotes = True
            saw_content = True
        elif char == DELIMITER:
            end_field()
            saw_content = True
        elif char == "\r" or char == "\n":
            if char == "\r" and i + 1 < length and text[i + 1] == "\n":
                i += 1
            end_row()
        else:
            field.append(char)
            if not char.isspace():
                saw_content = True
        i += 1

    if field or row or saw_content:
        end_row()

    return rows


def csv_to_records(text: str) -> list[dict[str, str]]:
    """Map each data row to a dict keyed by the lower-cased header names.

    Missing trailing fields come back as empty strings.
    """
    rows = parse_csv_rows(text.lstrip(BOM))
    if len(rows) < 2:
        return []

    headers = [header.lower() for header in rows[0]]
    records = []
    for values in rows[1:]:
        records.append(
            {header: values[i] if i < len(values) else "" for i, header in enumerate(headers)}
        )
    return records


def header_columns(text: str) -> set[str]:
    """Return the lower-cased column names of the first row, or an empty set."""
    rows = parse_csv_rows(first_line(text.lstrip(BOM)))
    if not rows:
        return set()
    return {column.lower() for column in rows[0]}


def first_line(text: str) -> str:
    return text.splitlines()[0] if text else ""


def format_csv_row(values: Iterable[str | None]) -> str:
    """Render one row, quoting any field that would otherwise be misread."""
    out = []
    for value in values:
        value = "" if value is None else str(value)
        if any(ch in value for ch in (DELIMITER, QUOTE, "\n", "\r")):
            value = QUOTE + value.replace(QUOTE, QUOTE * 2) + QUOTE
        out.append(value)
    return DELIMITER.join(out)
