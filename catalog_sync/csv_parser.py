"""Delimiter-separated product sheets.

Two historical layouts are accepted and detected per row:

* wide: one row per product, ``sizes``/``colors``/``images`` hold JSON arrays;
* narrow: one row per (product, size, color), with singular ``size``,
  ``color``, ``image_url`` and an optional ``discount_price``.

Rows with fewer than ``MIN_FIELDS`` values are skipped without an error. Rows
that fail array decoding or numeric parsing are dropped and reported through
``CatalogCsvReader.errors``.
"""

from __future__ import annotations

import json
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Iterator

from catalog_sync.schemas import ParsedProductRow, RowError

logger = logging.getLogger(__name__)

MIN_FIELDS = 7
DEFAULT_SIZES = ["One Size"]
DEFAULT_COLORS = ["Default"]

_EDGE_QUOTE = re.compile(r'^"|"$')


class RowParseError(ValueError):
    pass


def detect_delimiter(text: str) -> str:
    first_line = text.strip().split("\n", 1)[0]
    return ";" if ";" in first_line else ","


def split_line(line: str, delimiter: str) -> list[str]:
    """Split one line, ignoring delimiters between double quotes.

    Quote characters are kept in the values; unescaping happens per field.
    """
    values: list[str] = []
    current: list[str] = []
    in_quotes = False
    for char in line:
        if char == '"':
            in_quotes = not in_quotes
            current.append(char)
        elif char == delimiter and not in_quotes:
            values.append("".join(current).strip())
            current = []
        else:
            current.append(char)
    values.append("".join(current).strip())
    return values


def unquote(value: str) -> str:
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        value = value[1:-1]
    return value.replace('""', '"')


def decode_array(raw: str, *, field: str) -> list[str]:
    cleaned = _EDGE_QUOTE.sub("", raw.replace('""""', '"')).replace('""', '"')
    try:
        decoded = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise RowParseError(f"{field} is not a JSON array: {raw!r}") from exc
    if not isinstance(decoded, list):
        raise RowParseError(f"{field} must be a JSON array, got {type(decoded).__name__}")
    return [str(item) for item in decoded]


def parse_decimal(raw: str, *, field: str) -> Decimal:
    try:
        value = Decimal(raw.strip())
    except (InvalidOperation, AttributeError) as exc:
        raise RowParseError(f"{field} is not a number: {raw!r}") from exc
    if not value.is_finite():
        raise RowParseError(f"{field} is not a finite number: {raw!r}")
    return value


def parse_stock(raw: str) -> int:
    try:
        value = int(Decimal(raw.strip()))
    except (InvalidOperation, ValueError, OverflowError):
        return 0
    if value < 0:
        raise RowParseError(f"stock must not be negative: {raw!r}")
    return value


def iter_records(text: str) -> Iterator[tuple[int, dict[str, str]]]:
    """Yield ``(line_number, header -> value)`` for every usable data line."""
    stripped = text.strip()
    if not stripped:
        return
    delimiter = detect_delimiter(stripped)
    lines = stripped.split("\n")
    headers = [unquote(header) for header in split_line(lines[0].strip(), delimiter)]

    for line_number, raw_line in enumerate(lines[1:], start=2):
        line = raw_line.strip()
        if not line:
            continue
        values = split_line(line, delimiter)
        if len(values) < MIN_FIELDS:
            logger.debug("Skipping short CSV row", extra={"line_number": line_number, "fields": len(values)})
            continue
        yield line_number, {
            header: values[index] if index < len(values) else "" for index, header in enumerate(headers)
        }


def parse_record(line_number: int, record: dict[str, str]) -> ParsedProductRow:
    text = {key: unquote(value) for key, value in record.items()}

    name = text.get("name", "").strip()
    if not name:
        raise RowParseError("name is required")

    discount = Decimal("0")
    if text.get("color") and text.get("size") and text.get("image_url"):
        schema_kind = "narrow"
        sizes = [text["size"]]
        colors = [text["color"]]
        images = [text["image_url"]]
        if text.get("discount_price"):
            discount = parse_decimal(text["discount_price"], field="discount_price")
            if discount < 0 or discount > 100:
                raise RowParseError(f"discount_price must be between 0 and 100: {text['discount_price']!r}")
    else:
        schema_kind = "wide"
        sizes = decode_array(record["sizes"], field="sizes") if text.get("sizes") else list(DEFAULT_SIZES)
        colors = decode_array(record["colors"], field="colors") if text.get("colors") else list(DEFAULT_COLORS)
        images = decode_array(record["images"], field="images") if text.get("images") else []

    price_raw = text.get("price", "")
    price = parse_decimal(price_raw, field="price")
    if price < 0:
        raise RowParseError(f"price must not be negative: {price_raw!r}")

    return ParsedProductRow(
        line_number=line_number,
        schema_kind=schema_kind,
        name=name,
        description=text.get("description", ""),
        price=price,
        discount=discount,
        category=text.get("category", ""),
        sizes=sizes,
        colors=colors,
        images=images,
        featured=text.get("featured", "").strip().lower() == "true",
        stock=parse_stock(text.get("stock", "")),
    )


class CatalogCsvReader:
    """Lazy, restartable iteration over the product rows of a CSV document.

    Each pass over the reader re-parses the text from the start and resets
    ``errors`` so the same input always yields the same rows and errors.
    """

    def __init__(self, text: str) -> None:
        self._text = text
        self.errors: list[RowError] = []

    def __iter__(self) -> Iterator[ParsedProductRow]:
        self.errors = []
        for line_number, record in iter_records(self._text):
            try:
                row = parse_record(line_number, record)
            except RowParseError as exc:
                name = unquote(record.get("name", "")).strip() or None
                logger.warning(
                    "Dropping unparsable CSV row",
                    extra={"line_number": line_number, "product_name": name, "error": str(exc)},
                )
                self.errors.append(RowError(line_number=line_number, name=name, message=str(exc)))
                continue
            yield row


def parse_catalog_csv(text: str) -> tuple[list[ParsedProductRow], list[RowError]]:
    reader = CatalogCsvReader(text)
    rows = list(reader)
    return rows, reader.errors
