"""
Parse-with-fallback Helpers

Raw extracts are loosely typed. Instead of letting a bad field fail a whole
batch, every parser returns a ``Parsed`` pair: the typed value (null when
the raw value could not be parsed) and a reason (null when the raw value was
fine or simply absent). Cleansers collect the reasons into each row's
``quality_flags`` column so every substituted default stays auditable.
"""

from dataclasses import dataclass
from typing import List, Optional

import polars as pl

FLAGS_COLUMN = "quality_flags"

COMPACT_DATE_PATTERN = r"^\d{8}$"
ISO_DATE_FORMAT = "%Y-%m-%d"


@dataclass(frozen=True)
class Parsed:
    """A parsed column: typed value plus the reason it was defaulted"""
    value: pl.Expr
    reason: pl.Expr

    def with_default(self, default, reason: str) -> "Parsed":
        """Replace nulls with ``default``, tagging rows whose value was absent or unparsable"""
        return Parsed(
            value=self.value.fill_null(default),
            reason=pl.when(self.value.is_null())
            .then(self.reason.fill_null(pl.lit(reason)))
            .otherwise(self.reason),
        )


def blank_to_null(expr: pl.Expr) -> pl.Expr:
    """Trim a string column and turn empty strings into nulls"""
    trimmed = expr.cast(pl.Utf8).str.strip_chars()
    return pl.when(trimmed == "").then(None).otherwise(trimmed)


def _reason(raw: pl.Expr, value: pl.Expr, label: str) -> pl.Expr:
    # present in the extract but lost in parsing
    return (
        pl.when(raw.is_not_null() & value.is_null())
        .then(pl.lit(label, dtype=pl.Utf8))
        .otherwise(pl.lit(None, dtype=pl.Utf8))
    )


def parse_int(column: str, flag: Optional[str] = None) -> Parsed:
    """Parse a whole number; decimals and free text are malformed"""
    raw = blank_to_null(pl.col(column))
    value = raw.cast(pl.Int64, strict=False)
    return Parsed(value, _reason(raw, value, flag or f"malformed_{column}"))


def parse_compact_date(column: str, flag: Optional[str] = None) -> Parsed:
    """
    Parse an 8-digit ``YYYYMMDD`` integer date.

    ``0``, values of the wrong length and impossible calendar dates
    (``20101341``) all become null.
    """
    raw = blank_to_null(pl.col(column))
    well_formed = raw.str.contains(COMPACT_DATE_PATTERN)
    value = (
        pl.when(well_formed)
        .then(raw.str.strptime(pl.Date, "%Y%m%d", strict=False))
        .otherwise(pl.lit(None, dtype=pl.Date))
    )
    return Parsed(value, _reason(raw, value, flag or f"malformed_{column}"))


def parse_iso_date(column: str, flag: Optional[str] = None) -> Parsed:
    """Parse a ``YYYY-MM-DD`` date, ignoring any time component"""
    raw = blank_to_null(pl.col(column))
    value = raw.str.slice(0, 10).str.strptime(pl.Date, ISO_DATE_FORMAT, strict=False)
    return Parsed(value, _reason(raw, value, flag or f"malformed_{column}"))


def collect_flags(reasons: List[pl.Expr]) -> pl.Expr:
    """Gather the non-null reasons of a row into a list column"""
    return (
        pl.concat_list([r.cast(pl.Utf8) for r in reasons])
        .list.drop_nulls()
        .alias(FLAGS_COLUMN)
    )
