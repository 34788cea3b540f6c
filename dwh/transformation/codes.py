"""
Source Code Lookups

Fixed enumerations for the conformed attributes and the mappings from the
raw CRM/ERP codes onto them. Every mapping is expressed as a polars
expression so it can run inside the cleansing and conformance selects.
"""

from enum import Enum
from typing import Dict, List

import polars as pl

UNKNOWN = "Unknown"


class MaritalStatus(str, Enum):
    MARRIED = "Married"
    SINGLE = "Single"
    UNKNOWN = UNKNOWN


class Gender(str, Enum):
    MALE = "Male"
    FEMALE = "Female"
    UNKNOWN = UNKNOWN


class ProductLine(str, Enum):
    MOUNTAIN = "Mountain"
    ROAD = "Road"
    TOURING = "Touring"
    OTHER = "Other"
    UNKNOWN = UNKNOWN


def enum_values(enum_cls) -> List[str]:
    """Allowed values of an enumeration, in declaration order"""
    return [member.value for member in enum_cls]


MARITAL_STATUS_CODES: Dict[str, str] = {
    "M": MaritalStatus.MARRIED.value,
    "S": MaritalStatus.SINGLE.value,
}

CRM_GENDER_CODES: Dict[str, str] = {
    "M": Gender.MALE.value,
    "F": Gender.FEMALE.value,
}

# The ERP spells gender out as often as it abbreviates it
ERP_GENDER_CODES: Dict[str, str] = {
    "M": Gender.MALE.value,
    "MALE": Gender.MALE.value,
    "F": Gender.FEMALE.value,
    "FEMALE": Gender.FEMALE.value,
}

PRODUCT_LINE_CODES: Dict[str, str] = {
    "M": ProductLine.MOUNTAIN.value,
    "R": ProductLine.ROAD.value,
    "T": ProductLine.TOURING.value,
    "S": ProductLine.OTHER.value,
}

COUNTRY_CODES: Dict[str, str] = {
    "DE": "Germany",
    "US": "United States",
    "USA": "United States",
}

# Legacy prefix some ERP customer ids still carry
ERP_KEY_PREFIX = "NAS"


def map_codes(expr: pl.Expr, mapping: Dict[str, str], default: str = UNKNOWN) -> pl.Expr:
    """
    Map a raw code column onto an enumeration.

    Codes are trimmed and upper-cased before lookup; anything unmapped,
    blank or null becomes ``default``.
    """
    code = expr.cast(pl.Utf8).str.strip_chars().str.to_uppercase()
    mapped = pl.lit(default, dtype=pl.Utf8)
    for raw, value in mapping.items():
        mapped = pl.when(code == raw).then(pl.lit(value, dtype=pl.Utf8)).otherwise(mapped)
    return mapped


def map_country(expr: pl.Expr) -> pl.Expr:
    """ERP country codes to country names; unmapped values pass through trimmed"""
    trimmed = expr.cast(pl.Utf8).str.strip_chars()
    code = trimmed.str.to_uppercase()
    mapped = (
        pl.when(trimmed.is_null() | (trimmed == ""))
        .then(pl.lit(UNKNOWN, dtype=pl.Utf8))
        .otherwise(trimmed)
    )
    for raw, value in COUNTRY_CODES.items():
        mapped = pl.when(code == raw).then(pl.lit(value, dtype=pl.Utf8)).otherwise(mapped)
    return mapped


def normalize_business_key(expr: pl.Expr) -> pl.Expr:
    """Trim and upper-case a business key; blank keys become null"""
    key = expr.cast(pl.Utf8).str.strip_chars().str.to_uppercase()
    return pl.when(key == "").then(None).otherwise(key)


def normalize_erp_customer_key(expr: pl.Expr) -> pl.Expr:
    """
    Bring an ERP customer id in line with the CRM customer number.

    ``NASAW00011000`` and ``AW-00011000`` both become ``AW00011000``.
    """
    key = normalize_business_key(expr).str.replace_all(r"[^A-Z0-9]", "")
    key = (
        pl.when(key.str.starts_with(ERP_KEY_PREFIX))
        .then(key.str.slice(len(ERP_KEY_PREFIX)))
        .otherwise(key)
    )
    return pl.when(key == "").then(None).otherwise(key)
