"""
Data Cleaning Module

Bronze -> Silver cleansing for the six CRM/ERP source entities.
Handles:
- Whitespace trimming and blank-to-null normalization
- Source code mapping onto fixed enumerations
- Parse-with-fallback typing of dates and amounts
- Deduplication of customer versions
- Product history end-date derivation
- Sales amount / quantity / price reconciliation

Every cleanser is pure: the same raw frame always produces the same
clean and rejected frames.
"""

from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, List, Mapping, Optional, Tuple

import polars as pl
import structlog

from dwh.errors import StructuralFailure
from .codes import (
    CRM_GENDER_CODES,
    ERP_GENDER_CODES,
    MARITAL_STATUS_CODES,
    PRODUCT_LINE_CODES,
    map_codes,
    map_country,
    normalize_erp_customer_key,
)
from .parsing import (
    FLAGS_COLUMN,
    Parsed,
    blank_to_null,
    collect_flags,
    parse_compact_date,
    parse_int,
    parse_iso_date,
)

logger = structlog.get_logger(__name__)

REJECT_REASON_COLUMN = "reject_reason"
ROW_INDEX_COLUMN = "_row"

PRODUCT_KEY_SEPARATOR = "-"
CATEGORY_SEGMENTS = 2


@dataclass(frozen=True)
class SourceEntity:
    """A raw source table and the columns cleansing cannot do without"""
    name: str
    system: str
    required_columns: Tuple[str, ...]


SOURCE_ENTITIES: Dict[str, SourceEntity] = {
    entity.name: entity
    for entity in [
        SourceEntity(
            "crm_cust_info", "crm",
            ("cst_id", "cst_key", "cst_firstname", "cst_lastname",
             "cst_marital_status", "cst_gndr", "cst_create_date"),
        ),
        SourceEntity(
            "crm_prd_info", "crm",
            ("prd_id", "prd_key", "prd_nm", "prd_cost", "prd_line", "prd_start_dt"),
        ),
        SourceEntity(
            "crm_sales_details", "crm",
            ("sls_ord_num", "sls_prd_key", "sls_cust_id", "sls_order_dt", "sls_ship_dt",
             "sls_due_dt", "sls_sales", "sls_quantity", "sls_price"),
        ),
        SourceEntity("erp_cust_az12", "erp", ("CID", "BDATE", "GEN")),
        SourceEntity("erp_loc_a101", "erp", ("CID", "CNTRY")),
        SourceEntity("erp_px_cat_g1v2", "erp", ("ID", "CAT", "SUBCAT", "MAINTENANCE")),
    ]
}


def validate_structure(batch: Mapping[str, pl.DataFrame]) -> None:
    """
    Check that every source entity is present with all required columns.

    Raises:
        StructuralFailure: naming each entity and the columns it lacks
    """
    missing: Dict[str, List[str]] = {}
    for name, entity in SOURCE_ENTITIES.items():
        frame = batch.get(name)
        if frame is None:
            missing[name] = list(entity.required_columns)
            continue
        absent = [c for c in entity.required_columns if c not in frame.columns]
        if absent:
            missing[name] = absent

    if missing:
        logger.error("Raw batch failed structural check", missing=missing)
        raise StructuralFailure(missing)


def _split_rejected(
    df: pl.DataFrame,
    required: Dict[str, str],
) -> Tuple[pl.DataFrame, pl.DataFrame]:
    """Drop rows whose required column is null, tagging them with the reason"""
    reason = pl.lit(None, dtype=pl.Utf8)
    for column, label in reversed(list(required.items())):
        reason = pl.when(pl.col(column).is_null()).then(pl.lit(label)).otherwise(reason)

    tagged = df.with_columns(reason.alias(REJECT_REASON_COLUMN))
    clean = tagged.filter(pl.col(REJECT_REASON_COLUMN).is_null()).drop(REJECT_REASON_COLUMN)
    rejected = tagged.filter(pl.col(REJECT_REASON_COLUMN).is_not_null())
    return clean, rejected


def _empty_rejected(clean: pl.DataFrame) -> pl.DataFrame:
    return clean.clear().with_columns(pl.lit(None, dtype=pl.Utf8).alias(REJECT_REASON_COLUMN))


def clean_customers(raw: pl.DataFrame) -> Tuple[pl.DataFrame, pl.DataFrame]:
    """
    Cleanse CRM customers.

    Duplicate customer ids keep the row with the latest create_date. Among
    rows sharing that date the first one in input order wins; the choice is
    arbitrary but deterministic.
    """
    customer_id = parse_int("cst_id", flag="malformed_customer_id")
    create_date = parse_iso_date("cst_create_date", flag="malformed_create_date")

    df = raw.with_row_index(ROW_INDEX_COLUMN).select(
        pl.col(ROW_INDEX_COLUMN),
        customer_id.value.alias("customer_id"),
        blank_to_null(pl.col("cst_key")).alias("customer_number"),
        blank_to_null(pl.col("cst_firstname")).alias("first_name"),
        blank_to_null(pl.col("cst_lastname")).alias("last_name"),
        map_codes(pl.col("cst_marital_status"), MARITAL_STATUS_CODES).alias("marital_status"),
        map_codes(pl.col("cst_gndr"), CRM_GENDER_CODES).alias("gender"),
        create_date.value.alias("create_date"),
        collect_flags([customer_id.reason, create_date.reason]),
    )

    df, rejected = _split_rejected(df, {
        "customer_id": "missing_customer_id",
        "customer_number": "missing_customer_number",
    })

    # Latest version first, input order breaking ties
    ranked = df.sort(
        ["customer_id", "create_date", ROW_INDEX_COLUMN],
        descending=[False, True, False],
        nulls_last=True,
        maintain_order=True,
    ).with_columns(pl.col("customer_id").is_first_distinct().alias("_latest"))

    clean = (
        ranked.filter(pl.col("_latest"))
        .sort(ROW_INDEX_COLUMN)
        .drop("_latest")
    )
    superseded = (
        ranked.filter(~pl.col("_latest"))
        .sort(ROW_INDEX_COLUMN)
        .drop("_latest")
        .with_columns(pl.lit("superseded").alias(REJECT_REASON_COLUMN))
    )

    rejected = pl.concat([rejected, superseded]).sort(ROW_INDEX_COLUMN)
    return clean.drop(ROW_INDEX_COLUMN), rejected.drop(ROW_INDEX_COLUMN)


def _split_product_key(column: str) -> Tuple[pl.Expr, pl.Expr, pl.Expr]:
    """category_id, product_number and malformed flag from a raw product key"""
    parts = blank_to_null(pl.col(column)).str.split(PRODUCT_KEY_SEPARATOR)
    well_formed = parts.list.len() > CATEGORY_SEGMENTS

    category_id = (
        pl.when(well_formed)
        .then(parts.list.slice(0, CATEGORY_SEGMENTS).list.join("_"))
        .otherwise(pl.lit(None, dtype=pl.Utf8))
    )
    product_number = (
        pl.when(well_formed)
        .then(parts.list.slice(CATEGORY_SEGMENTS).list.join(PRODUCT_KEY_SEPARATOR))
        .otherwise(blank_to_null(pl.col(column)))
    )
    flag = (
        pl.when(parts.is_not_null() & ~well_formed)
        .then(pl.lit("malformed_product_key"))
        .otherwise(pl.lit(None, dtype=pl.Utf8))
    )
    return category_id, product_number, flag


def clean_products(raw: pl.DataFrame) -> Tuple[pl.DataFrame, pl.DataFrame]:
    """
    Cleanse CRM products, keeping every historical version.

    end_date is the day before the next version's start_date for the same
    product_number; the latest version's end_date stays null. Versions
    sharing a start_date are ordered by input row, so every one but the last
    ends the day before it starts; the silver gate reports those rows as
    ``end_before_start``.

    Missing, malformed and negative costs default to 0, each with its own
    flag.
    """
    category_id, product_number, key_flag = _split_product_key("prd_key")
    product_id = parse_int("prd_id", flag="malformed_product_id")
    raw_cost = parse_int("prd_cost", flag="malformed_cost")
    negative = raw_cost.value < 0
    cost = Parsed(
        value=pl.when(negative).then(None).otherwise(raw_cost.value),
        reason=pl.when(negative).then(pl.lit("negative_cost")).otherwise(raw_cost.reason),
    ).with_default(0, "missing_cost")
    start_date = parse_iso_date("prd_start_dt", flag="malformed_start_date")

    df = raw.with_row_index(ROW_INDEX_COLUMN).select(
        pl.col(ROW_INDEX_COLUMN),
        product_id.value.alias("product_id"),
        product_number.alias("product_number"),
        category_id.alias("category_id"),
        blank_to_null(pl.col("prd_nm")).alias("product_name"),
        cost.value.alias("cost"),
        map_codes(pl.col("prd_line"), PRODUCT_LINE_CODES).alias("product_line"),
        start_date.value.alias("start_date"),
        collect_flags([key_flag, product_id.reason, cost.reason, start_date.reason]),
    )

    df, rejected = _split_rejected(df, {"product_number": "missing_product_number"})

    history = df.sort(
        ["product_number", "start_date", ROW_INDEX_COLUMN],
        nulls_last=True,
        maintain_order=True,
    ).with_columns(
        pl.col("start_date")
        .shift(-1)
        .over("product_number")
        .dt.offset_by("-1d")
        .alias("end_date")
    )

    clean = history.sort(ROW_INDEX_COLUMN).select(
        "product_id",
        "product_number",
        "category_id",
        "product_name",
        "cost",
        "product_line",
        "start_date",
        "end_date",
        FLAGS_COLUMN,
    )
    return clean, rejected.drop(ROW_INDEX_COLUMN)


def _is_valid_amount(expr: pl.Expr) -> pl.Expr:
    return expr.is_not_null() & (expr > 0)


def clean_sales(raw: pl.DataFrame) -> Tuple[pl.DataFrame, pl.DataFrame]:
    """
    Cleanse CRM sales lines.

    Amounts are reconciled through sales_amount = quantity * price. Only
    the one invalid (null, zero or negative) or inconsistent value is
    recomputed, and a price or quantity only when sales_amount divides by
    the other factor exactly. Otherwise the values are kept as they are and
    the row is flagged ``unrecoverable_amounts``, so every line with a
    positive quantity and price satisfies the identity. No sales line is
    ever rejected here.
    """
    order_date = parse_compact_date("sls_order_dt", flag="malformed_order_date")
    shipping_date = parse_compact_date("sls_ship_dt", flag="malformed_shipping_date")
    due_date = parse_compact_date("sls_due_dt", flag="malformed_due_date")
    sales = parse_int("sls_sales", flag="malformed_sales_amount")
    quantity = parse_int("sls_quantity", flag="malformed_quantity")
    price = parse_int("sls_price", flag="malformed_price")
    customer_id = parse_int("sls_cust_id", flag="malformed_customer_id")

    df = raw.select(
        blank_to_null(pl.col("sls_ord_num")).alias("order_number"),
        blank_to_null(pl.col("sls_prd_key")).alias("product_number"),
        customer_id.value.alias("customer_id"),
        order_date.value.alias("order_date"),
        shipping_date.value.alias("shipping_date"),
        due_date.value.alias("due_date"),
        sales.value.alias("sales_amount"),
        quantity.value.alias("quantity"),
        price.value.alias("price"),
        collect_flags([
            order_date.reason,
            shipping_date.reason,
            due_date.reason,
            sales.reason,
            quantity.reason,
            price.reason,
            customer_id.reason,
        ]),
    )

    s, q, p = pl.col("sales_amount"), pl.col("quantity"), pl.col("price")
    s_ok, q_ok, p_ok = _is_valid_amount(s), _is_valid_amount(q), _is_valid_amount(p)

    fix_sales = q_ok & p_ok & (~s_ok | (s != q * p))
    # a derived price or quantity must divide the amount exactly
    fix_price = s_ok & q_ok & ~p_ok & (s % q == 0)
    fix_quantity = s_ok & p_ok & ~q_ok & (s % p == 0)
    unrecoverable = ~(s_ok & q_ok & p_ok) & ~fix_sales & ~fix_price & ~fix_quantity

    df = df.with_columns(
        pl.when(fix_sales).then(q * p).otherwise(s).alias("sales_amount"),
        pl.when(fix_price).then(s // q).otherwise(p).alias("price"),
        pl.when(fix_quantity).then(s // p).otherwise(q).alias("quantity"),
        pl.concat_list([
            pl.col(FLAGS_COLUMN),
            pl.when(fix_sales).then(pl.lit("recomputed_sales_amount")),
            pl.when(fix_price).then(pl.lit("recomputed_price")),
            pl.when(fix_quantity).then(pl.lit("recomputed_quantity")),
            pl.when(unrecoverable).then(pl.lit("unrecoverable_amounts")),
        ]).list.drop_nulls().alias(FLAGS_COLUMN),
    )

    out_of_order = (
        (pl.col("order_date") > pl.col("shipping_date"))
        | (pl.col("order_date") > pl.col("due_date"))
    ).fill_null(False)
    df = df.with_columns(
        pl.concat_list([
            pl.col(FLAGS_COLUMN),
            pl.when(out_of_order).then(pl.lit("date_order")),
        ]).list.drop_nulls().alias(FLAGS_COLUMN),
    )

    return df, _empty_rejected(df)


def clean_erp_customers(raw: pl.DataFrame, as_of: date) -> Tuple[pl.DataFrame, pl.DataFrame]:
    """
    ERP demographics: normalized key, spelled-out gender and birthdates no
    later than ``as_of``. Later birthdates are nulled and flagged.
    """
    birthdate = parse_iso_date("BDATE", flag="malformed_birthdate")
    in_future = birthdate.value > pl.lit(as_of)

    df = raw.select(
        normalize_erp_customer_key(pl.col("CID")).alias("customer_number"),
        pl.when(in_future).then(None).otherwise(birthdate.value).alias("birthdate"),
        map_codes(pl.col("GEN"), ERP_GENDER_CODES).alias("gender"),
        collect_flags([
            pl.when(in_future).then(pl.lit("future_birthdate")).otherwise(birthdate.reason),
        ]),
    )
    return _split_rejected(df, {"customer_number": "missing_customer_number"})


def clean_erp_locations(raw: pl.DataFrame) -> Tuple[pl.DataFrame, pl.DataFrame]:
    df = raw.select(
        normalize_erp_customer_key(pl.col("CID")).alias("customer_number"),
        map_country(pl.col("CNTRY")).alias("country"),
        collect_flags([
            pl.when(blank_to_null(pl.col("CNTRY")).is_null()).then(pl.lit("missing_country")),
        ]),
    )
    return _split_rejected(df, {"customer_number": "missing_customer_number"})


def clean_erp_categories(raw: pl.DataFrame) -> Tuple[pl.DataFrame, pl.DataFrame]:
    df = raw.select(
        blank_to_null(pl.col("ID")).alias("category_id"),
        blank_to_null(pl.col("CAT")).alias("category"),
        blank_to_null(pl.col("SUBCAT")).alias("subcategory"),
        blank_to_null(pl.col("MAINTENANCE")).alias("maintenance"),
    )
    return _split_rejected(df, {"category_id": "missing_category_id"})


CLEANSERS: Dict[str, Callable[..., Tuple[pl.DataFrame, pl.DataFrame]]] = {
    "crm_cust_info": clean_customers,
    "crm_prd_info": clean_products,
    "crm_sales_details": clean_sales,
    "erp_cust_az12": clean_erp_customers,
    "erp_loc_a101": clean_erp_locations,
    "erp_px_cat_g1v2": clean_erp_categories,
}

# Cleansers that judge values against the run's reference date
DATED_ENTITIES = {"erp_cust_az12"}


def cleanse(
    entity_name: str,
    raw_rows: pl.DataFrame,
    as_of: Optional[date] = None,
) -> Tuple[pl.DataFrame, pl.DataFrame]:
    """
    Cleanse one raw entity.

    Args:
        entity_name: One of ``SOURCE_ENTITIES``
        raw_rows: Untyped raw frame for that entity
        as_of: Reference date for date plausibility checks (default: today)

    Returns:
        (clean_rows, rejected_rows)
    """
    cleanser = CLEANSERS.get(entity_name)
    if cleanser is None:
        raise ValueError(f"Unknown source entity: {entity_name}")

    validate_structure_of(entity_name, raw_rows)
    if entity_name in DATED_ENTITIES:
        clean, rejected = cleanser(raw_rows, as_of=as_of or date.today())
    else:
        clean, rejected = cleanser(raw_rows)

    logger.info(
        "Entity cleansed",
        entity=entity_name,
        input_rows=raw_rows.height,
        clean_rows=clean.height,
        rejected_rows=rejected.height,
    )
    return clean, rejected


def validate_structure_of(entity_name: str, raw_rows: pl.DataFrame) -> None:
    """Structural check for a single entity"""
    entity = SOURCE_ENTITIES[entity_name]
    absent = [c for c in entity.required_columns if c not in raw_rows.columns]
    if absent:
        raise StructuralFailure({entity_name: absent})
