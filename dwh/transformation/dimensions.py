"""
Dimension Builder

Turns conformed rows into Gold dimensions with surrogate keys.

Surrogate keys are assigned by a stable ascending sort on the natural key
followed by sequential numbering from 1, so an unchanged set of natural keys
always receives the same keys on every full refresh.
"""

from dataclasses import dataclass, field
from typing import List, Optional

import polars as pl
import structlog

from .codes import UNKNOWN, normalize_business_key

logger = structlog.get_logger(__name__)

BUSINESS_KEY = "_business_key"


@dataclass(frozen=True)
class DimensionSpec:
    """How to key, merge and order one dimension"""
    name: str
    surrogate_key: str
    business_key: str
    natural_key: str
    recency_column: str
    columns: List[str]
    current_only_column: Optional[str] = None
    enum_columns: List[str] = field(default_factory=list)


CUSTOMER_DIMENSION = DimensionSpec(
    name="dim_customers",
    surrogate_key="customer_key",
    business_key="customer_number",
    natural_key="customer_id",
    recency_column="create_date",
    columns=[
        "customer_id",
        "customer_number",
        "first_name",
        "last_name",
        "country",
        "marital_status",
        "gender",
        "birthdate",
        "create_date",
    ],
    enum_columns=["country", "marital_status", "gender"],
)

PRODUCT_DIMENSION = DimensionSpec(
    name="dim_products",
    surrogate_key="product_key",
    business_key="product_number",
    natural_key="product_number",
    recency_column="start_date",
    columns=[
        "product_id",
        "product_number",
        "product_name",
        "category_id",
        "category",
        "subcategory",
        "maintenance",
        "cost",
        "product_line",
        "start_date",
    ],
    current_only_column="end_date",
    enum_columns=["product_line"],
)


def _merge_collisions(df: pl.DataFrame, spec: DimensionSpec) -> pl.DataFrame:
    """
    Collapse rows whose normalized business key collides.

    Each attribute takes the first non-null, non-Unknown value in recency
    order; an attribute that is Unknown everywhere stays Unknown.
    """
    ranked = df.with_columns(
        normalize_business_key(pl.col(spec.business_key)).alias(BUSINESS_KEY),
        *[
            pl.when(pl.col(c) == UNKNOWN).then(None).otherwise(pl.col(c)).alias(c)
            for c in spec.enum_columns
        ],
    ).sort(spec.recency_column, descending=True, nulls_last=True, maintain_order=True)

    merged = ranked.group_by(BUSINESS_KEY, maintain_order=True).agg(
        [pl.col(c).drop_nulls().first() for c in spec.columns]
    )

    collisions = ranked.height - merged.height
    if collisions:
        logger.warning(
            "Merged colliding business keys",
            dimension=spec.name,
            merged_rows=collisions,
        )

    return merged.with_columns(
        [pl.col(c).fill_null(UNKNOWN) for c in spec.enum_columns]
    )


def build_dimension(conformed_rows: pl.DataFrame, spec: DimensionSpec) -> pl.DataFrame:
    """
    Build one dimension table.

    Args:
        conformed_rows: Rows from the conformance stage
        spec: Dimension definition

    Returns:
        Dimension ordered by surrogate key, surrogate key first
    """
    rows = conformed_rows
    if spec.current_only_column:
        rows = rows.filter(pl.col(spec.current_only_column).is_null())

    rows = rows.filter(normalize_business_key(pl.col(spec.business_key)).is_not_null())
    merged = _merge_collisions(rows, spec)

    dimension = (
        merged.sort(spec.natural_key, nulls_last=True, maintain_order=True)
        .with_columns(
            pl.int_range(1, pl.len() + 1, dtype=pl.Int64).alias(spec.surrogate_key)
        )
        .select([spec.surrogate_key] + spec.columns)
    )

    logger.info(
        "Dimension built",
        dimension=spec.name,
        input_rows=conformed_rows.height,
        rows=dimension.height,
    )
    return dimension


def build_customer_dimension(conformed_customers: pl.DataFrame) -> pl.DataFrame:
    return build_dimension(conformed_customers, CUSTOMER_DIMENSION)


def build_product_dimension(conformed_products: pl.DataFrame) -> pl.DataFrame:
    return build_dimension(conformed_products, PRODUCT_DIMENSION)
