"""
Fact Builder

Resolves cleansed sales lines against the dimension surrogate keys.
"""

from dataclasses import dataclass

import polars as pl
import structlog

from .codes import normalize_business_key

logger = structlog.get_logger(__name__)

FACT_COLUMNS = [
    "order_number",
    "product_key",
    "customer_key",
    "order_date",
    "shipping_date",
    "due_date",
    "sales_amount",
    "quantity",
    "price",
]

UNRESOLVED_COLUMNS = ["order_number", "product_number", "customer_id", "missing"]


@dataclass(frozen=True)
class FactBuild:
    """Fact rows plus the sales lines that could not be resolved"""
    fact: pl.DataFrame
    unresolved: pl.DataFrame


def build_fact(
    cleansed_sales: pl.DataFrame,
    dim_customer: pl.DataFrame,
    dim_product: pl.DataFrame,
) -> FactBuild:
    """
    Join sales lines to the dimensions on their business keys.

    Lines whose customer or product does not resolve are excluded from the
    fact and returned in ``unresolved`` so the quality gate can report
    them. Fact rows keep the input order of the sales lines.
    """
    customers = dim_customer.select("customer_id", "customer_key")
    products = dim_product.select(
        normalize_business_key(pl.col("product_number")).alias("_product"),
        "product_key",
    )

    resolved = (
        cleansed_sales.with_row_index("_row")
        .join(customers, on="customer_id", how="left")
        .with_columns(normalize_business_key(pl.col("product_number")).alias("_product"))
        .join(products, on="_product", how="left")
        .sort("_row")
    )

    missing = pl.concat_list([
        pl.when(pl.col("customer_key").is_null()).then(pl.lit("customer")),
        pl.when(pl.col("product_key").is_null()).then(pl.lit("product")),
    ]).list.drop_nulls().list.join(",")

    fact = resolved.filter(
        pl.col("customer_key").is_not_null() & pl.col("product_key").is_not_null()
    ).select(FACT_COLUMNS)

    unresolved = (
        resolved.with_columns(missing.alias("missing"))
        .filter(pl.col("missing") != "")
        .select(UNRESOLVED_COLUMNS)
    )

    if unresolved.height:
        logger.warning(
            "Sales lines excluded from fact",
            excluded=unresolved.height,
            missing_customer=unresolved.filter(pl.col("missing").str.contains("customer")).height,
            missing_product=unresolved.filter(pl.col("missing").str.contains("product")).height,
        )

    logger.info("Fact built", input_rows=cleansed_sales.height, rows=fact.height)
    return FactBuild(fact=fact, unresolved=unresolved)
