"""
Cross-source Conformance

Resolves the same customer or product as referenced by the CRM and the ERP
into one attribute set per natural key.

Customers:
- ERP ids are matched to the CRM customer number after stripping the
  legacy prefix and separators
- country and birthdate come from the ERP
- gender keeps the CRM value unless it is Unknown, then falls back to the
  ERP value

Products:
- ERP category, subcategory and maintenance flag are attached by
  category_id
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping

import polars as pl
import structlog

from .codes import UNKNOWN, map_country, normalize_business_key, normalize_erp_customer_key

logger = structlog.get_logger(__name__)

MATCH_KEY = "_match_key"


@dataclass(frozen=True)
class ConformedModel:
    """Unified customer and product attributes, one frame per entity"""
    customers: pl.DataFrame
    products: pl.DataFrame

    def attribute_map(self, entity: str) -> Dict[Any, Dict[str, Any]]:
        """
        Natural key -> resolved attributes.

        Customers are keyed by customer_id. Product versions are keyed by
        (product_number, start_date) since the product frame keeps history.
        """
        if entity == "customers":
            return {
                row["customer_id"]: row
                for row in self.customers.iter_rows(named=True)
            }
        if entity == "products":
            return {
                (row["product_number"], row["start_date"]): row
                for row in self.products.iter_rows(named=True)
            }
        raise ValueError(f"Unknown conformed entity: {entity}")


def _crm_match_key(expr: pl.Expr) -> pl.Expr:
    return normalize_business_key(expr).str.replace_all(r"[^A-Z0-9]", "")


def _first_per_key(df: pl.DataFrame) -> pl.DataFrame:
    # ERP extracts are not guaranteed unique; first row per key wins
    return df.unique(subset=[MATCH_KEY], keep="first", maintain_order=True)


def resolve_gender(crm: pl.Expr, erp: pl.Expr) -> pl.Expr:
    """CRM gender unless Unknown, then the ERP value if known, else Unknown"""
    erp_known = erp.is_not_null() & (erp.str.strip_chars() != "") & (erp != UNKNOWN)
    return (
        pl.when(crm.is_not_null() & (crm != UNKNOWN))
        .then(crm)
        .when(erp_known)
        .then(erp)
        .otherwise(pl.lit(UNKNOWN))
    )


def conform_customers(
    customers: pl.DataFrame,
    erp_customers: pl.DataFrame,
    erp_locations: pl.DataFrame,
) -> pl.DataFrame:
    demographics = _first_per_key(
        erp_customers.select(
            normalize_erp_customer_key(pl.col("customer_number")).alias(MATCH_KEY),
            pl.col("birthdate"),
            pl.col("gender").alias("erp_gender"),
        ).filter(pl.col(MATCH_KEY).is_not_null())
    )
    locations = _first_per_key(
        erp_locations.select(
            normalize_erp_customer_key(pl.col("customer_number")).alias(MATCH_KEY),
            map_country(pl.col("country")).alias("country"),
        ).filter(pl.col(MATCH_KEY).is_not_null())
    )

    conformed = (
        customers.with_columns(_crm_match_key(pl.col("customer_number")).alias(MATCH_KEY))
        .join(demographics, on=MATCH_KEY, how="left")
        .join(locations, on=MATCH_KEY, how="left")
        .select(
            "customer_id",
            "customer_number",
            "first_name",
            "last_name",
            pl.col("country").fill_null(UNKNOWN),
            "marital_status",
            resolve_gender(pl.col("gender"), pl.col("erp_gender")).alias("gender"),
            "birthdate",
            "create_date",
        )
    )

    matched = conformed.filter(pl.col("country") != UNKNOWN).height
    logger.info(
        "Customers conformed",
        customers=conformed.height,
        with_location=matched,
    )
    return conformed


def conform_products(products: pl.DataFrame, categories: pl.DataFrame) -> pl.DataFrame:
    lookup = categories.select(
        "category_id", "category", "subcategory", "maintenance"
    ).unique(subset=["category_id"], keep="first", maintain_order=True)

    conformed = products.join(lookup, on="category_id", how="left").select(
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
        "end_date",
    )

    logger.info(
        "Products conformed",
        versions=conformed.height,
        uncategorized=conformed.filter(pl.col("category").is_null()).height,
    )
    return conformed


def conform(cleansed_tables: Mapping[str, pl.DataFrame]) -> ConformedModel:
    """
    Resolve cross-source identity for customers and products.

    Args:
        cleansed_tables: Silver frames keyed by source entity name

    Returns:
        ConformedModel consumed by the dimension builder
    """
    return ConformedModel(
        customers=conform_customers(
            cleansed_tables["crm_cust_info"],
            cleansed_tables["erp_cust_az12"],
            cleansed_tables["erp_loc_a101"],
        ),
        products=conform_products(
            cleansed_tables["crm_prd_info"],
            cleansed_tables["erp_px_cat_g1v2"],
        ),
    )
