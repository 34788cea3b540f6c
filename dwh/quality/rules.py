"""
Pre-built rule sets for the Silver and Gold tables
"""

from typing import Optional

import polars as pl

from dwh.config import get_settings
from dwh.transformation.codes import Gender, MaritalStatus, ProductLine, enum_values
from .validators import RuleSet, ValidationSeverity


def _sales_identity_broken() -> pl.Expr:
    q, p, s = pl.col("quantity"), pl.col("price"), pl.col("sales_amount")
    return (q > 0) & (p > 0) & (s != q * p)


def _dates_out_of_order() -> pl.Expr:
    return (pl.col("order_date") > pl.col("shipping_date")) | (
        pl.col("order_date") > pl.col("due_date")
    )


def create_silver_customers_rules(
    candidates: Optional[pl.DataFrame] = None,
    previous_count: Optional[int] = None,
) -> RuleSet:
    """
    Silver customers. ``candidates`` are all cleansed versions of every
    customer, superseded duplicates included, for the identity-conflict check.
    """
    quality = get_settings().quality
    rules = (
        RuleSet(key_columns=["customer_id"])
        .add_row_count_floor(previous_count)
        .add_not_null_check("customer_id")
        .add_not_null_check("customer_number")
        .add_unique_check(["customer_id"])
        .add_unique_check(["customer_number"])
        .add_enum_check("gender", enum_values(Gender))
        .add_enum_check("marital_status", enum_values(MaritalStatus))
        .add_flag_check()
    )
    if candidates is not None:
        rules.add_identity_conflict_check(
            candidates,
            key="customer_id",
            attributes=quality.identity_conflict_attributes,
            tolerance=quality.identity_conflict_tolerance,
        )
    return rules


def create_silver_products_rules(previous_count: Optional[int] = None) -> RuleSet:
    return (
        RuleSet(key_columns=["product_number", "start_date"])
        .add_row_count_floor(previous_count)
        .add_not_null_check("product_number")
        .add_unique_check(["product_number", "start_date"])
        .add_enum_check("product_line", enum_values(ProductLine))
        .add_consistency_check(
            "negative_cost",
            pl.col("cost") < 0,
            "Product cost is negative",
        )
        .add_consistency_check(
            "end_before_start",
            pl.col("end_date") < pl.col("start_date"),
            "Product version ends before it starts",
        )
        .add_flag_check()
    )


def create_silver_sales_rules(previous_count: Optional[int] = None) -> RuleSet:
    return (
        RuleSet(key_columns=["order_number", "product_number"])
        .add_row_count_floor(previous_count)
        .add_not_null_check("order_number")
        .add_not_null_check("product_number")
        .add_not_null_check("customer_id")
        .add_not_null_check("order_date", severity=ValidationSeverity.WARNING)
        .add_consistency_check(
            "sales_identity",
            _sales_identity_broken(),
            "sales_amount differs from quantity * price",
        )
        .add_flag_check()
    )


def create_erp_customers_rules(previous_count: Optional[int] = None) -> RuleSet:
    min_year = get_settings().quality.min_birth_year
    return (
        RuleSet(key_columns=["customer_number"])
        .add_row_count_floor(previous_count)
        .add_unique_check(["customer_number"], severity=ValidationSeverity.WARNING)
        .add_enum_check("gender", enum_values(Gender))
        .add_consistency_check(
            "implausible_birthdate",
            pl.col("birthdate").dt.year() < min_year,
            f"Birthdate before {min_year}",
            severity=ValidationSeverity.WARNING,
        )
        .add_flag_check()
    )


def create_erp_locations_rules(previous_count: Optional[int] = None) -> RuleSet:
    return (
        RuleSet(key_columns=["customer_number"])
        .add_row_count_floor(previous_count)
        .add_unique_check(["customer_number"], severity=ValidationSeverity.WARNING)
        .add_not_null_check("country")
        .add_flag_check()
    )


def create_erp_categories_rules(previous_count: Optional[int] = None) -> RuleSet:
    return (
        RuleSet(key_columns=["category_id"])
        .add_row_count_floor(previous_count)
        .add_unique_check(["category_id"])
    )


def create_dim_customers_rules(previous_count: Optional[int] = None) -> RuleSet:
    return (
        RuleSet(key_columns=["customer_key", "customer_id"])
        .add_row_count_floor(previous_count)
        .add_not_null_check("customer_key")
        .add_unique_check(["customer_key"])
        .add_unique_check(["customer_id"])
        .add_unique_check(["customer_number"])
        .add_enum_check("gender", enum_values(Gender))
        .add_enum_check("marital_status", enum_values(MaritalStatus))
        .add_not_null_check("country")
    )


def create_dim_products_rules(previous_count: Optional[int] = None) -> RuleSet:
    return (
        RuleSet(key_columns=["product_key", "product_number"])
        .add_row_count_floor(previous_count)
        .add_not_null_check("product_key")
        .add_unique_check(["product_key"])
        .add_unique_check(["product_number"])
        .add_enum_check("product_line", enum_values(ProductLine))
        .add_not_null_check("category", severity=ValidationSeverity.WARNING)
    )


def create_fact_sales_rules(
    dim_customers: pl.DataFrame,
    dim_products: pl.DataFrame,
    unresolved: Optional[pl.DataFrame] = None,
    previous_count: Optional[int] = None,
) -> RuleSet:
    rules = (
        RuleSet(key_columns=["order_number", "product_key"])
        .add_row_count_floor(previous_count)
        .add_referential_integrity_check(
            "customer_key", dim_customers, "customer_key", "gold.dim_customers"
        )
        .add_referential_integrity_check(
            "product_key", dim_products, "product_key", "gold.dim_products"
        )
        .add_not_null_check("customer_key")
        .add_not_null_check("product_key")
        .add_unique_check(["order_number", "product_key"])
        .add_consistency_check(
            "sales_identity",
            _sales_identity_broken(),
            "sales_amount differs from quantity * price",
        )
        .add_consistency_check(
            "date_order",
            _dates_out_of_order(),
            "order_date falls after shipping_date or due_date",
        )
    )
    if unresolved is not None:
        rules.add_referential_gap_report(unresolved)
    return rules
