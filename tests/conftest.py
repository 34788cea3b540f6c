"""
Test Suite Configuration
"""
from datetime import date
from typing import Callable, Dict

import polars as pl
import pytest

from dwh.config import Settings
from dwh.config.settings import PipelineSettings
from dwh.ingestion import to_raw_frame
from dwh.storage import MemorySink

CUSTOMER_COLUMNS = [
    "cst_id", "cst_key", "cst_firstname", "cst_lastname",
    "cst_marital_status", "cst_gndr", "cst_create_date",
]
PRODUCT_COLUMNS = ["prd_id", "prd_key", "prd_nm", "prd_cost", "prd_line", "prd_start_dt", "prd_end_dt"]
SALES_COLUMNS = [
    "sls_ord_num", "sls_prd_key", "sls_cust_id", "sls_order_dt", "sls_ship_dt",
    "sls_due_dt", "sls_sales", "sls_quantity", "sls_price",
]


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(
        APP_ENV="testing",
        pipeline=PipelineSettings(max_workers=2),
    )


@pytest.fixture
def memory_sink() -> MemorySink:
    return MemorySink()


@pytest.fixture
def raw_customers_df() -> pl.DataFrame:
    """CRM customers with padding, re-extracted versions and a keyless row"""
    rows = [
        ["11000", "AW00011000", " Jon ", "Yang ", "M", "M", "2024-01-01"],
        ["11000", "AW00011000", "Jon", "Yang", "S", "M", "2024-03-01"],
        ["11001", " AW00011001", "Eugene", "Huang", "s", "f ", "2024-02-01"],
        ["11002", "AW00011002", "Ruben", "Torres", None, None, "2024-02-15"],
        [None, "AW00099999", "No", "Id", "M", "M", "2024-02-15"],
        ["11003", "AW00011003", "Christy", "Zhu", "M", "X", "2024-05-05"],
        ["11003", "AW00011003", "Christy", "Zhu", "S", "F", "2024-05-05"],
    ]
    return to_raw_frame([dict(zip(CUSTOMER_COLUMNS, r)) for r in rows], CUSTOMER_COLUMNS)


@pytest.fixture
def raw_products_df() -> pl.DataFrame:
    """CRM products: three helmet versions, a negative cost, a malformed and a blank key"""
    rows = [
        ["210", "CO-RF-FR-R92B-58", "HL Road Frame - Black- 58", None, "R ", "2003-07-01", None],
        ["211", "CO-RF-FR-R92R-58", "HL Road Frame - Red- 58", "1431", "R", "2003-07-01", None],
        ["212", "AC-HE-HL-U509-R", "Sport-100 Helmet- Red", "12", "S", "2011-07-01", "2007-12-28"],
        ["214", "AC-HE-HL-U509-R", "Sport-100 Helmet- Red", "13", "S", "2013-07-01", None],
        ["213", "AC-HE-HL-U509-R", "Sport-100 Helmet- Red", "14", "S", "2012-07-01", None],
        ["215", "BI-MB-BK-M68B-38", "Mountain-200 Black- 38", "-5", "m", "2013-07-01", None],
        ["216", "BAD", "Broken key", "abc", "X", "2013-07-01", None],
        ["217", "  ", "Blank key", "10", "T", "2013-07-01", None],
    ]
    return to_raw_frame([dict(zip(PRODUCT_COLUMNS, r)) for r in rows], PRODUCT_COLUMNS)


@pytest.fixture
def raw_sales_df() -> pl.DataFrame:
    """CRM sales lines covering every amount reconciliation branch"""
    rows = [
        ["SO43697", "FR-R92B-58", "11000", "20101229", "20110105", "20110110", "3578", "1", "3578"],
        ["SO43698", "HL-U509-R", "11001", "20101229", "20110105", "20110110", "30", "3", None],
        ["SO43699", "HL-U509-R", "11002", "20101229", "20110105", "20110110", None, "2", "13"],
        ["SO43700", "XYZ-404", "11000", "20101229", "20110105", "20110110", "10", "1", "10"],
        ["SO43701", "FR-R92R-58", "11001", "0", "20110105", "20110110", "-5", "0", None],
        ["SO43702", "BK-M68B-38", "99999", "20110110", "20110105", "20110120", "50", "2", "20"],
        ["SO43703", "BK-M68B-38", "11003", "20101341", "20110105", "20110110", "20", None, "10"],
    ]
    return to_raw_frame([dict(zip(SALES_COLUMNS, r)) for r in rows], SALES_COLUMNS)


@pytest.fixture
def as_of() -> date:
    """Fixed reference date for birthdate checks"""
    return date(2024, 6, 30)


@pytest.fixture
def make_raw_sales() -> Callable[..., pl.DataFrame]:
    """Build raw sales frames from partial rows laid over one consistent line"""
    base = dict(zip(SALES_COLUMNS, [
        "SO50000", "FR-R92B-58", "11000", "20101229", "20110105", "20110110", "10", "1", "10",
    ]))

    def make(*overrides) -> pl.DataFrame:
        return to_raw_frame([{**base, **o} for o in overrides], SALES_COLUMNS)

    return make


@pytest.fixture
def make_raw_products() -> Callable[..., pl.DataFrame]:
    """Build raw product frames from partial rows laid over one valid version"""
    base = dict(zip(PRODUCT_COLUMNS, [
        "300", "CO-RF-FR-R92B-62", "HL Road Frame - Black- 62", "1431", "R", "2012-07-01", None,
    ]))

    def make(*overrides) -> pl.DataFrame:
        return to_raw_frame([{**base, **o} for o in overrides], PRODUCT_COLUMNS)

    return make


@pytest.fixture
def raw_erp_customers_df() -> pl.DataFrame:
    return to_raw_frame([
        {"CID": "NASAW00011000", "BDATE": "1971-10-06", "GEN": "Male"},
        {"CID": "AW00011001", "BDATE": "2999-01-01", "GEN": "FEMALE"},
        {"CID": "NASAW00011002", "BDATE": "1976-01-12", "GEN": " F"},
        {"CID": "NASAW00011003", "BDATE": "abc", "GEN": None},
    ], ["CID", "BDATE", "GEN"])


@pytest.fixture
def raw_erp_locations_df() -> pl.DataFrame:
    return to_raw_frame([
        {"CID": "AW-00011000", "CNTRY": "DE"},
        {"CID": "AW-00011001", "CNTRY": "USA"},
        {"CID": "AW-00011002", "CNTRY": " "},
        {"CID": "AW-00011004", "CNTRY": " France "},
    ], ["CID", "CNTRY"])


@pytest.fixture
def raw_erp_categories_df() -> pl.DataFrame:
    return to_raw_frame([
        {"ID": "CO_RF", "CAT": "Components", "SUBCAT": "Road Frames", "MAINTENANCE": "Yes"},
        {"ID": "AC_HE", "CAT": "Accessories", "SUBCAT": "Helmets", "MAINTENANCE": "Yes"},
        {"ID": "BI_MB", "CAT": "Bikes", "SUBCAT": "Mountain Bikes", "MAINTENANCE": "Yes"},
    ], ["ID", "CAT", "SUBCAT", "MAINTENANCE"])


@pytest.fixture
def raw_batch(
    raw_customers_df,
    raw_products_df,
    raw_sales_df,
    raw_erp_customers_df,
    raw_erp_locations_df,
    raw_erp_categories_df,
) -> Dict[str, pl.DataFrame]:
    """A complete six-entity raw batch"""
    return {
        "crm_cust_info": raw_customers_df,
        "crm_prd_info": raw_products_df,
        "crm_sales_details": raw_sales_df,
        "erp_cust_az12": raw_erp_customers_df,
        "erp_loc_a101": raw_erp_locations_df,
        "erp_px_cat_g1v2": raw_erp_categories_df,
    }


@pytest.fixture
def cleansed_tables(raw_batch, as_of) -> Dict[str, pl.DataFrame]:
    """Silver frames for the raw batch"""
    from dwh.transformation import cleanse

    return {name: cleanse(name, df, as_of=as_of)[0] for name, df in raw_batch.items()}
