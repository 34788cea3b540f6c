"""
Unit Tests - Data Transformation
"""
from datetime import date

import polars as pl
import pytest

from dwh.errors import StructuralFailure
from dwh.ingestion import to_raw_frame
from dwh.transformation.cleaners import (
    REJECT_REASON_COLUMN,
    clean_customers,
    clean_erp_categories,
    clean_erp_customers,
    clean_erp_locations,
    clean_products,
    clean_sales,
    cleanse,
    validate_structure,
)
from dwh.transformation.codes import (
    MARITAL_STATUS_CODES,
    map_codes,
    map_country,
    normalize_erp_customer_key,
)
from dwh.transformation.parsing import (
    FLAGS_COLUMN,
    collect_flags,
    parse_compact_date,
    parse_int,
    parse_iso_date,
)


class TestParsing:
    """Tests for parse-with-fallback helpers"""

    def test_parse_compact_date(self):
        """Zero, short and impossible dates become null with a reason"""
        df = pl.DataFrame({"d": ["20101229", "0", "20101341", "3252", None]})
        parsed = parse_compact_date("d", flag="malformed_d")

        result = df.select(parsed.value.alias("value"), parsed.reason.alias("reason"))

        assert result["value"].to_list() == [date(2010, 12, 29), None, None, None, None]
        assert result["reason"].to_list() == [None, "malformed_d", "malformed_d", "malformed_d", None]

    def test_parse_iso_date_ignores_time(self):
        """Time components are dropped"""
        df = pl.DataFrame({"d": ["2024-01-01 10:30:00", "2024-02-29", "yesterday"]})

        result = df.select(parse_iso_date("d").value)

        assert result["d"].to_list() == [date(2024, 1, 1), date(2024, 2, 29), None]

    def test_parse_int(self):
        """Padded integers parse; decimals and text do not"""
        df = pl.DataFrame({"n": [" 12 ", "1.5", "abc", "", None]})
        parsed = parse_int("n")

        result = df.select(parsed.value.alias("value"), parsed.reason.alias("reason"))

        assert result["value"].to_list() == [12, None, None, None, None]
        assert result["reason"].to_list() == [None, "malformed_n", "malformed_n", None, None]

    def test_with_default(self):
        """Defaults are applied and tagged"""
        df = pl.DataFrame({"n": ["5", None]})
        parsed = parse_int("n").with_default(0, "defaulted_n")

        result = df.select(parsed.value.alias("value"), parsed.reason.alias("reason"))

        assert result["value"].to_list() == [5, 0]
        assert result["reason"].to_list() == [None, "defaulted_n"]

    def test_collect_flags_drops_nulls(self):
        """Only raised reasons end up in the flags list"""
        df = pl.DataFrame({"a": ["x", None], "b": [None, None]})

        result = df.select(collect_flags([pl.col("a"), pl.col("b")]))

        assert result[FLAGS_COLUMN].to_list() == [["x"], []]


class TestCodes:
    """Tests for source code lookups"""

    def test_map_codes(self):
        """Codes are trimmed and upper-cased; unmapped values are Unknown"""
        df = pl.DataFrame({"c": ["m", " S ", "x", None, ""]})

        result = df.select(map_codes(pl.col("c"), MARITAL_STATUS_CODES).alias("c"))

        assert result["c"].to_list() == ["Married", "Single", "Unknown", "Unknown", "Unknown"]

    def test_map_country(self):
        """Country codes expand; blanks become Unknown; names pass through"""
        df = pl.DataFrame({"c": ["DE", " usa ", "US", "France", " ", None]})

        result = df.select(map_country(pl.col("c")).alias("c"))

        assert result["c"].to_list() == [
            "Germany", "United States", "United States", "France", "Unknown", "Unknown",
        ]

    def test_normalize_erp_customer_key(self):
        """Prefix and separators are stripped"""
        df = pl.DataFrame({"k": ["NASAW00011000", "AW-00011000", " nasaw00011000 ", "", None]})

        result = df.select(normalize_erp_customer_key(pl.col("k")).alias("k"))

        assert result["k"].to_list() == ["AW00011000", "AW00011000", "AW00011000", None, None]


class TestStructure:
    """Tests for the structural check"""

    def test_complete_batch_passes(self, raw_batch):
        validate_structure(raw_batch)

    def test_missing_column_is_named(self, raw_batch):
        """The failure names the entity and each missing column"""
        raw_batch["crm_sales_details"] = raw_batch["crm_sales_details"].drop("sls_price")

        with pytest.raises(StructuralFailure) as exc_info:
            validate_structure(raw_batch)

        assert exc_info.value.missing == {"crm_sales_details": ["sls_price"]}
        assert "sls_price" in str(exc_info.value)

    def test_missing_entity(self, raw_batch):
        """An absent entity lacks all of its required columns"""
        del raw_batch["erp_loc_a101"]

        with pytest.raises(StructuralFailure) as exc_info:
            validate_structure(raw_batch)

        assert exc_info.value.missing == {"erp_loc_a101": ["CID", "CNTRY"]}

    def test_cleanse_unknown_entity(self, raw_customers_df):
        with pytest.raises(ValueError):
            cleanse("crm_unknown", raw_customers_df)


class TestCustomerCleansing:
    """Tests for CRM customer cleansing"""

    def test_latest_version_wins(self, raw_customers_df):
        """A later create_date replaces an earlier version"""
        clean, _ = clean_customers(raw_customers_df)

        jon = clean.filter(pl.col("customer_id") == 11000).row(0, named=True)

        assert jon["marital_status"] == "Single"
        assert jon["create_date"] == date(2024, 3, 1)
        assert jon["first_name"] == "Jon"

    def test_one_row_per_customer_in_input_order(self, raw_customers_df):
        clean, _ = clean_customers(raw_customers_df)

        assert clean["customer_id"].to_list() == [11000, 11001, 11002, 11003]
        assert clean["customer_number"].to_list() == [
            "AW00011000", "AW00011001", "AW00011002", "AW00011003",
        ]

    def test_tie_keeps_first_seen(self, raw_customers_df):
        """Equal create_dates keep the earlier row"""
        clean, _ = clean_customers(raw_customers_df)

        christy = clean.filter(pl.col("customer_id") == 11003).row(0, named=True)

        assert christy["marital_status"] == "Married"
        assert christy["gender"] == "Unknown"

    def test_codes_mapped(self, raw_customers_df):
        clean, _ = clean_customers(raw_customers_df)

        assert clean["marital_status"].to_list() == ["Single", "Single", "Unknown", "Married"]
        assert clean["gender"].to_list() == ["Male", "Female", "Unknown", "Unknown"]

    def test_rejected_rows_carry_reason(self, raw_customers_df):
        """Keyless and superseded rows are quarantined, never silently lost"""
        clean, rejected = clean_customers(raw_customers_df)

        assert rejected[REJECT_REASON_COLUMN].to_list() == [
            "superseded", "missing_customer_id", "superseded",
        ]
        assert clean.height + rejected.height == raw_customers_df.height

    def test_deterministic(self, raw_customers_df):
        first, _ = clean_customers(raw_customers_df)
        second, _ = clean_customers(raw_customers_df)

        assert first.equals(second)


class TestProductCleansing:
    """Tests for CRM product cleansing"""

    def test_key_split(self, raw_products_df):
        """The first two key segments are the category"""
        clean, _ = clean_products(raw_products_df)

        assert clean["product_number"].to_list() == [
            "FR-R92B-58", "FR-R92R-58", "HL-U509-R", "HL-U509-R", "HL-U509-R", "BK-M68B-38", "BAD",
        ]
        assert clean["category_id"].to_list() == [
            "CO_RF", "CO_RF", "AC_HE", "AC_HE", "AC_HE", "BI_MB", None,
        ]

    def test_end_date_from_next_version(self, raw_products_df):
        """end_date is the day before the next start_date; the latest stays open"""
        clean, _ = clean_products(raw_products_df)

        helmets = clean.filter(pl.col("product_number") == "HL-U509-R").sort("start_date")

        assert helmets["end_date"].to_list() == [date(2012, 6, 30), date(2013, 6, 30), None]

    def test_cost_defaults(self, raw_products_df):
        """Missing, malformed and negative costs become 0, each with its own flag"""
        clean, _ = clean_products(raw_products_df)

        assert clean["cost"].to_list() == [0, 1431, 12, 13, 14, 0, 0]
        flags = dict(zip(clean["product_id"].to_list(), clean[FLAGS_COLUMN].to_list()))
        assert flags[210] == ["missing_cost"]
        assert flags[215] == ["negative_cost"]
        assert flags[216] == ["malformed_product_key", "malformed_cost"]

    def test_malformed_product_id_flagged(self, make_raw_products):
        clean, rejected = clean_products(make_raw_products({"prd_id": "x1"}))

        assert rejected.height == 0
        assert clean["product_id"].to_list() == [None]
        assert clean[FLAGS_COLUMN].to_list() == [["malformed_product_id"]]

    def test_same_start_date_versions(self, make_raw_products):
        """Versions sharing a start_date follow input order; all but the last end before they start"""
        clean, _ = clean_products(make_raw_products({"prd_id": "300"}, {"prd_id": "301", "prd_cost": "1500"}))

        assert clean["product_id"].to_list() == [300, 301]
        assert clean["end_date"].to_list() == [date(2012, 6, 30), None]

    def test_product_line(self, raw_products_df):
        clean, _ = clean_products(raw_products_df)

        assert clean["product_line"].to_list() == [
            "Road", "Road", "Other", "Other", "Other", "Mountain", "Unknown",
        ]

    def test_blank_key_rejected(self, raw_products_df):
        _, rejected = clean_products(raw_products_df)

        assert rejected["product_id"].to_list() == [217]
        assert rejected[REJECT_REASON_COLUMN].to_list() == ["missing_product_number"]


class TestSalesCleansing:
    """Tests for CRM sales cleansing"""

    @pytest.fixture
    def sales(self, raw_sales_df):
        clean, rejected = clean_sales(raw_sales_df)
        assert rejected.height == 0
        return {row["order_number"]: row for row in clean.iter_rows(named=True)}

    def test_consistent_line_untouched(self, sales):
        line = sales["SO43697"]

        assert (line["sales_amount"], line["quantity"], line["price"]) == (3578, 1, 3578)
        assert line[FLAGS_COLUMN] == []

    def test_price_recomputed(self, sales):
        """quantity=3, price missing, sales=30 gives price 10"""
        line = sales["SO43698"]

        assert line["price"] == 10
        assert line[FLAGS_COLUMN] == ["recomputed_price"]

    def test_sales_recomputed_when_missing(self, sales):
        line = sales["SO43699"]

        assert line["sales_amount"] == 26
        assert "recomputed_sales_amount" in line[FLAGS_COLUMN]

    def test_sales_recomputed_when_inconsistent(self, sales):
        """Wrong sales amounts follow quantity * price; out-of-order dates are flagged"""
        line = sales["SO43702"]

        assert line["sales_amount"] == 40
        assert line[FLAGS_COLUMN] == ["recomputed_sales_amount", "date_order"]

    def test_quantity_recomputed(self, sales):
        line = sales["SO43703"]

        assert line["quantity"] == 2
        assert line["order_date"] is None
        assert line[FLAGS_COLUMN] == ["malformed_order_date", "recomputed_quantity"]

    def test_unrecoverable_amounts_kept(self, sales):
        """Two invalid inputs: values stay as they are and the row is flagged"""
        line = sales["SO43701"]

        assert (line["sales_amount"], line["quantity"], line["price"]) == (-5, 0, None)
        assert line[FLAGS_COLUMN] == ["malformed_order_date", "unrecoverable_amounts"]

    def test_indivisible_quantity_not_recomputed(self, make_raw_sales):
        """sales=5 at price 10 has no whole quantity, so nothing is derived"""
        clean, _ = clean_sales(make_raw_sales({"sls_sales": "5", "sls_quantity": None, "sls_price": "10"}))
        line = clean.row(0, named=True)

        assert (line["sales_amount"], line["quantity"], line["price"]) == (5, None, 10)
        assert line[FLAGS_COLUMN] == ["unrecoverable_amounts"]

    def test_indivisible_price_not_recomputed(self, make_raw_sales):
        """sales=31 over 3 units has no whole price, so nothing is derived"""
        clean, _ = clean_sales(make_raw_sales({"sls_sales": "31", "sls_quantity": "3", "sls_price": None}))
        line = clean.row(0, named=True)

        assert (line["sales_amount"], line["quantity"], line["price"]) == (31, 3, None)
        assert line[FLAGS_COLUMN] == ["unrecoverable_amounts"]

    def test_sales_identity_holds(self, raw_sales_df, make_raw_sales):
        """Every line with a positive quantity and price satisfies sales = quantity * price"""
        raw = pl.concat([
            raw_sales_df,
            make_raw_sales(
                {"sls_sales": "5", "sls_quantity": None, "sls_price": "10"},
                {"sls_sales": "31", "sls_quantity": "3", "sls_price": None},
                {"sls_sales": "7", "sls_quantity": "2", "sls_price": "3"},
            ),
        ])
        clean, _ = clean_sales(raw)

        priced = clean.filter((pl.col("quantity") > 0) & (pl.col("price") > 0))

        assert priced.height == 7
        assert (priced["sales_amount"] == priced["quantity"] * priced["price"]).all()

    def test_malformed_customer_id_flagged(self, make_raw_sales):
        clean, _ = clean_sales(make_raw_sales({"sls_cust_id": "abc"}))
        line = clean.row(0, named=True)

        assert line["customer_id"] is None
        assert line[FLAGS_COLUMN] == ["malformed_customer_id"]

    def test_compact_dates_parsed(self, sales):
        line = sales["SO43697"]

        assert line["order_date"] == date(2010, 12, 29)
        assert line["shipping_date"] == date(2011, 1, 5)
        assert line["due_date"] == date(2011, 1, 10)

    def test_no_line_lost(self, raw_sales_df):
        clean, _ = clean_sales(raw_sales_df)

        assert clean.height == raw_sales_df.height


class TestErpCleansing:
    """Tests for ERP entity cleansing"""

    def test_erp_customers(self, raw_erp_customers_df, as_of):
        """Keys normalized, future birthdates nulled, genders spelled out"""
        clean, rejected = clean_erp_customers(raw_erp_customers_df, as_of=as_of)

        assert rejected.height == 0
        assert clean["customer_number"].to_list() == [
            "AW00011000", "AW00011001", "AW00011002", "AW00011003",
        ]
        assert clean["birthdate"].to_list() == [date(1971, 10, 6), None, date(1976, 1, 12), None]
        assert clean["gender"].to_list() == ["Male", "Female", "Female", "Unknown"]
        assert clean[FLAGS_COLUMN].to_list() == [[], ["future_birthdate"], [], ["malformed_birthdate"]]

    @pytest.mark.parametrize("reference_date, birthdate, flags", [
        (date(2030, 1, 1), date(2030, 1, 1), []),
        (date(2029, 12, 31), None, ["future_birthdate"]),
    ])
    def test_birthdate_judged_against_reference_date(self, reference_date, birthdate, flags):
        """A birthdate on the reference date is kept, one day later is nulled"""
        raw = to_raw_frame([{"CID": "AW00011000", "BDATE": "2030-01-01", "GEN": "M"}], ["CID", "BDATE", "GEN"])

        clean, _ = clean_erp_customers(raw, as_of=reference_date)

        assert clean["birthdate"].to_list() == [birthdate]
        assert clean[FLAGS_COLUMN].to_list() == [flags]

    def test_fixed_reference_date_is_deterministic(self, raw_erp_customers_df, as_of):
        first, _ = cleanse("erp_cust_az12", raw_erp_customers_df, as_of=as_of)
        second, _ = cleanse("erp_cust_az12", raw_erp_customers_df, as_of=as_of)

        assert first.equals(second)

    def test_reference_date_defaults_to_today(self, raw_erp_customers_df):
        clean, _ = cleanse("erp_cust_az12", raw_erp_customers_df)

        assert clean[FLAGS_COLUMN].to_list()[1] == ["future_birthdate"]

    def test_erp_locations(self, raw_erp_locations_df):
        clean, _ = clean_erp_locations(raw_erp_locations_df)

        assert clean["customer_number"].to_list() == [
            "AW00011000", "AW00011001", "AW00011002", "AW00011004",
        ]
        assert clean["country"].to_list() == ["Germany", "United States", "Unknown", "France"]
        assert clean[FLAGS_COLUMN].to_list() == [[], [], ["missing_country"], []]

    def test_erp_categories(self, raw_erp_categories_df):
        clean, rejected = clean_erp_categories(raw_erp_categories_df)

        assert clean.height == 3
        assert rejected.height == 0
        assert clean.columns == ["category_id", "category", "subcategory", "maintenance"]

    def test_erp_categories_reject_blank_id(self):
        raw = pl.DataFrame({
            "ID": [" ", "AC_BR"],
            "CAT": ["x", "Accessories"],
            "SUBCAT": ["y", "Bike Racks"],
            "MAINTENANCE": ["No", "Yes"],
        })

        clean, rejected = clean_erp_categories(raw)

        assert clean["category_id"].to_list() == ["AC_BR"]
        assert rejected[REJECT_REASON_COLUMN].to_list() == ["missing_category_id"]
