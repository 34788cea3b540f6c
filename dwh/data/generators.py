"""
Synthetic Raw Batch Generator

Generates CRM and ERP extracts with the defects real extracts carry, for
demos and end-to-end tests:
- padded strings and lower-case codes
- customers re-extracted with a later create_date
- ERP ids with the legacy NAS prefix or dash separators
- country codes instead of names
- zero, malformed or impossible compact dates
- missing, zero or inconsistent sales amounts
- sales lines pointing at unknown products or customers
"""

import random
from datetime import date, timedelta
from typing import Dict, List, Optional

import numpy as np
import polars as pl
from faker import Faker

from dwh.ingestion import to_raw_frame


# =============================================================================
# CONFIGURATION
# =============================================================================

CATEGORIES = [
    ("AC_BR", "Accessories", "Bike Racks", "Yes"),
    ("AC_HE", "Accessories", "Helmets", "Yes"),
    ("BI_MB", "Bikes", "Mountain Bikes", "Yes"),
    ("BI_RB", "Bikes", "Road Bikes", "Yes"),
    ("BI_TB", "Bikes", "Touring Bikes", "Yes"),
    ("CL_JE", "Clothing", "Jerseys", "No"),
    ("CO_RF", "Components", "Road Frames", "Yes"),
]

PRODUCT_LINES = ["M", "R", "T", "S", " r ", None]
COUNTRIES = ["DE", "US", "USA", "Germany", "United States", "France", "Canada", " ", None]
ERP_GENDERS = ["M", "F", "Male", "Female", " female", None, ""]


def _compact(d: Optional[date]) -> str:
    return "0" if d is None else d.strftime("%Y%m%d")


class RawBatchGenerator:
    """
    Generate a complete six-entity raw batch.

    Example:
        batch = RawBatchGenerator(seed=7).generate(customers=200, products=40, sales=1000)
    """

    def __init__(self, seed: int = 42, defect_rate: float = 0.05):
        self.seed = seed
        self.defect_rate = defect_rate
        self.fake = Faker()
        self.fake.seed_instance(seed)
        self.random = random.Random(seed)
        self.np_random = np.random.default_rng(seed)

    def _defect(self) -> bool:
        return self.random.random() < self.defect_rate

    def _customers(self, n: int) -> List[dict]:
        rows = []
        for i in range(n):
            created = self.fake.date_between(start_date=date(2024, 1, 1), end_date=date(2025, 12, 31))
            row = {
                "cst_id": str(11000 + i),
                "cst_key": f"AW{11000 + i:08d}",
                "cst_firstname": f"  {self.fake.first_name()}" if self._defect() else self.fake.first_name(),
                "cst_lastname": self.fake.last_name(),
                "cst_marital_status": self.random.choice(["M", "S", "s", None]),
                "cst_gndr": self.random.choice(["M", "F", "f ", None]),
                "cst_create_date": created.isoformat(),
            }
            rows.append(row)
            if self._defect():
                # re-extracted version of the same customer
                rows.append({
                    **row,
                    "cst_marital_status": self.random.choice(["M", "S"]),
                    "cst_create_date": (created + timedelta(days=30)).isoformat(),
                })
        rows.append({c: None for c in rows[0]})
        return rows

    def _products(self, n: int) -> List[dict]:
        rows = []
        for i in range(n):
            category_id = self.random.choice(CATEGORIES)[0]
            item = f"{self.fake.lexify('??').upper()}-R{i:03d}-{40 + i % 20}"
            start = date(2011, 7, 1)
            versions = 1 + int(self.np_random.integers(0, 3))
            for v in range(versions):
                rows.append({
                    "prd_id": str(200 + len(rows)),
                    "prd_key": f"{category_id.replace('_', '-')}-{item}",
                    "prd_nm": f"{self.fake.word().title()} {item}",
                    "prd_cost": None if self._defect() else str(int(self.np_random.integers(1, 1500))),
                    "prd_line": self.random.choice(PRODUCT_LINES),
                    "prd_start_dt": (start + timedelta(days=365 * v)).isoformat(),
                    "prd_end_dt": None,
                })
        return rows

    def _sales(self, n: int, customers: List[dict], products: List[dict]) -> List[dict]:
        customer_ids = [c["cst_id"] for c in customers if c["cst_id"]]
        product_keys = sorted({p["prd_key"].split("-", 2)[2] for p in products})
        rows = []
        for i in range(n):
            order_date = self.fake.date_between(start_date=date(2012, 1, 1), end_date=date(2014, 12, 31))
            quantity = int(self.np_random.integers(1, 4))
            price = int(self.np_random.integers(2, 2500))
            sales = quantity * price
            row = {
                "sls_ord_num": f"SO{43697 + i // 2}",
                "sls_prd_key": self.random.choice(product_keys),
                "sls_cust_id": self.random.choice(customer_ids),
                "sls_order_dt": _compact(order_date),
                "sls_ship_dt": _compact(order_date + timedelta(days=7)),
                "sls_due_dt": _compact(order_date + timedelta(days=12)),
                "sls_sales": str(sales),
                "sls_quantity": str(quantity),
                "sls_price": str(price),
            }
            if self._defect():
                row["sls_order_dt"] = self.random.choice(["0", "3252", "20121341"])
            if self._defect():
                row[self.random.choice(["sls_sales", "sls_price"])] = self.random.choice([None, "0", "-10"])
            if self._defect():
                row["sls_sales"] = str(sales + 1)
            rows.append(row)
        rows.append({**rows[0], "sls_ord_num": "SO99999", "sls_prd_key": "XYZ-404"})
        return rows

    def _erp_customers(self, customers: List[dict]) -> List[dict]:
        rows = []
        for c in customers:
            if not c["cst_key"]:
                continue
            prefix = "NAS" if self.random.random() < 0.5 else ""
            birth = self.fake.date_of_birth(minimum_age=18, maximum_age=90)
            if self._defect():
                birth = date.today() + timedelta(days=400)
            rows.append({
                "CID": f"{prefix}{c['cst_key']}",
                "BDATE": birth.isoformat(),
                "GEN": self.random.choice(ERP_GENDERS),
            })
        return rows

    def _erp_locations(self, customers: List[dict]) -> List[dict]:
        rows = []
        for c in customers:
            if not c["cst_key"]:
                continue
            key = c["cst_key"]
            rows.append({
                "CID": f"{key[:2]}-{key[2:]}",
                "CNTRY": self.random.choice(COUNTRIES),
            })
        return rows

    def generate(self, customers: int = 100, products: int = 20, sales: int = 500) -> Dict[str, pl.DataFrame]:
        """Generate the six raw entities"""
        crm_customers = self._customers(customers)
        crm_products = self._products(products)
        crm_sales = self._sales(sales, crm_customers, crm_products)

        return {
            "crm_cust_info": to_raw_frame(crm_customers),
            "crm_prd_info": to_raw_frame(crm_products),
            "crm_sales_details": to_raw_frame(crm_sales),
            "erp_cust_az12": to_raw_frame(self._erp_customers(crm_customers)),
            "erp_loc_a101": to_raw_frame(self._erp_locations(crm_customers)),
            "erp_px_cat_g1v2": to_raw_frame(
                [
                    {"ID": cid, "CAT": cat, "SUBCAT": sub, "MAINTENANCE": maint}
                    for cid, cat, sub, maint in CATEGORIES
                ]
            ),
        }
