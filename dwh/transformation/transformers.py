"""
Medallion Pipeline

Explicit driver composing the pure stage functions:

    raw batch -> bronze echo -> cleansing (per entity, concurrent)
              -> silver quality gate -> silver
    silver    -> conformance -> dimensions -> fact
              -> gold quality gate -> gold

Both operations are full refreshes: re-running them on the same input
replaces every table with identical content.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Dict, Mapping, Optional, Tuple

import polars as pl
import structlog

from dwh.config import Settings, get_settings
from dwh.config.logging import bind_run_context, clear_run_context
from dwh.quality import QualityGate, QualityReport
from dwh.quality import rules as quality_rules
from dwh.storage import TableSink
from .cleaners import REJECT_REASON_COLUMN, SOURCE_ENTITIES, cleanse, validate_structure
from .conformance import conform
from .dimensions import build_customer_dimension, build_product_dimension
from .facts import build_fact

logger = structlog.get_logger(__name__)


@dataclass
class StageResult:
    """Result of one pipeline operation"""
    stage: str
    row_counts: Dict[str, int]
    report: QualityReport
    started_at: datetime
    completed_at: datetime
    rejected_counts: Dict[str, int] = field(default_factory=dict)

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MedallionPipeline:
    """
    Bronze -> Silver -> Gold pipeline over a table sink.

    Example:
        pipeline = MedallionPipeline(ParquetSink("./data/lake"))
        silver = pipeline.run_bronze_to_silver(raw_batch)
        gold = pipeline.run_silver_to_gold()
    """

    def __init__(self, sink: TableSink, settings: Optional[Settings] = None):
        self.sink = sink
        self.settings = settings or get_settings()

    def _cleanse_all(
        self,
        raw_batch: Mapping[str, pl.DataFrame],
        as_of: date,
    ) -> Dict[str, Tuple[pl.DataFrame, pl.DataFrame]]:
        """Cleanse every entity; entities share nothing, so they run concurrently"""
        names = list(SOURCE_ENTITIES)
        # worker threads do not inherit the caller's context variables
        run_context = structlog.contextvars.get_contextvars()

        def cleanse_one(name: str) -> Tuple[pl.DataFrame, pl.DataFrame]:
            bind_run_context(**run_context)
            bind_run_context(entity=name)
            try:
                return cleanse(name, raw_batch[name], as_of=as_of)
            finally:
                clear_run_context()

        with ThreadPoolExecutor(max_workers=self.settings.pipeline.max_workers) as executor:
            results = list(executor.map(cleanse_one, names))
        return dict(zip(names, results))

    def _silver_rules(self, name: str, clean: pl.DataFrame, rejected: pl.DataFrame):
        previous = self.sink.row_count("silver", name)
        if name == "crm_cust_info":
            superseded = rejected.filter(pl.col(REJECT_REASON_COLUMN) == "superseded").drop(
                REJECT_REASON_COLUMN
            )
            return quality_rules.create_silver_customers_rules(
                candidates=pl.concat([clean, superseded]),
                previous_count=previous,
            )
        builders = {
            "crm_prd_info": quality_rules.create_silver_products_rules,
            "crm_sales_details": quality_rules.create_silver_sales_rules,
            "erp_cust_az12": quality_rules.create_erp_customers_rules,
            "erp_loc_a101": quality_rules.create_erp_locations_rules,
            "erp_px_cat_g1v2": quality_rules.create_erp_categories_rules,
        }
        return builders[name](previous_count=previous)

    def run_bronze_to_silver(
        self,
        raw_batch: Mapping[str, pl.DataFrame],
        as_of: Optional[date] = None,
    ) -> StageResult:
        """
        Cleanse a raw batch into the Silver layer.

        Args:
            raw_batch: One untyped frame per source entity
            as_of: Reference date for birthdate plausibility. Falls back to
                ``PIPELINE_AS_OF_DATE``, then to today; resolved once per run.

        Raises:
            StructuralFailure: before anything is written, when required raw
                columns are missing
        """
        as_of = as_of or self.settings.pipeline.as_of_date or date.today()
        bind_run_context(stage="silver", as_of=as_of.isoformat())
        try:
            return self._bronze_to_silver(raw_batch, as_of)
        finally:
            clear_run_context("stage", "as_of")

    def _bronze_to_silver(self, raw_batch: Mapping[str, pl.DataFrame], as_of: date) -> StageResult:
        started_at = _now()
        logger.info("Starting bronze to silver", entities=len(raw_batch))

        validate_structure(raw_batch)

        for name in SOURCE_ENTITIES:
            self.sink.write("bronze", name, raw_batch[name])

        cleansed = self._cleanse_all(raw_batch, as_of)

        gate = QualityGate("silver")
        for name, (clean, rejected) in cleansed.items():
            gate.run(clean, self._silver_rules(name, clean, rejected), f"silver.{name}")
        report = gate.report()

        for name, (clean, rejected) in cleansed.items():
            self.sink.write("silver", name, clean)
            self.sink.write("quarantine", name, rejected)
        self.sink.write("quality", "silver_violations", report.to_frame())

        completed_at = _now()
        result = StageResult(
            stage="silver",
            row_counts={name: clean.height for name, (clean, _) in cleansed.items()},
            rejected_counts={name: rejected.height for name, (_, rejected) in cleansed.items()},
            report=report,
            started_at=started_at,
            completed_at=completed_at,
        )
        logger.info(
            "Bronze to silver complete",
            rows=result.row_counts,
            rejected=result.rejected_counts,
            violations=len(report.violations),
            duration_seconds=round(result.duration_seconds, 3),
        )
        return result

    def run_silver_to_gold(self) -> StageResult:
        """
        Assemble the Gold star schema from the Silver layer.

        Raises:
            TableNotFoundError: when Silver has not been built yet
        """
        bind_run_context(stage="gold")
        try:
            return self._silver_to_gold()
        finally:
            clear_run_context("stage")

    def _silver_to_gold(self) -> StageResult:
        started_at = _now()
        logger.info("Starting silver to gold")

        silver = {name: self.sink.read("silver", name) for name in SOURCE_ENTITIES}

        model = conform(silver)
        dim_customers = build_customer_dimension(model.customers)
        dim_products = build_product_dimension(model.products)
        fact = build_fact(silver["crm_sales_details"], dim_customers, dim_products)

        gate = QualityGate("gold")
        gate.run(
            dim_customers,
            quality_rules.create_dim_customers_rules(self.sink.row_count("gold", "dim_customers")),
            "gold.dim_customers",
        )
        gate.run(
            dim_products,
            quality_rules.create_dim_products_rules(self.sink.row_count("gold", "dim_products")),
            "gold.dim_products",
        )
        gate.run(
            fact.fact,
            quality_rules.create_fact_sales_rules(
                dim_customers,
                dim_products,
                unresolved=fact.unresolved,
                previous_count=self.sink.row_count("gold", "fact_sales"),
            ),
            "gold.fact_sales",
        )
        report = gate.report()

        tables = {
            "dim_customers": dim_customers,
            "dim_products": dim_products,
            "fact_sales": fact.fact,
        }
        for name, df in tables.items():
            self.sink.write("gold", name, df)
        self.sink.write("quality", "gold_violations", report.to_frame())

        completed_at = _now()
        result = StageResult(
            stage="gold",
            row_counts={name: df.height for name, df in tables.items()},
            rejected_counts={"fact_sales": fact.unresolved.height},
            report=report,
            started_at=started_at,
            completed_at=completed_at,
        )
        logger.info(
            "Silver to gold complete",
            rows=result.row_counts,
            excluded_sales=fact.unresolved.height,
            violations=len(report.violations),
            duration_seconds=round(result.duration_seconds, 3),
        )
        return result

    def run(
        self,
        raw_batch: Mapping[str, pl.DataFrame],
        as_of: Optional[date] = None,
    ) -> Dict[str, StageResult]:
        """Run both operations in order"""
        return {
            "silver": self.run_bronze_to_silver(raw_batch, as_of=as_of),
            "gold": self.run_silver_to_gold(),
        }
