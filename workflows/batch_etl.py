"""
Prefect Workflow Orchestration - Warehouse Build

Scheduled full-refresh build with:
- Fatal structural failures surfaced as failed runs
- Quality reports published on every run
- Alerting on quality gate errors (the run itself always completes)
"""

from typing import Optional

from prefect import flow, task, get_run_logger

from dwh.config import get_settings
from dwh.ingestion import BatchLoader
from dwh.storage import ParquetSink
from dwh.transformation import MedallionPipeline

settings = get_settings()


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="load_raw_batch",
    description="Read one raw extract per source entity",
    retries=3,
    retry_delay_seconds=60,
)
def load_raw_batch(source_dir: str) -> dict:
    """Load the raw batch from the landing directory"""
    logger = get_run_logger()
    batch = BatchLoader().load_directory(source_dir)
    logger.info(f"Loaded {len(batch)} raw entities from {source_dir}")
    return batch


@task(
    name="bronze_to_silver",
    description="Cleanse the raw batch into the silver layer",
)
def bronze_to_silver(batch: dict, lake_path: str) -> dict:
    logger = get_run_logger()
    result = MedallionPipeline(ParquetSink(lake_path), settings).run_bronze_to_silver(batch)
    logger.info(
        f"Silver built: {result.row_counts} "
        f"({result.report.error_count} errors, {result.report.warning_count} warnings)"
    )
    return {
        "rows": result.row_counts,
        "rejected": result.rejected_counts,
        "errors": result.report.error_count,
        "warnings": result.report.warning_count,
    }


@task(
    name="silver_to_gold",
    description="Assemble the gold star schema from silver",
)
def silver_to_gold(lake_path: str) -> dict:
    logger = get_run_logger()
    result = MedallionPipeline(ParquetSink(lake_path), settings).run_silver_to_gold()
    logger.info(
        f"Gold built: {result.row_counts} "
        f"({result.report.error_count} errors, {result.report.warning_count} warnings)"
    )
    return {
        "rows": result.row_counts,
        "excluded_sales": result.rejected_counts.get("fact_sales", 0),
        "errors": result.report.error_count,
        "warnings": result.report.warning_count,
    }


@task(
    name="send_alert",
    description="Send alert notification",
)
def send_alert(alert_type: str, message: str, severity: str = "info") -> None:
    logger = get_run_logger()
    logger.warning(f"[{severity.upper()}] {alert_type}: {message}")


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="warehouse_full_refresh",
    description="Full-refresh bronze/silver/gold build from CRM and ERP extracts",
)
def warehouse_full_refresh(
    source_dir: Optional[str] = None,
    lake_path: Optional[str] = None,
) -> dict:
    """
    Full warehouse build.

    Steps:
    1. Load the raw batch
    2. Bronze -> Silver with the silver quality gate
    3. Silver -> Gold with the gold quality gate
    4. Alert when either gate reports errors
    """
    logger = get_run_logger()

    source_dir = source_dir or settings.data_lake.raw_path
    lake_path = lake_path or settings.data_lake.lake_path

    batch = load_raw_batch(source_dir)
    silver = bronze_to_silver(batch, lake_path)
    gold = silver_to_gold(lake_path)

    total_errors = silver["errors"] + gold["errors"]
    if total_errors:
        send_alert(
            alert_type="Quality Gate",
            message=f"{total_errors} quality errors in today's build",
            severity="warning",
        )

    logger.info("Warehouse build complete")
    return {"silver": silver, "gold": gold}


if __name__ == "__main__":
    warehouse_full_refresh()
