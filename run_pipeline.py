#!/usr/bin/env python
"""
Pipeline Entry Point

Runs the warehouse build against a directory of raw extracts.
Usage:
    Full refresh:        python run_pipeline.py
    Silver only:         python run_pipeline.py --stage silver
    Gold from silver:    python run_pipeline.py --stage gold
    Custom locations:    python run_pipeline.py --raw-path data/raw --lake-path data/lake
    Fixed run date:      python run_pipeline.py --as-of 2024-06-30
"""

import argparse
import sys
from datetime import date

from dwh.config import get_settings
from dwh.config.logging import configure_logging, get_logger
from dwh.errors import PipelineError
from dwh.ingestion import BatchLoader
from dwh.storage import ParquetSink
from dwh.transformation import MedallionPipeline


def main(argv=None) -> int:
    settings = get_settings()

    parser = argparse.ArgumentParser(description="CRM/ERP Sales Warehouse build")
    parser.add_argument(
        "--stage",
        choices=["silver", "gold", "all"],
        default="all",
        help="Which operation to run (default: all)",
    )
    parser.add_argument(
        "--raw-path",
        default=settings.data_lake.raw_path,
        help="Directory with one raw extract per entity",
    )
    parser.add_argument(
        "--lake-path",
        default=settings.data_lake.lake_path,
        help="Root directory of the bronze/silver/gold tables",
    )
    parser.add_argument(
        "--as-of",
        type=date.fromisoformat,
        default=None,
        help="Reference date (YYYY-MM-DD) for birthdate checks; overrides PIPELINE_AS_OF_DATE",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override LOG_LEVEL",
    )
    args = parser.parse_args(argv)

    configure_logging(args.log_level)
    logger = get_logger("run_pipeline")

    pipeline = MedallionPipeline(ParquetSink(args.lake_path), settings)
    results = []

    try:
        if args.stage in ("silver", "all"):
            batch = BatchLoader().load_directory(args.raw_path)
            results.append(pipeline.run_bronze_to_silver(batch, as_of=args.as_of))
        if args.stage in ("gold", "all"):
            results.append(pipeline.run_silver_to_gold())
    except PipelineError as e:
        logger.error("Pipeline aborted", error=str(e))
        return 1

    for result in results:
        logger.info(
            f"{result.stage} build finished",
            rows=result.row_counts,
            errors=result.report.error_count,
            warnings=result.report.warning_count,
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
