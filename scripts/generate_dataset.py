"""
Sample Raw Batch Generator
Writes one dirty CRM/ERP extract per source entity as CSV
"""

import argparse
from pathlib import Path

from dwh.config import get_settings
from dwh.data import RawBatchGenerator


def main():
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Generate sample CRM/ERP extracts")
    parser.add_argument("--output", default=settings.data_lake.raw_path, help="Output directory")
    parser.add_argument("--customers", type=int, default=1000)
    parser.add_argument("--products", type=int, default=150)
    parser.add_argument("--sales", type=int, default=20000)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--defect-rate", type=float, default=0.05)
    args = parser.parse_args()

    output_dir = Path(args.output)
    output_dir.mkdir(parents=True, exist_ok=True)

    print("=" * 60)
    print("Sample CRM/ERP Extract Generator")
    print("=" * 60 + "\n")

    batch = RawBatchGenerator(seed=args.seed, defect_rate=args.defect_rate).generate(
        customers=args.customers,
        products=args.products,
        sales=args.sales,
    )

    total = 0
    for entity, df in batch.items():
        path = output_dir / f"{entity}.csv"
        df.write_csv(path)
        total += df.height
        print(f"   {path.name}: {df.height:,} rows")

    print(f"\nTotal: {total:,} rows in {output_dir}\n")


if __name__ == "__main__":
    main()
