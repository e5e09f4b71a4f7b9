"""
main.py
--------
Entry point for the Subscription Finder engine.

Reads one or more transaction CSV exports, runs the detection pipeline,
prints the report and writes the consolidated subscriptions to the
outputs/ folder.

Usage (from the project root):
    python main.py --input transactions.csv

    # With optional arguments:
    python main.py --input jan.csv --input feb.csv --encoding cp932
    python main.py --input transactions.csv --min-probability 0.7 --detailed
    python main.py --input transactions.csv --category-sort --advice
"""

import sys
import os
import argparse
import logging
import pandas as pd
from datetime import datetime

# Ensure project root is on path (for runs from any working directory)
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, PROJECT_ROOT)

from config.config_loader import get_csv_columns
from pipeline import SubscriptionPipeline
from reporting.report_formatter import ReportFormatter
from storage.batch_store import TransactionBatchStore


# =============================================================================
# LOGGING SETUP
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("main")

CLI_USER = "cli"


# =============================================================================
# ARGUMENT PARSING
# =============================================================================

def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Subscription Finder — Detect recurring subscription payments in transaction exports."
    )
    parser.add_argument(
        "--input", type=str, action="append", required=True,
        help="Path to a transactions CSV. Repeat to combine several exports."
    )
    parser.add_argument(
        "--encoding", type=str, default="utf-8",
        help="CSV encoding. Portal exports are often cp932. Default: utf-8."
    )
    parser.add_argument(
        "--min-probability", type=float, default=0.0,
        help="Only report subscriptions at or above this probability. Default: 0 (all)."
    )
    parser.add_argument(
        "--detailed", action="store_true", default=False,
        help="Print date, probability and rationale for each subscription."
    )
    parser.add_argument(
        "--category-sort", action="store_true", default=False,
        help="Group the report by category with per-category totals."
    )
    parser.add_argument(
        "--advice", action="store_true", default=False,
        help="Also print savings advice."
    )
    parser.add_argument(
        "--output-dir", type=str, default=None,
        help="Output directory. Defaults to outputs/ in project root."
    )
    return parser.parse_args(argv)


# =============================================================================
# INPUT
# =============================================================================

def load_transactions(path: str, encoding: str) -> list[dict]:
    """
    Reads a CSV and maps its columns onto content/amount/date(/category)
    using the aliases in config.yaml.

    Raises:
        ValueError: If no alias is found for content, amount or date.
    """
    df = pd.read_csv(path, encoding=encoding, dtype=str, keep_default_na=False)
    aliases = get_csv_columns()

    mapping = {}
    for field_name in ("content", "amount", "date"):
        column = next((c for c in aliases[field_name] if c in df.columns), None)
        if column is None:
            raise ValueError(
                f"{path}: no column for '{field_name}'. "
                f"Expected one of {aliases[field_name]}, found {list(df.columns)}."
            )
        mapping[field_name] = column

    category_columns = [c for c in aliases.get("category", []) if c in df.columns]

    rows = []
    for record in df.to_dict(orient="records"):
        row = {name: record[column] for name, column in mapping.items()}
        if category_columns:
            row["category"] = " ".join(record[c] for c in category_columns if record[c])
        rows.append(row)
    return rows


# =============================================================================
# MAIN
# =============================================================================

def main(argv=None):
    args = parse_args(argv)

    output_dir = args.output_dir or os.path.join(PROJECT_ROOT, "outputs")
    os.makedirs(output_dir, exist_ok=True)

    # --- Load transactions ---
    store = TransactionBatchStore()
    for path in args.input:
        logger.info(f"Loading transactions from: {path}")
        if not os.path.exists(path):
            logger.error(f"Input file not found: {path}")
            sys.exit(1)
        try:
            rows = load_transactions(path, args.encoding)
        except (ValueError, UnicodeDecodeError) as e:
            logger.error(f"Could not read {path}: {e}")
            sys.exit(1)
        store.add_batch(CLI_USER, rows, file_name=os.path.basename(path))

    stats = store.stats(CLI_USER)
    logger.info(
        f"Loaded {stats.transaction_count:,} transactions from {stats.file_count} file(s). "
        f"Total expense: {stats.total_expense:,.0f}."
    )

    # --- Run pipeline ---
    pipeline = SubscriptionPipeline()
    subscriptions = pipeline.run(store.get_transactions(CLI_USER))

    # --- Apply probability filter ---
    filtered = [s for s in subscriptions if s.probability >= args.min_probability]
    logger.info(
        f"After filtering (>= {args.min_probability}): {len(filtered):,} subscriptions. "
        f"Filtered out: {len(subscriptions) - len(filtered):,}."
    )

    # --- Output ---
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    output_path = os.path.join(output_dir, f"subscriptions_{timestamp}.csv")
    pipeline.to_frame(filtered).to_csv(output_path, index=False)
    logger.info(f"Subscriptions saved to: {output_path}")

    # --- Print report ---
    formatter = ReportFormatter()
    for message in formatter.format_report(filtered, detailed=args.detailed, category_sort=args.category_sort):
        print("\n" + message)

    if args.advice:
        advice = formatter.savings_advice(filtered)
        if advice:
            print("\n" + advice)

    return filtered


if __name__ == "__main__":
    main()
