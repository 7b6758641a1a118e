"""
main.py
--------
Batch entry point for the transaction signals engine.

Reads a transaction CSV, runs the anomaly and recurring payment passes, and
writes both results to the outputs/ folder.

Usage (from the project root):
    python main.py --input path/to/transactions.csv

    # With optional arguments:
    python main.py --input transactions.csv --as-of 2025-06-30
    python main.py --input transactions.csv --output-dir reports/

Expected CSV columns: id, date, description, amount, type, category, merchant
("type", "category" and "merchant" may be empty).
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

from config.config_loader import get_category_registry
from core.models import ANOMALY_LABELS, Transaction
from pipeline import SignalsPipeline, SignalsResult, anomalies_to_frame, recurring_payments_to_frame


# =============================================================================
# LOGGING SETUP
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("main")


# =============================================================================
# ARGUMENT PARSING
# =============================================================================

def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Transaction signals engine: flag anomalies and detect recurring payments."
    )
    parser.add_argument(
        "--input", type=str, required=True,
        help="Path to input transactions CSV."
    )
    parser.add_argument(
        "--output-dir", type=str, default=None,
        help="Output directory. Defaults to outputs/ in project root."
    )
    parser.add_argument(
        "--as-of", type=str, default=None,
        help="Reference date (YYYY-MM-DD) for active/inactive decisions. Defaults to now."
    )
    return parser.parse_args(argv)


# =============================================================================
# MAIN
# =============================================================================

def load_transactions(input_path: str) -> list[Transaction]:
    registry = get_category_registry()
    df = pd.read_csv(input_path, dtype={"id": str})
    return [Transaction.from_record(row, registry) for row in df.to_dict(orient="records")]


def main(argv=None) -> int:
    args = parse_args(argv)

    output_dir = args.output_dir or os.path.join(PROJECT_ROOT, "outputs")
    os.makedirs(output_dir, exist_ok=True)

    # --- Load transactions ---
    logger.info(f"Loading transactions from: {args.input}")
    if not os.path.exists(args.input):
        logger.error(f"Input file not found: {args.input}")
        return 1

    transactions = load_transactions(args.input)
    logger.info(f"Loaded {len(transactions):,} transactions.")

    as_of = datetime.strptime(args.as_of, "%Y-%m-%d") if args.as_of else None

    # --- Run pipeline ---
    pipeline = SignalsPipeline()
    result = pipeline.run(transactions, as_of=as_of)

    # --- Output ---
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    anomalies_path = os.path.join(output_dir, f"anomalies_{timestamp}.csv")
    recurring_path = os.path.join(output_dir, f"recurring_{timestamp}.csv")
    anomalies_to_frame(result.transactions).to_csv(anomalies_path, index=False)
    recurring_payments_to_frame(result.recurring_payments).to_csv(recurring_path, index=False)
    logger.info(f"Anomalies saved to: {anomalies_path}")
    logger.info(f"Recurring payments saved to: {recurring_path}")

    _print_summary(result, pipeline.get_total_monthly_recurring())
    return 0


def _print_summary(result: SignalsResult, monthly_total: float):
    """Prints a clean summary table to the console."""
    print("\n" + "=" * 80)
    print("  TRANSACTION SIGNALS SUMMARY")
    print("=" * 80)

    summary = result.anomaly_summary
    print(f"\n  Anomalies awaiting review: {summary.count:,}")
    print("  " + "-" * 60)
    for anomaly_type, count in summary.type_counts.items():
        print(f"    {ANOMALY_LABELS[anomaly_type]:30s}  {count:>5,}")

    payments = result.recurring_payments
    active = [p for p in payments if p.is_active]
    print(f"\n  Recurring payments: {len(payments):,} ({len(active):,} active)")
    print("  " + "-" * 60)
    for p in payments:
        state = "active" if p.is_active else "inactive"
        print(
            f"    {p.merchant_name[:30]:30s}  {p.frequency.value:9s}  "
            f"{p.latest_amount:>10,.2f}  conf {p.confidence:.2f}  {state}"
        )

    print(f"\n  Monthly recurring total (active): {monthly_total:,.2f}")
    print("=" * 80 + "\n")


if __name__ == "__main__":
    sys.exit(main())
