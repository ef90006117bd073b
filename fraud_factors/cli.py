"""
Command-line interface for the fraud factor analysis.

Provides subcommands for running the analysis on a transaction CSV and
for generating a synthetic transaction file.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from fraud_factors.config import MODEL_NAMES, AnalysisConfig, SamplingConfig
from fraud_factors.data_loader import generate_synthetic_transactions, load_transactions
from fraud_factors.errors import FraudAnalysisError
from fraud_factors.pipeline import run_analysis
from fraud_factors.preprocessor import parse_date


def main(argv: list[str] | None = None) -> int:
    """Entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="fraud-factors",
        description="Surface factors associated with fraudulent transactions",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # --- run ---
    run_parser = subparsers.add_parser("run", help="Run the factor analysis")
    run_parser.add_argument(
        "--data",
        type=str,
        required=True,
        help="Path to raw transactions CSV",
    )
    run_parser.add_argument(
        "--n-train",
        type=int,
        default=1000,
        help="Training records per class (default: 1000)",
    )
    run_parser.add_argument(
        "--n-eval",
        type=int,
        default=500,
        help="Evaluation records per class (default: 500)",
    )
    run_parser.add_argument(
        "--seed",
        type=int,
        default=42,
        help="Sampling and cross-validation seed (default: 42)",
    )
    run_parser.add_argument(
        "--models",
        nargs="+",
        choices=MODEL_NAMES,
        default=list(MODEL_NAMES),
        help="Model families to fit (default: all)",
    )
    run_parser.add_argument(
        "--folds",
        type=int,
        default=5,
        help="Cross-validation folds (default: 5)",
    )
    run_parser.add_argument(
        "--n-jobs",
        type=int,
        default=1,
        help="Parallel cross-validation workers (default: 1)",
    )
    run_parser.add_argument(
        "--top-n",
        type=int,
        default=10,
        help="Influential features to report per model (default: 10)",
    )
    run_parser.add_argument(
        "--reference-date",
        type=str,
        default=None,
        help="Date ages are computed at, DD-MM-YYYY (default: today)",
    )
    run_parser.add_argument(
        "--on-error",
        choices=("drop", "raise"),
        default="drop",
        help="Malformed record policy (default: drop)",
    )
    run_parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Write results as JSON to this path",
    )

    # --- generate ---
    gen_parser = subparsers.add_parser("generate", help="Generate synthetic transaction data")
    gen_parser.add_argument(
        "--rows",
        type=int,
        default=20000,
        help="Number of transactions to generate (default: 20000)",
    )
    gen_parser.add_argument(
        "--fraud-rate",
        type=float,
        default=0.05,
        help="Fraud rate (default: 0.05)",
    )
    gen_parser.add_argument(
        "--label-defect-rate",
        type=float,
        default=0.01,
        help="Fraction of labels with trailing garbage (default: 0.01)",
    )
    gen_parser.add_argument(
        "--seed",
        type=int,
        default=42,
        help="Random seed (default: 42)",
    )
    gen_parser.add_argument(
        "--output",
        type=str,
        default="data/transactions.csv",
        help="Output CSV path",
    )

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    try:
        if args.command == "run":
            return _cmd_run(args)
        elif args.command == "generate":
            return _cmd_generate(args)
    except (FraudAnalysisError, OSError, ValueError, KeyError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    return 0


def _cmd_run(args: argparse.Namespace) -> int:
    """Run the analysis on a transaction file."""
    reference_date = (
        parse_date(args.reference_date) if args.reference_date else None
    )
    config = AnalysisConfig(
        sampling=SamplingConfig(n_train=args.n_train, n_eval=args.n_eval, seed=args.seed),
        reference_date=reference_date,
        on_error=args.on_error,
        models=tuple(args.models),
        cv_folds=args.folds,
        n_jobs=args.n_jobs,
        top_n=args.top_n,
    )

    print(f"Loading transactions from {args.data}...")
    df = load_transactions(args.data, config.schema)
    print(f"  {len(df):,} transactions loaded")

    print(f"Fitting {', '.join(config.models)}...")
    report = run_analysis(df, config)
    print("\n" + report.summary())

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(report.to_dict(), f, indent=2)
        print(f"\nResults saved to {output_path}")

    return 0 if report.results else 1


def _cmd_generate(args: argparse.Namespace) -> int:
    """Generate synthetic transaction data."""
    print(f"Generating {args.rows:,} transactions (fraud rate: {args.fraud_rate:.1%})...")
    df = generate_synthetic_transactions(
        n_rows=args.rows,
        fraud_rate=args.fraud_rate,
        seed=args.seed,
        label_defect_rate=args.label_defect_rate,
    )

    output_path = Path(args.output)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_path, index=False)
    print(f"Saved to {output_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
