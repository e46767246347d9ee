"""Command line entrypoint for building genetic-correlation matrices from rg logs."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Sequence

from . import config, run
from .assemble import MODES
from .errors import GcorrError
from .logging_utils import configure_logging


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:  # pragma: no cover - argparse sanitises this path in tests
        raise argparse.ArgumentTypeError("Expected an integer value") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError("Value must be a positive integer")
    return parsed


def _positive_float(value: str) -> float:
    try:
        parsed = float(value)
    except ValueError as exc:  # pragma: no cover - argparse sanitises this path in tests
        raise argparse.ArgumentTypeError("Expected a numeric value") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError("Value must be positive")
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gcorr",
        description="Collect LDSC genetic-correlation logs into annotated rg matrices and heatmaps.",
    )
    parser.add_argument(
        "--manifest",
        type=str,
        help=(
            "Sumstat manifest (TSV, or CSV by extension) with description, phenotype, sex, "
            "is_primary_gwas and ldsc_sumstat_file columns. Required for the trait-vs-metric matrix."
        ),
    )
    parser.add_argument("--trait-logs", type=str, help="Directory of trait-vs-metric rg logs.")
    parser.add_argument("--metric-logs", type=str, help="Directory of metric-vs-metric rg logs.")
    parser.add_argument("--out", type=str, help="Output directory for tables, matrices and figures.")
    parser.add_argument(
        "--sumstat-dir",
        type=str,
        help="Directory prefix applied to manifest sumstat file names in the identifier map.",
    )
    parser.add_argument(
        "--traits",
        type=str,
        help="File with one trait display name per line. Defaults to every manifest description.",
    )
    parser.add_argument("--config", type=str, help="JSON file of configuration overrides.")
    parser.add_argument("--workers", type=_positive_int, help="Number of threads used to parse logs.")
    parser.add_argument(
        "--se-threshold",
        type=_positive_float,
        help="Discard every result of a subject whose group has any standard error above this value.",
    )
    parser.add_argument(
        "--p-adjust",
        type=str,
        help="statsmodels multipletests method applied per metric (default: holm).",
    )
    parser.add_argument("--alpha", type=float, help="Significance level for both marker tiers.")
    parser.add_argument("--log-dir", type=str, help="Directory for per-run log files.")
    parser.add_argument(
        "--only",
        choices=MODES,
        help="Build only one of the two matrices.",
    )
    parser.add_argument("--png", action="store_true", help="Also write PNG heatmaps.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging.")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def apply_cli_configuration(args: argparse.Namespace) -> dict[str, object]:
    """Merge CLI arguments over the config file, environment and defaults."""

    overrides: dict[str, object] = {
        "manifest": getattr(args, "manifest", None),
        "trait_logs": getattr(args, "trait_logs", None),
        "metric_logs": getattr(args, "metric_logs", None),
        "out_dir": getattr(args, "out", None),
        "sumstat_dir": getattr(args, "sumstat_dir", None),
        "traits": getattr(args, "traits", None),
        "workers": getattr(args, "workers", None),
        "se_threshold": getattr(args, "se_threshold", None),
        "p_adjust_method": getattr(args, "p_adjust", None),
        "alpha": getattr(args, "alpha", None),
        "log_dir": getattr(args, "log_dir", None),
        "only": getattr(args, "only", None),
    }
    ctx = config.get_ctx(overrides, config_file=getattr(args, "config", None))

    if getattr(args, "png", False):
        formats = list(ctx.get("figure_formats") or ["pdf"])
        if "png" not in formats:
            formats.append("png")
        ctx["figure_formats"] = formats
    return ctx


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)
    try:
        ctx = apply_cli_configuration(args)
        run.run_pipeline(ctx)
    except (GcorrError, ValueError, FileNotFoundError) as exc:
        print(f"gcorr: error: {exc}", file=sys.stderr, flush=True)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI execution
    sys.exit(main())
