"""
exprqc check command - Run the QC pipeline on a matrix and its metadata.

Usage:
    exprqc check --matrix counts.txt --metadata design.txt --config qc.yaml --output results/qc
"""

import argparse
import logging
from datetime import datetime
from pathlib import Path

from exprqc.core.errors import ExprQCError
from exprqc.utils.fileio import atomic_write_csv, atomic_write_json

logger = logging.getLogger(__name__)


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the check subcommand."""
    parser = subparsers.add_parser(
        "check",
        help="Reconcile, tidy and quality-check an expression matrix",
        description="Align matrix columns with metadata, recode metadata, and report "
                    "summaries, correlation outliers, confounds and marker concordance"
    )

    parser.add_argument("--config", "-c", type=Path, default=None,
                        help="Path to YAML/JSON config file (CLI args override config values)")
    parser.add_argument("--matrix", "-m", type=Path, default=None,
                        help="Expression matrix (features x samples, delimited text)")
    parser.add_argument("--metadata", type=Path, default=None,
                        help="Sample metadata table (one row per sample)")
    parser.add_argument("--output", "-o", type=Path, default=None,
                        help="Output directory")
    parser.add_argument("--outlier-threshold", type=float, default=None,
                        help="Flag samples whose best correlation to any other sample is below this")
    parser.add_argument("--skew-threshold", type=float, default=None,
                        help="Dominant-level share at which a confound is reported as partial")
    parser.add_argument("--separation-threshold", type=float, default=None,
                        help="Marker cutoff for concordance (default: derived from the data)")
    parser.add_argument("--workers", type=int, default=None,
                        help="Threads for the correlation matrix (default: 1)")

    parser.set_defaults(func=run_check)


def write_outputs(result, output_dir: Path) -> list[Path]:
    """Write every QC artifact under `output_dir`; returns the written paths."""
    from exprqc.quality.concordance import summarize_verdicts

    output_dir.mkdir(parents=True, exist_ok=True)
    written = []

    def _csv(name, frame, index=True):
        path = output_dir / name
        atomic_write_csv(path, frame, index=index)
        written.append(path)

    _csv("long.csv", result.long, index=False)
    _csv("sample_summary.csv", result.sample_summary)
    _csv("metadata_summary.csv", result.metadata_summary)

    for (field_a, field_b), frame in result.cross_tabs.items():
        _csv(f"crosstab_{field_a}_{field_b}.csv", frame)

    if result.correlation is not None:
        _csv("correlation.csv", result.correlation.to_frame())

    if result.confounds:
        import pandas as pd
        _csv("confounds.csv", pd.concat([r.to_frame() for r in result.confounds], ignore_index=True),
             index=False)

    if result.verdicts:
        _csv("concordance.csv", summarize_verdicts(result.verdicts))

    summary_path = output_dir / "summary.json"
    atomic_write_json(summary_path, result.to_dict())
    written.append(summary_path)
    return written


def run_check(args: argparse.Namespace) -> int:
    """Execute the check command."""
    from exprqc.cli.config import PipelineConfig, load_config, merge_config_with_args
    from exprqc.io.sources import DelimitedFileSource
    from exprqc.pipeline import run_pipeline

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    try:
        raw_config = load_config(args.config) if args.config else {}
        if args.config:
            print(f"Loaded configuration from: {args.config}")
        config = PipelineConfig.from_dict(merge_config_with_args(raw_config, args))
    except (FileNotFoundError, ValueError, TypeError) as e:
        print(f"ERROR: Config file error: {e}")
        return 1

    if config.matrix is None:
        print("ERROR: --matrix is required (via CLI or config file)")
        return 1
    if config.metadata_path is None:
        print("ERROR: --metadata is required (via CLI or config file)")
        return 1
    if config.output is None:
        print("ERROR: --output is required (via CLI or config file)")
        return 1

    start_time = datetime.now()
    print(f"\n{'='*70}")
    print("  Expression QC")
    print(f"{'='*70}")
    print(f"Started: {start_time.strftime('%Y-%m-%d %H:%M:%S')}\n")

    source = DelimitedFileSource(config.matrix, config.metadata_path)
    try:
        result = run_pipeline(source, config)
    except ExprQCError as e:
        logger.error(f"QC failed: {e}")
        return 1
    except (FileNotFoundError, ValueError, KeyError) as e:
        logger.error(f"Could not read input: {e}")
        return 1

    written = write_outputs(result, config.output)

    print(f"\nLoaded: {result.table.n_features:,} features x {result.table.n_samples:,} samples")
    print(f"Value range: {result.value_range[0]:.3f} .. {result.value_range[1]:.3f}"
          f"{' (missing values present)' if result.has_missing else ''}")
    if config.outliers.threshold is not None:
        print(f"Correlation outliers (< {config.outliers.threshold}): "
              f"{sorted(result.outliers) if result.outliers else 'none'}")
    for report in result.confounds:
        print(f"Confound {report.factor_a} vs {report.factor_b}: "
              f"{len(report.fully_confounded)} full, {len(report.partially_confounded)} partial")
    if result.verdicts:
        print(f"Marker-label mismatches: {result.mislabeled if result.mislabeled else 'none'}")

    duration = datetime.now() - start_time
    print(f"\nWrote {len(written)} files to {config.output}")
    print(f"Completed in {duration.total_seconds():.1f}s")
    return 0
