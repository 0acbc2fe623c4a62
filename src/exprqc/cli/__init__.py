"""
exprqc CLI - Command-line interface for expression matrix quality control.

Commands:
    exprqc check   - Reconcile identifiers, recode metadata and run QC checks
"""

import argparse
import sys
from typing import Optional, List


def main(args: Optional[List[str]] = None) -> int:
    """Main CLI dispatcher for exprqc."""
    parser = argparse.ArgumentParser(
        prog="exprqc",
        description="Quality control for expression matrices and sample metadata",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  check         Reconcile, tidy and quality-check an expression matrix

Examples:
  exprqc check --matrix counts.txt --metadata design.txt --output results/qc
  exprqc check --config qc.yaml --outlier-threshold 0.85 --workers 4
        """
    )

    parser.add_argument(
        "--version", "-V",
        action="version",
        version="%(prog)s 0.1.0"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    from exprqc.cli import check
    check.register_parser(subparsers)

    parsed_args = parser.parse_args(args)

    if parsed_args.command is None:
        parser.print_help()
        return 0

    return parsed_args.func(parsed_args)


if __name__ == "__main__":
    sys.exit(main())
