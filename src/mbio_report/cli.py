"""
Statistical report on microbiome composition and imaging data
----------------------------------------------------------------------------------------
Loads sample metadata, taxon counts and optional imaging / gene-function
tables, then runs the association, ordination and permutation sections of the
report and writes every result table as TSV.
"""
# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import argparse
import dataclasses
import logging
from pathlib import Path
from typing import List, Optional

# Third-Party Imports
import pandas as pd
import yaml

# Local Imports
from mbio_report import constants
from mbio_report.config import ReportConfig, get_config
from mbio_report.errors import ReportError
from mbio_report.io import load_inputs
from mbio_report.logger import setup_logging
from mbio_report.report import FAILED, StatisticalReport

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger("mbio_report")

pd.set_option('display.max_colwidth', None)

# ==================================== FUNCTIONS ===================================== #

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='mbio-report',
        description='Statistical report linking taxon composition, imaging features and covariates.',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG,
        help="Path to the configuration file.",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Directory for result tables (overrides the config).",
    )
    parser.add_argument(
        "--log-dir",
        type=Path,
        default=None,
        help="Directory for log files (overrides the config).",
    )
    parser.add_argument(
        "--permutations",
        type=int,
        default=None,
        help="Number of permutations for pseudo-ANOVA and Mantel tests.",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for the permutation random number generator.",
    )
    return parser


def apply_overrides(config: ReportConfig, args: argparse.Namespace) -> ReportConfig:
    """Command-line values replace the matching config entries."""
    settings = {
        key: getattr(args, key)
        for key in ('permutations', 'seed')
        if getattr(args, key) is not None
    }
    paths = {
        key: getattr(args, key)
        for key in ('output_dir', 'log_dir')
        if getattr(args, key) is not None
    }
    if settings:
        paths['settings'] = dataclasses.replace(config.settings, **settings)
    return dataclasses.replace(config, **paths) if paths else config


def main(argv: Optional[List[str]] = None) -> int:
    """Run the report. Returns 0 when the report ran (even with failed
    sections), 1 when configuration or inputs could not be loaded."""
    args = build_parser().parse_args(argv)

    try:
        config = apply_overrides(get_config(args.config), args)
    except (OSError, ValueError, TypeError, yaml.YAMLError) as e:
        setup_logging(args.log_dir or constants.DEFAULT_LOG_DIR)
        logger.error(f"Invalid configuration {args.config}: {e}")
        return 1

    setup_logging(config.log_dir)
    logger.info(f"Configuration loaded from {args.config}")

    try:
        inputs = load_inputs(config.inputs, config.settings)
    except (OSError, ValueError, ReportError) as e:
        logger.error(f"Loading inputs failed: {e}")
        return 1

    report = StatisticalReport(inputs, config.settings)
    report.run(output_dir=config.output_dir)

    failed = [o for o in report.sections if o.status == FAILED]
    logger.info(
        f"Report finished: {len(report.sections) - len(failed)} of "
        f"{len(report.sections)} section(s) completed or skipped"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
