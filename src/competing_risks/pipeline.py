"""
Competing-risks analysis of the cirrhosis cohort.

Single forward pass:
    load -> prepare -> build design matrix -> fit Fine-Gray -> report CIF

Usage:
    python -m src.competing_risks.pipeline
    python -m src.competing_risks.pipeline --source https://host/cirrhosis.csv --output reports/cif.png
    python -m src.competing_risks.pipeline --max-iter 100
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, Optional, Union

import matplotlib
import pandas as pd

from src.data.columns import (
    DURATION_COL,
    EVENT_COL,
    GROUP_COL,
    EVENT_OF_INTEREST,
    COMPETING_EVENTS,
    LANDMARK_DAYS,
)
from src.data.download import load_cirrhosis_data, DEFAULT_TIMEOUT
from src.data.errors import DataLoadError, SchemaError, DegenerateCohortError
from src.data.preprocess import prepare_features
from src.data.utils import print_summary_stats

from .data_prep import build_design_matrix
from .fine_gray import fit_fine_gray, DEFAULT_MAX_ITER
from .cumulative_incidence import (
    estimate_cif_grid,
    cif_at_times,
    plot_cumulative_incidence,
    compare_cif_vs_kaplan_meier,
    save_figure,
)

logger = logging.getLogger('src')

DEFAULT_SOURCE = 'data/raw/cirrhosis.csv'
DEFAULT_OUTPUT = 'reports/cumulative_incidence.png'
DEFAULT_LOG_FILE = 'analysis.log'


def configure_logging(log_file: Optional[str] = DEFAULT_LOG_FILE) -> None:
    """Attach console and file handlers to the package logger."""
    logger.setLevel(logging.INFO)

    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def run_pipeline(
    source: Union[str, Path] = DEFAULT_SOURCE,
    output: Optional[Union[str, Path]] = DEFAULT_OUTPUT,
    max_iter: int = DEFAULT_MAX_ITER,
    timeout: float = DEFAULT_TIMEOUT,
    raw_df: Optional[pd.DataFrame] = None,
) -> Dict[str, object]:
    """
    Run the full analysis.

    Parameters
    ----------
    source : str or Path
        URL or path of the cohort CSV (ignored when raw_df is given)
    output : str or Path, optional
        Where to write the CIF plot; nothing is written if None
    max_iter : int
        Iteration bound of the Fine-Gray fit
    timeout : float
        Download timeout in seconds
    raw_df : pd.DataFrame, optional
        Already loaded cohort

    Returns
    -------
    Dict[str, object]
        'cohort', 'design', 'model', 'cif', 'landmarks', 'ax'
    """
    if raw_df is None:
        raw_df = load_cirrhosis_data(source, timeout=timeout)

    cohort, _ = prepare_features(raw_df)
    print_summary_stats(cohort, "Cirrhosis Cohort")

    design = build_design_matrix(cohort)

    model = fit_fine_gray(
        cohort[DURATION_COL].to_numpy(),
        cohort[EVENT_COL].to_numpy(),
        design.X,
        primary_event=EVENT_OF_INTEREST,
        competing_events=COMPETING_EVENTS,
        max_iter=max_iter,
    )
    if model.converged_:
        logger.info(f"Subdistribution hazard ratios:\n{model.get_hazard_ratios().to_string(index=False)}")

    # Reporting uses time, event and raw group label only
    estimators = estimate_cif_grid(
        cohort, GROUP_COL,
        events=[EVENT_OF_INTEREST] + COMPETING_EVENTS,
        duration_col=DURATION_COL,
        event_col=EVENT_COL,
    )
    landmarks = cif_at_times(estimators, LANDMARK_DAYS)
    logger.info(f"Cumulative incidence at {LANDMARK_DAYS} days:\n{landmarks.to_string()}")

    ax = plot_cumulative_incidence(estimators)
    if output is not None:
        output = Path(output)
        save_figure(ax, output)
        km_ax = compare_cif_vs_kaplan_meier(cohort, DURATION_COL, EVENT_COL, EVENT_OF_INTEREST)
        save_figure(km_ax, output.with_name(f"{output.stem}_vs_km{output.suffix}"))

    return {
        'cohort': cohort,
        'design': design,
        'model': model,
        'cif': estimators,
        'landmarks': landmarks,
        'ax': ax,
    }


def main():
    """Main entry point for the analysis."""
    parser = argparse.ArgumentParser(
        description='Fine-Gray competing-risks analysis of the cirrhosis cohort'
    )
    parser.add_argument(
        '--source', '-s',
        type=str,
        default=DEFAULT_SOURCE,
        help=f'Path or URL of the cohort CSV (default: {DEFAULT_SOURCE})'
    )
    parser.add_argument(
        '--output', '-o',
        type=str,
        default=DEFAULT_OUTPUT,
        help=f'Path of the cumulative incidence plot (default: {DEFAULT_OUTPUT})'
    )
    parser.add_argument(
        '--max-iter',
        type=int,
        default=DEFAULT_MAX_ITER,
        help=f'Maximum Newton-Raphson steps for the Fine-Gray fit (default: {DEFAULT_MAX_ITER})'
    )
    parser.add_argument(
        '--timeout',
        type=float,
        default=DEFAULT_TIMEOUT,
        help=f'Download timeout in seconds (default: {DEFAULT_TIMEOUT})'
    )
    parser.add_argument(
        '--log-file',
        type=str,
        default=DEFAULT_LOG_FILE,
        help=f'Log file (default: {DEFAULT_LOG_FILE})'
    )

    args = parser.parse_args()

    matplotlib.use('Agg')
    configure_logging(args.log_file)

    try:
        run_pipeline(
            source=args.source,
            output=args.output,
            max_iter=args.max_iter,
            timeout=args.timeout,
        )
    except (DataLoadError, SchemaError, DegenerateCohortError) as e:
        logger.error(f"Analysis aborted: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
