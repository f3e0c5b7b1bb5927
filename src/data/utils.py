"""
Utility functions for cohort preprocessing.
"""

import pandas as pd
from typing import Optional, Tuple, List, Sequence

from .columns import (
    STATUS_EVENT_CODES,
    EVENT_LABELS,
    DURATION_COL,
    EVENT_COL,
)
from .errors import SchemaError


def map_status_to_event_code(status: str) -> int:
    """
    Map terminal status to competing event code.

    Args:
        status: Status value ('C', 'D' or 'CL')

    Returns:
        0 (censored), 1 (death) or 2 (transplant)

    Raises:
        SchemaError: If the status is not a declared level
    """
    if pd.isna(status) or status not in STATUS_EVENT_CODES:
        raise SchemaError(f"Unknown status value: {status!r}")
    return STATUS_EVENT_CODES[status]


def mode_value(values: pd.Series, levels: Sequence[str]) -> str:
    """
    Most frequent non-null value of a categorical column.

    Ties are broken by declared level order: the earliest level among
    the most frequent ones wins.

    Args:
        values: Column values (nulls are ignored)
        levels: Declared level order

    Returns:
        Fill value

    Raises:
        SchemaError: If the column has no non-null values
    """
    observed = values.dropna()
    if observed.empty:
        raise SchemaError(f"Cannot compute mode of column '{values.name}': all values missing")

    counts = observed.astype(object).value_counts().reindex(list(levels), fill_value=0)
    return counts.idxmax()


def count_missing(df: pd.DataFrame, columns: Optional[List[str]] = None) -> pd.Series:
    """
    Count missing values per column.

    Args:
        df: DataFrame to inspect
        columns: Columns to count (all columns if None)

    Returns:
        Series of missing counts indexed by column name
    """
    if columns is not None:
        df = df[columns]
    return df.isna().sum().rename('n_missing')


def validate_data(df: pd.DataFrame, required_columns: List[str]) -> Tuple[bool, List[str]]:
    """
    Validate that dataframe has required columns.

    Args:
        df: DataFrame to validate
        required_columns: List of required column names

    Returns:
        Tuple of (is_valid, missing_columns)
    """
    missing = [col for col in required_columns if col not in df.columns]
    return len(missing) == 0, missing


def print_summary_stats(df: pd.DataFrame, name: str = "Cohort"):
    """
    Print summary statistics for a competing-risks cohort.

    Args:
        df: Prepared cohort
        name: Name for display
    """
    print(f"\n{'='*60}")
    print(f"{name} Summary")
    print(f"{'='*60}")
    print(f"Total patients: {len(df):,}")

    if EVENT_COL in df.columns:
        print(f"\nEvent distribution:")
        for code, label in EVENT_LABELS.items():
            n = (df[EVENT_COL] == code).sum()
            print(f"  {label:<10}: {n:,} ({n/len(df)*100:.1f}%)")

    if DURATION_COL in df.columns:
        print(f"\nFollow-up (days):")
        print(f"  Mean:   {df[DURATION_COL].mean():.1f}")
        print(f"  Median: {df[DURATION_COL].median():.1f}")
        print(f"  Min:    {df[DURATION_COL].min():.0f}")
        print(f"  Max:    {df[DURATION_COL].max():.0f}")

    print(f"{'='*60}\n")
