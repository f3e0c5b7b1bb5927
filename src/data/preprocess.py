"""
Prepare the cirrhosis cohort for competing-risks analysis.

This module transforms the raw cohort CSV into an analysis-ready frame with:
- N_Days: follow-up time in days
- event_code: 0 = censored, 1 = death, 2 = liver transplant
- declared categoricals with missing values imputed by mode
- Edema_bin: none vs. any edema
- Age_std: standardized age

Usage:
    python -m src.data.preprocess --input data/raw/cirrhosis.csv --output data/processed
"""

import argparse
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.preprocessing import StandardScaler

from .columns import (
    INPUT_COLUMNS,
    INPUT_SCHEMA,
    CATEGORICAL_LEVELS,
    NUMERIC_COLUMNS,
    NULLABLE_COLUMNS,
    EDEMA_BINARY_MAP,
    EDEMA_BINARY_LEVELS,
    AGE_STD_COL,
    EDEMA_BIN_COL,
    EVENT_COL,
)
from .download import load_cirrhosis_data
from .errors import SchemaError, DegenerateCohortError
from .utils import (
    map_status_to_event_code,
    mode_value,
    count_missing,
    validate_data,
    print_summary_stats,
)

logger = logging.getLogger(__name__)


def select_columns(df: pd.DataFrame, columns: List[str] = INPUT_COLUMNS) -> pd.DataFrame:
    """
    Keep the analysis columns, in declared order.

    Args:
        df: Raw cohort
        columns: Required columns

    Returns:
        DataFrame restricted to the required columns

    Raises:
        SchemaError: If any required column is absent
    """
    is_valid, missing = validate_data(df, columns)
    if not is_valid:
        raise SchemaError(f"Missing expected columns: {missing}")
    return df[columns].copy()


def cast_categoricals(df: pd.DataFrame) -> pd.DataFrame:
    """
    Cast columns to their declared types.

    Categorical columns get a CategoricalDtype with the declared levels.
    Values outside the declared levels are rejected, never coerced to
    missing. Nulls are only accepted in nullable columns.

    Args:
        df: Cohort restricted to the input columns

    Returns:
        Typed DataFrame

    Raises:
        SchemaError: On out-of-vocabulary values, unexpected nulls or
            unparsable numbers
    """
    df = df.copy()

    for col, field in INPUT_SCHEMA.items():
        if col not in df.columns:
            continue

        if field['dtype'] == 'category':
            values = df[col].astype(object).where(df[col].notna())
            values = values.map(lambda v: v.strip() if isinstance(v, str) else v)
            invalid = values.dropna()[~values.dropna().isin(field['levels'])]
            if not invalid.empty:
                raise SchemaError(
                    f"Column '{col}' has values outside declared levels "
                    f"{field['levels']}: {sorted(invalid.astype(str).unique())}"
                )
            df[col] = values.astype(pd.CategoricalDtype(field['levels']))
        else:
            numeric = pd.to_numeric(df[col], errors='coerce')
            unparsable = numeric.isna() & df[col].notna()
            if unparsable.any():
                raise SchemaError(
                    f"Column '{col}' has {unparsable.sum()} non-numeric values: "
                    f"{sorted(df.loc[unparsable, col].astype(str).unique())[:5]}"
                )
            df[col] = numeric.astype(field['dtype'])

        if not field['nullable'] and df[col].isna().any():
            raise SchemaError(f"Column '{col}' has {df[col].isna().sum()} missing values")

    return df


def impute_mode(
    df: pd.DataFrame,
    columns: List[str] = NULLABLE_COLUMNS,
    fill_values: Optional[Dict[str, str]] = None,
) -> Tuple[pd.DataFrame, Dict[str, str]]:
    """
    Replace missing categorical values with the column mode.

    The mode of each column is computed once over the full cohort before
    any substitution. Columns without missing values are left untouched.

    Args:
        df: Typed cohort
        columns: Nullable categorical columns to impute
        fill_values: Precomputed fill values (computed from df if None)

    Returns:
        Tuple of (imputed DataFrame, fill value per column)
    """
    df = df.copy()

    if fill_values is None:
        fill_values = {
            col: mode_value(df[col], CATEGORICAL_LEVELS[col])
            for col in columns
        }

    for col in columns:
        n_missing = df[col].isna().sum()
        if n_missing == 0:
            continue
        df[col] = df[col].fillna(fill_values[col])
        logger.info(f"Imputed {n_missing} missing '{col}' values with '{fill_values[col]}'")

    return df, fill_values


def derive_edema_binary(df: pd.DataFrame) -> pd.DataFrame:
    """Collapse edema to none ('N') vs. any ('Y')."""
    df = df.copy()
    df[EDEMA_BIN_COL] = (
        df['Edema'].astype(object)
        .map(EDEMA_BINARY_MAP)
        .astype(pd.CategoricalDtype(EDEMA_BINARY_LEVELS))
    )
    return df


def standardize_age(
    df: pd.DataFrame,
    scaler: Optional[StandardScaler] = None,
) -> Tuple[pd.DataFrame, StandardScaler]:
    """
    Standardize age to zero mean and unit (population) variance.

    Args:
        df: Cohort with an 'Age' column
        scaler: Already fitted scaler (fitted on df if None)

    Returns:
        Tuple of (DataFrame with Age_std, fitted scaler)

    Raises:
        DegenerateCohortError: If age is constant across the cohort
    """
    df = df.copy()
    ages = df[['Age']].to_numpy(dtype=float)

    if scaler is None:
        if len(ages) == 0 or np.isclose(ages.std(), 0.0):
            raise DegenerateCohortError(
                "Age has zero variance across the cohort; cannot standardize"
            )
        scaler = StandardScaler()
        scaler.fit(ages)

    df[AGE_STD_COL] = scaler.transform(ages)[:, 0]
    return df, scaler


def add_event_codes(df: pd.DataFrame) -> pd.DataFrame:
    """Map terminal status to the competing event code."""
    df = df.copy()
    df[EVENT_COL] = df['Status'].astype(object).map(map_status_to_event_code).astype(int)
    return df


class FeaturePreparer:
    """
    Cohort preparation with parameters fixed at fit time.

    Fitting computes the imputation fill values and the age scaler once
    over the full cohort; transform applies them row-wise.

    Attributes
    ----------
    fill_values_ : Dict[str, str]
        Mode per nullable categorical column
    scaler_ : StandardScaler
        Fitted age scaler
    missing_counts_ : pd.Series
        Missing values per column before imputation
    """

    def __init__(self, nullable_columns: List[str] = NULLABLE_COLUMNS):
        self.nullable_columns = nullable_columns

        self.fill_values_ = None
        self.scaler_ = None
        self.missing_counts_ = None

    def _typed(self, raw_df: pd.DataFrame) -> pd.DataFrame:
        return cast_categoricals(select_columns(raw_df))

    def fit(self, raw_df: pd.DataFrame) -> 'FeaturePreparer':
        df = self._typed(raw_df)
        self.missing_counts_ = count_missing(df)

        df, self.fill_values_ = impute_mode(df, self.nullable_columns)
        _, self.scaler_ = standardize_age(df)
        return self

    def transform(self, raw_df: pd.DataFrame) -> pd.DataFrame:
        if self.fill_values_ is None:
            raise ValueError("FeaturePreparer not fitted yet")

        df = self._typed(raw_df)
        df, _ = impute_mode(df, self.nullable_columns, fill_values=self.fill_values_)
        df = derive_edema_binary(df)
        df, _ = standardize_age(df, scaler=self.scaler_)
        df = add_event_codes(df)
        return df

    def fit_transform(self, raw_df: pd.DataFrame) -> pd.DataFrame:
        return self.fit(raw_df).transform(raw_df)


def prepare_features(raw_df: pd.DataFrame) -> Tuple[pd.DataFrame, FeaturePreparer]:
    """
    Run the full preparation on a raw cohort.

    Args:
        raw_df: Cohort as loaded from CSV

    Returns:
        Tuple of (prepared DataFrame, fitted FeaturePreparer)
    """
    logger.info("Preparing features...")

    preparer = FeaturePreparer()
    df = preparer.fit_transform(raw_df)

    logger.info(f"Missing values before imputation:\n{preparer.missing_counts_.to_string()}")
    logger.info(f"Prepared {len(df):,} patients")
    return df, preparer


def main():
    """Entry point: prepare the cohort and save it as CSV."""
    parser = argparse.ArgumentParser(
        description='Prepare the cirrhosis cohort for competing-risks analysis'
    )
    parser.add_argument('--input', '-i', type=str, required=True,
                        help='Path or URL of the raw cohort CSV')
    parser.add_argument('--output', '-o', type=str, required=True,
                        help='Path to output directory')
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    df, _ = prepare_features(load_cirrhosis_data(args.input))

    output_path = Path(args.output)
    output_path.mkdir(parents=True, exist_ok=True)
    csv_file = output_path / 'cirrhosis_prepared.csv'
    df.to_csv(csv_file, index=False)
    logger.info(f"Saved {len(df):,} patients to {csv_file}")

    print_summary_stats(df, "Prepared Cohort")


if __name__ == '__main__':
    main()
