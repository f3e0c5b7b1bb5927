"""
Design matrix construction for competing risks regression.

This module expands the prepared cohort into a numeric covariate matrix
and runs the screening diagnostics applied before fitting:
- one-hot expansion against a declared reference level
- near-zero-variance flags (constant columns are dropped)
- variance inflation factors (logged only)
"""

import logging
from typing import List, Optional

import numpy as np
import pandas as pd
import statsmodels.api as sm
from statsmodels.stats.outliers_influence import variance_inflation_factor

from src.data.columns import (
    DESIGN_CATEGORICAL_COLUMNS,
    DESIGN_NUMERIC_COLUMNS,
    DURATION_COL,
)

logger = logging.getLogger(__name__)

# caret::nearZeroVar defaults
FREQ_CUT = 95 / 5
UNIQUE_CUT = 10.0

VIF_THRESHOLD = 5.0


class DesignMatrix:
    """
    Reduced design matrix and its screening diagnostics.

    Attributes
    ----------
    X : pd.DataFrame
        Numeric matrix, one row per patient, indexed like the cohort
    nzv_table : pd.DataFrame
        Near-zero-variance diagnostics for every expanded column
    vif_table : pd.DataFrame
        Variance inflation factors of the reduced matrix
    dropped_columns : List[str]
        Zero-variance columns removed from the matrix
    """

    def __init__(
        self,
        X: pd.DataFrame,
        nzv_table: pd.DataFrame,
        vif_table: pd.DataFrame,
        dropped_columns: List[str],
    ):
        self.X = X
        self.nzv_table = nzv_table
        self.vif_table = vif_table
        self.dropped_columns = dropped_columns

    @property
    def feature_names(self) -> List[str]:
        return list(self.X.columns)


def one_hot_encode(
    df: pd.DataFrame,
    categorical_cols: List[str] = DESIGN_CATEGORICAL_COLUMNS,
    numeric_cols: List[str] = DESIGN_NUMERIC_COLUMNS,
) -> pd.DataFrame:
    """
    Expand categorical covariates into indicator columns.

    Every categorical column must carry a CategoricalDtype; its first
    declared category is the reference level and gets no column, so a
    k-level factor yields k-1 columns whether or not all levels occur.

    Parameters
    ----------
    df : pd.DataFrame
        Prepared cohort
    categorical_cols : List[str]
        Categorical covariates, expanded in this order
    numeric_cols : List[str]
        Numeric covariates, appended after the indicators

    Returns
    -------
    pd.DataFrame
        Float matrix named '<field>_<level>' for indicators
    """
    for col in categorical_cols:
        if not isinstance(df[col].dtype, pd.CategoricalDtype):
            raise TypeError(f"Column '{col}' must be categorical with declared levels")

    dummies = pd.get_dummies(
        df[categorical_cols],
        columns=categorical_cols,
        drop_first=True,
        dtype=float,
    )
    numeric = df[numeric_cols].astype(float)

    return pd.concat([dummies, numeric], axis=1)


def near_zero_variance(
    X: pd.DataFrame,
    freq_cut: float = FREQ_CUT,
    unique_cut: float = UNIQUE_CUT,
) -> pd.DataFrame:
    """
    Flag zero- and near-zero-variance columns.

    A column has near-zero variance when the ratio of its most common to
    its second most common value exceeds freq_cut and its percentage of
    distinct values is at most unique_cut. Constant columns are always
    flagged.

    Parameters
    ----------
    X : pd.DataFrame
        Numeric matrix
    freq_cut : float
        Frequency ratio cutoff
    unique_cut : float
        Percent-unique cutoff

    Returns
    -------
    pd.DataFrame
        Indexed by column, with freq_ratio, percent_unique, zero_var, nzv
    """
    rows = []
    n = len(X)

    for col in X.columns:
        counts = X[col].value_counts(dropna=True)
        n_unique = len(counts)

        if n_unique <= 1:
            freq_ratio = 0.0
        else:
            freq_ratio = counts.iloc[0] / counts.iloc[1]

        percent_unique = 100.0 * n_unique / n if n else 0.0
        zero_var = n_unique <= 1

        rows.append({
            'feature': col,
            'freq_ratio': freq_ratio,
            'percent_unique': percent_unique,
            'zero_var': zero_var,
            'nzv': zero_var or (freq_ratio > freq_cut and percent_unique <= unique_cut),
        })

    return pd.DataFrame(rows).set_index('feature')


def variance_inflation_factors(
    X: pd.DataFrame,
    durations: Optional[pd.Series] = None,
    vif_threshold: float = VIF_THRESHOLD,
) -> pd.DataFrame:
    """
    Variance inflation factor of every covariate.

    Each VIF comes from the auxiliary regression of one covariate on all
    the others (with intercept), so it does not depend on the outcome.
    The follow-up times are only checked for row alignment.

    Parameters
    ----------
    X : pd.DataFrame
        Numeric design matrix
    durations : pd.Series, optional
        Outcome time variable, row-aligned with X
    vif_threshold : float
        Values above this are reported as collinear

    Returns
    -------
    pd.DataFrame
        Columns ['feature', 'VIF'], sorted by VIF in descending order
    """
    if durations is not None and len(durations) != len(X):
        raise ValueError(
            f"Outcome has {len(durations)} rows but design has {len(X)}"
        )

    if X.shape[1] < 2:
        logger.warning(f"VIF needs at least 2 covariates, found {X.shape[1]}")
        return pd.DataFrame({'feature': list(X.columns), 'VIF': [np.nan] * X.shape[1]})

    exog = sm.add_constant(X.astype(float), has_constant='add').to_numpy()

    with np.errstate(divide='ignore', invalid='ignore'):
        vif = [variance_inflation_factor(exog, i + 1) for i in range(X.shape[1])]

    vif_table = pd.DataFrame({'feature': list(X.columns), 'VIF': vif})
    vif_table = vif_table.sort_values('VIF', ascending=False).reset_index(drop=True)

    high = vif_table[vif_table['VIF'] > vif_threshold]
    if not high.empty:
        for _, row in high.iterrows():
            logger.warning(f"High collinearity: {row['feature']} VIF = {row['VIF']:.2f}")

    return vif_table


def build_design_matrix(
    df: pd.DataFrame,
    categorical_cols: List[str] = DESIGN_CATEGORICAL_COLUMNS,
    numeric_cols: List[str] = DESIGN_NUMERIC_COLUMNS,
    duration_col: str = DURATION_COL,
) -> DesignMatrix:
    """
    Build the screened design matrix for the Fine-Gray fit.

    Parameters
    ----------
    df : pd.DataFrame
        Prepared cohort
    categorical_cols : List[str]
        Categorical covariates
    numeric_cols : List[str]
        Numeric covariates
    duration_col : str
        Follow-up time column

    Returns
    -------
    DesignMatrix
        Matrix with zero-variance columns removed, plus diagnostics
    """
    logger.info("Building design matrix...")

    X_full = one_hot_encode(df, categorical_cols, numeric_cols)

    nzv_table = near_zero_variance(X_full)
    logger.info(f"Near-zero-variance diagnostics:\n{nzv_table.to_string()}")

    dropped = nzv_table.index[nzv_table['zero_var']].tolist()
    if dropped:
        logger.warning(f"Dropping zero-variance columns: {dropped}")
    X = X_full.drop(columns=dropped)

    # Rows stay aligned 1:1 with the cohort
    if not X.index.equals(df.index):
        raise ValueError("Design matrix rows are not aligned with the cohort")

    vif_table = variance_inflation_factors(X, df[duration_col])
    logger.info(f"Variance inflation factors:\n{vif_table.to_string(index=False)}")

    logger.info(f"Design matrix: {X.shape[0]:,} rows x {X.shape[1]} columns")
    return DesignMatrix(X, nzv_table, vif_table, dropped)
