"""
Fine-Gray subdistribution hazard regression.

This module fits the Fine-Gray model through its weighted counting-process
representation: subjects with a competing event stay in the risk set after
their event, with inverse-probability-of-censoring weights, and the weighted
Cox partial likelihood is maximised by lifelines. Each interval enters the
risk set at its start time, and standard errors are the robust sandwich
estimates clustered on the subject, as in cmprsk::crr.

References:
-----------
Fine, J.P. and Gray, R.J. (1999). "A Proportional Hazards Model for the
Subdistribution of a Competing Risk." JASA, 94(446), 496-509.

Geskus, R.B. (2011). "Cause-Specific Cumulative Incidence Estimation and
the Fine and Gray Model Under Both Left Truncation and Right Censoring."
Biometrics, 67(1), 39-49.
"""

import logging
import warnings
from typing import List

import numpy as np
import pandas as pd
from lifelines import CoxPHFitter, KaplanMeierFitter
from lifelines.exceptions import ConvergenceError, ConvergenceWarning

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITER = 50

ID_COL = 'fg_id'
START_COL = 'fg_start'
STOP_COL = 'fg_stop'
EVENT_COL = 'fg_event'
WEIGHT_COL = 'fg_weight'


def censoring_survival_left_limit(
    durations: np.ndarray,
    event_codes: np.ndarray,
    times: np.ndarray,
    censoring_code: int = 0,
) -> np.ndarray:
    """
    Kaplan-Meier estimate of the censoring distribution, G(t-).

    Parameters
    ----------
    durations : np.ndarray
        Follow-up times
    event_codes : np.ndarray
        Event codes (censoring_code marks censored subjects)
    times : np.ndarray
        Times at which to evaluate the left limit
    censoring_code : int
        Code of censored records

    Returns
    -------
    np.ndarray
        G evaluated just before each requested time
    """
    kmf = KaplanMeierFitter()
    kmf.fit(durations, event_observed=(event_codes == censoring_code))

    sf = kmf.survival_function_.iloc[:, 0]
    grid = sf.index.to_numpy(dtype=float)
    values = sf.to_numpy(dtype=float)

    idx = np.searchsorted(grid, np.asarray(times, dtype=float), side='left') - 1
    return np.where(idx < 0, 1.0, values[np.clip(idx, 0, None)])


def create_fine_gray_dataset(
    durations: np.ndarray,
    event_codes: np.ndarray,
    X: pd.DataFrame,
    primary_event: int = 1,
    censoring_code: int = 0,
) -> pd.DataFrame:
    """
    Expand subjects into weighted (start, stop] intervals.

    Censored subjects and subjects with the primary event contribute one
    interval (0, T_i] with weight 1. A subject with a competing event at
    T_i contributes (0, T_i] and then one interval ending at every later
    primary event time u, weighted by G(u-) / G(T_i-).

    Parameters
    ----------
    durations : np.ndarray
        Follow-up times, row-aligned with X
    event_codes : np.ndarray
        Event codes, row-aligned with X
    X : pd.DataFrame
        Covariate matrix
    primary_event : int
        Event of interest
    censoring_code : int
        Code of censored records

    Returns
    -------
    pd.DataFrame
        Columns fg_id, fg_start, fg_stop, fg_event, fg_weight plus the
        covariates of each subject
    """
    durations = np.asarray(durations, dtype=float)
    event_codes = np.asarray(event_codes, dtype=int)

    primary_times = np.unique(durations[event_codes == primary_event])

    ids, starts, stops, events, weights = [], [], [], [], []

    for i, (t_i, e_i) in enumerate(zip(durations, event_codes)):
        ids.append(i)
        starts.append(0.0)
        stops.append(t_i)
        events.append(int(e_i == primary_event))
        weights.append(1.0)

        if e_i in (censoring_code, primary_event):
            continue

        later = primary_times[primary_times > t_i]
        if len(later) == 0:
            continue

        g_i = censoring_survival_left_limit(durations, event_codes, [t_i], censoring_code)[0]
        g_later = censoring_survival_left_limit(durations, event_codes, later, censoring_code)

        ids.extend([i] * len(later))
        starts.extend(np.concatenate([[t_i], later[:-1]]))
        stops.extend(later)
        events.extend([0] * len(later))
        weights.extend(g_later / g_i)

    df_fg = pd.DataFrame({
        ID_COL: ids,
        START_COL: starts,
        STOP_COL: stops,
        EVENT_COL: events,
        WEIGHT_COL: weights,
    })

    # Zero weight: no one left at risk in the censoring distribution
    df_fg = df_fg[df_fg[WEIGHT_COL] > 0]

    covariates = X.reset_index(drop=True).iloc[df_fg[ID_COL].to_numpy()].reset_index(drop=True)
    return pd.concat([df_fg.reset_index(drop=True), covariates], axis=1)


def _is_convergence_failure(message: warnings.WarningMessage) -> bool:
    text = str(message.message).lower()
    return issubclass(message.category, ConvergenceWarning) and (
        'failed to converge' in text or 'convergence halted' in text
    )


class FineGrayRegression:
    """
    Fine-Gray competing risks model.

    Parameters
    ----------
    primary_event : int
        Event code for the primary event of interest
    competing_events : List[int]
        Event codes for competing events
    max_iter : int
        Maximum number of Newton-Raphson steps
    penalizer : float
        L2 penalty passed to lifelines
    alpha : float
        Confidence level for the summary intervals is 1 - alpha

    Attributes
    ----------
    model_ : CoxPHFitter
        The fitted weighted Cox model (None unless converged)
    feature_names_ : List[str]
        Names of features used in fitting
    coef_ : pd.Series
        Log subdistribution hazard ratios
    se_ : pd.Series
        Robust standard errors of coef_, clustered on the subject
    summary_ : pd.DataFrame
        lifelines summary table
    converged_ : bool
        Whether the fit converged
    convergence_message_ : str
        Reason for non-convergence, if any
    """

    def __init__(
        self,
        primary_event: int = 1,
        competing_events: List[int] = [2],
        max_iter: int = DEFAULT_MAX_ITER,
        penalizer: float = 0.0,
        alpha: float = 0.05,
    ):
        self.primary_event = primary_event
        self.competing_events = competing_events
        self.max_iter = max_iter
        self.penalizer = penalizer
        self.alpha = alpha

        self.model_ = None
        self.feature_names_ = None
        self.coef_ = None
        self.se_ = None
        self.summary_ = None
        self.converged_ = False
        self.convergence_message_ = None

    def _not_converged(self, reason: str) -> 'FineGrayRegression':
        self.model_ = None
        self.coef_ = None
        self.se_ = None
        self.summary_ = None
        self.converged_ = False
        self.convergence_message_ = reason
        logger.warning(f"Fine-Gray model did not converge: {reason}")
        return self

    def fit(
        self,
        durations: np.ndarray,
        event_codes: np.ndarray,
        X: pd.DataFrame,
    ) -> 'FineGrayRegression':
        """
        Fit the Fine-Gray model.

        Non-convergence is not an error: converged_ is set to False and
        the estimates are left empty.

        Parameters
        ----------
        durations : np.ndarray
            Follow-up times, row-aligned with X
        event_codes : np.ndarray
            Event codes (0=censored, primary_event, competing events)
        X : pd.DataFrame
            Design matrix

        Returns
        -------
        self
        """
        durations = np.asarray(durations, dtype=float)
        event_codes = np.asarray(event_codes, dtype=int)

        if not (len(durations) == len(event_codes) == len(X)):
            raise ValueError(
                f"Rows are not aligned: {len(durations)} durations, "
                f"{len(event_codes)} event codes, {len(X)} design rows"
            )
        if (durations <= 0).any():
            raise ValueError("Durations must be positive")

        known = {0, self.primary_event, *self.competing_events}
        unknown = set(np.unique(event_codes)) - known
        if unknown:
            raise ValueError(f"Unknown event codes: {sorted(unknown)}")

        self.feature_names_ = list(X.columns)

        if self.max_iter < 1:
            return self._not_converged(f"max_iter={self.max_iter} allows no iterations")

        df_fg = create_fine_gray_dataset(
            durations, event_codes, X, primary_event=self.primary_event
        )
        logger.info(
            f"Fine-Gray risk set: {len(df_fg):,} intervals for {len(X):,} subjects"
        )

        cph = CoxPHFitter(penalizer=self.penalizer, alpha=self.alpha)

        try:
            with warnings.catch_warnings(record=True) as caught:
                warnings.simplefilter('always')
                cph.fit(
                    df_fg,
                    duration_col=STOP_COL,
                    event_col=EVENT_COL,
                    entry_col=START_COL,
                    weights_col=WEIGHT_COL,
                    cluster_col=ID_COL,
                    robust=True,
                    fit_options={'max_steps': self.max_iter},
                )
        except (ConvergenceError, np.linalg.LinAlgError) as e:
            return self._not_converged(str(e).strip())

        failures = [w for w in caught if _is_convergence_failure(w)]
        for w in caught:
            if w not in failures:
                logger.debug(f"lifelines: {w.message}")

        if failures:
            return self._not_converged(str(failures[0].message).strip())

        summary = cph.summary.loc[self.feature_names_]
        if not (np.isfinite(summary['coef']).all() and np.isfinite(summary['se(coef)']).all()):
            return self._not_converged("non-finite coefficient estimates")

        self.model_ = cph
        self.summary_ = summary
        self.coef_ = summary['coef']
        self.se_ = summary['se(coef)']
        self.converged_ = True
        self.convergence_message_ = None

        return self

    def get_hazard_ratios(self) -> pd.DataFrame:
        """
        Get subdistribution hazard ratios (exp of coefficients).

        Returns
        -------
        pd.DataFrame
            DataFrame with feature names, coefficients, standard errors
            and hazard ratios
        """
        if not self.converged_:
            raise ValueError("Model not fitted or did not converge")

        return pd.DataFrame({
            'feature': list(self.coef_.index),
            'coefficient': self.coef_.to_numpy(),
            'se': self.se_.to_numpy(),
            'hazard_ratio': np.exp(self.coef_.to_numpy()),
            'interpretation': [
                f"{(np.exp(c) - 1) * 100:+.1f}% per unit increase"
                for c in self.coef_
            ]
        })


def fit_fine_gray(
    durations: np.ndarray,
    event_codes: np.ndarray,
    X: pd.DataFrame,
    primary_event: int = 1,
    competing_events: List[int] = [2],
    max_iter: int = DEFAULT_MAX_ITER,
    penalizer: float = 0.0,
) -> FineGrayRegression:
    """
    Convenience function to fit and report a Fine-Gray model.

    Parameters
    ----------
    durations : np.ndarray
        Follow-up times
    event_codes : np.ndarray
        Event codes
    X : pd.DataFrame
        Design matrix, row-aligned with durations and event_codes
    primary_event : int
        Primary event code
    competing_events : List[int]
        Competing event codes
    max_iter : int
        Maximum number of Newton-Raphson steps
    penalizer : float
        L2 penalty

    Returns
    -------
    FineGrayRegression
        Fitted model; check converged_ before reading estimates
    """
    logger.info(f"Fitting Fine-Gray model for event {primary_event} "
                f"(competing: {competing_events}, max_iter={max_iter})")

    model = FineGrayRegression(
        primary_event=primary_event,
        competing_events=competing_events,
        max_iter=max_iter,
        penalizer=penalizer,
    )
    model.fit(durations, event_codes, X)

    if model.converged_:
        logger.info(f"Fine-Gray model summary:\n{model.summary_.to_string()}")
    else:
        logger.warning("Model did not converge; no summary is reported")

    return model
