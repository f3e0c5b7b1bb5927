"""
Competing Risks Analysis Module for the Cirrhosis Cohort.

Death and liver transplantation are competing terminal events for
patients with primary biliary cirrhosis.

Models:
-------
- Fine-Gray (FGR): Subdistribution hazard model for death
- Aalen-Johansen: Non-parametric cumulative incidence by treatment arm

Modules:
--------
data_prep : Design matrix construction and screening diagnostics
fine_gray : Fine-Gray model implementation
cumulative_incidence : CIF estimation and plotting
pipeline : End-to-end batch analysis
"""

from .data_prep import (
    DesignMatrix,
    one_hot_encode,
    near_zero_variance,
    variance_inflation_factors,
    build_design_matrix,
)

from .fine_gray import (
    FineGrayRegression,
    create_fine_gray_dataset,
    fit_fine_gray,
)

from .cumulative_incidence import (
    estimate_cif_aalen_johansen,
    estimate_cif_by_group,
    estimate_cif_grid,
    cif_at_times,
    plot_cumulative_incidence,
    compare_cif_vs_kaplan_meier,
    save_figure,
)

__all__ = [
    # Design matrix
    'DesignMatrix',
    'one_hot_encode',
    'near_zero_variance',
    'variance_inflation_factors',
    'build_design_matrix',
    # Fine-Gray
    'FineGrayRegression',
    'create_fine_gray_dataset',
    'fit_fine_gray',
    # Cumulative incidence
    'estimate_cif_aalen_johansen',
    'estimate_cif_by_group',
    'estimate_cif_grid',
    'cif_at_times',
    'plot_cumulative_incidence',
    'compare_cif_vs_kaplan_meier',
    'save_figure',
]

__version__ = '0.1.0'
