"""
Tests for Aalen-Johansen cumulative incidence estimation and plotting.

Usage:
    pytest tests/test_cumulative_incidence.py -v
"""

import matplotlib
matplotlib.use('Agg')

import numpy as np
import pandas as pd
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.competing_risks.cumulative_incidence import (
    estimate_cif_aalen_johansen,
    estimate_cif_by_group,
    estimate_cif_grid,
    cif_at_times,
    plot_cumulative_incidence,
    compare_cif_vs_kaplan_meier,
    save_figure,
)
from src.data.preprocess import add_event_codes, prepare_features
from tests.cohorts import make_raw_cohort

TOLERANCE = 1e-9


def four_patient_cohort(statuses) -> pd.DataFrame:
    df = pd.DataFrame({
        'N_Days': [100, 200, 300, 400],
        'Status': statuses,
        'Drug': ['A', 'A', 'B', 'B'],
    })
    return add_event_codes(df)


def cif_value(ajf, t: float) -> float:
    cif = ajf.cumulative_density_.iloc[:, 0]
    return float(cif[cif.index <= t].iloc[-1])


def test_four_patient_scenario_event_codes():
    df = four_patient_cohort(['C', 'D', 'CL', 'C'])
    assert list(df['event_code']) == [0, 1, 2, 0]


def test_four_patient_scenario_death_incidence():
    # Patient censored at day 100 leaves the risk set before the death
    # at day 200, so the Aalen-Johansen estimate jumps to 1.
    df = four_patient_cohort(['C', 'D', 'CL', 'C'])
    estimators = estimate_cif_by_group(df, 'Drug', event_of_interest=1)

    assert list(estimators) == ['A', 'B']
    assert abs(cif_value(estimators['A'], 199)) < TOLERANCE
    assert abs(cif_value(estimators['A'], 200) - 1.0) < TOLERANCE

    table = cif_at_times({('A', 1): estimators['A']}, [150, 200, 400])
    assert np.allclose(table.loc[('A', 'death')].to_numpy(), [0.0, 1.0, 1.0])


def test_one_of_two_deaths_gives_one_half():
    df = four_patient_cohort(['D', 'C', 'CL', 'C'])
    estimators = estimate_cif_by_group(df, 'Drug', event_of_interest=1)

    table = cif_at_times({('A', 1): estimators['A']}, [50, 100, 200, 400])
    assert np.allclose(table.loc[('A', 'death')].to_numpy(), [0.0, 0.5, 0.5, 0.5])


def test_transplant_incidence_in_second_arm():
    df = four_patient_cohort(['C', 'D', 'CL', 'C'])
    estimators = estimate_cif_by_group(df, 'Drug', event_of_interest=2)
    assert abs(cif_value(estimators['B'], 300) - 0.5) < TOLERANCE
    assert abs(cif_value(estimators['B'], 400) - 0.5) < TOLERANCE


def test_curves_monotone_and_bounded():
    cohort, _ = prepare_features(make_raw_cohort(n=300))
    grid = estimate_cif_grid(cohort, 'Drug', events=[1, 2])

    assert set(grid) == {
        ('D-penicillamine', 1), ('Placebo', 1),
        ('D-penicillamine', 2), ('Placebo', 2),
    }
    for ajf in grid.values():
        values = ajf.cumulative_density_.iloc[:, 0].to_numpy()
        assert (values >= -TOLERANCE).all()
        assert (values <= 1 + TOLERANCE).all()
        assert (np.diff(values) >= -TOLERANCE).all()


def test_competing_incidences_do_not_exceed_one():
    cohort, _ = prepare_features(make_raw_cohort(n=300))
    death = estimate_cif_aalen_johansen(cohort['N_Days'], cohort['event_code'], 1)
    transplant = estimate_cif_aalen_johansen(cohort['N_Days'], cohort['event_code'], 2)

    t_max = cohort['N_Days'].max()
    assert cif_value(death, t_max) + cif_value(transplant, t_max) <= 1 + 1e-6


def test_groups_follow_declared_level_order():
    cohort, _ = prepare_features(make_raw_cohort())
    estimators = estimate_cif_by_group(cohort, 'Drug')
    assert list(estimators) == ['D-penicillamine', 'Placebo']


def test_min_group_size_skips_small_groups():
    df = four_patient_cohort(['C', 'D', 'CL', 'C'])
    assert estimate_cif_by_group(df, 'Drug', min_group_size=3) == {}


def test_plot_has_one_series_per_group_and_event(tmp_path):
    cohort, _ = prepare_features(make_raw_cohort())
    grid = estimate_cif_grid(cohort, 'Drug', events=[1, 2])

    ax = plot_cumulative_incidence(grid)
    labels = [text.get_text() for text in ax.get_legend().get_texts()]
    assert len(ax.get_lines()) == 4
    assert 'Death - Placebo' in labels
    assert 'Transplant - D-penicillamine' in labels

    # Same arm shares a color, events differ by line style
    lines = {line.get_label(): line for line in ax.get_lines()}
    assert lines['Death - Placebo'].get_color() == lines['Transplant - Placebo'].get_color()
    assert lines['Death - Placebo'].get_linestyle() != lines['Transplant - Placebo'].get_linestyle()

    path = save_figure(ax, tmp_path / 'cif.png')
    assert path.exists()


def test_cif_vs_kaplan_meier_plot():
    cohort, _ = prepare_features(make_raw_cohort())
    ax = compare_cif_vs_kaplan_meier(cohort)
    cif_line, km_line = ax.get_lines()
    # 1 - KM treats transplants as censoring and overstates incidence
    assert km_line.get_ydata()[-1] >= cif_line.get_ydata()[-1] - TOLERANCE
