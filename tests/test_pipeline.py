"""
End-to-end tests of the batch analysis on a synthetic cohort.

Usage:
    pytest tests/test_pipeline.py -v
"""

import matplotlib
matplotlib.use('Agg')

import pytest
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.competing_risks.pipeline import run_pipeline
from src.data.errors import SchemaError, DataLoadError
from tests.cohorts import make_raw_cohort

N_PATIENTS = 300


def test_pipeline_end_to_end(tmp_path):
    raw = make_raw_cohort(n=N_PATIENTS)
    output = tmp_path / 'cif.png'

    result = run_pipeline(raw_df=raw, output=output)

    assert result['model'].converged_
    assert len(result['cohort']) == N_PATIENTS
    assert len(result['design'].X) == N_PATIENTS
    assert len(result['cif']) == 4
    assert result['landmarks'].shape == (4, 3)
    assert output.exists()
    assert (tmp_path / 'cif_vs_km.png').exists()


def test_pipeline_from_csv_path(tmp_path):
    source = tmp_path / 'cirrhosis.csv'
    make_raw_cohort(n=N_PATIENTS).to_csv(source, index=False)

    result = run_pipeline(source=source, output=None)
    assert result['model'].converged_
    assert len(result['cohort']) == N_PATIENTS


def test_pipeline_continues_after_non_convergence(caplog):
    result = run_pipeline(raw_df=make_raw_cohort(n=N_PATIENTS), output=None, max_iter=0)

    assert not result['model'].converged_
    assert result['model'].summary_ is None
    assert len(result['cif']) == 4
    assert 'did not converge' in caplog.text


def test_pipeline_aborts_on_missing_column():
    raw = make_raw_cohort().drop(columns=['Drug'])
    with pytest.raises(SchemaError):
        run_pipeline(raw_df=raw, output=None)


def test_pipeline_aborts_on_missing_source(tmp_path):
    with pytest.raises(DataLoadError):
        run_pipeline(source=tmp_path / 'absent.csv', output=None)
