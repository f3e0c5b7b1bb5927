"""
Tests for loading the cohort CSV from local paths and URLs.

Usage:
    pytest tests/test_download.py -v
"""

import pytest
import requests
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.data import download
from src.data.download import load_cirrhosis_data, is_remote
from src.data.errors import DataLoadError
from tests.cohorts import make_raw_cohort

SAMPLE_URL = 'https://example.org/cirrhosis.csv'


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, text: str, status_code: int = 200):
        self.text = text
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")


def test_is_remote():
    assert is_remote(SAMPLE_URL)
    assert not is_remote('data/raw/cirrhosis.csv')
    assert not is_remote(Path('/tmp/cirrhosis.csv'))


def test_load_local_csv(tmp_path):
    raw = make_raw_cohort(n=20)
    path = tmp_path / 'cirrhosis.csv'
    raw.to_csv(path, index=False)

    df = load_cirrhosis_data(path)
    assert len(df) == 20
    assert list(df.columns) == list(raw.columns)
    assert df['Drug'].isna().sum() == raw['Drug'].isna().sum()


def test_missing_file_raises(tmp_path):
    with pytest.raises(DataLoadError):
        load_cirrhosis_data(tmp_path / 'absent.csv')


def test_column_count_mismatch_raises(tmp_path):
    path = tmp_path / 'bad.csv'
    path.write_text("Status,N_Days\nC,100\nD,200,extra\n")
    with pytest.raises(DataLoadError):
        load_cirrhosis_data(path)


def test_short_row_raises(tmp_path):
    path = tmp_path / 'short.csv'
    lines = make_raw_cohort(n=3, n_missing=0).to_csv(index=False).splitlines()
    # Drop the last two fields of the final record
    lines[-1] = ','.join(lines[-1].split(',')[:-2])
    path.write_text('\n'.join(lines) + '\n')

    with pytest.raises(DataLoadError, match='line 4'):
        load_cirrhosis_data(path)


def test_blank_lines_are_not_short_rows(tmp_path):
    path = tmp_path / 'blank.csv'
    path.write_text("Status,N_Days\nC,100\n\nD,200\n\n")
    df = load_cirrhosis_data(path)
    assert len(df) == 2


def test_remote_short_row_raises(monkeypatch):
    monkeypatch.setattr(
        download.requests, 'get',
        lambda url, timeout: FakeResponse("Status,N_Days,Drug\nC,100,Placebo\nD,200\n"),
    )
    with pytest.raises(DataLoadError):
        load_cirrhosis_data(SAMPLE_URL)


def test_empty_file_raises(tmp_path):
    path = tmp_path / 'empty.csv'
    path.write_text("")
    with pytest.raises(DataLoadError):
        load_cirrhosis_data(path)


def test_unparsable_header_raises(tmp_path):
    path = tmp_path / 'header.csv'
    path.write_text(",N_Days\nC,100\n")
    with pytest.raises(DataLoadError):
        load_cirrhosis_data(path)


def test_load_remote_csv(monkeypatch):
    text = make_raw_cohort(n=10).to_csv(index=False)
    calls = []

    def fake_get(url, timeout):
        calls.append((url, timeout))
        return FakeResponse(text)

    monkeypatch.setattr(download.requests, 'get', fake_get)

    df = load_cirrhosis_data(SAMPLE_URL, timeout=5)
    assert len(df) == 10
    assert calls == [(SAMPLE_URL, 5)]


def test_remote_http_error_raises(monkeypatch):
    monkeypatch.setattr(download.requests, 'get', lambda url, timeout: FakeResponse('', 404))
    with pytest.raises(DataLoadError):
        load_cirrhosis_data(SAMPLE_URL)


def test_unreachable_host_raises(monkeypatch):
    def fake_get(url, timeout):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(download.requests, 'get', fake_get)
    with pytest.raises(DataLoadError):
        load_cirrhosis_data(SAMPLE_URL)


def test_data_load_error_is_io_error():
    assert issubclass(DataLoadError, IOError)
