"""
Load the cirrhosis cohort CSV from a URL or a local path.

Usage:
    python -m src.data.download --source https://host/path/cirrhosis.csv --output data/raw

Remote resources are fetched with requests, local files are read directly.
There is no retry: any failure is fatal to the analysis.
"""

import argparse
import csv
import logging
from io import StringIO
from pathlib import Path
from typing import Union
from urllib.parse import urlparse

import pandas as pd
import requests

from .errors import DataLoadError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


def is_remote(source: Union[str, Path]) -> bool:
    """Return True if the source looks like an http(s) URL."""
    return urlparse(str(source)).scheme in ('http', 'https')


def fetch_csv_text(url: str, timeout: float = DEFAULT_TIMEOUT) -> str:
    """
    Download a CSV resource and return its text.

    Parameters
    ----------
    url : str
        http(s) URL of the CSV file
    timeout : float
        Request timeout in seconds

    Returns
    -------
    str
        Response body
    """
    logger.info(f"Downloading {url}")
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise DataLoadError(f"Could not download {url}: {e}") from e

    return response.text


def check_field_counts(text: str, source: Union[str, Path]) -> None:
    """Raise DataLoadError if any record has a different field count than the header."""
    reader = csv.reader(StringIO(text))
    try:
        header = next(reader, None)
        if header is None:
            return

        for row in reader:
            # pandas skips blank lines
            if not row:
                continue
            if len(row) != len(header):
                raise DataLoadError(
                    f"Malformed CSV at {source}: line {reader.line_num} has {len(row)} "
                    f"fields, header has {len(header)}"
                )
    except csv.Error as e:
        raise DataLoadError(f"Malformed CSV at {source}: {e}") from e


def load_cirrhosis_data(
    source: Union[str, Path],
    timeout: float = DEFAULT_TIMEOUT,
) -> pd.DataFrame:
    """
    Load the cohort CSV into a DataFrame.

    Parameters
    ----------
    source : str or Path
        URL or local path of the CSV file
    timeout : float
        Request timeout in seconds (remote sources only)

    Returns
    -------
    pd.DataFrame
        Raw cohort, one row per patient

    Raises
    ------
    DataLoadError
        If the resource is unreachable, empty or malformed
    """
    if is_remote(source):
        text = fetch_csv_text(str(source), timeout=timeout)
    else:
        path = Path(source)
        if not path.exists():
            raise DataLoadError(f"Data file does not exist: {path}")
        try:
            text = path.read_text()
        except (OSError, UnicodeDecodeError) as e:
            raise DataLoadError(f"Could not read {path}: {e}") from e

    check_field_counts(text, source)

    try:
        df = pd.read_csv(StringIO(text), na_values=['', ' ', 'NA'])
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise DataLoadError(f"Malformed CSV at {source}: {e}") from e

    if df.columns.str.startswith('Unnamed:').any():
        raise DataLoadError(f"Unparsable header at {source}: {list(df.columns)}")

    logger.info(f"Loaded {len(df):,} records with {df.shape[1]} columns from {source}")
    return df


def main():
    parser = argparse.ArgumentParser(description='Download the cirrhosis cohort CSV')
    parser.add_argument('--source', type=str, required=True,
                        help='URL of the CSV file')
    parser.add_argument('--output', type=str, default='data/raw',
                        help='Output directory (default: data/raw)')
    parser.add_argument('--timeout', type=float, default=DEFAULT_TIMEOUT,
                        help=f'Request timeout in seconds (default: {DEFAULT_TIMEOUT})')
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    df = load_cirrhosis_data(args.source, timeout=args.timeout)

    output_dir = Path(args.output)
    output_dir.mkdir(parents=True, exist_ok=True)
    output_file = output_dir / 'cirrhosis.csv'
    df.to_csv(output_file, index=False)
    print(f"Saved {len(df):,} records to {output_file}")


if __name__ == '__main__':
    main()
