"""
Data Loader Module
==================

Handles CSV ingestion (local files or remote URLs), column normalization
and schema validation for the training and evaluation datasets.

Functions:
    - load_config: Load YAML configuration file
    - fetch_csv: Read a CSV from a path or an http(s) URL
    - load_data: Fetch a dataset and normalize its columns
    - prepare_dataset: Coerce column types (nominal brand code, numeric rest)
    - validate_schema: Check response presence and train/eval consistency
    - missingness_profile: Per-column missing counts
"""

import io
import logging
import re
from pathlib import Path
from typing import Dict, Any, Optional, List, Sequence

import pandas as pd
import numpy as np
import requests
import yaml

from .exceptions import DataSchemaError

logger = logging.getLogger(__name__)

DEFAULT_BRAND_LEVELS = ["A", "B", "C", "D"]


def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Dictionary containing configuration parameters

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    logger.info(f"Loaded configuration from {config_path}")
    return config


def _is_url(source: str) -> bool:
    return str(source).startswith(("http://", "https://"))


def fetch_csv(source: str, timeout: float = 30.0) -> pd.DataFrame:
    """
    Read a comma-separated file from a local path or a remote URL.

    Args:
        source: File path or http(s) URL
        timeout: Request timeout in seconds for remote sources

    Returns:
        Raw DataFrame, columns untouched

    Raises:
        FileNotFoundError: If a local file doesn't exist
        requests.HTTPError: If the remote server returns an error status
    """
    if _is_url(source):
        logger.info(f"Fetching {source}")
        response = requests.get(source, timeout=timeout)
        response.raise_for_status()
        return pd.read_csv(io.StringIO(response.text))

    path = Path(source)
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")
    return pd.read_csv(path)


def clean_column_name(name: str) -> str:
    """Turn a raw header ("Brand Code", "PSC CO2") into an identifier."""
    cleaned = re.sub(r'[^0-9a-zA-Z]+', '_', str(name)).strip('_')
    if not cleaned:
        cleaned = "column"
    if cleaned[0].isdigit():
        cleaned = f"X{cleaned}"
    return cleaned


def normalize_columns(
    df: pd.DataFrame,
    index_column: Optional[str] = None
) -> pd.DataFrame:
    """
    Drop the row-index column and make column names formula-safe.

    Args:
        df: Raw DataFrame
        index_column: Name of the row-index column. When None, a leading
            unnamed column (as written by R or pandas) is dropped.

    Returns:
        DataFrame with cleaned column names
    """
    df = df.copy()

    if index_column is not None:
        if index_column in df.columns:
            df = df.drop(columns=[index_column])
    elif len(df.columns) > 0:
        first = str(df.columns[0])
        if first.startswith("Unnamed") or first.strip() in ("", "...1"):
            df = df.drop(columns=[df.columns[0]])
            logger.info(f"Dropped row-index column '{first}'")

    renamed = [clean_column_name(c) for c in df.columns]
    duplicates = {c for c in renamed if renamed.count(c) > 1}
    if duplicates:
        raise DataSchemaError(f"Column names collide after cleaning: {sorted(duplicates)}")

    df.columns = renamed
    return df


def load_data(
    source: str,
    index_column: Optional[str] = None,
    timeout: float = 30.0
) -> pd.DataFrame:
    """
    Load a dataset from a path or URL and normalize its columns.

    Args:
        source: File path or http(s) URL
        index_column: Row-index column to drop (auto-detected when None)
        timeout: Request timeout for remote sources

    Returns:
        DataFrame with cleaned column names
    """
    df = fetch_csv(source, timeout=timeout)
    df = normalize_columns(df, index_column=index_column)
    logger.info(f"Loaded data from {source}: {df.shape[0]} rows × {df.shape[1]} columns")
    return df


def prepare_dataset(
    df: pd.DataFrame,
    categorical_column: Optional[str] = "Brand_Code",
    levels: Optional[Sequence[str]] = None
) -> pd.DataFrame:
    """
    Coerce column types: the brand code becomes a nominal category with a
    fixed level set, everything else becomes float.

    Values outside the level set are treated as missing. Fixing the level
    set keeps dummy encoding identical between training and evaluation data.

    Args:
        df: DataFrame with normalized column names
        categorical_column: Name of the nominal column (None to skip)
        levels: Allowed category levels

    Returns:
        Typed copy of the DataFrame
    """
    df = df.copy()
    levels = list(levels) if levels is not None else DEFAULT_BRAND_LEVELS

    for col in df.columns:
        if col == categorical_column:
            values = df[col].astype("string").str.strip()
            unknown = values.notna() & ~values.isin(levels)
            if unknown.any():
                logger.warning(
                    f"Column '{col}': {int(unknown.sum())} values outside {levels} set to missing"
                )
            df[col] = pd.Categorical(values.where(~unknown), categories=levels)
        else:
            df[col] = pd.to_numeric(df[col], errors='coerce').astype(float)

    return df


def validate_schema(
    train: pd.DataFrame,
    evaluation: Optional[pd.DataFrame],
    response: str,
    expected_columns: Optional[List[str]] = None
) -> Dict[str, Any]:
    """
    Validate the datasets before any modelling happens.

    Checks:
        - The response column exists in the training data
        - Every expected column exists in the training data
        - Training and evaluation data share the same predictor columns

    Args:
        train: Training DataFrame
        evaluation: Evaluation DataFrame (optional)
        response: Name of the response column
        expected_columns: Columns that must be present

    Returns:
        Validation report dictionary

    Raises:
        DataSchemaError: If any check fails
    """
    if response not in train.columns:
        raise DataSchemaError(f"Response column '{response}' not found in training data")

    missing_expected = [c for c in (expected_columns or []) if c not in train.columns]
    if missing_expected:
        raise DataSchemaError(f"Expected columns missing from training data: {missing_expected}")

    report = {
        "response": response,
        "n_train_rows": len(train),
        "predictors": [c for c in train.columns if c != response]
    }

    if evaluation is not None:
        train_predictors = set(train.columns) - {response}
        eval_predictors = set(evaluation.columns) - {response}
        only_train = sorted(train_predictors - eval_predictors)
        only_eval = sorted(eval_predictors - train_predictors)
        if only_train or only_eval:
            raise DataSchemaError(
                f"Schema mismatch between training and evaluation data. "
                f"Only in training: {only_train}. Only in evaluation: {only_eval}"
            )
        report["n_eval_rows"] = len(evaluation)

    if train[response].isnull().all():
        raise DataSchemaError(f"Response column '{response}' has no observed values")

    logger.info(f"Schema validated: {len(report['predictors'])} predictors, response '{response}'")
    return report


def missingness_profile(df: pd.DataFrame) -> pd.DataFrame:
    """
    Count missing values per column.

    Returns:
        DataFrame with columns n_missing and pct_missing, sorted descending
    """
    counts = df.isnull().sum()
    profile = pd.DataFrame({
        "n_missing": counts.astype(int),
        "pct_missing": (counts / max(len(df), 1) * 100).round(2)
    })
    return profile.sort_values("n_missing", ascending=False)


def print_data_summary(df: pd.DataFrame, title: str = "DATASET SUMMARY") -> None:
    """
    Print a formatted summary of the dataset to console.

    Args:
        df: DataFrame to summarize
        title: Banner title
    """
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)
    print(f"Shape: {df.shape[0]} rows × {df.shape[1]} columns")
    print(f"Memory Usage: {df.memory_usage(deep=True).sum() / 1024:.2f} KB")

    profile = missingness_profile(df)
    with_missing = profile[profile["n_missing"] > 0]
    print("\nMissing Values:")
    print("-" * 40)
    if with_missing.empty:
        print("  none")
    for col, row in with_missing.iterrows():
        print(f"  {col}: {row['n_missing']} ({row['pct_missing']:.1f}%)")

    print("\nBasic Statistics:")
    print("-" * 40)
    print(df.describe(include=[np.number]).round(4).to_string())
    print("=" * 60 + "\n")
