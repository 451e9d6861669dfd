"""
Feature Matrix Module
=====================

Builds the numeric design matrix every model consumes. The same function
is used at training and at inference time, so each fitted model sees
exactly the columns it was trained on.
"""

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .exceptions import ModelTrainingError

logger = logging.getLogger(__name__)


def build_design_matrix(
    df: pd.DataFrame,
    feature_columns: Sequence[str],
    design_columns: Optional[Sequence[str]] = None
) -> pd.DataFrame:
    """
    Encode feature columns as a float matrix.

    Category columns are one-hot encoded with the first observed level
    dropped. When design_columns is given (inference), the result is
    aligned to it: unseen dummies are added as zeros, extras are dropped.

    Args:
        df: Source DataFrame (may hold extra columns such as the response)
        feature_columns: Columns to use as predictors
        design_columns: Column layout recorded at training time

    Returns:
        Float DataFrame indexed like df
    """
    missing = [c for c in feature_columns if c not in df.columns]
    if missing:
        raise KeyError(f"Feature columns not found: {missing}")

    X = df[list(feature_columns)].copy()
    categorical = [c for c in X.columns if isinstance(X[c].dtype, pd.CategoricalDtype)]

    if design_columns is None:
        for col in categorical:
            X[col] = X[col].cat.remove_unused_categories()

    if categorical:
        X = pd.get_dummies(X, columns=categorical, prefix=categorical,
                           prefix_sep='_', drop_first=True, dtype=float)

    X = X.astype(float)

    if design_columns is not None:
        X = X.reindex(columns=list(design_columns), fill_value=0.0)

    return X


def design_terms(
    feature_columns: Sequence[str],
    design_columns: Sequence[str],
    df: pd.DataFrame
) -> Dict[str, List[str]]:
    """
    Map each feature column to the design columns it produced.

    A nominal column yields several dummy columns that are added or
    removed together as one term.
    """
    terms = {}
    for col in feature_columns:
        if isinstance(df[col].dtype, pd.CategoricalDtype):
            prefix = f"{col}_"
            terms[col] = [c for c in design_columns if c.startswith(prefix) and c not in feature_columns]
        else:
            terms[col] = [col] if col in design_columns else []
    return {term: cols for term, cols in terms.items() if cols}


def check_zero_variance(X: pd.DataFrame) -> None:
    """
    Raise when a design column is constant.

    Raises:
        ModelTrainingError: If any column has zero variance
    """
    if len(X) < 2:
        raise ModelTrainingError(f"Need at least 2 training rows, got {len(X)}")

    stds = X.std(axis=0, ddof=0)
    constant = stds[~(stds > 0)].index.tolist()
    if constant:
        raise ModelTrainingError(f"Zero-variance predictors: {constant}")

    if not np.isfinite(X.values).all():
        raise ModelTrainingError("Design matrix contains missing or infinite values")
