"""
Data Splitting Module
=====================

Partitions the imputed training data into a fit set and a holdout set,
stratified on quantile groups of the continuous response so that both
subsets keep roughly the same response distribution.

Functions:
    - stratification_bins: Quantile group labels for a continuous response
    - stratified_split: Disjoint, exhaustive fit/holdout row labels
"""

import logging
from typing import Tuple

import numpy as np
import pandas as pd
from sklearn.model_selection import train_test_split

logger = logging.getLogger(__name__)


def stratification_bins(y: pd.Series, n_groups: int = 5) -> np.ndarray:
    """
    Assign each response value to a quantile group.

    The number of groups shrinks when the data are too small for every
    group to hold at least two rows.

    Args:
        y: Continuous response values
        n_groups: Requested number of quantile groups

    Returns:
        Integer group label per row
    """
    n_groups = max(1, min(n_groups, len(y) // 2))
    if n_groups == 1:
        return np.zeros(len(y), dtype=int)

    ranks = pd.Series(y).rank(method='first')
    labels = pd.qcut(ranks, q=n_groups, labels=False, duplicates='drop')
    return np.asarray(labels, dtype=int)


def stratified_split(
    df: pd.DataFrame,
    response: str,
    train_fraction: float = 0.7,
    n_groups: int = 5,
    random_state: int = 42
) -> Tuple[pd.Index, pd.Index]:
    """
    Split rows into fit and holdout sets, stratified on the response.

    Args:
        df: Imputed training DataFrame
        response: Name of the response column
        train_fraction: Fraction of rows in the fit set
        n_groups: Number of response quantile groups used as strata
        random_state: Random seed for reproducibility

    Returns:
        Tuple of (fit_index, holdout_index); disjoint, union is df.index
    """
    if not 0.0 < train_fraction < 1.0:
        raise ValueError(f"train_fraction must be in (0, 1), got {train_fraction}")
    if len(df) < 2:
        raise ValueError(f"Need at least 2 rows to split, got {len(df)}")
    if df[response].isnull().any():
        raise ValueError(f"Response column '{response}' contains missing values")

    positions = np.arange(len(df))
    strata = stratification_bins(df[response], n_groups=n_groups)

    n_holdout = len(df) - int(np.floor(train_fraction * len(df)))
    if len(np.unique(strata)) > min(n_holdout, len(df) - n_holdout):
        strata = None
        logger.warning("Too few rows per stratum; falling back to an unstratified split")

    fit_pos, holdout_pos = train_test_split(
        positions,
        train_size=train_fraction,
        random_state=random_state,
        stratify=strata
    )

    fit_index = df.index[np.sort(fit_pos)]
    holdout_index = df.index[np.sort(holdout_pos)]

    logger.info(
        f"Stratified split: {len(fit_index)} fit rows, {len(holdout_index)} holdout rows "
        f"({train_fraction:.0%} / {1 - train_fraction:.0%})"
    )

    return fit_index, holdout_index
