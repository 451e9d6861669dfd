"""
Imputation Module
=================

Fills missing values with predictive mean matching (PMM) using chained
equations from statsmodels.

For each incomplete column a linear model is fitted on the other columns,
its parameters are perturbed, and every missing cell receives the observed
value of a donor row whose prediction is among the closest to the missing
cell's prediction. Imputed values are therefore always values that were
actually observed in that column.

Classes:
    - PMMImputer: Seeded PMM imputation of a DataFrame

Functions:
    - impute_dataset: Build an imputer from config and apply it
    - print_imputation_summary: Console report of filled cells
"""

import logging
from typing import Dict, Any, Optional, List, Sequence, Tuple

import numpy as np
import pandas as pd
from statsmodels.imputation.mice import MICEData

from .exceptions import ImputationError

logger = logging.getLogger(__name__)


class PMMImputer:
    """
    Predictive mean matching imputer.

    Nominal (category dtype) columns are imputed through their integer level
    codes; since PMM copies observed donor values, an imputed code is always
    an existing level.
    """

    def __init__(
        self,
        n_cycles: int = 5,
        k_pmm: int = 5,
        seed: int = 500,
        perturbation_method: str = "gaussian"
    ):
        """
        Initialize the imputer.

        Args:
            n_cycles: Number of chained-equation cycles over all columns
            k_pmm: Number of candidate donors per missing cell
            seed: Random seed; the same seed and input give the same output
            perturbation_method: Parameter perturbation ('gaussian' or 'boot')
        """
        if n_cycles < 1:
            raise ValueError("n_cycles must be at least 1")
        if k_pmm < 1:
            raise ValueError("k_pmm must be at least 1")

        self.n_cycles = n_cycles
        self.k_pmm = k_pmm
        self.seed = seed
        self.perturbation_method = perturbation_method

        self.imputed_counts: Dict[str, int] = {}

    def _encode(self, df: pd.DataFrame) -> pd.DataFrame:
        encoded = pd.DataFrame(index=df.index)
        for col in df.columns:
            if isinstance(df[col].dtype, pd.CategoricalDtype):
                codes = df[col].cat.codes.astype(float)
                encoded[col] = codes.where(codes >= 0)
            else:
                encoded[col] = df[col].astype(float)
        return encoded

    def _decode(self, imputed: pd.DataFrame, original: pd.DataFrame) -> pd.DataFrame:
        decoded = imputed.copy()
        for col in original.columns:
            if isinstance(original[col].dtype, pd.CategoricalDtype):
                categories = original[col].cat.categories
                codes = np.rint(imputed[col].values).astype(int)
                decoded[col] = pd.Categorical.from_codes(codes, categories=categories)
        return decoded

    def _check_input(self, data: pd.DataFrame) -> None:
        missing = data.isnull()

        all_missing = missing.all()
        if all_missing.any():
            cols = all_missing[all_missing].index.tolist()
            raise ImputationError(f"Cannot impute columns with no observed values: {cols}")

        n_observed = (~missing).sum()
        too_few = n_observed[(n_observed < 2) & missing.any()]
        if not too_few.empty:
            raise ImputationError(
                f"Columns with fewer than 2 observed values: {too_few.index.tolist()}"
            )

        empty_rows = missing.all(axis=1)
        if empty_rows.any():
            raise ImputationError(
                f"{int(empty_rows.sum())} rows have every column missing "
                f"(first: {empty_rows[empty_rows].index[0]})"
            )

    def fit_transform(
        self,
        df: pd.DataFrame,
        exclude: Optional[Sequence[str]] = None
    ) -> pd.DataFrame:
        """
        Impute every missing cell of the DataFrame.

        Args:
            df: DataFrame with missing values
            exclude: Columns left untouched and not used as predictors

        Returns:
            DataFrame of identical shape, index and column order with no
            missing values outside the excluded columns

        Raises:
            ImputationError: If a column is entirely missing, a row is
                entirely missing, or the chained equations fail
        """
        exclude = [c for c in (exclude or []) if c in df.columns]
        columns = [c for c in df.columns if c not in exclude]

        if not columns:
            raise ImputationError("No columns left to impute")

        original = df[columns]
        self._check_input(original)

        n_missing = original.isnull().sum()
        self.imputed_counts = {c: int(n) for c, n in n_missing.items() if n > 0}

        if not self.imputed_counts:
            logger.info("No missing values found; imputation skipped")
            return df.copy()

        logger.info(
            f"Imputing {int(n_missing.sum())} cells in {len(self.imputed_counts)} columns "
            f"(PMM, {self.n_cycles} cycles, {self.k_pmm} donors, seed={self.seed})"
        )

        encoded = self._encode(original)

        try:
            mice_data = MICEData(
                encoded,
                perturbation_method=self.perturbation_method,
                k_pmm=self.k_pmm,
                rng=np.random.default_rng(self.seed)
            )
            for cycle in range(self.n_cycles):
                mice_data.update_all()
                logger.debug(f"Completed imputation cycle {cycle + 1}/{self.n_cycles}")
        except (np.linalg.LinAlgError, ValueError, FloatingPointError) as e:
            raise ImputationError(f"Chained-equation imputation failed: {e}") from e

        imputed = mice_data.data.copy()
        if len(imputed) != len(encoded):
            raise ImputationError(
                f"Imputation changed the row count ({len(encoded)} -> {len(imputed)})"
            )
        imputed.index = encoded.index
        imputed = imputed[columns]

        still_missing = imputed.isnull().sum()
        if still_missing.any():
            raise ImputationError(
                f"Values still missing after {self.n_cycles} cycles: "
                f"{still_missing[still_missing > 0].to_dict()}"
            )

        imputed = self._decode(imputed, original)

        result = df.copy()
        for col in columns:
            result[col] = imputed[col]

        logger.info("Imputation complete")
        return result


def impute_dataset(
    df: pd.DataFrame,
    config: Dict[str, Any],
    exclude: Optional[List[str]] = None
) -> Tuple[pd.DataFrame, PMMImputer]:
    """
    Impute a dataset using the 'imputation' section of the config.

    Training and evaluation data are imputed by separate calls with the
    same method and seed.

    Args:
        df: DataFrame with missing values
        config: Configuration dictionary
        exclude: Columns left untouched

    Returns:
        Tuple of (imputed DataFrame, imputer)
    """
    imp_config = config.get('imputation', {})

    imputer = PMMImputer(
        n_cycles=imp_config.get('n_cycles', 5),
        k_pmm=imp_config.get('k_pmm', 5),
        seed=imp_config.get('seed', 500),
        perturbation_method=imp_config.get('perturbation_method', 'gaussian')
    )

    return imputer.fit_transform(df, exclude=exclude), imputer


def print_imputation_summary(imputer: PMMImputer, title: str = "IMPUTATION SUMMARY") -> None:
    """
    Print the number of imputed cells per column.

    Args:
        imputer: Imputer after fit_transform
        title: Banner title
    """
    print("\n" + "=" * 50)
    print(title)
    print("=" * 50)
    print(f"Method: predictive mean matching ({imputer.k_pmm} donors)")
    print(f"Cycles: {imputer.n_cycles} | Seed: {imputer.seed}")
    print("-" * 50)
    if not imputer.imputed_counts:
        print("  no missing values")
    for col, n in sorted(imputer.imputed_counts.items(), key=lambda kv: -kv[1]):
        print(f"  {col:<25} {n:>6} cells")
    print("=" * 50 + "\n")
