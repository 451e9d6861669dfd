"""
Test Suite for Splitting Module
===============================

Tests for the stratified fit/holdout split.
"""

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from ph_pipeline.splitting import stratified_split, stratification_bins


class TestStratifiedSplit:
    """Tests for stratified_split."""

    @pytest.fixture
    def sample_data(self):
        rng = np.random.default_rng(42)
        return pd.DataFrame(
            {'PH': rng.normal(8.5, 0.17, 257), 'Density': rng.normal(1.2, 0.4, 257)},
            index=pd.RangeIndex(1000, 1257)
        )

    def test_disjoint_and_exhaustive(self, sample_data):
        fit_idx, holdout_idx = stratified_split(sample_data, 'PH')

        assert len(set(fit_idx) & set(holdout_idx)) == 0
        assert set(fit_idx) | set(holdout_idx) == set(sample_data.index)

    def test_fit_fraction(self, sample_data):
        fit_idx, holdout_idx = stratified_split(sample_data, 'PH', train_fraction=0.7)

        assert abs(len(fit_idx) - 0.7 * len(sample_data)) <= 1
        assert len(fit_idx) + len(holdout_idx) == len(sample_data)

    def test_deterministic(self, sample_data):
        first = stratified_split(sample_data, 'PH', random_state=3)
        second = stratified_split(sample_data, 'PH', random_state=3)

        assert first[0].equals(second[0])
        assert first[1].equals(second[1])

    def test_response_distribution_preserved(self, sample_data):
        fit_idx, holdout_idx = stratified_split(sample_data, 'PH')
        fit_median = sample_data.loc[fit_idx, 'PH'].median()
        holdout_median = sample_data.loc[holdout_idx, 'PH'].median()

        assert abs(fit_median - holdout_median) < 0.1

    def test_small_data(self):
        df = pd.DataFrame({'PH': [8.1, 8.4, 8.2, 8.9, 8.6]})
        fit_idx, holdout_idx = stratified_split(df, 'PH')

        assert len(fit_idx) + len(holdout_idx) == 5
        assert len(holdout_idx) >= 1

    def test_invalid_fraction(self, sample_data):
        with pytest.raises(ValueError, match="train_fraction"):
            stratified_split(sample_data, 'PH', train_fraction=1.0)

    def test_missing_response_rejected(self, sample_data):
        sample_data.iloc[0, 0] = np.nan

        with pytest.raises(ValueError, match="missing"):
            stratified_split(sample_data, 'PH')


class TestStratificationBins:
    """Tests for quantile grouping."""

    def test_equal_sized_groups(self):
        y = pd.Series(np.arange(100, dtype=float))
        bins = stratification_bins(y, n_groups=5)

        assert sorted(np.unique(bins)) == [0, 1, 2, 3, 4]
        assert np.bincount(bins).tolist() == [20, 20, 20, 20, 20]

    def test_groups_reduced_for_small_data(self):
        bins = stratification_bins(pd.Series([1.0, 2.0, 3.0, 4.0, 5.0]), n_groups=5)

        assert len(np.unique(bins)) == 2

    def test_tied_values(self):
        bins = stratification_bins(pd.Series([8.5] * 20), n_groups=4)

        assert len(bins) == 20
        assert np.bincount(bins).min() >= 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
