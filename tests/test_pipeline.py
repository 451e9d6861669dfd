"""
End-to-end tests for the pH modelling pipeline.
"""

import pytest
import numpy as np
import pandas as pd
import yaml

import sys
from pathlib import Path
ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT))

import main
from ph_pipeline.data_loader import load_config
from ph_pipeline.exceptions import ImputationError
from ph_pipeline.imputation import impute_dataset
from synthetic_data import make_process_data


def make_linear_data(n_rows=100, missing_frac=0.1, seed=2024):
    """Five predictors, an exactly linear response with small noise."""
    rng = np.random.default_rng(seed)
    X = rng.normal(size=(n_rows, 5))
    y = 2.0 + X @ np.array([1.5, -2.0, 0.5, 3.0, 1.0]) + rng.normal(0, 0.1, n_rows)

    df = pd.DataFrame(X, columns=[f"x{i}" for i in range(1, 6)])
    for col in df.columns:
        df.loc[rng.random(n_rows) < missing_frac, col] = np.nan
    df.insert(0, 'PH', y)
    return df


@pytest.fixture
def config():
    return {
        'data': {'response': 'PH', 'categorical_column': 'Brand_Code'},
        'imputation': {'n_cycles': 5, 'k_pmm': 5, 'seed': 500},
        'split': {'train_fraction': 0.7, 'random_state': 42},
        'training': {'cv_folds': 3, 'random_state': 42},
        'models': {'linear_stepwise': {'enabled': True}},
        'output': {}
    }


@pytest.fixture
def train_csv(tmp_path):
    path = tmp_path / "train.csv"
    make_linear_data().to_csv(path)
    return str(path)


class TestEndToEnd:
    """Full pipeline on synthetic data."""

    def test_linear_holdout_r2(self, train_csv, config):
        results = main.run_pipeline(train_csv, None, config, phase='evaluate')

        imputed = results['imputed']['train']
        fit, holdout = results['split']['fit'], results['split']['holdout']
        best = results['evaluation']['records'][0]

        assert imputed.isnull().sum().sum() == 0
        assert len(fit) == 70 and len(holdout) == 30
        assert set(fit.index).isdisjoint(holdout.index)
        assert best.model == 'linear_stepwise'
        assert best.r2 > 0.8

    def test_prediction_table(self, train_csv, config, tmp_path):
        evaluation = make_linear_data(n_rows=20, seed=7)
        evaluation['PH'] = np.nan
        eval_path = tmp_path / "eval.csv"
        evaluation.to_csv(eval_path)

        config['models'] = {
            'linear_stepwise': {},
            'elastic_net': {'param_grid': {'alpha': [0.001], 'l1_ratio': [1.0]}},
            'random_forest': {'n_estimators': 20, 'param_grid': {'max_features': [0.5]},
                              'exclude_columns': ['x5']}
        }

        results = main.run_pipeline(train_csv, str(eval_path), config)
        predictions = results['prediction']['predictions']

        assert predictions.shape == (20, 3)
        assert predictions.notna().all().all()
        assert results['imputed']['evaluation']['PH'].isnull().all()

    def test_entirely_missing_predictor_is_fatal(self, tmp_path, config):
        data = make_linear_data()
        data['x3'] = np.nan
        path = tmp_path / "broken.csv"
        data.to_csv(path)

        with pytest.raises(ImputationError):
            main.run_pipeline(str(path), None, config, phase='impute')

    def test_stops_at_requested_phase(self, train_csv, config):
        results = main.run_pipeline(train_csv, None, config, phase='split')

        assert 'split' in results
        assert 'training' not in results

    def test_unknown_phase(self, train_csv, config):
        with pytest.raises(ValueError, match="Unknown phase"):
            main.run_pipeline(train_csv, None, config, phase='deploy')


class TestImputationPhase:
    """Training and evaluation data are imputed alike."""

    def test_same_settings_for_both_datasets(self, train_csv, config, tmp_path):
        evaluation = make_linear_data(n_rows=30, seed=11)
        evaluation['PH'] = np.nan
        eval_path = tmp_path / "eval.csv"
        evaluation.to_csv(eval_path)

        loaded = main.run_load(train_csv, str(eval_path), config)
        imputers = main.run_imputation(loaded, config)['imputers']
        train_imputer, eval_imputer = imputers['train'], imputers['evaluation']

        assert train_imputer.seed == eval_imputer.seed == 500
        assert train_imputer.k_pmm == eval_imputer.k_pmm
        assert train_imputer.n_cycles == eval_imputer.n_cycles
        assert train_imputer.perturbation_method == eval_imputer.perturbation_method

    def test_default_config_is_deterministic(self):
        config = load_config(str(ROOT / "config" / "config.yaml"))
        data = make_process_data(n_rows=200, seed=3)

        first, _ = impute_dataset(data, config)
        second, _ = impute_dataset(data, config)

        pd.testing.assert_frame_equal(first, second)


class TestCommandLine:
    """Smoke tests for main()."""

    def test_main_runs(self, train_csv, config, tmp_path, monkeypatch):
        config['logging'] = {'level': 'WARNING', 'log_dir': None}
        config_path = tmp_path / "config.yaml"
        config_path.write_text(yaml.safe_dump(config))

        monkeypatch.setattr(sys, 'argv', [
            'main.py', '--data', train_csv, '--config', str(config_path), '--phase', 'evaluate'
        ])

        assert main.main() == 0

    def test_main_reports_failure(self, tmp_path, config, monkeypatch):
        config_path = tmp_path / "config.yaml"
        config_path.write_text(yaml.safe_dump(config))

        monkeypatch.setattr(sys, 'argv', [
            'main.py', '--data', str(tmp_path / "absent.csv"), '--config', str(config_path)
        ])

        assert main.main() == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
