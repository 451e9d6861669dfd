"""
Test Suite for Model Module
===========================

Tests for the trainer interface and each model family.
"""

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from ph_pipeline.model import (
    FittedModel, StepwiseLinearTrainer, PenalizedRegressionTrainer,
    RandomForestTrainer, GradientBoostingTrainer, NeuralNetworkTrainer,
    build_trainers, train_models
)
from ph_pipeline.features import build_design_matrix
from ph_pipeline.exceptions import ModelTrainingError
from synthetic_data import make_process_data


@pytest.fixture
def complete_data():
    """Imputation-free training data."""
    return make_process_data(n_rows=150, missing_frac=0.0, seed=1)


SMALL_TRAINERS = [
    PenalizedRegressionTrainer(param_grid={'alpha': [0.0001, 0.001], 'l1_ratio': [0.5, 1.0]}, cv_folds=3),
    RandomForestTrainer(n_estimators=30, param_grid={'max_features': [2, 50]}, cv_folds=3),
    GradientBoostingTrainer(param_grid={'max_depth': [2], 'learning_rate': [0.1],
                                        'n_estimators': [50], 'subsample': [0.8]}, cv_folds=3),
    NeuralNetworkTrainer(param_grid={'hidden_units': [3], 'alpha': [0.01]}, cv_folds=3),
    StepwiseLinearTrainer()
]


class TestTrainerInterface:
    """Behaviour shared by every model family."""

    @pytest.mark.parametrize("trainer", SMALL_TRAINERS, ids=lambda t: t.name)
    def test_fit_returns_fitted_model(self, trainer, complete_data):
        model = trainer.fit(complete_data, 'PH')

        assert isinstance(model, FittedModel)
        assert model.name == trainer.name
        assert 'PH' not in model.feature_columns
        assert model.training_info['n_samples'] == len(complete_data)

    @pytest.mark.parametrize("trainer", SMALL_TRAINERS, ids=lambda t: t.name)
    def test_predict_is_deterministic(self, trainer, complete_data):
        model = trainer.fit(complete_data, 'PH')
        row = complete_data.iloc[[5]]

        first = model.predict(row)
        second = model.predict(row)

        assert first.shape == (1,)
        assert first[0] == second[0]

    @pytest.mark.parametrize("trainer", SMALL_TRAINERS, ids=lambda t: t.name)
    def test_predict_ignores_response_column(self, trainer, complete_data):
        model = trainer.fit(complete_data, 'PH')
        without_response = complete_data.drop(columns=['PH'])

        np.testing.assert_array_equal(
            model.predict(complete_data),
            model.predict(without_response)
        )

    def test_zero_variance_predictor_is_fatal(self, complete_data):
        complete_data['Fill_Ounces'] = 24.0

        with pytest.raises(ModelTrainingError, match="Zero-variance"):
            StepwiseLinearTrainer().fit(complete_data, 'PH')

    def test_missing_response_is_fatal(self, complete_data):
        complete_data.loc[3, 'PH'] = np.nan

        with pytest.raises(ModelTrainingError, match="missing"):
            RandomForestTrainer(n_estimators=10, cv_folds=3).fit(complete_data, 'PH')

    def test_missing_brand_rejected_at_prediction(self, complete_data):
        model = StepwiseLinearTrainer().fit(complete_data, 'PH')
        scored = complete_data.copy()
        scored.loc[5, 'Brand_Code'] = np.nan

        with pytest.raises(ValueError, match="impute first"):
            model.predict(scored)

    def test_subset_of_features(self, complete_data):
        model = StepwiseLinearTrainer().fit(complete_data, 'PH', ['Carb_Volume', 'Balling'])

        assert model.feature_columns == ['Carb_Volume', 'Balling']
        assert len(model.predict(complete_data)) == len(complete_data)

    def test_save_load(self, complete_data, tmp_path):
        model = RandomForestTrainer(n_estimators=20, param_grid={'max_features': [0.5]},
                                    cv_folds=3).fit(complete_data, 'PH')
        path = tmp_path / "models" / "rf.joblib"

        model.save(str(path))
        loaded = FittedModel.load(str(path))

        assert loaded.name == model.name
        assert loaded.design_columns == model.design_columns
        np.testing.assert_array_equal(loaded.predict(complete_data), model.predict(complete_data))


class TestStepwiseLinear:
    """Tests for OLS with backward elimination."""

    def test_keeps_informative_terms(self, complete_data):
        model = StepwiseLinearTrainer().fit(complete_data, 'PH')
        info = model.training_info

        assert 'Carb_Volume' in info['selected_terms']
        assert 'Usage_cont' in info['selected_terms']
        assert info['r2'] > 0.9

    def test_nominal_column_is_single_term(self, complete_data):
        info = StepwiseLinearTrainer().fit(complete_data, 'PH').training_info
        terms = info['selected_terms'] + info['dropped_terms']

        assert 'Brand_Code' in terms
        assert not any(t.startswith('Brand_Code_') for t in terms)

    def test_reports_diagnostics(self, complete_data):
        info = StepwiseLinearTrainer().fit(complete_data, 'PH').training_info

        assert 'const' in info['p_values']
        assert set(info['vif']) <= set(info['coefficients'])
        assert all(v >= 1.0 - 1e-9 for v in info['vif'].values())
        assert info['steps'][0]['dropped'] is None

    def test_aic_never_increases(self, complete_data):
        complete_data['Noise'] = np.random.default_rng(9).normal(size=len(complete_data))
        info = StepwiseLinearTrainer().fit(complete_data, 'PH').training_info
        aics = [s['aic'] for s in info['steps']]

        assert aics == sorted(aics, reverse=True)

    def test_singular_design_is_fatal(self, complete_data):
        complete_data['Carb_Volume_copy'] = complete_data['Carb_Volume'] * 2.0

        with pytest.raises(ModelTrainingError, match="Singular"):
            StepwiseLinearTrainer().fit(complete_data, 'PH')

    def test_importances_are_t_values(self, complete_data):
        model = StepwiseLinearTrainer().fit(complete_data, 'PH')
        importances = model.feature_importances()

        assert 'const' not in importances.index
        assert (importances >= 0).all()


class TestGridSearchTrainers:
    """Tests for the cross-validated families."""

    def test_best_params_recorded(self, complete_data):
        trainer = PenalizedRegressionTrainer(
            param_grid={'alpha': [0.0001, 0.01], 'l1_ratio': [1.0]}, cv_folds=3
        )
        info = trainer.fit(complete_data, 'PH').training_info

        assert info['best_params']['alpha'] in (0.0001, 0.01)
        assert info['best_params']['l1_ratio'] == 1.0
        assert info['n_candidates'] == 2
        assert len(info['cv_results']) == 2
        assert info['cv_rmse'] > 0

    def test_integer_mtry_capped(self, complete_data):
        model = RandomForestTrainer(n_estimators=10, param_grid={'max_features': [100]},
                                    cv_folds=3).fit(complete_data, 'PH')

        assert model.training_info['best_params']['max_features'] == len(model.design_columns)

    def test_forest_importances(self, complete_data):
        model = RandomForestTrainer(n_estimators=30, param_grid={'max_features': [1.0]},
                                    cv_folds=3).fit(complete_data, 'PH')
        importances = model.feature_importances()

        assert set(importances.index) == set(model.design_columns)
        assert (importances >= 0).all()
        assert abs(importances.sum() - 1.0) < 1e-6

    def test_network_has_no_importances(self, complete_data):
        model = NeuralNetworkTrainer(param_grid={'hidden_units': [2], 'alpha': [0.1]},
                                     cv_folds=3).fit(complete_data, 'PH')

        assert model.feature_importances() is None
        assert model.training_info['best_params']['hidden_layer_sizes'] == (2,)

    def test_strict_convergence_raises(self, complete_data):
        trainer = NeuralNetworkTrainer(
            param_grid={'hidden_units': [5], 'alpha': [0.0]},
            cv_folds=2, max_iter=1, strict_convergence=True
        )

        with pytest.raises(ModelTrainingError, match="did not converge"):
            trainer.fit(complete_data, 'PH')

    def test_convergence_warnings_recorded(self, complete_data):
        trainer = NeuralNetworkTrainer(
            param_grid={'hidden_units': [5], 'alpha': [0.0]},
            cv_folds=2, max_iter=1, strict_convergence=False
        )
        model = trainer.fit(complete_data, 'PH')

        assert model.training_info['convergence_warnings'] > 0

    def test_non_convergence_fails_by_default(self, complete_data):
        trainer = NeuralNetworkTrainer(
            param_grid={'hidden_units': [5], 'alpha': [0.0]},
            cv_folds=2, max_iter=1
        )

        assert trainer.strict_convergence
        with pytest.raises(ModelTrainingError, match="did not converge"):
            trainer.fit(complete_data, 'PH')


class TestBuildAndTrain:
    """Tests for config-driven training."""

    @pytest.fixture
    def config(self):
        return {
            'training': {'cv_folds': 3, 'random_state': 0},
            'models': {
                'linear_stepwise': {'enabled': True},
                'random_forest': {'enabled': True, 'n_estimators': 20,
                                  'param_grid': {'max_features': [0.5]},
                                  'exclude_columns': ['Brand_Code']},
                'neural_network': {'enabled': False}
            }
        }

    def test_build_trainers(self, config):
        trainers = build_trainers(config)

        assert list(trainers) == ['linear_stepwise', 'random_forest']
        assert trainers['random_forest'].cv_folds == 3
        assert trainers['random_forest'].n_estimators == 20
        assert trainers['random_forest'].strict_convergence

    def test_unknown_model(self):
        with pytest.raises(ValueError, match="Unknown model"):
            build_trainers({'models': {'svm': {}}})

    def test_train_models_applies_exclusions(self, config, complete_data):
        models, failures = train_models(complete_data, 'PH', config)

        assert failures == {}
        assert 'Brand_Code' not in models['random_forest'].feature_columns
        assert 'Brand_Code' in models['linear_stepwise'].feature_columns

    def test_failure_isolated_to_one_model(self, config, complete_data):
        complete_data['Copy'] = complete_data['Balling'] * 3.0
        models, failures = train_models(complete_data, 'PH', config)

        assert 'linear_stepwise' in failures
        assert 'random_forest' in models

    def test_all_failing_is_fatal(self, complete_data):
        complete_data['Constant'] = 1.0
        config = {'models': {'linear_stepwise': {}}}

        with pytest.raises(ModelTrainingError, match="No model"):
            train_models(complete_data, 'PH', config)


class TestDesignMatrix:
    """Tests for training/inference column alignment."""

    def test_unseen_levels_aligned(self, complete_data):
        train = complete_data[complete_data['Brand_Code'] != 'D']
        X_train = build_design_matrix(train, ['Balling', 'Brand_Code'])
        X_new = build_design_matrix(complete_data, ['Balling', 'Brand_Code'], X_train.columns)

        assert list(X_new.columns) == list(X_train.columns)
        assert 'Brand_Code_D' not in X_train.columns
        assert len(X_new) == len(complete_data)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
