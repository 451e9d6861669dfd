"""
Model Training Module
=====================

Trains the competing pH models behind a single trainer interface.

Every trainer exposes fit(data, response, feature_columns) -> FittedModel,
and every FittedModel exposes predict(data) and feature_importances(), so
evaluation and prediction are written once for all model families.

Model families:
    - linear_stepwise: OLS with backward elimination on AIC (statsmodels)
    - elastic_net: Penalized regression, grid over alpha and l1_ratio
    - random_forest: RandomForestRegressor, grid over max_features
    - gradient_boosting: GradientBoostingRegressor, grid over depth,
      learning rate, number of trees and subsampling fraction
    - neural_network: Single hidden layer MLPRegressor, grid over hidden
      units and weight decay
"""

import logging
import warnings
from pathlib import Path
from typing import Dict, Any, Optional, List, Tuple, Sequence
from datetime import datetime

import numpy as np
import pandas as pd
import joblib
import statsmodels.api as sm
from statsmodels.stats.outliers_influence import variance_inflation_factor
from sklearn.ensemble import GradientBoostingRegressor, RandomForestRegressor
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import ElasticNet
from sklearn.model_selection import GridSearchCV, KFold
from sklearn.neural_network import MLPRegressor
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from .exceptions import ModelTrainingError
from .features import build_design_matrix, check_zero_variance, design_terms

logger = logging.getLogger(__name__)


class FittedModel:
    """
    A trained model bound to the feature columns it was trained on.

    predict() selects and encodes those columns itself, so callers can
    pass any DataFrame that contains them (extra columns are ignored).
    """

    def __init__(
        self,
        name: str,
        estimator: Any,
        feature_columns: Sequence[str],
        design_columns: Sequence[str],
        training_info: Optional[Dict[str, Any]] = None
    ):
        self.name = name
        self.estimator = estimator
        self.feature_columns = list(feature_columns)
        self.design_columns = list(design_columns)
        self.training_info = training_info or {}

    def predict(self, df: pd.DataFrame) -> np.ndarray:
        """
        Predict the response for every row of df.

        Args:
            df: DataFrame holding at least the training feature columns

        Returns:
            1D array of predictions, one per row, in row order
        """
        X = build_design_matrix(df, self.feature_columns, self.design_columns)

        # dummies of a missing level encode as zeros, so check the raw columns
        features = df[self.feature_columns]
        if features.isnull().values.any():
            bad = features.columns[features.isnull().any()].tolist()
            raise ValueError(f"Cannot predict with missing values in {bad}; impute first")

        return np.asarray(self.estimator.predict(X), dtype=float).ravel()

    def feature_importances(self) -> Optional[pd.Series]:
        """
        Per-design-column importance, sorted descending, or None when the
        model family has no notion of importance.
        """
        estimator = self.estimator
        if isinstance(estimator, StepwiseOLS):
            return estimator.importances()
        if isinstance(estimator, Pipeline):
            estimator = estimator[-1]

        if hasattr(estimator, "feature_importances_"):
            values = estimator.feature_importances_
        elif hasattr(estimator, "coef_"):
            values = np.abs(np.ravel(estimator.coef_))
        else:
            return None

        return pd.Series(values, index=self.design_columns).sort_values(ascending=False)

    def save(self, filepath: str) -> None:
        """
        Save the fitted model to disk.

        Args:
            filepath: Path to save the model
        """
        state = {
            'name': self.name,
            'estimator': self.estimator,
            'feature_columns': self.feature_columns,
            'design_columns': self.design_columns,
            'training_info': self.training_info
        }
        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(state, filepath)
        logger.info(f"Model '{self.name}' saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'FittedModel':
        """
        Load a fitted model from disk.

        Args:
            filepath: Path to the saved model

        Returns:
            Loaded FittedModel instance
        """
        state = joblib.load(filepath)
        model = cls(
            name=state['name'],
            estimator=state['estimator'],
            feature_columns=state['feature_columns'],
            design_columns=state['design_columns'],
            training_info=state['training_info']
        )
        logger.info(f"Model '{model.name}' loaded from {filepath}")
        return model


class StepwiseOLS:
    """statsmodels OLS results restricted to the selected design columns."""

    def __init__(self, results: Any, selected_columns: List[str]):
        self.results = results
        self.selected_columns = list(selected_columns)

    def _exog(self, X: pd.DataFrame) -> pd.DataFrame:
        if not self.selected_columns:
            return pd.DataFrame({'const': np.ones(len(X))}, index=X.index)
        return sm.add_constant(X[self.selected_columns], has_constant='add')

    def predict(self, X: pd.DataFrame) -> np.ndarray:
        return np.asarray(self.results.predict(self._exog(X)))

    def importances(self) -> pd.Series:
        tvalues = self.results.tvalues.drop('const', errors='ignore')
        return tvalues.abs().sort_values(ascending=False)


class ModelTrainer:
    """
    Base trainer. Subclasses implement _fit_estimator(X, y, terms) and return
    the fitted estimator plus a dictionary of training details.
    """

    name = "base"

    def __init__(
        self,
        param_grid: Optional[Dict[str, List[Any]]] = None,
        cv_folds: int = 10,
        random_state: int = 42,
        n_jobs: int = 1,
        strict_convergence: bool = True
    ):
        """
        Args:
            param_grid: Hyperparameter grid (model-specific keys)
            cv_folds: Number of cross-validation folds
            random_state: Random seed for folds and estimators
            n_jobs: Parallel jobs for the grid search
            strict_convergence: Fail on convergence warnings; False only logs them
        """
        self.param_grid = dict(param_grid) if param_grid else self.default_grid()
        self.cv_folds = cv_folds
        self.random_state = random_state
        self.n_jobs = n_jobs
        self.strict_convergence = strict_convergence

    def default_grid(self) -> Dict[str, List[Any]]:
        return {}

    def _fit_estimator(
        self,
        X: pd.DataFrame,
        y: pd.Series,
        terms: Dict[str, List[str]]
    ) -> Tuple[Any, Dict[str, Any]]:
        raise NotImplementedError

    def fit(
        self,
        df: pd.DataFrame,
        response: str,
        feature_columns: Optional[Sequence[str]] = None
    ) -> FittedModel:
        """
        Train the model on the provided data.

        Args:
            df: Training DataFrame (imputed)
            response: Name of the response column
            feature_columns: Predictor columns (default: all but the response)

        Returns:
            FittedModel

        Raises:
            ModelTrainingError: On degenerate input or failed training
        """
        if feature_columns is None:
            feature_columns = [c for c in df.columns if c != response]
        feature_columns = [c for c in feature_columns if c != response]
        if not feature_columns:
            raise ModelTrainingError(f"[{self.name}] No predictor columns given")

        start_time = datetime.now()

        X = build_design_matrix(df, feature_columns)
        terms = design_terms(feature_columns, X.columns.tolist(), df)
        y = df[response].astype(float)

        if y.isnull().any():
            raise ModelTrainingError(f"[{self.name}] Response contains missing values")
        check_zero_variance(X)

        logger.info("=" * 60)
        logger.info(f"TRAINING {self.name.upper()}")
        logger.info("=" * 60)
        logger.info(f"Training data shape: X={X.shape}, y={y.shape}")

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", ConvergenceWarning)
            try:
                estimator, info = self._fit_estimator(X, y, terms)
            except ModelTrainingError:
                raise
            except (ValueError, np.linalg.LinAlgError) as e:
                raise ModelTrainingError(f"[{self.name}] Training failed: {e}") from e

        convergence = [w for w in caught if issubclass(w.category, ConvergenceWarning)]
        for w in caught:
            if not issubclass(w.category, ConvergenceWarning):
                logger.debug(f"[{self.name}] {w.category.__name__}: {w.message}")

        if convergence:
            message = (
                f"[{self.name}] {len(convergence)} fits did not converge: "
                f"{convergence[0].message}"
            )
            if self.strict_convergence:
                raise ModelTrainingError(message)
            logger.warning(message)

        duration = (datetime.now() - start_time).total_seconds()
        info.update({
            'training_duration_seconds': duration,
            'n_samples': int(X.shape[0]),
            'n_features': int(X.shape[1]),
            'convergence_warnings': len(convergence),
            'trained_at': datetime.now().isoformat()
        })

        logger.info(f"{self.name} trained in {duration:.2f} seconds")

        return FittedModel(
            name=self.name,
            estimator=estimator,
            feature_columns=feature_columns,
            design_columns=X.columns.tolist(),
            training_info=info
        )


class StepwiseLinearTrainer(ModelTrainer):
    """
    Ordinary least squares followed by backward elimination of whole terms
    (a nominal column and its dummies count as one term) while AIC drops.

    Coefficient p-values and variance inflation factors are recorded in
    training_info; high VIFs are logged, never blocking.
    """

    name = "linear_stepwise"

    def __init__(self, vif_threshold: float = 10.0, **kwargs):
        super().__init__(**kwargs)
        self.vif_threshold = vif_threshold

    def _ols(self, X: pd.DataFrame, y: pd.Series, columns: List[str]) -> Any:
        if columns:
            exog = sm.add_constant(X[columns], has_constant='add')
        else:
            exog = pd.DataFrame({'const': np.ones(len(X))}, index=X.index)
        return sm.OLS(y, exog).fit()

    def _vif(self, X: pd.DataFrame, columns: List[str]) -> Dict[str, float]:
        if len(columns) < 2:
            return {c: 1.0 for c in columns}
        exog = sm.add_constant(X[columns], has_constant='add')
        values = exog.values
        vif = {}
        with np.errstate(divide='ignore', invalid='ignore'):
            for i, col in enumerate(exog.columns):
                if col == 'const':
                    continue
                vif[col] = float(variance_inflation_factor(values, i))
        return vif

    def _fit_estimator(
        self,
        X: pd.DataFrame,
        y: pd.Series,
        terms: Dict[str, List[str]]
    ) -> Tuple[Any, Dict[str, Any]]:
        full_exog = sm.add_constant(X, has_constant='add')
        rank = np.linalg.matrix_rank(full_exog.values)
        if rank < full_exog.shape[1]:
            raise ModelTrainingError(
                f"[{self.name}] Singular design matrix (rank {rank} < {full_exog.shape[1]} columns)"
            )

        def columns_of(term_names: List[str]) -> List[str]:
            return [c for t in term_names for c in terms[t]]

        current = list(terms)
        best = self._ols(X, y, columns_of(current))
        steps = [{'dropped': None, 'aic': float(best.aic)}]
        logger.info(f"Full model AIC: {best.aic:.3f} ({len(current)} terms)")

        while current:
            candidates = []
            for term in current:
                remaining = [t for t in current if t != term]
                candidates.append((self._ols(X, y, columns_of(remaining)), term))

            results, term = min(candidates, key=lambda c: c[0].aic)
            if results.aic >= best.aic:
                break

            current.remove(term)
            best = results
            steps.append({'dropped': term, 'aic': float(best.aic)})
            logger.debug(f"Dropped '{term}', AIC now {best.aic:.3f}")

        selected = columns_of(current)
        vif = self._vif(X, selected)
        high_vif = sorted(c for c, v in vif.items() if not v < self.vif_threshold)
        if high_vif:
            logger.warning(
                f"[{self.name}] Variance inflation above {self.vif_threshold}: {high_vif}"
            )

        dropped = [s['dropped'] for s in steps[1:]]
        logger.info(
            f"Stepwise selection kept {len(current)} of {len(terms)} terms "
            f"(AIC {best.aic:.3f}, adj. R² {best.rsquared_adj:.4f})"
        )

        info = {
            'aic': float(best.aic),
            'r2': float(best.rsquared),
            'adj_r2': float(best.rsquared_adj),
            'selected_terms': current,
            'dropped_terms': dropped,
            'steps': steps,
            'coefficients': {k: float(v) for k, v in best.params.items()},
            'p_values': {k: float(v) for k, v in best.pvalues.items()},
            'vif': vif,
            'high_vif': high_vif
        }

        return StepwiseOLS(best, selected), info


class GridSearchTrainer(ModelTrainer):
    """
    Trainer tuned by exhaustive grid search with k-fold cross-validation,
    scored by RMSE on the held-out fold.
    """

    pipeline_step: Optional[str] = None

    def _build_estimator(self) -> Any:
        raise NotImplementedError

    def _adapt_grid(self, X: pd.DataFrame) -> Dict[str, List[Any]]:
        return {k: list(v) for k, v in self.param_grid.items()}

    def _fit_estimator(
        self,
        X: pd.DataFrame,
        y: pd.Series,
        terms: Dict[str, List[str]]
    ) -> Tuple[Any, Dict[str, Any]]:
        grid = self._adapt_grid(X)
        if self.pipeline_step:
            grid = {f"{self.pipeline_step}__{k}": v for k, v in grid.items()}

        n_splits = min(self.cv_folds, len(X))
        if n_splits < 2:
            raise ModelTrainingError(f"[{self.name}] Not enough rows for cross-validation")

        cv = KFold(n_splits=n_splits, shuffle=True, random_state=self.random_state)
        search = GridSearchCV(
            self._build_estimator(),
            param_grid=grid,
            scoring='neg_root_mean_squared_error',
            cv=cv,
            n_jobs=self.n_jobs,
            refit=True,
            error_score='raise'
        )

        n_candidates = int(np.prod([len(v) for v in grid.values()])) if grid else 1
        logger.info(f"Grid search: {n_candidates} candidates × {n_splits} folds")
        search.fit(X, y)

        best_params = {k.split('__', 1)[-1]: v for k, v in search.best_params_.items()}
        logger.info(f"Best parameters: {best_params}")
        logger.info(f"Best CV RMSE: {-search.best_score_:.6f}")

        cv_results = pd.DataFrame(search.cv_results_)
        info = {
            'best_params': best_params,
            'cv_rmse': float(-search.best_score_),
            'cv_folds': n_splits,
            'n_candidates': n_candidates,
            'cv_results': cv_results[['params', 'mean_test_score', 'std_test_score', 'rank_test_score']]
                .assign(mean_test_score=lambda d: -d['mean_test_score'])
                .rename(columns={'mean_test_score': 'mean_rmse', 'std_test_score': 'std_rmse'})
                .to_dict(orient='records')
        }
        return search.best_estimator_, info


class PenalizedRegressionTrainer(GridSearchTrainer):
    """Standardized elastic net; l1_ratio=1.0 is the lasso."""

    name = "elastic_net"
    pipeline_step = "model"

    def __init__(self, max_iter: int = 10000, **kwargs):
        super().__init__(**kwargs)
        self.max_iter = max_iter

    def default_grid(self) -> Dict[str, List[Any]]:
        return {
            'alpha': [0.0001, 0.001, 0.01, 0.1],
            'l1_ratio': [0.1, 0.5, 0.9, 1.0]
        }

    def _build_estimator(self) -> Pipeline:
        return Pipeline([
            ('scale', StandardScaler()),
            ('model', ElasticNet(max_iter=self.max_iter, random_state=self.random_state))
        ])


class RandomForestTrainer(GridSearchTrainer):
    """Bagged regression trees with random feature subsets per split."""

    name = "random_forest"

    def __init__(self, n_estimators: int = 500, **kwargs):
        super().__init__(**kwargs)
        self.n_estimators = n_estimators

    def default_grid(self) -> Dict[str, List[Any]]:
        return {'max_features': [0.33, 0.5, 1.0]}

    def _adapt_grid(self, X: pd.DataFrame) -> Dict[str, List[Any]]:
        grid = super()._adapt_grid(X)
        if 'max_features' in grid:
            adapted = []
            for value in grid['max_features']:
                # integer mtry values larger than the design are capped
                if isinstance(value, int) and not isinstance(value, bool):
                    value = max(1, min(value, X.shape[1]))
                if value not in adapted:
                    adapted.append(value)
            grid['max_features'] = adapted
        return grid

    def _build_estimator(self) -> RandomForestRegressor:
        return RandomForestRegressor(
            n_estimators=self.n_estimators,
            random_state=self.random_state,
            n_jobs=1
        )


class GradientBoostingTrainer(GridSearchTrainer):
    """Sequential tree ensemble fitted to residual gradients."""

    name = "gradient_boosting"

    def default_grid(self) -> Dict[str, List[Any]]:
        return {
            'max_depth': [3, 5],
            'learning_rate': [0.05, 0.1],
            'n_estimators': [200, 500],
            'subsample': [0.5, 0.8]
        }

    def _build_estimator(self) -> GradientBoostingRegressor:
        return GradientBoostingRegressor(random_state=self.random_state)


class NeuralNetworkTrainer(GridSearchTrainer):
    """
    Single hidden layer feed-forward network on standardized inputs.

    The grid uses 'hidden_units' (ints) and 'alpha' (weight decay).
    """

    name = "neural_network"
    pipeline_step = "model"

    def __init__(self, max_iter: int = 2000, solver: str = 'lbfgs', **kwargs):
        super().__init__(**kwargs)
        self.max_iter = max_iter
        self.solver = solver

    def default_grid(self) -> Dict[str, List[Any]]:
        return {
            'hidden_units': [1, 3, 5, 7, 9],
            'alpha': [0.0, 0.01, 0.1]
        }

    def _adapt_grid(self, X: pd.DataFrame) -> Dict[str, List[Any]]:
        grid = super()._adapt_grid(X)
        if 'hidden_units' in grid:
            grid['hidden_layer_sizes'] = [(int(n),) for n in grid.pop('hidden_units')]
        return grid

    def _build_estimator(self) -> Pipeline:
        return Pipeline([
            ('scale', StandardScaler()),
            ('model', MLPRegressor(
                solver=self.solver,
                max_iter=self.max_iter,
                random_state=self.random_state
            ))
        ])


TRAINERS = {
    StepwiseLinearTrainer.name: StepwiseLinearTrainer,
    PenalizedRegressionTrainer.name: PenalizedRegressionTrainer,
    RandomForestTrainer.name: RandomForestTrainer,
    GradientBoostingTrainer.name: GradientBoostingTrainer,
    NeuralNetworkTrainer.name: NeuralNetworkTrainer
}


def build_trainers(config: Dict[str, Any]) -> Dict[str, ModelTrainer]:
    """
    Create the enabled trainers from the 'training' and 'models' sections.

    Args:
        config: Configuration dictionary

    Returns:
        Ordered mapping of model name to trainer
    """
    train_config = config.get('training', {})
    models_config = config.get('models', {}) or {name: {} for name in TRAINERS}

    common = {
        'cv_folds': train_config.get('cv_folds', 10),
        'random_state': train_config.get('random_state', 42),
        'n_jobs': train_config.get('n_jobs', 1),
        'strict_convergence': train_config.get('strict_convergence', True)
    }

    trainers = {}
    for name, model_config in models_config.items():
        model_config = dict(model_config or {})
        if not model_config.pop('enabled', True):
            logger.info(f"Model '{name}' disabled in config")
            continue
        if name not in TRAINERS:
            raise ValueError(f"Unknown model: {name}. Choose from: {list(TRAINERS)}")

        model_config.pop('exclude_columns', None)
        trainers[name] = TRAINERS[name](**common, **model_config)

    return trainers


def train_models(
    df: pd.DataFrame,
    response: str,
    config: Dict[str, Any],
    save_dir: Optional[str] = None
) -> Tuple[Dict[str, FittedModel], Dict[str, str]]:
    """
    Train every enabled model family on the same data.

    A ModelTrainingError fails only that model; the remaining families
    still train.

    Args:
        df: Imputed fit-set DataFrame
        response: Name of the response column
        config: Configuration dictionary
        save_dir: Directory to save fitted models (optional)

    Returns:
        Tuple of (fitted models by name, failure messages by name)

    Raises:
        ModelTrainingError: If no model could be trained
    """
    models_config = config.get('models', {}) or {}
    trainers = build_trainers(config)

    models: Dict[str, FittedModel] = {}
    failures: Dict[str, str] = {}

    for name, trainer in trainers.items():
        exclude = set((models_config.get(name) or {}).get('exclude_columns', []))
        features = [c for c in df.columns if c != response and c not in exclude]

        try:
            models[name] = trainer.fit(df, response, features)
        except ModelTrainingError as e:
            logger.error(f"Model '{name}' failed: {e}")
            failures[name] = str(e)
            continue

        if save_dir:
            models[name].save(str(Path(save_dir) / f"{name}.joblib"))

    if not models:
        raise ModelTrainingError(f"No model could be trained: {failures}")

    return models, failures


def print_model_summary(model: FittedModel) -> None:
    """
    Print a summary of a fitted model.

    Args:
        model: Fitted model instance
    """
    info = model.training_info

    print("\n" + "=" * 50)
    print(f"MODEL SUMMARY - {model.name}")
    print("=" * 50)
    print(f"Estimator: {type(model.estimator).__name__}")
    print(f"Input features: {len(model.feature_columns)} ({len(model.design_columns)} encoded)")

    if 'best_params' in info:
        print(f"\nBest hyperparameters:")
        for key, value in info['best_params'].items():
            print(f"  - {key}: {value}")
        print(f"CV RMSE: {info['cv_rmse']:.6f} ({info['cv_folds']} folds)")

    if 'selected_terms' in info:
        print(f"\nAIC: {info['aic']:.3f} | Adj. R²: {info['adj_r2']:.4f}")
        print(f"Kept terms: {len(info['selected_terms'])} | Dropped: {info['dropped_terms']}")
        significant = sorted(
            (k for k, p in info['p_values'].items() if k != 'const' and p < 0.05),
            key=lambda k: info['p_values'][k]
        )
        print(f"Significant at 5%: {significant}")
        if info['high_vif']:
            print(f"High VIF: {info['high_vif']}")

    importances = model.feature_importances()
    if importances is not None:
        print(f"\nTop features:")
        for feature, value in importances.head(5).items():
            print(f"  - {feature}: {value:.4f}")

    if info:
        print(f"\nTraining Info:")
        print(f"  - Duration: {info.get('training_duration_seconds', 0.0):.2f}s")
        print(f"  - Samples: {info.get('n_samples', 'N/A')}")
        if info.get('convergence_warnings'):
            print(f"  - Convergence warnings: {info['convergence_warnings']}")

    print("=" * 50 + "\n")
