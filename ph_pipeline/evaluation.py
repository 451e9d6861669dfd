"""
Model Evaluation Module
=======================

Scores fitted models against the holdout set and ranks them.

Features:
    - RMSE, R² and MAE per model
    - Ranking by ascending RMSE
    - Metrics export to JSON
    - Console evaluation report
"""

import logging
import json
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Dict, Any, List, Optional

import numpy as np
import pandas as pd
from sklearn.metrics import mean_squared_error, mean_absolute_error, r2_score

from .exceptions import EvaluationError
from .model import FittedModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PerformanceRecord:
    """Holdout performance of one model."""

    model: str
    rmse: float
    r2: float
    mae: float
    n_samples: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def calculate_metrics(
    model_name: str,
    y_true: np.ndarray,
    y_pred: np.ndarray
) -> PerformanceRecord:
    """
    Calculate RMSE, R² and MAE for one model's holdout predictions.

    Args:
        model_name: Identifier of the model
        y_true: Observed responses
        y_pred: Predicted responses, aligned with y_true

    Returns:
        PerformanceRecord

    Raises:
        EvaluationError: If the holdout is empty or lengths differ
    """
    y_true = np.asarray(y_true, dtype=float).ravel()
    y_pred = np.asarray(y_pred, dtype=float).ravel()

    if len(y_true) == 0:
        raise EvaluationError(f"Cannot evaluate '{model_name}' on an empty holdout set")
    if len(y_true) != len(y_pred):
        raise EvaluationError(
            f"'{model_name}': {len(y_true)} actual values but {len(y_pred)} predictions"
        )
    if not (np.isfinite(y_true).all() and np.isfinite(y_pred).all()):
        raise EvaluationError(f"'{model_name}': missing or infinite values in holdout comparison")

    rmse = np.sqrt(mean_squared_error(y_true, y_pred))
    mae = mean_absolute_error(y_true, y_pred)
    r2 = r2_score(y_true, y_pred) if len(y_true) > 1 else float('nan')

    return PerformanceRecord(
        model=model_name,
        rmse=float(rmse),
        r2=float(r2),
        mae=float(mae),
        n_samples=int(len(y_true))
    )


def rank_models(records: List[PerformanceRecord]) -> List[PerformanceRecord]:
    """Sort records by ascending RMSE; ties keep their input order."""
    return sorted(records, key=lambda r: r.rmse)


def evaluate_models(
    models: Dict[str, FittedModel],
    holdout: pd.DataFrame,
    response: str,
    output_dir: Optional[str] = None
) -> Dict[str, Any]:
    """
    Score every fitted model against the holdout set.

    Args:
        models: Fitted models by name
        holdout: Holdout DataFrame with observed responses
        response: Name of the response column
        output_dir: Directory for the metrics JSON (optional)

    Returns:
        Dictionary containing ranked records, the best model name, the
        holdout predictions and the metrics file path
    """
    logger.info("=" * 60)
    logger.info("STARTING MODEL EVALUATION")
    logger.info("=" * 60)

    if len(holdout) == 0:
        raise EvaluationError("Holdout set is empty")

    y_true = holdout[response].values
    records = []
    predictions = pd.DataFrame(index=holdout.index)
    predictions[response] = y_true

    for name, model in models.items():
        y_pred = model.predict(holdout)
        predictions[name] = y_pred
        record = calculate_metrics(name, y_true, y_pred)
        records.append(record)
        logger.info(
            f"{name}: RMSE={record.rmse:.6f} R²={record.r2:.4f} MAE={record.mae:.6f}"
        )

    ranked = rank_models(records)

    result = {
        'records': ranked,
        'best_model': ranked[0].model,
        'holdout_predictions': predictions,
        'metrics_file': None
    }

    if output_dir:
        metrics_dir = Path(output_dir) / "metrics"
        metrics_dir.mkdir(parents=True, exist_ok=True)
        metrics_file = metrics_dir / "holdout_metrics.json"
        with open(metrics_file, 'w') as f:
            json.dump([r.to_dict() for r in ranked], f, indent=2)
        logger.info(f"Metrics saved to {metrics_file}")
        result['metrics_file'] = str(metrics_file)

    logger.info("=" * 60)
    logger.info(f"EVALUATION COMPLETE - best model: {ranked[0].model}")
    logger.info("=" * 60)

    return result


def performance_table(records: List[PerformanceRecord]) -> pd.DataFrame:
    """Records as a DataFrame indexed by model name, ranked by RMSE."""
    table = pd.DataFrame([r.to_dict() for r in rank_models(records)])
    if table.empty:
        return pd.DataFrame(columns=['rmse', 'r2', 'mae', 'n_samples'])
    table.index = pd.RangeIndex(1, len(table) + 1, name='rank')
    return table


def print_evaluation_report(records: List[PerformanceRecord]) -> None:
    """
    Print a formatted evaluation report to console.

    Args:
        records: Performance records (any order)
    """
    ranked = rank_models(records)

    print("\n" + "=" * 70)
    print("MODEL EVALUATION REPORT (HOLDOUT)")
    print("=" * 70)
    print(f"{'Rank':<6} {'Model':<22} {'RMSE':<12} {'R²':<12} {'MAE':<12}")
    print("-" * 70)

    for rank, record in enumerate(ranked, start=1):
        print(f"{rank:<6} {record.model:<22} {record.rmse:<12.6f} "
              f"{record.r2:<12.6f} {record.mae:<12.6f}")

    print("-" * 70)

    if ranked:
        best = ranked[0]
        print(f"\nBest model: {best.model} (RMSE {best.rmse:.6f}, "
              f"{best.n_samples} holdout rows)")
        print("\nInterpretation:")
        if best.r2 > 0.7:
            print("  ✓ Good model performance (R² > 0.7)")
        elif best.r2 > 0.5:
            print("  ⚠ Moderate model performance (R² > 0.5)")
        else:
            print("  ✗ Weak model performance (R² < 0.5)")

    print("=" * 70 + "\n")
