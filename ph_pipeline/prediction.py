"""
Prediction Module
=================

Applies every fitted model to the imputed evaluation dataset.

Features:
    - One prediction column per model, aligned by row
    - Each model selects its own training feature columns
    - Optional CSV export
"""

import logging
from pathlib import Path
from typing import Dict, Any, Optional
from datetime import datetime

import numpy as np
import pandas as pd

from .model import FittedModel

logger = logging.getLogger(__name__)


def predict_all(
    models: Dict[str, FittedModel],
    evaluation: pd.DataFrame
) -> pd.DataFrame:
    """
    Predict the response for every evaluation row with every model.

    Args:
        models: Fitted models by name (column order follows this mapping)
        evaluation: Imputed evaluation DataFrame; a response column, if
            present, is ignored since no model uses it as a predictor

    Returns:
        DataFrame with the evaluation index and one column per model
    """
    logger.info("=" * 60)
    logger.info("STARTING PREDICTION")
    logger.info("=" * 60)

    predictions = pd.DataFrame(index=evaluation.index)

    for name, model in models.items():
        values = model.predict(evaluation)
        if len(values) != len(evaluation):
            raise ValueError(
                f"Model '{name}' returned {len(values)} predictions for {len(evaluation)} rows"
            )
        predictions[name] = values
        logger.info(f"{name}: mean prediction {np.mean(values):.4f}")

    logger.info(f"Predicted {len(predictions)} rows with {len(models)} models")
    return predictions


def export_predictions(
    predictions: pd.DataFrame,
    output_path: str,
    include_timestamp: bool = True
) -> str:
    """
    Export predictions to CSV file.

    Args:
        predictions: Prediction table from predict_all
        output_path: Directory to save the file
        include_timestamp: Whether to add timestamp to filename

    Returns:
        Path to the saved file
    """
    output_path = Path(output_path)
    output_path.mkdir(parents=True, exist_ok=True)

    if include_timestamp:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filename = f"ph_predictions_{timestamp}.csv"
    else:
        filename = "ph_predictions.csv"

    filepath = output_path / filename
    predictions.to_csv(filepath, index_label='row_index')

    logger.info(f"Predictions exported to {filepath}")
    return str(filepath)


def run_prediction(
    models: Dict[str, FittedModel],
    evaluation: pd.DataFrame,
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Predict the evaluation set and optionally export the table.

    Export is controlled by output.save_predictions (off by default).

    Args:
        models: Fitted models by name
        evaluation: Imputed evaluation DataFrame
        config: Configuration dictionary

    Returns:
        Dictionary with the prediction table and the CSV path (or None)
    """
    output_config = config.get('output', {})
    predictions = predict_all(models, evaluation)

    csv_path: Optional[str] = None
    if output_config.get('save_predictions', False):
        csv_path = export_predictions(
            predictions,
            output_config.get('predictions_path', 'data/predictions/'),
            include_timestamp=output_config.get('timestamp_files', True)
        )

    return {'predictions': predictions, 'csv_path': csv_path}


def print_prediction_results(result: Dict[str, Any], n_rows: int = 10) -> None:
    """
    Print a preview of the prediction table.

    Args:
        result: Result dictionary from run_prediction
        n_rows: Number of rows to show
    """
    predictions = result['predictions']

    print("\n" + "=" * 70)
    print("EVALUATION SET PREDICTIONS")
    print("=" * 70)
    print(f"Rows: {len(predictions)} | Models: {predictions.shape[1]}")
    print("-" * 70)
    print(predictions.head(n_rows).round(4).to_string())
    print("-" * 70)
    print("Summary:")
    print(predictions.describe().loc[['mean', 'std', 'min', 'max']].round(4).to_string())

    if result.get('csv_path'):
        print(f"\nPredictions exported to: {result['csv_path']}")

    print("=" * 70 + "\n")
