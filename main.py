#!/usr/bin/env python3
"""
Beverage pH Modelling - Main Pipeline
=====================================

Orchestrates imputation, model selection and prediction for beverage pH.

Phases:
    1. Load - Fetch training/evaluation data and validate the schema
    2. Impute - Predictive mean matching on each dataset
    3. Split - Stratified 70/30 fit/holdout partition
    4. Train - Cross-validated model families
    5. Evaluate - Holdout RMSE, R², MAE and ranking
    6. Predict - Combined prediction table for the evaluation set

A separate 'decompose' phase decomposes a daily ridership series.

Usage:
    # Run complete pipeline
    python main.py --data data/raw/StudentData.csv --eval-data data/raw/StudentEvaluation.csv

    # Run up to a specific phase
    python main.py --data data/raw/StudentData.csv --phase evaluate

    # Decompose a ridership series
    python main.py --data data/raw/day.csv --phase decompose
"""

import argparse
import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, Optional

import pandas as pd

from ph_pipeline.data_loader import (
    load_config, load_data, prepare_dataset, validate_schema, print_data_summary
)
from ph_pipeline.imputation import impute_dataset, print_imputation_summary
from ph_pipeline.splitting import stratified_split
from ph_pipeline.model import train_models, print_model_summary, FittedModel
from ph_pipeline.evaluation import evaluate_models, print_evaluation_report
from ph_pipeline.prediction import run_prediction, print_prediction_results
from ph_pipeline.decomposition import load_series, decompose_series, print_decomposition_summary

PHASES = ['load', 'impute', 'split', 'train', 'evaluate', 'predict', 'all']


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None) -> None:
    """Configure logging for the pipeline."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(
            Path(log_dir) / f'pipeline_{datetime.now().strftime("%Y%m%d_%H%M%S")}.log'
        ))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )


def banner(title: str) -> None:
    print("\n" + "=" * 70)
    print(title)
    print("=" * 70)


def run_load(
    data_path: str,
    eval_path: Optional[str],
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Execute Phase 1: load, type and validate both datasets.

    Args:
        data_path: Training CSV (path or URL)
        eval_path: Evaluation CSV (path or URL), optional
        config: Configuration dictionary

    Returns:
        Dictionary with 'train', 'evaluation' and 'schema'
    """
    banner("PHASE 1: DATA LOADING")

    data_config = config.get('data', {})
    response = data_config.get('response', 'PH')
    categorical = data_config.get('categorical_column', 'Brand_Code')
    levels = data_config.get('brand_levels')
    timeout = data_config.get('request_timeout', 30)
    index_column = data_config.get('index_column')

    train = load_data(data_path, index_column=index_column, timeout=timeout)
    train = prepare_dataset(train, categorical_column=categorical, levels=levels)
    print_data_summary(train, title="TRAINING DATA SUMMARY")

    evaluation = None
    if eval_path:
        evaluation = load_data(eval_path, index_column=index_column, timeout=timeout)
        evaluation = prepare_dataset(evaluation, categorical_column=categorical, levels=levels)
        print_data_summary(evaluation, title="EVALUATION DATA SUMMARY")

    schema = validate_schema(
        train, evaluation, response,
        expected_columns=data_config.get('expected_columns')
    )

    return {'train': train, 'evaluation': evaluation, 'schema': schema}


def run_imputation(loaded: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 2: impute training and evaluation data separately.

    Both runs use the same method and seed. The evaluation response is
    unobserved, so it is excluded from its imputation.
    """
    banner("PHASE 2: IMPUTATION")

    response = config.get('data', {}).get('response', 'PH')

    train, train_imputer = impute_dataset(loaded['train'], config)
    print_imputation_summary(train_imputer, title="TRAINING IMPUTATION")

    evaluation, eval_imputer = None, None
    if loaded['evaluation'] is not None:
        evaluation, eval_imputer = impute_dataset(loaded['evaluation'], config, exclude=[response])
        print_imputation_summary(eval_imputer, title="EVALUATION IMPUTATION")

    return {
        'train': train,
        'evaluation': evaluation,
        'imputers': {'train': train_imputer, 'evaluation': eval_imputer}
    }


def run_split(train: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, pd.DataFrame]:
    """Execute Phase 3: stratified fit/holdout split."""
    banner("PHASE 3: FIT / HOLDOUT SPLIT")

    split_config = config.get('split', {})
    response = config.get('data', {}).get('response', 'PH')

    fit_index, holdout_index = stratified_split(
        train,
        response,
        train_fraction=split_config.get('train_fraction', 0.7),
        n_groups=split_config.get('n_groups', 5),
        random_state=split_config.get('random_state', 42)
    )

    fit, holdout = train.loc[fit_index], train.loc[holdout_index]
    print(f"Fit rows: {len(fit)} | Holdout rows: {len(holdout)}")
    print(f"Response mean (fit / holdout): {fit[response].mean():.4f} / {holdout[response].mean():.4f}")

    return {'fit': fit, 'holdout': holdout}


def run_training(fit: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, Any]:
    """Execute Phase 4: train every enabled model family."""
    banner("PHASE 4: MODEL TRAINING")

    response = config.get('data', {}).get('response', 'PH')
    output_config = config.get('output', {})
    save_dir = output_config.get('model_dir') if output_config.get('save_models', False) else None

    models, failures = train_models(fit, response, config, save_dir=save_dir)

    for model in models.values():
        print_model_summary(model)
    for name, message in failures.items():
        print(f"✗ {name} failed: {message}")

    return {'models': models, 'failures': failures}


def run_evaluation(
    models: Dict[str, FittedModel],
    holdout: pd.DataFrame,
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """Execute Phase 5: score and rank models on the holdout set."""
    banner("PHASE 5: MODEL EVALUATION")

    response = config.get('data', {}).get('response', 'PH')
    output_dir = config.get('output', {}).get('reports_path')

    result = evaluate_models(models, holdout, response, output_dir=output_dir)
    print_evaluation_report(result['records'])
    return result


def run_prediction_phase(
    models: Dict[str, FittedModel],
    evaluation: Optional[pd.DataFrame],
    config: Dict[str, Any]
) -> Optional[Dict[str, Any]]:
    """Execute Phase 6: predict the evaluation set with every model."""
    banner("PHASE 6: EVALUATION SET PREDICTION")

    if evaluation is None:
        print("No evaluation data given (--eval-data); skipping prediction.")
        return None

    result = run_prediction(models, evaluation, config)
    print_prediction_results(result)
    return result


def run_pipeline(
    data_path: str,
    eval_path: Optional[str],
    config: Dict[str, Any],
    phase: str = 'all'
) -> Dict[str, Any]:
    """
    Execute the pipeline up to and including the requested phase.

    Args:
        data_path: Training CSV (path or URL)
        eval_path: Evaluation CSV (path or URL), optional
        config: Configuration dictionary
        phase: Last phase to run (one of PHASES)

    Returns:
        Dictionary containing all phase results
    """
    if phase not in PHASES:
        raise ValueError(f"Unknown phase: {phase}. Choose from: {', '.join(PHASES)}")
    stop = PHASES.index(phase)

    banner("BEVERAGE pH MODELLING PIPELINE")
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    results: Dict[str, Any] = {'config': config}

    results['load'] = run_load(data_path, eval_path, config)
    if stop == PHASES.index('load'):
        return results

    results['imputed'] = run_imputation(results['load'], config)
    if stop == PHASES.index('impute'):
        return results

    results['split'] = run_split(results['imputed']['train'], config)
    if stop == PHASES.index('split'):
        return results

    results['training'] = run_training(results['split']['fit'], config)
    models = results['training']['models']
    if stop == PHASES.index('train'):
        return results

    results['evaluation'] = run_evaluation(models, results['split']['holdout'], config)
    if stop == PHASES.index('evaluate'):
        return results

    results['prediction'] = run_prediction_phase(models, results['imputed']['evaluation'], config)

    banner("PIPELINE COMPLETE")
    best = results['evaluation']['records'][0]
    print(f"  • Training data: {results['load']['train'].shape[0]} rows")
    print(f"  • Models trained: {len(models)} (failed: {len(results['training']['failures'])})")
    print(f"  • Best model: {best.model} (holdout RMSE {best.rmse:.4f}, R² {best.r2:.4f})")
    if results['prediction'] and results['prediction']['csv_path']:
        print(f"  • Output: {results['prediction']['csv_path']}")
    print(f"Completed at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70 + "\n")

    return results


def run_decomposition(data_path: str, config: Dict[str, Any]) -> Dict[str, Any]:
    """Decompose a daily ridership series using the 'decomposition' config."""
    banner("SERIES DECOMPOSITION")

    dec_config = config.get('decomposition', {})
    series = load_series(
        data_path,
        date_column=dec_config.get('date_column', 'dteday'),
        value_column=dec_config.get('value_column', 'cnt'),
        timeout=config.get('data', {}).get('request_timeout', 30)
    )

    results = {}
    for method in dec_config.get('methods', ['classical', 'stl', 'mstl']):
        result = decompose_series(
            series,
            method=method,
            period=dec_config.get('period', 7),
            periods=dec_config.get('periods', [7, 365]),
            model=dec_config.get('model', 'additive'),
            robust=dec_config.get('robust', True)
        )
        print_decomposition_summary(result)
        results[method] = result

    return results


def main():
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Beverage pH modelling pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --data data/raw/StudentData.csv --eval-data data/raw/StudentEvaluation.csv
  python main.py --data data/raw/StudentData.csv --phase evaluate
  python main.py --data data/raw/day.csv --phase decompose
        """
    )

    parser.add_argument(
        '--data', '-d',
        type=str,
        default=None,
        help='Training CSV path or URL (default: data.train_source from config)'
    )

    parser.add_argument(
        '--eval-data', '-e',
        type=str,
        default=None,
        help='Evaluation CSV path or URL (default: data.eval_source from config)'
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        default='config/config.yaml',
        help='Path to configuration file (default: config/config.yaml)'
    )

    parser.add_argument(
        '--phase', '-p',
        type=str,
        choices=PHASES + ['decompose'],
        default='all',
        help='Last phase to run, or decompose (default: all)'
    )

    parser.add_argument(
        '--output', '-o',
        type=str,
        default=None,
        help='Write the prediction table to this directory'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output'
    )

    args = parser.parse_args()

    # Check if config exists
    if not Path(args.config).exists():
        print(f"Error: Config file not found: {args.config}")
        sys.exit(1)

    config = load_config(args.config)
    log_config = config.get('logging', {})
    setup_logging('DEBUG' if args.verbose else log_config.get('level', 'INFO'),
                  log_dir=log_config.get('log_dir'))

    if args.output:
        config.setdefault('output', {})
        config['output']['save_predictions'] = True
        config['output']['predictions_path'] = args.output

    try:
        if args.phase == 'decompose':
            data_path = args.data or config.get('decomposition', {}).get('source')
            if not data_path:
                print("Error: no series given (--data or decomposition.source)")
                return 1
            run_decomposition(data_path, config)
            return 0

        data_path = args.data or config.get('data', {}).get('train_source')
        eval_path = args.eval_data or config.get('data', {}).get('eval_source')
        if not data_path:
            print("Error: no training data given (--data or data.train_source)")
            return 1

        run_pipeline(data_path, eval_path, config, phase=args.phase)
        return 0

    except Exception as e:
        logging.error(f"Pipeline failed: {e}", exc_info=True)
        print(f"\n❌ Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
