"""
Beverage pH Modelling Pipeline
===============================

A machine learning pipeline predicting beverage pH from manufacturing
process measurements.

Modules:
    - data_loader: CSV ingestion (local or remote) and schema validation
    - imputation: Predictive mean matching imputation
    - splitting: Stratified fit/holdout partitioning
    - features: Design matrix construction shared by all models
    - model: Cross-validated model trainers and fitted models
    - evaluation: Holdout metrics and model ranking
    - prediction: Combined predictions for the evaluation set
    - decomposition: Trend/seasonal decomposition of ridership series
"""

__version__ = "1.0.0"
__author__ = "Predictive Analytics Team"
