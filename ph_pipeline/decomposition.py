"""
Series Decomposition Module
===========================

Splits a daily ridership series into trend, seasonal and remainder
components.

Functions:
    - load_series: Daily series from a CSV (path or URL)
    - classical_decompose: Moving-average decomposition
    - stl_decompose: Seasonal-trend decomposition with loess (STL)
    - multi_seasonal_decompose: STL with several seasonal periods (MSTL),
      e.g. weekly and annual cycles of daily data
    - component_strength: Trend and seasonal strength statistics
    - decompose_series: Dispatch on method name
"""

import logging
from typing import Dict, Any, Optional, Sequence

import numpy as np
import pandas as pd
from statsmodels.tsa.seasonal import MSTL, STL, seasonal_decompose

from .data_loader import fetch_csv
from .exceptions import DecompositionError

logger = logging.getLogger(__name__)


def load_series(
    source: str,
    date_column: str = "dteday",
    value_column: str = "cnt",
    freq: str = "D",
    timeout: float = 30.0
) -> pd.Series:
    """
    Load a regularly spaced series from a CSV file.

    Duplicate dates are averaged and gaps are filled by time interpolation.

    Args:
        source: File path or http(s) URL
        date_column: Column holding dates
        value_column: Column holding the observed values
        freq: Series frequency
        timeout: Request timeout for remote sources

    Returns:
        Float series indexed by date
    """
    df = fetch_csv(source, timeout=timeout)

    for col in (date_column, value_column):
        if col not in df.columns:
            raise DecompositionError(f"Column '{col}' not found in {source}")

    series = (
        df.assign(**{date_column: pd.to_datetime(df[date_column])})
        .groupby(date_column)[value_column]
        .mean()
        .sort_index()
        .astype(float)
        .asfreq(freq)
    )

    n_gaps = int(series.isnull().sum())
    if n_gaps:
        logger.warning(f"Filling {n_gaps} missing {freq} observations by interpolation")
        series = series.interpolate(method='time').bfill().ffill()

    series.name = value_column
    logger.info(f"Loaded series '{value_column}': {len(series)} observations "
                f"({series.index.min().date()} to {series.index.max().date()})")
    return series


def _check_length(series: pd.Series, period: int) -> None:
    if period < 2:
        raise DecompositionError(f"Seasonal period must be at least 2, got {period}")
    if len(series) < 2 * period:
        raise DecompositionError(
            f"Series of length {len(series)} is shorter than two full periods ({2 * period})"
        )
    if series.isnull().any():
        raise DecompositionError("Series contains missing values")


def _components(result: Any) -> pd.DataFrame:
    frame = pd.DataFrame({
        'observed': result.observed,
        'trend': result.trend
    })
    seasonal = result.seasonal
    if isinstance(seasonal, pd.DataFrame):
        for col in seasonal.columns:
            frame[col] = seasonal[col]
    else:
        frame['seasonal'] = seasonal
    frame['resid'] = result.resid
    return frame


def classical_decompose(
    series: pd.Series,
    period: int,
    model: str = "additive"
) -> pd.DataFrame:
    """
    Classical decomposition with a centered moving-average trend.

    Trend and remainder are undefined for half a period at each end.

    Args:
        series: Regularly spaced series
        period: Seasonal period in observations
        model: 'additive' or 'multiplicative'

    Returns:
        DataFrame with observed, trend, seasonal and resid columns
    """
    _check_length(series, period)
    if model == "multiplicative" and (series <= 0).any():
        raise DecompositionError("Multiplicative decomposition requires strictly positive values")

    result = seasonal_decompose(series, model=model, period=period)
    return _components(result)


def stl_decompose(
    series: pd.Series,
    period: int,
    robust: bool = True,
    seasonal: int = 7
) -> pd.DataFrame:
    """
    STL decomposition; the seasonal component may evolve over time.

    Args:
        series: Regularly spaced series
        period: Seasonal period in observations
        robust: Downweight outliers in the loess fits
        seasonal: Seasonal smoother length (odd, >= 3)

    Returns:
        DataFrame with observed, trend, seasonal and resid columns
    """
    _check_length(series, period)
    result = STL(series, period=period, seasonal=seasonal, robust=robust).fit()
    return _components(result)


def multi_seasonal_decompose(
    series: pd.Series,
    periods: Sequence[int] = (7, 365)
) -> pd.DataFrame:
    """
    Decompose daily data with several seasonal cycles at once (MSTL).

    Args:
        series: Regularly spaced series
        periods: Seasonal periods, e.g. weekly and annual for daily data

    Returns:
        DataFrame with observed, trend, one seasonal_<period> column per
        period, and resid
    """
    periods = sorted(int(p) for p in periods)
    if not periods:
        raise DecompositionError("At least one seasonal period is required")
    _check_length(series, max(periods))

    result = MSTL(series, periods=periods).fit()
    components = _components(result)
    if 'seasonal' in components.columns:
        components = components.rename(columns={'seasonal': f"seasonal_{periods[0]}"})
    return components


def _strength(component: pd.Series, resid: pd.Series) -> float:
    frame = pd.concat([component, resid], axis=1).dropna()
    if len(frame) < 2:
        return float('nan')
    var_combined = np.var(frame.iloc[:, 0] + frame.iloc[:, 1])
    if var_combined == 0:
        return 0.0
    return float(max(0.0, 1.0 - np.var(frame.iloc[:, 1]) / var_combined))


def component_strength(components: pd.DataFrame) -> Dict[str, float]:
    """
    Strength of trend and of each seasonal component, in [0, 1].

    Strength of X is max(0, 1 - var(R) / var(X + R)) with R the remainder.
    """
    strengths = {'trend': _strength(components['trend'], components['resid'])}
    for col in components.columns:
        if col.startswith('seasonal'):
            strengths[col] = _strength(components[col], components['resid'])
    return strengths


def decompose_series(
    series: pd.Series,
    method: str = "stl",
    period: int = 7,
    periods: Optional[Sequence[int]] = None,
    model: str = "additive",
    robust: bool = True
) -> Dict[str, Any]:
    """
    Decompose a series with the named method.

    Args:
        series: Regularly spaced series
        method: 'classical', 'stl' or 'mstl'
        period: Seasonal period for classical and STL
        periods: Seasonal periods for MSTL
        model: Classical decomposition model
        robust: Robust STL fitting

    Returns:
        Dictionary with method, components and strengths
    """
    logger.info(f"Decomposing '{series.name}' with {method}")

    if method == "classical":
        components = classical_decompose(series, period=period, model=model)
    elif method == "stl":
        components = stl_decompose(series, period=period, robust=robust)
    elif method == "mstl":
        components = multi_seasonal_decompose(series, periods=periods or (7, 365))
    else:
        raise ValueError(f"Unknown method: {method}. Choose from: classical, stl, mstl")

    strengths = component_strength(components)
    for name, value in strengths.items():
        logger.info(f"  {name} strength: {value:.3f}")

    return {'method': method, 'components': components, 'strengths': strengths}


def print_decomposition_summary(result: Dict[str, Any]) -> None:
    """
    Print component statistics for a decomposition result.

    Args:
        result: Result dictionary from decompose_series
    """
    components = result['components']

    print("\n" + "=" * 60)
    print(f"DECOMPOSITION SUMMARY ({result['method'].upper()})")
    print("=" * 60)
    print(f"Observations: {len(components)} "
          f"({components.index.min()} to {components.index.max()})")
    print("-" * 60)
    print(components.describe().loc[['mean', 'std', 'min', 'max']].round(3).to_string())
    print("-" * 60)
    print("Strength (0 = none, 1 = dominant):")
    for name, value in result['strengths'].items():
        print(f"  {name:<20} {value:.3f}")
    print("=" * 60 + "\n")
