"""
Utility functions for the causal inference analysis.
"""

import pandas as pd
import numpy as np
import logging
from pathlib import Path
from typing import Dict, List, Any, Optional
import json
import pickle

from ..errors import PositivityViolationError


logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Set up logging configuration.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file to write logs to
    """
    log_level = getattr(logging, level.upper())

    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def _to_builtin(value: Any) -> Any:
    """json.dump fallback for numpy and pandas objects."""
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return float(value)
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, (pd.Series, pd.DataFrame)):
        return value.to_dict()
    if hasattr(value, 'to_dict'):
        return value.to_dict()
    return str(value)


def save_results(results: Dict[str, Any], filepath: str) -> None:
    """
    Save analysis results to file.

    Args:
        results: Dictionary containing analysis results
        filepath: Path to save results (.json or .pkl)
    """
    filepath = Path(filepath)

    if filepath.suffix == '.json':
        with open(filepath, 'w') as f:
            json.dump(results, f, indent=2, default=_to_builtin)

    elif filepath.suffix == '.pkl':
        with open(filepath, 'wb') as f:
            pickle.dump(results, f)

    else:
        raise ValueError(f"Unsupported file format: {filepath.suffix}")

    logger.info(f"Results saved to {filepath}")


def load_results(filepath: str) -> Dict[str, Any]:
    """
    Load analysis results from file.

    Args:
        filepath: Path to results file

    Returns:
        Dictionary containing analysis results
    """
    filepath = Path(filepath)

    if filepath.suffix == '.json':
        with open(filepath, 'r') as f:
            results = json.load(f)

    elif filepath.suffix == '.pkl':
        with open(filepath, 'rb') as f:
            results = pickle.load(f)

    else:
        raise ValueError(f"Unsupported file format: {filepath.suffix}")

    logger.info(f"Results loaded from {filepath}")
    return results


def summarize_weights(weights: pd.Series) -> Dict[str, float]:
    """
    Distribution summary of stabilized weights.

    Non-finite weights are counted, not dropped silently; the moments are
    computed over the finite weights only.
    """
    values = np.asarray(weights, dtype=float)
    finite = values[np.isfinite(values)]

    summary = {
        'n_units': int(len(values)),
        'n_non_finite': int(len(values) - len(finite)),
    }
    if len(finite):
        summary.update({
            'mean': float(finite.mean()),
            'std': float(finite.std(ddof=1)) if len(finite) > 1 else 0.0,
            'min': float(finite.min()),
            'p01': float(np.percentile(finite, 1)),
            'median': float(np.median(finite)),
            'p99': float(np.percentile(finite, 99)),
            'max': float(finite.max()),
            # Kish effective sample size
            'effective_sample_size': float(finite.sum() ** 2 / np.sum(finite ** 2)),
        })
    return summary


def weighted_correlation(x, y, weights=None) -> float:
    """Pearson correlation of x and y, optionally under analytic weights."""
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    cov = np.cov(x, y, aweights=weights)
    denominator = np.sqrt(cov[0, 0] * cov[1, 1])
    if denominator == 0:
        return 0.0
    return float(cov[0, 1] / denominator)


def check_balance(
    df: pd.DataFrame,
    exposure_col: str,
    covariates: List[str],
    weights: Optional[pd.Series] = None
) -> pd.DataFrame:
    """
    Check covariate balance for a continuous exposure.

    Balance is measured by the correlation between the exposure and each
    covariate, before and after weighting. In the weighted pseudo-population
    the correlations should be close to zero.

    Args:
        df: Dataset
        exposure_col: Name of exposure variable
        covariates: List of covariate columns
        weights: Optional stabilized weights aligned with df

    Returns:
        DataFrame with balance statistics
    """
    if weights is not None:
        weights = np.asarray(weights, dtype=float)
        if not np.all(np.isfinite(weights)):
            raise PositivityViolationError(
                "Balance cannot be assessed with non-finite weights",
                n_units=int((~np.isfinite(weights)).sum())
            )

    balance_stats = []

    for covariate in covariates:
        if covariate not in df.columns:
            continue

        row = {
            'covariate': covariate,
            'unweighted_corr': weighted_correlation(df[exposure_col], df[covariate])
        }
        if weights is not None:
            row['weighted_corr'] = weighted_correlation(df[exposure_col], df[covariate], weights)

        balance_stats.append(row)

    return pd.DataFrame(balance_stats)


def validate_data_quality(df: pd.DataFrame, exposure_col: str, outcome_col: str) -> Dict[str, Any]:
    """
    Validate data quality and return quality metrics.

    Args:
        df: Dataset to validate
        exposure_col: Exposure column
        outcome_col: Outcome column

    Returns:
        Dictionary with data quality metrics
    """
    quality_metrics = {}

    quality_metrics['n_observations'] = len(df)
    quality_metrics['n_features'] = len(df.columns)

    missing_counts = df.isnull().sum()
    quality_metrics['missing_data'] = {
        'total_missing': int(missing_counts.sum()),
        'features_with_missing': int((missing_counts > 0).sum()),
        'max_missing_feature': missing_counts.idxmax() if missing_counts.sum() > 0 else None,
        'max_missing_count': int(missing_counts.max()) if len(missing_counts) else 0
    }

    quality_metrics['duplicates'] = int(df.duplicated().sum())

    if exposure_col in df.columns:
        exposure = df[exposure_col]
        q1, q3 = exposure.quantile(0.25), exposure.quantile(0.75)
        iqr = q3 - q1
        quality_metrics['exposure'] = {
            'missing': int(exposure.isnull().sum()),
            'mean': float(exposure.mean()),
            'std': float(exposure.std()),
            'outliers': int(((exposure < q1 - 1.5 * iqr) | (exposure > q3 + 1.5 * iqr)).sum())
        }

    if outcome_col in df.columns:
        outcome_dist = df[outcome_col].value_counts(normalize=True)
        quality_metrics['outcome_distribution'] = outcome_dist.to_dict()

    return quality_metrics


def format_results_table(estimates: Dict[str, Any], title: str = "Exposure Effect Estimates") -> str:
    """
    Format results as a table for reporting.

    Args:
        estimates: Dictionary of causal estimates
        title: Title for the table

    Returns:
        Formatted table string
    """
    table_lines = [f"\n{title}", "=" * len(title)]

    headers = ["Method", "Log OR", "Std Error", "95% CI", "P-value", "Significant"]
    table_lines.append(" | ".join(f"{h:>12}" for h in headers))
    table_lines.append("-" * (13 * len(headers) + len(headers) - 1))

    for method, est in estimates.items():
        if hasattr(est, 'coefficient'):
            significance = "Yes" if est.is_significant else "No"
            ci_str = f"[{est.ci_lower:.4f}, {est.ci_upper:.4f}]"

            row = [
                method[:12],
                f"{est.coefficient:.6f}",
                f"{est.std_error:.6f}",
                ci_str,
                f"{est.p_value:.4f}",
                significance
            ]
            table_lines.append(" | ".join(f"{cell:>12}" for cell in row))

    return "\n".join(table_lines)


def ensure_directory(path: str) -> Path:
    """
    Ensure directory exists, create if it doesn't.

    Args:
        path: Directory path

    Returns:
        Path object
    """
    path_obj = Path(path)
    path_obj.mkdir(parents=True, exist_ok=True)
    return path_obj
