"""
Stabilized inverse probability weights for a continuous exposure.

Two weighting policies are implemented:

* normal density ratio: numerator and denominator are normal densities whose
  means and residual standard deviations come from ``A ~ 1`` and ``A ~ W``
  linear models;
* quantile bins: the exposure is cut at its empirical quantiles and the
  denominator is the multinomial-logit probability of the observed bin given
  ``W``; the numerator is the uniform bin probability ``1 / num_bins``.

Bins are right-closed, ``(q[j-1], q[j]]``, except bin 1 which is ``[q[0], q[1]]``
so that the sample minimum is included.
"""

import warnings
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy import stats
from statsmodels.tools.sm_exceptions import (
    ConvergenceWarning,
    PerfectSeparationError,
    PerfectSeparationWarning,
)

from ..config import NUM_BINS
from ..errors import DataError, MissingDataError, ModelFitError, PositivityViolationError


logger = logging.getLogger(__name__)

# Smallest normal double; densities and probabilities at or below it have lost
# their precision to underflow and are treated as zero.
DENOMINATOR_FLOOR = float(np.finfo(float).tiny)


@dataclass
class StabilizedWeights:
    """Per-unit stabilized weights together with their numerator and denominator."""
    weights: pd.Series
    numerator: pd.Series
    denominator: pd.Series
    method: str
    bins: Optional[pd.Series] = None
    cut_points: Optional[np.ndarray] = None
    min_denominator: float = DENOMINATOR_FLOOR

    @property
    def violations(self) -> pd.Series:
        """Units whose denominator is zero or numerically indistinguishable from zero."""
        return ~np.isfinite(self.weights) | (self.denominator <= self.min_denominator)

    @property
    def n_violations(self) -> int:
        return int(self.violations.sum())

    @property
    def is_finite(self) -> bool:
        return self.n_violations == 0

    def raise_for_violations(self) -> None:
        """Raise if any unit has an undefined weight."""
        if self.n_violations:
            raise PositivityViolationError(
                f"{self.n_violations} of {len(self.weights)} units have a zero or underflowed "
                f"{self.method} denominator (positivity violation)",
                n_units=self.n_violations
            )


@dataclass
class NormalExposureModel:
    """Fitted normal model for the exposure: per-unit means and a common residual SD."""
    mean: np.ndarray
    sd: float
    df_resid: float

    def density(self, values) -> np.ndarray:
        """Normal density of ``values`` under each unit's fitted mean."""
        return stats.norm.pdf(np.asarray(values, dtype=float), loc=self.mean, scale=self.sd)


def check_inputs(df: pd.DataFrame, exposure: str, covariates: List[str]) -> None:
    """Validate that the sample is large enough and has no missing values."""
    columns = [exposure] + list(covariates)
    absent = [col for col in columns if col not in df.columns]
    if absent:
        raise DataError(f"Columns not found in data: {absent}")

    if len(df) < 2:
        raise ValueError(f"At least 2 units are required, got {len(df)}")

    missing = df[columns].isna().sum()
    missing = missing[missing > 0]
    if len(missing):
        raise MissingDataError(
            f"Missing values in {missing.to_dict()}; exclude incomplete units before weighting"
        )


def build_design_matrix(df: pd.DataFrame, covariates: List[str]) -> pd.DataFrame:
    """
    Build an additive design matrix with an intercept.

    Non-numeric covariates are one-hot encoded against a reference level and
    columns without variation are dropped, so uninformative covariates reduce
    the model to the intercept-only model.

    Args:
        df: Dataset
        covariates: Covariate columns

    Returns:
        Design matrix with a leading 'const' column, indexed like ``df``
    """
    design = pd.DataFrame({'const': np.ones(len(df))}, index=df.index)
    if not covariates:
        return design

    X = df[list(covariates)]
    categorical = [col for col in X.columns if not pd.api.types.is_numeric_dtype(X[col])]
    if categorical:
        X = pd.get_dummies(X, columns=categorical, drop_first=True)
    X = X.astype(float)

    constant = [col for col in X.columns if X[col].nunique() <= 1]
    if constant:
        logger.debug(f"Dropping covariates without variation: {constant}")
        X = X.drop(columns=constant)

    return pd.concat([design, X], axis=1)


def fit_normal_exposure_model(a: pd.Series, design: pd.DataFrame) -> NormalExposureModel:
    """
    Fit a linear model for the exposure and return its fitted means and residual SD.

    Args:
        a: Exposure values
        design: Design matrix (intercept included)

    Returns:
        NormalExposureModel
    """
    result = sm.OLS(a.to_numpy(dtype=float), design.to_numpy(dtype=float)).fit()

    if result.df_resid <= 0:
        raise ModelFitError(
            f"Exposure model has {result.df_resid:.0f} residual degrees of freedom "
            f"({len(a)} units, {design.shape[1]} parameters)"
        )

    sd = float(np.sqrt(result.scale))
    if not np.isfinite(sd) or sd <= 0:
        raise ModelFitError(f"Exposure model residual SD is degenerate ({sd})")

    return NormalExposureModel(
        mean=np.asarray(result.fittedvalues, dtype=float),
        sd=sd,
        df_resid=float(result.df_resid)
    )


def assign_quantile_bins(values, num_bins: int = NUM_BINS) -> Tuple[np.ndarray, np.ndarray]:
    """
    Assign each value to an empirical quantile bin.

    Cut points are the linearly interpolated quantiles at probabilities
    0, 1/k, ..., 1. A value equal to an interior cut point falls in the lower
    bin and the sample minimum falls in bin 1.

    Args:
        values: Exposure values
        num_bins: Number of bins k

    Returns:
        Tuple of (bin labels in 1..k, cut points of length k + 1)
    """
    if isinstance(num_bins, bool) or not isinstance(num_bins, (int, np.integer)) or num_bins < 1:
        raise ValueError(f"num_bins must be a positive integer, got {num_bins!r}")

    values = np.asarray(values, dtype=float)
    cut_points = np.quantile(values, np.linspace(0.0, 1.0, num_bins + 1))
    bins = np.searchsorted(cut_points[1:-1], values, side='left') + 1

    return bins.astype(int), cut_points


def _safe_ratio(numerator: np.ndarray, denominator: np.ndarray) -> np.ndarray:
    # x / 0 stays inf (or nan for 0 / 0) so violations remain detectable
    with np.errstate(divide='ignore', invalid='ignore'):
        return np.true_divide(numerator, denominator)


class StabilizedWeightComputer:
    """
    Computes stabilized weights for a continuous exposure given confounders.
    """

    def __init__(self, num_bins: int = NUM_BINS, min_denominator: float = DENOMINATOR_FLOOR):
        """
        Initialize the weight computer.

        Args:
            num_bins: Default number of quantile bins
            min_denominator: Denominators at or below this value are flagged as positivity violations
                (default: the smallest normal double, so underflowed densities are caught)
        """
        self.num_bins = num_bins
        self.min_denominator = min_denominator

    def _finalize(self, df, numerator, denominator, method, bins=None, cut_points=None) -> StabilizedWeights:
        weights = _safe_ratio(numerator, denominator)

        result = StabilizedWeights(
            weights=pd.Series(weights, index=df.index, name='sw'),
            numerator=pd.Series(numerator, index=df.index, name='numerator'),
            denominator=pd.Series(denominator, index=df.index, name='denominator'),
            method=method,
            bins=None if bins is None else pd.Series(bins, index=df.index, name='exposure_bin'),
            cut_points=cut_points,
            min_denominator=self.min_denominator
        )

        if result.n_violations:
            logger.warning(
                f"{method}: {result.n_violations} of {len(df)} units have a zero or underflowed "
                f"denominator; their weights are undefined"
            )
        else:
            logger.info(
                f"{method}: weights mean={weights.mean():.4f}, "
                f"min={weights.min():.4f}, max={weights.max():.4f}"
            )

        return result

    def compute_normal_weights(
        self,
        df: pd.DataFrame,
        exposure: str,
        covariates: List[str]
    ) -> StabilizedWeights:
        """
        Stabilized weights from a ratio of normal densities.

        Args:
            df: Complete-case dataset
            exposure: Exposure column
            covariates: Confounder columns

        Returns:
            StabilizedWeights aligned with ``df``
        """
        check_inputs(df, exposure, covariates)
        a = df[exposure].astype(float)

        numerator_model = fit_normal_exposure_model(a, build_design_matrix(df, []))
        denominator_model = fit_normal_exposure_model(a, build_design_matrix(df, covariates))

        logger.info(
            f"Normal exposure models: marginal sd={numerator_model.sd:.4f}, "
            f"conditional sd={denominator_model.sd:.4f}"
        )

        numerator = numerator_model.density(a)
        denominator = denominator_model.density(a)

        return self._finalize(df, numerator, denominator, method='normal')

    def compute_quantile_bin_weights(
        self,
        df: pd.DataFrame,
        exposure: str,
        covariates: List[str],
        num_bins: Optional[int] = None
    ) -> StabilizedWeights:
        """
        Stabilized weights from quantile-binned exposure categories.

        Args:
            df: Complete-case dataset
            exposure: Exposure column
            covariates: Confounder columns
            num_bins: Number of quantile bins (defaults to the computer's setting)

        Returns:
            StabilizedWeights aligned with ``df``, including bin labels and cut points
        """
        if num_bins is None:
            num_bins = self.num_bins
        check_inputs(df, exposure, covariates)

        bins, cut_points = assign_quantile_bins(df[exposure], num_bins)
        levels = np.unique(bins)
        if len(levels) < num_bins:
            empty = sorted(set(range(1, num_bins + 1)) - set(levels.tolist()))
            logger.warning(f"Quantile bins {empty} are empty because of tied cut points")

        if len(levels) == 1:
            denominator = np.ones(len(df))
        else:
            probabilities = self._fit_bin_classifier(bins, build_design_matrix(df, covariates))
            column = np.searchsorted(levels, bins)
            denominator = probabilities[np.arange(len(df)), column]

        numerator = np.full(len(df), 1.0 / num_bins)

        return self._finalize(
            df, numerator, denominator, method='quantile_bins',
            bins=bins, cut_points=cut_points
        )

    @staticmethod
    def _fit_bin_classifier(bins: np.ndarray, design: pd.DataFrame) -> np.ndarray:
        """Fit a multinomial logit for bin membership and return fitted class probabilities."""
        with warnings.catch_warnings():
            warnings.simplefilter("error", ConvergenceWarning)
            warnings.simplefilter("error", PerfectSeparationWarning)
            try:
                result = sm.MNLogit(bins, design.to_numpy(dtype=float)).fit(
                    method='newton', maxiter=100, disp=0
                )
            except (ConvergenceWarning, PerfectSeparationWarning,
                    PerfectSeparationError, np.linalg.LinAlgError) as e:
                raise ModelFitError(f"Multinomial bin model failed to fit: {e}") from e

        return np.asarray(result.predict(), dtype=float)


def compute_normal_weights(df: pd.DataFrame, exposure: str, covariates: List[str]) -> StabilizedWeights:
    """Module-level shortcut for :meth:`StabilizedWeightComputer.compute_normal_weights`."""
    return StabilizedWeightComputer().compute_normal_weights(df, exposure, covariates)


def compute_quantile_bin_weights(
    df: pd.DataFrame,
    exposure: str,
    covariates: List[str],
    num_bins: int = NUM_BINS
) -> StabilizedWeights:
    """Module-level shortcut for :meth:`StabilizedWeightComputer.compute_quantile_bin_weights`."""
    return StabilizedWeightComputer(num_bins=num_bins).compute_quantile_bin_weights(
        df, exposure, covariates
    )
