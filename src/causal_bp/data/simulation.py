"""
Simulated data-generating process for the blood pressure analysis.

Three confounders drive both the exposure (a blood-pressure-like continuous
variable centred at 80) and a binary outcome whose log odds decrease
linearly with the exposure. All randomness comes from an explicit seed.
"""

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy.special import expit, logit

from ..config import N_TRUTH


logger = logging.getLogger(__name__)

SIM_EXPOSURE = "A"
SIM_OUTCOME = "Y"
SIM_COVARIATES = ["W1", "W2", "W3"]


@dataclass(frozen=True)
class SimulationParameters:
    """Coefficients of the data-generating process."""
    exposure_center: float = 80.0
    exposure_w1: float = 6.0
    exposure_w2: float = -5.0
    exposure_w3: float = 3.0
    exposure_sd: float = 12.0
    w2_probability: float = 0.4
    outcome_intercept: float = -1.5
    outcome_exposure: float = -0.03
    outcome_w1: float = 0.8
    outcome_w2: float = 0.5
    outcome_w3: float = -0.4


def _draw_covariates(rng: np.random.Generator, n: int, params: SimulationParameters) -> pd.DataFrame:
    return pd.DataFrame({
        'W1': rng.normal(0.0, 1.0, n),
        'W2': rng.binomial(1, params.w2_probability, n),
        'W3': rng.normal(0.0, 1.0, n),
    })


def _draw_exposure(rng: np.random.Generator, W: pd.DataFrame, params: SimulationParameters) -> np.ndarray:
    mean = (
        params.exposure_center
        + params.exposure_w1 * W['W1']
        + params.exposure_w2 * W['W2']
        + params.exposure_w3 * W['W3']
    )
    return mean.to_numpy() + rng.normal(0.0, params.exposure_sd, len(W))


def outcome_risk(a, W: pd.DataFrame, params: SimulationParameters) -> np.ndarray:
    """P(Y = 1 | A = a, W) under the data-generating process."""
    log_odds = (
        params.outcome_intercept
        + params.outcome_exposure * (np.asarray(a, dtype=float) - params.exposure_center)
        + params.outcome_w1 * W['W1'].to_numpy()
        + params.outcome_w2 * W['W2'].to_numpy()
        + params.outcome_w3 * W['W3'].to_numpy()
    )
    return expit(log_odds)


def simulate_data(n: int, seed=None, params: SimulationParameters = SimulationParameters()) -> pd.DataFrame:
    """
    Draw one sample from the data-generating process.

    Args:
        n: Number of units
        seed: Seed, SeedSequence or Generator passed to numpy.random.default_rng
        params: Data-generating coefficients

    Returns:
        DataFrame with columns W1, W2, W3, A, Y
    """
    if n < 1:
        raise ValueError(f"n must be positive, got {n}")

    rng = np.random.default_rng(seed)
    df = _draw_covariates(rng, n, params)
    df[SIM_EXPOSURE] = _draw_exposure(rng, df, params)
    df[SIM_OUTCOME] = rng.binomial(1, outcome_risk(df[SIM_EXPOSURE], df, params))
    return df


def true_msm_log_odds_ratio(
    seed=None,
    n: int = N_TRUTH,
    params: SimulationParameters = SimulationParameters()
) -> float:
    """
    Monte-Carlo value of the marginal structural log odds ratio per unit of exposure.

    Exposure values are drawn from their marginal distribution independently
    of the confounders, which is the pseudo-population targeted by the weights.
    """
    rng = np.random.default_rng(seed)
    W = _draw_covariates(rng, n, params)
    a_marginal = _draw_exposure(rng, _draw_covariates(rng, n, params), params)
    risk = outcome_risk(a_marginal, W, params)

    design = sm.add_constant(a_marginal)
    result = sm.GLM(risk, design, family=sm.families.Binomial()).fit()
    truth = float(result.params[1])

    logger.info(f"Marginal structural log odds ratio (n={n}): {truth:.6f}")
    return truth


def true_shift_log_odds_ratio(
    delta: float,
    seed=None,
    n: int = N_TRUTH,
    params: SimulationParameters = SimulationParameters()
) -> float:
    """Monte-Carlo log odds ratio of the risk under A + delta versus the observed risk."""
    rng = np.random.default_rng(seed)
    W = _draw_covariates(rng, n, params)
    a = _draw_exposure(rng, W, params)

    shifted = outcome_risk(a + delta, W, params).mean()
    observed = outcome_risk(a, W, params).mean()
    truth = float(logit(shifted) - logit(observed))

    logger.info(f"Shift log odds ratio (delta={delta}, n={n}): {truth:.6f}")
    return truth
