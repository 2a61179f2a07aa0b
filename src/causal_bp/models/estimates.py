"""
Containers for causal effect estimates.
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

import numpy as np
from scipy import stats

from ..config import ALPHA


@dataclass(frozen=True)
class CausalEstimate:
    """Container for causal effect estimates."""
    coefficient: float
    std_error: float
    ci_lower: float
    ci_upper: float
    p_value: float
    method: str
    n_obs: Optional[int] = None

    @property
    def is_significant(self) -> bool:
        """Check if effect is statistically significant at the 5% level."""
        return self.p_value < ALPHA

    @property
    def odds_ratio(self) -> float:
        return float(np.exp(self.coefficient))

    def covers(self, value: float) -> bool:
        """Whether the confidence interval contains ``value``."""
        return self.ci_lower <= value <= self.ci_upper

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result['significant'] = self.is_significant
        return result


def wald_estimate(
    coefficient: float,
    std_error: float,
    method: str,
    n_obs: Optional[int] = None,
    alpha: float = ALPHA
) -> CausalEstimate:
    """
    Build an estimate with a normal-approximation CI and two-sided p-value.

    Args:
        coefficient: Point estimate
        std_error: Standard error
        method: Estimator name
        n_obs: Number of units used
        alpha: 1 - confidence level

    Returns:
        CausalEstimate
    """
    z = stats.norm.ppf(1 - alpha / 2)
    if std_error > 0:
        p_value = 2 * stats.norm.sf(abs(coefficient) / std_error)
    else:
        p_value = np.nan

    return CausalEstimate(
        coefficient=float(coefficient),
        std_error=float(std_error),
        ci_lower=float(coefficient - z * std_error),
        ci_upper=float(coefficient + z * std_error),
        p_value=float(p_value),
        method=method,
        n_obs=n_obs
    )
