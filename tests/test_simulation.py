"""
Unit tests for the simulated data-generating process and the simulation study.
"""

import unittest
import pandas as pd
import numpy as np
from unittest.mock import patch
import sys
from pathlib import Path

# Add src to path
sys.path.append(str(Path(__file__).parent.parent / "src"))

from causal_bp.data.simulation import (
    SimulationParameters,
    simulate_data,
    true_msm_log_odds_ratio,
    true_shift_log_odds_ratio,
)
from causal_bp.errors import ModelFitError
from causal_bp.models.causal_models import CausalInferenceEngine
from causal_bp.models.simulation_study import run_simulation, summarize_simulation


class TestSimulateData(unittest.TestCase):
    """Test cases for simulate_data."""

    def test_columns_and_types(self):
        """Test the simulated table layout."""
        df = simulate_data(500, seed=1)

        self.assertEqual(list(df.columns), ['W1', 'W2', 'W3', 'A', 'Y'])
        self.assertEqual(len(df), 500)
        self.assertTrue(set(df['Y'].unique()) <= {0, 1})
        self.assertTrue(set(df['W2'].unique()) <= {0, 1})
        self.assertEqual(df.isnull().sum().sum(), 0)

    def test_same_seed_same_sample(self):
        """Test the sample is a function of the seed only."""
        pd.testing.assert_frame_equal(simulate_data(200, seed=7), simulate_data(200, seed=7))

    def test_different_seeds_differ(self):
        """Test different seeds give different samples."""
        self.assertFalse(simulate_data(200, seed=7).equals(simulate_data(200, seed=8)))

    def test_exposure_depends_on_confounders(self):
        """Test the exposure is confounded by W1."""
        df = simulate_data(5000, seed=2)
        self.assertGreater(np.corrcoef(df['A'], df['W1'])[0, 1], 0.2)

    def test_invalid_size(self):
        """Test an empty sample is rejected."""
        with self.assertRaises(ValueError):
            simulate_data(0, seed=1)


class TestTrueValues(unittest.TestCase):
    """Test cases for the Monte-Carlo parameter values."""

    def test_zero_shift(self):
        """Test no shift means no contrast."""
        self.assertEqual(true_shift_log_odds_ratio(0.0, seed=3, n=10_000), 0.0)

    def test_shift_direction(self):
        """Test raising the exposure lowers the risk."""
        self.assertLess(true_shift_log_odds_ratio(5.0, seed=3, n=50_000), 0.0)

    def test_msm_truth_negative(self):
        """Test the marginal log odds ratio is negative and attenuated."""
        truth = true_msm_log_odds_ratio(seed=3, n=50_000)

        self.assertLess(truth, 0.0)
        self.assertGreater(truth, SimulationParameters().outcome_exposure)

    def test_null_effect(self):
        """Test a zero exposure coefficient gives zero truths."""
        params = SimulationParameters(outcome_exposure=0.0)

        self.assertAlmostEqual(true_msm_log_odds_ratio(seed=3, n=20_000, params=params), 0.0, places=2)
        self.assertAlmostEqual(true_shift_log_odds_ratio(5.0, seed=3, n=20_000, params=params), 0.0)


class TestRunSimulation(unittest.TestCase):
    """Test cases for run_simulation."""

    def test_result_layout(self):
        """Test one row per replicate and method."""
        results = run_simulation(n_replicates=3, n_units=300, seed=11, methods=['naive', 'ipw_normal'])

        self.assertEqual(len(results), 6)
        self.assertEqual(
            list(results.columns),
            ['replicate', 'method', 'coefficient', 'std_error', 'ci_lower', 'ci_upper', 'error']
        )
        self.assertEqual(sorted(results['replicate'].unique()), [0, 1, 2])
        self.assertTrue(results['error'].isna().all())
        self.assertTrue(np.all(np.isfinite(results['coefficient'])))

    def test_deterministic(self):
        """Test the same root seed reproduces every replicate."""
        first = run_simulation(n_replicates=2, n_units=300, seed=5, methods=['naive', 'ipw_normal'])
        second = run_simulation(n_replicates=2, n_units=300, seed=5, methods=['naive', 'ipw_normal'])

        pd.testing.assert_frame_equal(first, second)

    def test_replicates_differ(self):
        """Test replicates draw independent samples."""
        results = run_simulation(n_replicates=2, n_units=300, seed=5, methods=['naive'])

        self.assertNotEqual(results['coefficient'].iloc[0], results['coefficient'].iloc[1])

    def test_failed_replicates_recorded(self):
        """Test fit failures are recorded per replicate instead of aborting the study."""
        with patch.object(
            CausalInferenceEngine, 'estimate_treatment_effects',
            side_effect=ModelFitError("singular design")
        ):
            results = run_simulation(n_replicates=2, n_units=100, seed=5, methods=['ipw_quantile'])

        self.assertEqual(len(results), 2)
        self.assertTrue(results['coefficient'].isna().all())
        self.assertTrue(results['error'].str.contains('singular design').all())


class TestSummarizeSimulation(unittest.TestCase):
    """Test cases for summarize_simulation."""

    def test_bias_and_coverage(self):
        """Test summary statistics on a handcrafted result table."""
        results = pd.DataFrame({
            'replicate': [0, 1, 2, 0, 1, 2],
            'method': ['a', 'a', 'a', 'b', 'b', 'b'],
            'coefficient': [0.9, 1.1, 1.3, 2.0, np.nan, 2.0],
            'std_error': [0.1, 0.1, 0.1, 0.5, np.nan, 0.5],
            'ci_lower': [0.8, 0.9, 1.2, 1.0, np.nan, 1.5],
            'ci_upper': [1.0, 1.3, 1.4, 3.0, np.nan, 2.5],
            'error': [None, None, None, None, 'failed', None],
        })

        summary = summarize_simulation(results, {'a': 1.0, 'b': 1.2})

        self.assertEqual(summary.loc['a', 'n_replicates'], 3)
        self.assertEqual(summary.loc['a', 'n_failed'], 0)
        self.assertAlmostEqual(summary.loc['a', 'mean_estimate'], 1.1)
        self.assertAlmostEqual(summary.loc['a', 'bias'], 0.1)
        self.assertAlmostEqual(summary.loc['a', 'empirical_se'], 0.2)
        self.assertAlmostEqual(summary.loc['a', 'coverage'], 2 / 3)

        self.assertEqual(summary.loc['b', 'n_replicates'], 2)
        self.assertEqual(summary.loc['b', 'n_failed'], 1)
        self.assertAlmostEqual(summary.loc['b', 'coverage'], 0.5)

    def test_missing_truth(self):
        """Test methods without a truth get NaN bias and coverage."""
        results = pd.DataFrame({
            'replicate': [0], 'method': ['a'], 'coefficient': [1.0], 'std_error': [0.1],
            'ci_lower': [0.8], 'ci_upper': [1.2], 'error': [None]
        })

        summary = summarize_simulation(results, {})

        self.assertTrue(np.isnan(summary.loc['a', 'bias']))
        self.assertTrue(np.isnan(summary.loc['a', 'coverage']))


if __name__ == '__main__':
    unittest.main()
