"""
Unit tests for stabilized weight computation.
"""

import unittest
import pandas as pd
import numpy as np
from unittest.mock import patch
import sys
from pathlib import Path

# Add src to path
sys.path.append(str(Path(__file__).parent.parent / "src"))

from causal_bp.data.simulation import simulate_data, SIM_COVARIATES, SIM_EXPOSURE
from causal_bp.errors import DataError, MissingDataError, ModelFitError, PositivityViolationError
from causal_bp.models.weights import (
    NormalExposureModel,
    StabilizedWeightComputer,
    StabilizedWeights,
    assign_quantile_bins,
    build_design_matrix,
    compute_normal_weights,
    compute_quantile_bin_weights,
)


def make_underflow_data(n_samples: int = 1431) -> pd.DataFrame:
    """
    Exposure equal to W except for one unit in the middle, shifted by 1.

    The residual SD of A ~ W is about 1 / sqrt(n), so the shifted unit's
    conditional density lies about sqrt(n) SDs out and underflows into the
    subnormal range without reaching zero.
    """
    w = np.linspace(-100.0, 100.0, n_samples)
    a = w.copy()
    a[n_samples // 2] += 1.0
    return pd.DataFrame({'W': w, 'A': a, 'Y': np.arange(n_samples) % 2})


class TestAssignQuantileBins(unittest.TestCase):
    """Test cases for quantile bin assignment."""

    def test_two_bins_four_units(self):
        """Test the lower half falls in bin 1 and the upper half in bin 2."""
        bins, cut_points = assign_quantile_bins([1, 2, 3, 4], num_bins=2)

        np.testing.assert_array_equal(bins, [1, 1, 2, 2])
        np.testing.assert_allclose(cut_points, [1.0, 2.5, 4.0])

    def test_value_on_cut_point_goes_to_lower_bin(self):
        """Test interior cut points belong to the lower bin and the minimum to bin 1."""
        bins, cut_points = assign_quantile_bins([1, 2, 3, 4, 5], num_bins=4)

        np.testing.assert_allclose(cut_points, [1, 2, 3, 4, 5])
        np.testing.assert_array_equal(bins, [1, 1, 2, 3, 4])

        bins, _ = assign_quantile_bins([5, 3, 1], num_bins=2)
        np.testing.assert_array_equal(bins, [2, 1, 1])

    def test_boundary_assignment_is_repeatable(self):
        """Test a unit on a cut point gets the same bin on every call."""
        values = [10.0, 20.0, 30.0, 40.0, 50.0]
        first, _ = assign_quantile_bins(values, num_bins=2)
        second, _ = assign_quantile_bins(values, num_bins=2)

        np.testing.assert_array_equal(first, second)
        self.assertEqual(first[2], 1)

    def test_partition_of_continuous_exposure(self):
        """Test every unit gets exactly one bin and no bin is empty."""
        rng = np.random.default_rng(7)
        values = rng.normal(80, 15, 1000)

        bins, _ = assign_quantile_bins(values, num_bins=10)

        self.assertEqual(len(bins), len(values))
        self.assertEqual(set(bins), set(range(1, 11)))
        counts = np.bincount(bins)[1:]
        self.assertTrue(np.all(counts == 100))

    def test_ties_leave_empty_bins(self):
        """Test tied cut points do not raise."""
        bins, cut_points = assign_quantile_bins([1, 1, 1, 1, 2], num_bins=4)

        self.assertTrue(set(bins) <= {1, 2, 3, 4})
        self.assertEqual(len(cut_points), 5)
        self.assertEqual(bins[-1], 4)

    def test_single_bin(self):
        """Test one bin puts every unit in bin 1."""
        bins, _ = assign_quantile_bins([3, 1, 2], num_bins=1)
        np.testing.assert_array_equal(bins, [1, 1, 1])

    def test_invalid_num_bins(self):
        """Test non-positive or non-integer bin counts are rejected."""
        for num_bins in (0, -3, 2.5, True):
            with self.assertRaises(ValueError):
                assign_quantile_bins([1, 2, 3], num_bins=num_bins)


class TestBuildDesignMatrix(unittest.TestCase):
    """Test cases for design matrix construction."""

    def test_constant_columns_dropped(self):
        """Test uninformative covariates reduce to the intercept."""
        df = pd.DataFrame({'w': [5, 5, 5], 'g': ['a', 'a', 'a']})
        design = build_design_matrix(df, ['w', 'g'])

        self.assertEqual(list(design.columns), ['const'])

    def test_categorical_encoded_against_reference(self):
        """Test categorical covariates are one-hot encoded with a dropped level."""
        df = pd.DataFrame({'w': [1.0, 2.0, 3.0], 'g': ['a', 'b', 'c']})
        design = build_design_matrix(df, ['w', 'g'])

        self.assertEqual(list(design.columns), ['const', 'w', 'g_b', 'g_c'])
        self.assertTrue((design['const'] == 1).all())
        self.assertEqual(design.index.tolist(), df.index.tolist())


class TestNormalWeights(unittest.TestCase):
    """Test cases for normal density-ratio weights."""

    def test_uninformative_covariate_gives_unit_weights(self):
        """Test A = [1, 2, 3, 4] with constant W yields weights [1, 1, 1, 1]."""
        df = pd.DataFrame({'A': [1.0, 2.0, 3.0, 4.0], 'W': [1.0, 1.0, 1.0, 1.0]})

        result = compute_normal_weights(df, 'A', ['W'])

        self.assertIsInstance(result, StabilizedWeights)
        np.testing.assert_allclose(result.weights.to_numpy(), [1.0, 1.0, 1.0, 1.0])
        self.assertEqual(result.n_violations, 0)
        self.assertEqual(result.method, 'normal')

    def test_no_covariates_gives_unit_weights(self):
        """Test the numerator and denominator models coincide without covariates."""
        df = pd.DataFrame({'A': [3.0, 1.0, 4.0, 1.5, 5.9]})
        result = compute_normal_weights(df, 'A', [])

        np.testing.assert_allclose(result.weights.to_numpy(), np.ones(5))

    def test_output_order_and_index(self):
        """Test weights keep the input index and order."""
        sim = simulate_data(200, seed=3)
        sim.index = np.arange(200)[::-1] + 1000

        result = compute_normal_weights(sim, SIM_EXPOSURE, SIM_COVARIATES)

        self.assertEqual(result.weights.index.tolist(), sim.index.tolist())
        self.assertTrue((result.weights > 0).all())

    def test_weights_are_density_ratio(self):
        """Test each weight equals numerator density over denominator density."""
        sim = simulate_data(300, seed=11)
        result = compute_normal_weights(sim, SIM_EXPOSURE, SIM_COVARIATES)

        np.testing.assert_allclose(
            result.weights.to_numpy(),
            result.numerator.to_numpy() / result.denominator.to_numpy()
        )

    def test_mean_weight_near_one(self):
        """Test stabilized weights average to about one under a correct exposure model."""
        sim = simulate_data(3000, seed=21)
        result = compute_normal_weights(sim, SIM_EXPOSURE, SIM_COVARIATES)

        self.assertAlmostEqual(result.weights.mean(), 1.0, delta=0.1)

    def test_idempotent(self):
        """Test repeated calls on the same input give identical weights."""
        sim = simulate_data(250, seed=5)
        first = compute_normal_weights(sim, SIM_EXPOSURE, SIM_COVARIATES)
        second = compute_normal_weights(sim, SIM_EXPOSURE, SIM_COVARIATES)

        np.testing.assert_array_equal(first.weights.to_numpy(), second.weights.to_numpy())

    def test_zero_denominator_flagged(self):
        """Test an underflowing denominator density gives a flagged non-finite weight."""
        df = pd.DataFrame({'A': [0.0, 1.0, 2.0], 'W': [0.0, 1.0, 2.0]})
        numerator_model = NormalExposureModel(mean=np.ones(3), sd=1.0, df_resid=2)
        denominator_model = NormalExposureModel(mean=np.array([1e4, 1.0, 2.0]), sd=1.0, df_resid=1)

        with patch('causal_bp.models.weights.fit_normal_exposure_model',
                   side_effect=[numerator_model, denominator_model]):
            result = compute_normal_weights(df, 'A', ['W'])

        self.assertEqual(result.denominator.iloc[0], 0.0)
        self.assertTrue(np.isinf(result.weights.iloc[0]))
        self.assertEqual(result.violations.tolist(), [True, False, False])
        self.assertEqual(result.n_violations, 1)
        self.assertFalse(result.is_finite)

        with self.assertRaises(PositivityViolationError) as context:
            result.raise_for_violations()
        self.assertEqual(context.exception.n_units, 1)

    def test_subnormal_denominator_flagged(self):
        """Test a denominator that underflows to a subnormal value is flagged, not used."""
        df = make_underflow_data()
        middle = len(df) // 2

        result = compute_normal_weights(df, 'A', ['W'])

        denominator = result.denominator.iloc[middle]
        self.assertGreater(denominator, 0.0)
        self.assertLess(denominator, np.finfo(float).tiny)
        self.assertTrue(result.violations.iloc[middle])
        self.assertEqual(result.n_violations, 1)

        with self.assertRaises(PositivityViolationError) as context:
            result.raise_for_violations()
        self.assertEqual(context.exception.n_units, 1)

    def test_missing_values_rejected(self):
        """Test incomplete units are not silently dropped or imputed."""
        df = pd.DataFrame({'A': [1.0, np.nan, 3.0], 'W': [1.0, 2.0, 3.0]})

        with self.assertRaises(MissingDataError):
            compute_normal_weights(df, 'A', ['W'])

    def test_requires_two_units(self):
        """Test a single unit is rejected."""
        with self.assertRaises(ValueError):
            compute_normal_weights(pd.DataFrame({'A': [1.0], 'W': [0.0]}), 'A', ['W'])

    def test_unknown_column(self):
        """Test absent columns raise a data error."""
        with self.assertRaises(DataError):
            compute_normal_weights(pd.DataFrame({'A': [1.0, 2.0]}), 'A', ['W'])

    def test_no_residual_degrees_of_freedom(self):
        """Test a saturated conditional model fails loudly."""
        df = pd.DataFrame({'A': [1.0, 2.0], 'W': [0.0, 1.0]})

        with self.assertRaises(ModelFitError):
            compute_normal_weights(df, 'A', ['W'])


class TestQuantileBinWeights(unittest.TestCase):
    """Test cases for quantile-binned weights."""

    def test_uninformative_covariate_gives_unit_weights(self):
        """Test two bins over A = [1, 2, 3, 4] with constant W yield unit weights."""
        df = pd.DataFrame({'A': [1.0, 2.0, 3.0, 4.0], 'W': [0.0, 0.0, 0.0, 0.0]})

        result = compute_quantile_bin_weights(df, 'A', ['W'], num_bins=2)

        self.assertEqual(result.bins.tolist(), [1, 1, 2, 2])
        np.testing.assert_allclose(result.denominator.to_numpy(), [0.5] * 4, atol=1e-8)
        np.testing.assert_allclose(result.numerator.to_numpy(), [0.5] * 4)
        np.testing.assert_allclose(result.weights.to_numpy(), [1.0] * 4, atol=1e-8)
        np.testing.assert_allclose(result.cut_points, [1.0, 2.5, 4.0])

    def test_default_bin_count(self):
        """Test the default is ten bins with a 1/10 numerator."""
        sim = simulate_data(500, seed=8)
        result = StabilizedWeightComputer().compute_quantile_bin_weights(
            sim, SIM_EXPOSURE, SIM_COVARIATES
        )

        self.assertEqual(set(result.bins), set(range(1, 11)))
        np.testing.assert_allclose(result.numerator.to_numpy(), 0.1)
        self.assertEqual(len(result.cut_points), 11)

    def test_mean_weight_near_one(self):
        """Test quantile-bin weights average to about one."""
        sim = simulate_data(3000, seed=13)
        result = compute_quantile_bin_weights(sim, SIM_EXPOSURE, SIM_COVARIATES, num_bins=5)

        self.assertEqual(result.n_violations, 0)
        self.assertAlmostEqual(result.weights.mean(), 1.0, delta=0.1)

    def test_denominator_is_probability_of_own_bin(self):
        """Test the denominator is the predicted probability of the observed bin."""
        df = pd.DataFrame({'A': [1.0, 2.0, 3.0, 4.0, 5.0, 6.0], 'W': [0.0] * 6})
        probabilities = np.array([
            [0.2, 0.3, 0.5],
            [0.6, 0.3, 0.1],
            [0.1, 0.8, 0.1],
            [0.3, 0.4, 0.3],
            [0.2, 0.2, 0.6],
            [0.1, 0.1, 0.8],
        ])

        with patch.object(StabilizedWeightComputer, '_fit_bin_classifier', return_value=probabilities):
            result = compute_quantile_bin_weights(df, 'A', ['W'], num_bins=3)

        self.assertEqual(result.bins.tolist(), [1, 1, 2, 2, 3, 3])
        np.testing.assert_allclose(result.denominator.to_numpy(), [0.2, 0.6, 0.8, 0.4, 0.6, 0.8])
        np.testing.assert_allclose(result.weights.to_numpy(), (1 / 3) / result.denominator.to_numpy())

    def test_zero_probability_flagged(self):
        """Test a zero predicted probability for the observed bin is a flagged infinite weight."""
        df = pd.DataFrame({'A': [1.0, 2.0, 3.0, 4.0], 'W': [0.0, 1.0, 0.0, 1.0]})
        probabilities = np.array([
            [0.0, 1.0],
            [0.5, 0.5],
            [0.5, 0.5],
            [0.5, 0.5],
        ])

        with patch.object(StabilizedWeightComputer, '_fit_bin_classifier', return_value=probabilities):
            result = compute_quantile_bin_weights(df, 'A', ['W'], num_bins=2)

        self.assertTrue(np.isinf(result.weights.iloc[0]))
        self.assertEqual(result.violations.tolist(), [True, False, False, False])
        with self.assertRaises(PositivityViolationError):
            result.raise_for_violations()

    def test_fit_failure_propagates(self):
        """Test a failing multinomial model raises instead of falling back."""
        sim = simulate_data(100, seed=2)

        with patch('causal_bp.models.weights.sm.MNLogit') as mock_mnlogit:
            mock_mnlogit.return_value.fit.side_effect = np.linalg.LinAlgError("Singular matrix")

            with self.assertRaises(ModelFitError):
                compute_quantile_bin_weights(sim, SIM_EXPOSURE, SIM_COVARIATES, num_bins=4)

    def test_idempotent(self):
        """Test repeated calls on the same input give identical weights."""
        sim = simulate_data(400, seed=17)
        computer = StabilizedWeightComputer(num_bins=4)

        first = computer.compute_quantile_bin_weights(sim, SIM_EXPOSURE, SIM_COVARIATES)
        second = computer.compute_quantile_bin_weights(sim, SIM_EXPOSURE, SIM_COVARIATES)

        np.testing.assert_array_equal(first.weights.to_numpy(), second.weights.to_numpy())
        np.testing.assert_array_equal(first.bins.to_numpy(), second.bins.to_numpy())

    def test_min_denominator_threshold(self):
        """Test denominators at or below the configured threshold are flagged."""
        df = pd.DataFrame({'A': [1.0, 2.0, 3.0, 4.0], 'W': [0.0, 1.0, 0.0, 1.0]})
        probabilities = np.array([
            [1e-12, 1.0 - 1e-12],
            [0.5, 0.5],
            [0.5, 0.5],
            [0.5, 0.5],
        ])
        computer = StabilizedWeightComputer(num_bins=2, min_denominator=1e-9)

        with patch.object(StabilizedWeightComputer, '_fit_bin_classifier', return_value=probabilities):
            result = computer.compute_quantile_bin_weights(df, 'A', ['W'])

        self.assertTrue(np.isfinite(result.weights.iloc[0]))
        self.assertEqual(result.n_violations, 1)


if __name__ == '__main__':
    unittest.main()
