"""
Main analysis script for the causal effect of blood pressure on in-hospital death.

This script runs the complete pipeline on the SUPPORT2 dataset: stabilized inverse probability
weighting with a normal exposure density, weighting with quantile-binned exposure categories,
and targeted maximum likelihood estimation of a blood pressure shift.
"""

import sys
from pathlib import Path
import pandas as pd
import logging

# Add src to path for imports
sys.path.append(str(Path(__file__).parent / "src"))

from causal_bp.config import (
    EXPOSURE_COL, OUTCOME_COL, NUM_BINS, SHIFT_DELTA, RANDOM_SEED,
    FIGURES_DIR, RESULTS_DIR, PROCESSED_DIR, PROCESSED_FILE
)
from causal_bp.data.loader import SupportDataLoader
from causal_bp.data.preprocessor import SupportPreprocessor
from causal_bp.models.causal_models import CausalInferenceEngine
from causal_bp.visualization.plots import CausalVisualization
from causal_bp.utils.helpers import (
    setup_logging, save_results, summarize_weights, check_balance,
    validate_data_quality, format_results_table, ensure_directory
)


def main():
    """Run the complete causal inference analysis pipeline."""

    setup_logging(level="INFO")
    logger = logging.getLogger(__name__)

    figures_dir = ensure_directory(FIGURES_DIR)
    results_dir = ensure_directory(RESULTS_DIR)
    ensure_directory(PROCESSED_DIR)

    logger.info("Starting causal analysis of blood pressure and in-hospital death")

    # Step 1: Load and preprocess data
    logger.info("Step 1: Loading and preprocessing data")

    preprocessor = SupportPreprocessor()
    if PROCESSED_FILE.exists():
        logger.info("Loading existing processed data")
        processed_data = pd.read_csv(PROCESSED_FILE)
    else:
        loader = SupportDataLoader()
        raw_data = loader.load_data(remove_duplicates=True)
        loader.describe_dataset()

        quality_metrics = validate_data_quality(raw_data, EXPOSURE_COL, OUTCOME_COL)
        logger.info(f"Data quality: {quality_metrics['n_observations']} observations, "
                    f"{quality_metrics['missing_data']['total_missing']} missing values")

        processed_data = preprocessor.preprocess(raw_data)
        processed_data.to_csv(PROCESSED_FILE, index=False)
        logger.info("Processed data saved")

    # Step 2: Exploratory analysis
    logger.info("Step 2: Exploratory data analysis and visualization")

    visualizer = CausalVisualization()
    visualizer.plot_causal_dag(save_path=figures_dir / "causal_dag.png")
    visualizer.plot_exposure_overview(
        processed_data, EXPOSURE_COL, OUTCOME_COL, num_bins=NUM_BINS,
        save_path=figures_dir / "exposure_overview.png"
    )

    feature_groups = preprocessor.get_feature_groups(processed_data)
    key_variables = [EXPOSURE_COL, OUTCOME_COL] + feature_groups['physiology'] + ['age']
    visualizer.create_correlation_heatmap(
        processed_data, [var for var in key_variables if var in processed_data.columns],
        save_path=figures_dir / "correlation_matrix.png"
    )

    # Step 3: Effect estimation
    logger.info("Step 3: Estimating the effect of blood pressure")

    engine = CausalInferenceEngine(
        num_bins=NUM_BINS, shift_delta=SHIFT_DELTA, random_state=RANDOM_SEED
    )
    data, nodes = engine.prepare_data(processed_data, EXPOSURE_COL, OUTCOME_COL)

    estimates = engine.estimate_treatment_effects(data, nodes)

    # Step 4: Weight diagnostics
    logger.info("Step 4: Weight and balance diagnostics")

    weight_summaries = {
        method: summarize_weights(sw.weights) for method, sw in engine.weights.items()
    }
    for method, summary in weight_summaries.items():
        logger.info(f"{method} weights: {summary}")

    balance = check_balance(data, nodes.exposure, nodes.covariates)
    for method, sw in engine.weights.items():
        weighted = check_balance(data, nodes.exposure, nodes.covariates, weights=sw.weights)
        balance[f'weighted_corr_{method}'] = weighted['weighted_corr'].values

    visualizer.plot_weight_distribution(engine.weights, save_path=figures_dir / "weights.png")
    visualizer.plot_balance(balance, save_path=figures_dir / "balance.png")
    visualizer.plot_treatment_effects(estimates, save_path=figures_dir / "effect_estimates.png")

    # Step 5: Results summary
    logger.info("Step 5: Generating results summary")

    summary = preprocessor.summarize_exposure(data)
    results = {
        'data_summary': summary,
        'settings': {'num_bins': NUM_BINS, 'shift_delta': SHIFT_DELTA},
        'estimates': {method: est.to_dict() for method, est in estimates.items()},
        'shifted_risk': engine.results['tmle_shift_risk'].to_dict()
        if 'tmle_shift_risk' in engine.results else None,
        'weights': weight_summaries,
        'balance': balance.to_dict(orient='records')
    }
    save_results(results, results_dir / "causal_analysis_results.json")

    print("\n" + "=" * 80)
    print("BLOOD PRESSURE AND IN-HOSPITAL DEATH: CAUSAL ANALYSIS RESULTS")
    print("=" * 80)

    print(format_results_table(estimates, "Log Odds Ratio Estimates"))
    print("\nIPW methods: log odds ratio per 1 mmHg of mean arterial pressure.")
    print(f"TMLE: log odds ratio of the risk under a {SHIFT_DELTA:+.0f} mmHg shift vs observed risk.")

    print(f"\nData Summary:")
    print(f"- Complete cases: {summary['n_units']:,}")
    print(f"- Mean arterial pressure: {summary['exposure_mean']:.1f} (sd {summary['exposure_std']:.1f})")
    print(f"- In-hospital death rate: {summary['outcome_rate']:.1%}")

    logger.info("Analysis complete! Check the figures/ and results/ directories for outputs.")


if __name__ == "__main__":
    main()
