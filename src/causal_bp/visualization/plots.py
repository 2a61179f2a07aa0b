"""
Visualization module for the blood pressure causal analysis.
"""

import matplotlib.pyplot as plt
import seaborn as sns
import pandas as pd
import numpy as np
from typing import Dict, List, Tuple, Optional
import logging

from ..models.estimates import CausalEstimate
from ..models.weights import StabilizedWeights


logger = logging.getLogger(__name__)


class CausalVisualization:
    """Creates visualizations for the exposure-weighting analysis."""

    def __init__(self, figsize: Tuple[int, int] = (10, 6), show: bool = False):
        """
        Initialize visualization settings.

        Args:
            figsize: Default figure size
            show: Display figures interactively after saving
        """
        plt.style.use('default')
        sns.set_palette("husl")
        self.figsize = figsize
        self.show = show
        self.colors = {
            'primary': '#2E86AB',
            'secondary': '#A23B72',
            'accent': '#F18F01',
            'neutral': '#C73E1D',
            'light_gray': '#F5F5F5',
            'dark_gray': '#333333'
        }

    def _finish(self, fig, save_path: Optional[str], name: str) -> None:
        plt.tight_layout()

        if save_path:
            fig.savefig(save_path, dpi=300, bbox_inches='tight')
            logger.info(f"{name} saved to {save_path}")

        if self.show:
            plt.show()
        plt.close(fig)

    def plot_exposure_overview(
        self,
        df: pd.DataFrame,
        exposure: str,
        outcome: str,
        num_bins: int = 10,
        save_path: Optional[str] = None
    ) -> None:
        """
        Plot the exposure distribution and the crude outcome risk across exposure deciles.

        Args:
            df: Dataset
            exposure: Exposure column
            outcome: Outcome column
            num_bins: Number of quantile groups for the crude risk panel
            save_path: Path to save the figure
        """
        fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(15, 6))
        fig.suptitle('Exposure Overview', fontsize=16, fontweight='bold')

        sns.histplot(data=df, x=exposure, hue=outcome, bins=40, stat='density',
                     common_norm=False, element='step', ax=ax1)
        ax1.set_title(f'Distribution of {exposure} by {outcome}')
        ax1.set_xlabel(exposure)

        groups = pd.qcut(df[exposure], q=num_bins, duplicates='drop')
        risk = df.groupby(groups, observed=True)[outcome].mean()
        ax2.plot(range(len(risk)), risk.values, marker='o', color=self.colors['primary'])
        ax2.set_xticks(range(len(risk)))
        ax2.set_xticklabels([str(interval) for interval in risk.index], rotation=45, ha='right')
        ax2.set_title(f'Crude {outcome} risk by {exposure} quantile group')
        ax2.set_ylabel('Risk')
        ax2.grid(True, alpha=0.3)

        self._finish(fig, save_path, "Exposure overview plot")

    def plot_weight_distribution(
        self,
        weights: Dict[str, StabilizedWeights],
        save_path: Optional[str] = None
    ) -> None:
        """
        Plot the distribution of stabilized weights for each weighting method.

        Args:
            weights: Mapping of method name to StabilizedWeights
            save_path: Path to save the figure
        """
        n_methods = len(weights)
        fig, axes = plt.subplots(1, n_methods, figsize=(6 * n_methods, 5))

        if n_methods == 1:
            axes = [axes]

        for ax, (method, sw) in zip(axes, weights.items()):
            values = sw.weights[np.isfinite(sw.weights)]
            ax.hist(np.log(values), bins=50, color=self.colors['primary'], alpha=0.7)
            ax.axvline(x=0, color=self.colors['neutral'], linestyle='--', alpha=0.7)
            ax.set_title(f'{method} (mean={values.mean():.3f}, flagged={sw.n_violations})')
            ax.set_xlabel('log(stabilized weight)')
            ax.set_ylabel('Frequency')

        self._finish(fig, save_path, "Weight distribution plot")

    def plot_balance(self, balance: pd.DataFrame, save_path: Optional[str] = None) -> None:
        """
        Love plot of exposure-covariate correlations before and after weighting.

        Args:
            balance: Output of check_balance with a weighted_corr column
            save_path: Path to save the figure
        """
        fig, ax = plt.subplots(figsize=(8, max(4, 0.35 * len(balance))))

        y_pos = np.arange(len(balance))
        ax.scatter(balance['unweighted_corr'].abs(), y_pos, label='Unweighted',
                   color=self.colors['light_gray'], edgecolor=self.colors['dark_gray'])
        weighted_cols = [col for col in balance.columns if col.startswith('weighted_corr')]
        palette = [self.colors['primary'], self.colors['secondary'], self.colors['accent']]
        for color, col in zip(palette, weighted_cols):
            ax.scatter(balance[col].abs(), y_pos, label=col.replace('weighted_corr', 'Weighted'),
                       color=color)

        ax.axvline(x=0.1, color=self.colors['neutral'], linestyle='--', alpha=0.7)
        ax.set_yticks(y_pos)
        ax.set_yticklabels(balance['covariate'])
        ax.set_xlabel('|Correlation with exposure|')
        ax.set_title('Covariate Balance', fontweight='bold')
        ax.legend()
        ax.grid(True, alpha=0.3)

        self._finish(fig, save_path, "Balance plot")

    def plot_treatment_effects(
        self,
        estimates: Dict[str, CausalEstimate],
        save_path: Optional[str] = None
    ) -> None:
        """
        Plot exposure effect estimates with confidence intervals.

        Args:
            estimates: Dictionary of causal estimates
            save_path: Path to save the figure
        """
        fig, ax = plt.subplots(figsize=self.figsize)

        methods = list(estimates.keys())
        coefficients = [est.coefficient for est in estimates.values()]
        errors_lower = [est.coefficient - est.ci_lower for est in estimates.values()]
        errors_upper = [est.ci_upper - est.coefficient for est in estimates.values()]

        y_pos = np.arange(len(methods))

        ax.errorbar(coefficients, y_pos, xerr=[errors_lower, errors_upper],
                    fmt='o', markersize=8, capsize=5, capthick=2,
                    color=self.colors['primary'], ecolor=self.colors['dark_gray'])

        ax.axvline(x=0, color=self.colors['neutral'], linestyle='--', alpha=0.7)

        ax.set_yticks(y_pos)
        ax.set_yticklabels(methods)
        ax.set_xlabel('Log odds ratio')
        ax.set_title('Effect of Blood Pressure on In-Hospital Death', fontweight='bold')
        ax.grid(True, alpha=0.3)

        self._finish(fig, save_path, "Effect estimates plot")

    def plot_simulation_results(
        self,
        results: pd.DataFrame,
        truths: Dict[str, float],
        save_path: Optional[str] = None
    ) -> None:
        """
        Sampling distributions of the simulation estimates against their true values.

        Args:
            results: Output of run_simulation
            truths: True value per method
            save_path: Path to save the figure
        """
        ok = results[results['error'].isna()]
        methods = list(ok['method'].unique())

        fig, axes = plt.subplots(1, len(methods), figsize=(5 * len(methods), 5))
        if len(methods) == 1:
            axes = [axes]

        for ax, method in zip(axes, methods):
            sns.histplot(ok.loc[ok['method'] == method, 'coefficient'], bins=30,
                         color=self.colors['primary'], ax=ax)
            if method in truths:
                ax.axvline(x=truths[method], color=self.colors['neutral'], linestyle='--',
                           label='Truth')
                ax.legend()
            ax.set_title(method)
            ax.set_xlabel('Estimate')

        fig.suptitle('Simulation: sampling distribution of estimates', fontweight='bold')
        self._finish(fig, save_path, "Simulation results plot")

    def create_correlation_heatmap(
        self,
        df: pd.DataFrame,
        variables: List[str],
        save_path: Optional[str] = None
    ) -> None:
        """
        Create correlation heatmap for selected variables.

        Args:
            df: Dataset
            variables: Variables to include in correlation matrix
            save_path: Path to save the figure
        """
        correlation_matrix = df[variables].corr()

        fig, ax = plt.subplots(figsize=(10, 8))

        sns.heatmap(correlation_matrix, annot=True, cmap='coolwarm', center=0,
                    square=True, fmt='.2f', cbar_kws={'shrink': 0.8}, ax=ax)

        ax.set_title('Correlation Matrix of Key Variables', fontweight='bold')

        self._finish(fig, save_path, "Correlation heatmap")

    def plot_causal_dag(self, save_path: Optional[str] = None) -> None:
        """
        Create a directed acyclic graph showing causal assumptions.

        Args:
            save_path: Path to save the figure
        """
        import networkx as nx

        G = nx.DiGraph()

        nodes = {
            'Demographics': (0, 2),
            'Comorbidities': (0, 1),
            'Acute Physiology': (0, 0),
            'Blood Pressure': (2, 1),
            'In-Hospital Death': (4, 1)
        }

        for node, pos in nodes.items():
            G.add_node(node, pos=pos)

        confounders = ['Demographics', 'Comorbidities', 'Acute Physiology']
        edges = [(c, 'Blood Pressure') for c in confounders]
        edges += [(c, 'In-Hospital Death') for c in confounders]
        edges.append(('Blood Pressure', 'In-Hospital Death'))

        G.add_edges_from(edges)

        fig, ax = plt.subplots(figsize=(12, 8))

        pos = nx.get_node_attributes(G, 'pos')

        nx.draw_networkx_nodes(G, pos, nodelist=confounders, node_color=self.colors['primary'],
                               node_size=3000, alpha=0.9, ax=ax)
        nx.draw_networkx_nodes(G, pos, nodelist=['Blood Pressure'],
                               node_color=self.colors['accent'],
                               node_size=3000, alpha=0.9, ax=ax)
        nx.draw_networkx_nodes(G, pos, nodelist=['In-Hospital Death'],
                               node_color=self.colors['neutral'],
                               node_size=3000, alpha=0.9, ax=ax)
        nx.draw_networkx_edges(G, pos, edge_color=self.colors['dark_gray'],
                               arrows=True, arrowsize=20, alpha=0.7, ax=ax)
        nx.draw_networkx_labels(G, pos, font_size=10, font_weight='bold', ax=ax)

        ax.set_title('Causal Directed Acyclic Graph (DAG)', fontweight='bold', fontsize=14)
        ax.axis('off')

        legend_elements = [
            plt.Line2D([0], [0], marker='o', color='w', markerfacecolor=self.colors['primary'],
                       markersize=15, label='Confounders'),
            plt.Line2D([0], [0], marker='o', color='w', markerfacecolor=self.colors['accent'],
                       markersize=15, label='Exposure'),
            plt.Line2D([0], [0], marker='o', color='w', markerfacecolor=self.colors['neutral'],
                       markersize=15, label='Outcome')
        ]
        ax.legend(handles=legend_elements, loc='upper right')

        self._finish(fig, save_path, "Causal DAG")
