"""
Causal inference analysis of blood pressure and in-hospital mortality.

This package estimates the effect of a continuous exposure (mean arterial blood pressure)
on in-hospital death using stabilized inverse probability weights (normal density and
quantile-binned exposure) and a targeted maximum likelihood estimator for a shift intervention.
"""

__version__ = "1.0.0"
__author__ = "Data Science Research"
