"""Analysis tools for joint transmission-tree MCMC results.

This module provides utilities for analysing the output of the joint
sampler, including:

- Per-dataset parameter trajectories with burn-in discard and thinning
- Acceptance rates of every move kind
- Effective sample sizes
- Checks that shared parameters stayed identical across datasets
"""

from .trajectories import (
    get_acceptance_rates,
    get_effective_sample_sizes,
    get_parameter_trajectories,
    interquartile_range,
    shared_discrepancy,
)

__all__ = [
    "get_acceptance_rates",
    "get_effective_sample_sizes",
    "get_parameter_trajectories",
    "interquartile_range",
    "shared_discrepancy",
]
