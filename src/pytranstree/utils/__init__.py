"""Utility functions and types for pyTransTree.

- Type annotations for arrays, trajectories and user-supplied pools
- Autocorrelation and effective sample size estimators
"""
