"""Sampling algorithms for pyTransTree.

- Joint sampling: one chain per dataset, with shared parameters updated
  against the pooled likelihood of every dataset
- Single-dataset sampling: the joint sampler with one dataset and nothing
  shared

The recorder module holds the containers that store the retained samples.
"""

from .joint import JointMCMCDriver, SamplerSettings, run_joint_sampler, run_single_sampler
from .recorder import ChainRecorder, ChainSample, JointChainResult

__all__ = [
    "ChainRecorder",
    "ChainSample",
    "JointChainResult",
    "JointMCMCDriver",
    "SamplerSettings",
    "run_joint_sampler",
    "run_single_sampler",
]
