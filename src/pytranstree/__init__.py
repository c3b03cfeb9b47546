"""PyTransTree: joint Bayesian inference of transmission trees.

PyTransTree infers who infected whom from dated pathogen phylogenies. Each
phylogeny is colored into hosts by transmission events and explored with a
Metropolis-Hastings sampler. Several outbreaks can be analysed at once, with
any subset of the epidemiological parameters constrained to a single value
shared by all of them. The package provides:

- Timed phylogenies and colored trees
- The outbreak likelihood and the tree and parameter moves
- A joint sampler over several datasets with shared parameters
- Analysis tools for the recorded chains
- An outbreak simulator for test data

Examples
--------
Joint analysis of two outbreaks sharing the sampling proportion:

    >>> from pytranstree.samplers import run_joint_sampler
    >>> result = run_joint_sampler(
    ...     [phylogeny_a, phylogeny_b],
    ...     w_shape=10, w_scale=0.1,
    ...     mcmc_iterations=5000, thinning=10,
    ...     share=["pi"],
    ... )
"""

from .colored_tree import ColoredTree, TreeState
from .parameters import ParameterSnapshot, Priors
from .phylogeny import PhyloNode, TimedPhylogeny
from .samplers import run_joint_sampler, run_single_sampler

__all__ = [
    "ColoredTree",
    "ParameterSnapshot",
    "PhyloNode",
    "Priors",
    "TimedPhylogeny",
    "TreeState",
    "run_joint_sampler",
    "run_single_sampler",
]
