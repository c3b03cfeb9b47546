"""Statistical checks of the joint sampler on simulated outbreaks.

These run long chains and are marked slow; deselect them with
``pytest -m "not slow"``.
"""

import numpy as np
import pytest

from pytranstree.analysis.trajectories import get_parameter_trajectories, interquartile_range
from pytranstree.parameters import ParameterSnapshot
from pytranstree.samplers import run_joint_sampler, run_single_sampler
from pytranstree.simulation import simulate_outbreak

pytestmark = pytest.mark.slow

TRUTH = ParameterSnapshot(
    neg=0.25,
    off_r=1.5,
    off_p=0.5,
    pi=0.8,
    w_shape=2.0,
    w_scale=0.5,
    ws_shape=2.0,
    ws_scale=0.5,
)
DATE_T = 2005.0


@pytest.fixture(scope="module")
def phylogenies():
    rng = np.random.default_rng(2024)
    return [
        simulate_outbreak(TRUTH, 2000.0, DATE_T, rng, min_sampled=4, max_hosts=60).phylogeny
        for _ in range(3)
    ]


def sampler_kwargs(seed: int) -> dict:
    """Sample pi only, every other field fixed at its true value."""
    return dict(
        w_shape=TRUTH.w_shape,
        w_scale=TRUTH.w_scale,
        date_t=DATE_T,
        start_neg=TRUTH.neg,
        start_off_r=TRUTH.off_r,
        start_off_p=TRUTH.off_p,
        start_pi=0.5,
        update=["pi"],
        mcmc_iterations=3000,
        burn_in=500,
        thinning=5,
        tree_moves_per_sweep=5,
        delta_t=0.05,
        seed=seed,
    )


def test_pooling_narrows_shared_posterior(phylogenies) -> None:
    """Test that sharing pi gives a tighter posterior than any single dataset."""

    independent = run_joint_sampler(phylogenies, **sampler_kwargs(1))
    pooled = run_joint_sampler(phylogenies, share=["pi"], **sampler_kwargs(2))

    independent_iqr = interquartile_range(get_parameter_trajectories(independent, ["pi"])["pi"])
    pooled_iqr = interquartile_range(get_parameter_trajectories(pooled, ["pi"])["pi"][0])
    assert np.all(pooled_iqr < independent_iqr)


def test_empty_share_matches_independent_runs(phylogenies) -> None:
    """Test that a joint run sharing nothing agrees with separate runs."""

    joint = run_joint_sampler(phylogenies, share=[], **sampler_kwargs(3))
    for i, phylogeny in enumerate(phylogenies):
        single = run_single_sampler(phylogeny, **sampler_kwargs(4 + i))
        joint_median = np.median(joint.trajectory("pi", dataset=i))
        single_median = np.median(single.trajectory("pi"))
        assert joint_median == pytest.approx(single_median, abs=0.15)
