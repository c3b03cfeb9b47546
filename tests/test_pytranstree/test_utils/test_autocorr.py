"""Tests for autocorrelation and effective sample size."""

import numpy as np
import pytest

from pytranstree.utils.autocorr import (
    autocorr_function,
    effective_sample_size,
    integrated_autocorr_time,
    next_pow_two,
)


def ar1(rho: float, n: int, seed: int = 0) -> np.ndarray:
    """First-order autoregressive series with lag-one correlation ``rho``."""
    rng = np.random.default_rng(seed)
    x = np.empty(n)
    x[0] = rng.normal()
    for i in range(1, n):
        x[i] = rho * x[i - 1] + np.sqrt(1 - rho**2) * rng.normal()
    return x


@pytest.mark.parametrize("n, expected", [(1, 1), (5, 8), (8, 8), (9, 16)])
def test_next_pow_two(n: int, expected: int) -> None:
    assert next_pow_two(n) == expected


def test_autocorr_function_normalised() -> None:
    acf = autocorr_function(ar1(0.5, 1000))
    assert acf[0] == pytest.approx(1.0)
    assert acf[1] == pytest.approx(0.5, abs=0.1)


def test_constant_trajectory() -> None:
    """Test that a chain that never moved counts as perfectly correlated."""

    assert np.array_equal(autocorr_function(np.full(10, 0.3)), np.ones(10))
    assert effective_sample_size(np.full(10, 0.3)) <= 1.0


def test_invalid_dimensions() -> None:
    with pytest.raises(ValueError, match="1D"):
        autocorr_function(np.zeros((3, 3)))


def test_integrated_time_of_ar1() -> None:
    """Test the known autocorrelation time (1 + rho) / (1 - rho)."""

    tau = integrated_autocorr_time(ar1(0.8, 20000, seed=1))
    assert tau == pytest.approx(9.0, rel=0.25)


def test_effective_sample_size() -> None:
    independent = effective_sample_size(np.random.default_rng(2).normal(size=5000))
    correlated = effective_sample_size(ar1(0.9, 5000, seed=3))
    assert independent > 2500
    assert correlated < 1000
    assert effective_sample_size([]) == 0.0
