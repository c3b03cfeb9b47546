"""Tests for the colored-tree likelihood."""

import numpy as np
import pytest

from pytranstree.colored_tree import ColoredTree, TreeState
from pytranstree.exceptions import InputValidationError, NumericalInstabilityError
from pytranstree.likelihood import LikelihoodEngine, LikelihoodTerms, _unobserved_grid
from pytranstree.parameters import ParameterSnapshot
from pytranstree.phylogeny import TimedPhylogeny


@pytest.fixture
def engine() -> LikelihoodEngine:
    return LikelihoodEngine(date_t=2007.0)


def test_engine_requires_finite_date() -> None:
    """Test that the end of the study must be finite."""

    with pytest.raises(InputValidationError):
        LikelihoodEngine(date_t=np.inf)
    with pytest.raises(InputValidationError):
        LikelihoodEngine(date_t=2007.0, delta_t=0.0)
    with pytest.raises(InputValidationError):
        LikelihoodEngine(date_t=2007.0, max_steps=0)


def test_genealogical_term_cherry(
    engine: LikelihoodEngine, cherry_tree: ColoredTree
) -> None:
    """Test the coalescent term against its closed form.

    The index case holds the root at 2004 and two lineages leaving it at 2004.75
    and 2005: one coalescence after 0.75 years with two lineages.
    """

    for neg in (0.2, 0.5, 3.0):
        expected = -0.75 / neg - np.log(neg)
        assert engine.genealogical_term(cherry_tree, neg) == pytest.approx(expected)


def test_genealogical_term_invalid_neg(engine: LikelihoodEngine, cherry_tree: ColoredTree) -> None:
    """Test that a non-positive neg has zero probability."""

    assert engine.genealogical_term(cherry_tree, 0.0) == -np.inf


def test_single_host_has_no_coalescent_term(
    single_leaf: TimedPhylogeny, params: ParameterSnapshot
) -> None:
    """Test that a lone sample contributes nothing to the genealogical term."""

    tree = ColoredTree.initialize(single_leaf, params, date_t=2006.0)
    engine = LikelihoodEngine(date_t=2006.0)
    assert engine.genealogical_term(tree, params.neg) == 0.0
    assert np.isfinite(engine.epidemiological_term(tree, params))


def test_score_is_finite_and_deterministic(
    engine: LikelihoodEngine, cherry_tree: ColoredTree, params: ParameterSnapshot
) -> None:
    """Test that scoring the same state twice gives the same terms."""

    first = engine.score(cherry_tree, params)
    second = engine.score(cherry_tree, params)
    assert isinstance(first, LikelihoodTerms)
    assert np.isfinite(first.total)
    assert first == second
    assert first.total == pytest.approx(engine.log_likelihood(cherry_tree, params))


def test_score_raises_on_non_finite(
    engine: LikelihoodEngine, cherry_tree: ColoredTree, params: ParameterSnapshot
) -> None:
    """Test that an impossible parameter value is reported."""

    with pytest.raises(NumericalInstabilityError):
        engine.score(cherry_tree, params.with_value("neg", 0.0))


def test_epidemiological_term_outside_support(
    engine: LikelihoodEngine, cherry_tree: ColoredTree, params: ParameterSnapshot
) -> None:
    """Test that off.p outside (0, 1) has zero probability."""

    assert engine.epidemiological_term(cherry_tree, params.with_value("off.p", 1.0)) == -np.inf
    assert engine.epidemiological_term(cherry_tree, params.with_value("off.r", 0.0)) == -np.inf


def test_pi_at_bounds_is_finite(
    engine: LikelihoodEngine, four_leaf_tree: ColoredTree, params: ParameterSnapshot
) -> None:
    """Test that pi = 1 does not break trees with unsampled hosts."""

    assert np.isfinite(engine.epidemiological_term(four_leaf_tree, params.with_value("pi", 1.0)))


def test_unsampled_hosts_cost_likelihood(
    engine: LikelihoodEngine, params: ParameterSnapshot, four_leaf_tree: ColoredTree
) -> None:
    """Test that the sampling proportion enters the score of unsampled hosts."""

    low = engine.epidemiological_term(four_leaf_tree, params.with_value("pi", 0.3))
    high = engine.epidemiological_term(four_leaf_tree, params.with_value("pi", 0.9))
    assert np.isfinite(low) and np.isfinite(high)
    assert low != high


def test_unobserved_grid_bounds() -> None:
    """Test the probabilities of going unobserved."""

    omega, alpha, w_cdf, w_mass = _unobserved_grid(1.0, 0.5, 0.5, 2.0, 0.5, 2.0, 0.5, 0.01, 512)
    assert omega.shape == alpha.shape == w_cdf.shape == (513,)
    assert w_mass.shape == (512,)
    assert alpha[0] == 1.0
    assert omega[0] == pytest.approx(1.0)
    assert np.all((alpha >= 0) & (alpha <= 1))
    assert np.all((omega >= 0) & (omega <= 1))
    # hosts infected earlier have had more time to be observed
    assert omega[-1] < omega[1]
    with pytest.raises(ValueError):
        omega[0] = 0.0


def test_grid_is_memoised() -> None:
    """Test that the same parameters reuse the same grid."""

    args = (1.0, 0.5, 0.5, 2.0, 0.5, 2.0, 0.5, 0.01, 256)
    assert _unobserved_grid(*args)[0] is _unobserved_grid(*args)[0]


def test_infections_before_grid_are_ruled_out(
    cherry: TimedPhylogeny, params: ParameterSnapshot
) -> None:
    """Test that an origin beyond the longest grid has zero probability."""

    engine = LikelihoodEngine(date_t=2007.0, max_steps=1024)
    transmissions = [(0, 2004.75), (1, 2005.0)]
    near = ColoredTree(cherry, TreeState.build(2003.0, transmissions))
    far = ColoredTree(cherry, TreeState.build(1990.0, transmissions))

    assert np.isfinite(engine.epidemiological_term(near, params))
    assert engine.epidemiological_term(far, params) == -np.inf
    with pytest.raises(NumericalInstabilityError):
        engine.score(far, params)
    # the same coloring is fine on a longer grid
    assert np.isfinite(LikelihoodEngine(date_t=2007.0).epidemiological_term(far, params))
