"""Tests for colored trees and their invariants."""

import numpy as np
import pytest

from pytranstree.colored_tree import (
    ColoredTree,
    MoveResult,
    TreeState,
    build_hosts,
    check_state,
    edge_bounds,
)
from pytranstree.exceptions import InputValidationError, InvalidMoveError
from pytranstree.parameters import ParameterSnapshot
from pytranstree.phylogeny import TimedPhylogeny
from pytranstree.proposals import TreeMove, TreeMoveType


def test_tree_state_build_sorts() -> None:
    """Test that transmissions are stored sorted by edge then time."""

    state = TreeState.build(1999, [(2, 2001.5), (1, 2000.5), (2, 2001.0)])
    assert state.origin == 1999.0
    assert state.transmissions == ((1, 2000.5), (2, 2001.0), (2, 2001.5))
    assert state.by_edge() == {1: [2000.5], 2: [2001.0, 2001.5]}


def test_tree_state_edits_copy() -> None:
    """Test that editing a state leaves the original untouched."""

    state = TreeState.build(1999, [(1, 2000.5), (2, 2001.0)])
    assert state.without(0).transmissions == ((2, 2001.0),)
    assert state.adding(1, 2000.7).transmissions == ((1, 2000.5), (1, 2000.7), (2, 2001.0))
    assert state.replacing(1, 1, 2000.2).transmissions == ((1, 2000.2), (1, 2000.5))
    assert state.n_transmissions == 2


def test_initialize_four_leaf(four_leaf_tree: ColoredTree) -> None:
    """Test the initial coloring: one host per edge plus the index case."""

    assert four_leaf_tree.state.origin == 1999.0
    assert four_leaf_tree.n_transmissions == 6
    assert four_leaf_tree.n_hosts == 7
    assert four_leaf_tree.n_unsampled == 3
    assert four_leaf_tree.infectors == [-1, 0, 1, 1, 0, 4, 4]
    assert four_leaf_tree.host_labels() == [None, None, "A", "B", None, "C", "D"]


def test_initialize_single_leaf(single_leaf: TimedPhylogeny, params: ParameterSnapshot) -> None:
    """Test that a lone sample is its own index case."""

    tree = ColoredTree.initialize(single_leaf, params, date_t=2006.0)
    assert tree.n_hosts == 1
    assert tree.n_transmissions == 0
    assert tree.hosts[0].sampled
    assert tree.hosts[0].removal_time == 2005.0
    assert tree.state.origin == pytest.approx(2004.0)


def test_initialize_rejects_late_sample(cherry: TimedPhylogeny, params: ParameterSnapshot) -> None:
    """Test that a sample after the end of the study is rejected."""

    with pytest.raises(InputValidationError, match="after the end of the study"):
        ColoredTree.initialize(cherry, params, date_t=2005.8)


def test_transmission_tree(four_leaf_tree: ColoredTree) -> None:
    """Test the who-infected-whom table."""

    ttree = four_leaf_tree.transmission_tree()
    assert ttree.shape == (7, 3)
    assert ttree[0, 2] == -1
    assert np.all(ttree[1:, 2] < np.arange(1, 7))
    sampled = ~np.isnan(ttree[:, 1])
    assert sampled.sum() == 4
    # infected before removed
    assert np.all(ttree[sampled, 0] < ttree[sampled, 1])


def test_branch_lengths(cherry_tree: ColoredTree) -> None:
    """Test edge lengths, the root edge hanging from the origin."""

    assert cherry_tree.edge_length(2) == pytest.approx(1.0)
    assert cherry_tree.edge_length(0) == pytest.approx(1.5)
    assert cherry_tree.total_branch_length == pytest.approx(4.5)
    assert edge_bounds(cherry_tree.phylogeny, 2003.0, 1) == (2004.0, 2006.0)


def test_hosts_partition_nodes(four_leaf_tree: ColoredTree) -> None:
    """Test that every node of the phylogeny belongs to exactly one host."""

    hosts = four_leaf_tree.hosts
    leaves = sorted(leaf for h in hosts for leaf in h.leaves)
    assert leaves == [3, 4, 5, 6]
    n_internal = sum(len(h.coalescence_times) for h in hosts)
    assert n_internal == 3
    for host in hosts:
        assert len(host.infectees) == len(host.transmission_times)


class TestInvariants:
    """Invalid colorings are rejected."""

    def test_origin_after_root(self, cherry: TimedPhylogeny) -> None:
        with pytest.raises(InvalidMoveError, match="origin"):
            check_state(cherry, TreeState.build(2004.5, [(0, 2004.75), (1, 2005.0)]))

    def test_transmission_outside_edge(self, cherry: TimedPhylogeny) -> None:
        with pytest.raises(InvalidMoveError, match="outside edge"):
            check_state(cherry, TreeState.build(2003.0, [(0, 2005.6), (1, 2005.0)]))

    def test_two_samples_in_one_host(self, cherry: TimedPhylogeny) -> None:
        with pytest.raises(InvalidMoveError, match="2 samples"):
            check_state(cherry, TreeState(2003.0))

    def test_infection_after_removal(self, cherry: TimedPhylogeny) -> None:
        # the index case is sampled at 2005.5 and would infect at 2005.8
        with pytest.raises(InvalidMoveError, match="after its removal"):
            check_state(cherry, TreeState.build(2003.0, [(1, 2005.8)]))

    def test_unordered_transmissions(self, cherry: TimedPhylogeny) -> None:
        state = TreeState(2003.0, ((1, 2005.0), (0, 2004.75)))
        with pytest.raises(InvalidMoveError, match="strictly ordered"):
            check_state(cherry, state)

    def test_constructor_raises_input_error(self, cherry: TimedPhylogeny) -> None:
        with pytest.raises(InputValidationError, match="Invalid colored tree"):
            ColoredTree(cherry, TreeState(2003.0))

    def test_one_sampled_host_one_leaf(self, cherry: TimedPhylogeny) -> None:
        hosts = build_hosts(cherry, TreeState.build(2003.0, [(0, 2004.75)]))
        assert len(hosts) == 2
        assert hosts[0].leaves == [1]
        assert hosts[1].leaves == [0]


def test_invalid_move_leaves_state_identical(cherry_tree: ColoredTree) -> None:
    """Test that applying an invalid move changes nothing."""

    before = cherry_tree.state
    move = TreeMove(TreeMoveType.REMOVE, before.without(0).without(0), 0.0)
    assert cherry_tree.apply_move(move) is MoveResult.INVALID
    assert cherry_tree.state is before
    assert cherry_tree.n_hosts == 3


def test_valid_move_then_restore(cherry_tree: ColoredTree) -> None:
    """Test applying a move and rolling it back."""

    before = cherry_tree.state
    move = TreeMove(TreeMoveType.ADD, before.adding(2, 2003.5), 0.0)
    assert cherry_tree.apply_move(move) is MoveResult.APPLIED
    assert cherry_tree.n_hosts == 4
    assert cherry_tree.infectors == [-1, 0, 1, 1]

    cherry_tree.restore(before)
    assert cherry_tree.state == before
    assert cherry_tree.n_hosts == 3


def test_copy_is_independent(cherry_tree: ColoredTree) -> None:
    """Test that a copy does not follow later moves of the original."""

    clone = cherry_tree.copy()
    cherry_tree.apply_move(TreeMove(TreeMoveType.ADD, cherry_tree.state.adding(2, 2003.5), 0.0))
    assert clone.n_hosts == 3
    assert cherry_tree.n_hosts == 4
    assert clone.phylogeny is cherry_tree.phylogeny
