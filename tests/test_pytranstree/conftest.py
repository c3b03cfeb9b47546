"""Small phylogenies and parameter sets shared by the tests."""

import pytest

from pytranstree.colored_tree import ColoredTree
from pytranstree.parameters import ParameterSnapshot
from pytranstree.phylogeny import PhyloNode, TimedPhylogeny


@pytest.fixture
def cherry() -> TimedPhylogeny:
    """Two samples joined at a root."""
    return TimedPhylogeny(
        [
            PhyloNode(2005.5, host="A"),
            PhyloNode(2006.0, host="B"),
            PhyloNode(2004.0, children=(0, 1)),
        ]
    )


@pytest.fixture
def four_leaf() -> TimedPhylogeny:
    """Balanced tree of four samples, root at index 0."""
    return TimedPhylogeny.from_parents(
        times=[2000.0, 2001.0, 2002.0, 2003.5, 2004.0, 2003.0, 2004.5],
        parents=[-1, 0, 0, 1, 1, 2, 2],
        hosts=[None, None, None, "A", "B", "C", "D"],
    )


@pytest.fixture
def single_leaf() -> TimedPhylogeny:
    """A phylogeny made of one sample."""
    return TimedPhylogeny([PhyloNode(2005.0, host="A")])


@pytest.fixture
def params() -> ParameterSnapshot:
    """Parameters with a mean generation interval of one year."""
    return ParameterSnapshot(
        neg=0.5,
        off_r=1.0,
        off_p=0.5,
        pi=0.5,
        w_shape=2.0,
        w_scale=0.5,
        ws_shape=2.0,
        ws_scale=0.5,
    )


@pytest.fixture
def cherry_tree(cherry: TimedPhylogeny, params: ParameterSnapshot) -> ColoredTree:
    """Initial coloring of the cherry: origin 2003, transmissions at 2004.75 and 2005."""
    return ColoredTree.initialize(cherry, params, date_t=2007.0)


@pytest.fixture
def four_leaf_tree(four_leaf: TimedPhylogeny, params: ParameterSnapshot) -> ColoredTree:
    """Initial coloring of the four-leaf tree."""
    return ColoredTree.initialize(four_leaf, params, date_t=2005.0)
