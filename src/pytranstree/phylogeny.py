"""Dated, rooted binary phylogenies with labelled leaves."""

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from .exceptions import InputValidationError
from .utils.types import FloatArray, IntArray


@dataclass(frozen=True)
class PhyloNode:
    """A single node of a timed phylogeny.

    Leaves carry the identifier of the sampled host and no children. Internal
    nodes are bifurcations and carry the indices of their two children.
    """

    time: float
    children: tuple[int, ...] = ()
    host: str | None = None

    @property
    def is_leaf(self) -> bool:
        """Whether the node is a sampled tip."""
        return len(self.children) == 0


class TimedPhylogeny:
    """Immutable dated phylogeny of the pathogen samples from one dataset.

    Node times strictly increase from the root to the leaves. Nodes are
    addressed by their index in the sequence given at construction. An edge is
    addressed by the index of its lower node, so edge ``i`` joins
    ``parent(i)`` to ``i``; the edge of the root hangs from the origin of the
    outbreak, which is not part of the phylogeny.

    Parameters
    ----------
    nodes : sequence of PhyloNode
        The nodes of the tree in any order.

    Raises
    ------
    InputValidationError
        If the nodes do not form a single connected rooted binary tree with
        increasing times and unique leaf labels.

    Examples
    --------
    >>> phy = TimedPhylogeny([
    ...     PhyloNode(2005.5, host="A"),
    ...     PhyloNode(2006.0, host="B"),
    ...     PhyloNode(2004.0, children=(0, 1)),
    ... ])
    >>> phy.root
    2
    """

    def __init__(self, nodes: Sequence[PhyloNode]):
        self._nodes = tuple(nodes)
        if not self._nodes:
            raise InputValidationError("A phylogeny needs at least one node.")
        n = len(self._nodes)

        parents = np.full(n, -1, dtype=int)
        for i, node in enumerate(self._nodes):
            if not np.isfinite(node.time):
                raise InputValidationError(f"Node {i} has a non-finite time.")
            if node.is_leaf:
                if node.host is None:
                    raise InputValidationError(f"Leaf {i} has no host identifier.")
                continue
            if len(node.children) != 2:
                raise InputValidationError(
                    f"Internal node {i} has {len(node.children)} children; phylogenies must be binary."
                )
            for c in node.children:
                if not 0 <= c < n or c == i:
                    raise InputValidationError(f"Node {i} has an invalid child index {c}.")
                if parents[c] != -1:
                    raise InputValidationError(f"Node {c} has more than one parent.")
                parents[c] = i
                if not self._nodes[c].time > node.time:
                    raise InputValidationError(
                        f"Time of node {c} ({self._nodes[c].time}) does not follow its parent {i} ({node.time})."
                    )

        roots = np.flatnonzero(parents == -1)
        if roots.size != 1:
            raise InputValidationError(
                f"A phylogeny must have exactly one root, found {roots.size}."
            )
        self._root = int(roots[0])
        self._parents = parents
        self._parents.setflags(write=False)
        self._times = np.array([node.time for node in self._nodes], dtype=float)
        self._times.setflags(write=False)

        self._preorder = self._traverse()
        if len(self._preorder) != n:
            raise InputValidationError("The phylogeny is disconnected.")

        self._leaves = tuple(i for i in self._preorder if self._nodes[i].is_leaf)
        hosts = [self._nodes[i].host for i in self._leaves]
        if len(set(hosts)) != len(hosts):
            raise InputValidationError("Leaf host identifiers must be unique.")

    @classmethod
    def from_parents(
        cls,
        times: Sequence[float],
        parents: Sequence[int],
        hosts: Sequence[str | None],
    ) -> "TimedPhylogeny":
        """Build a phylogeny from a parent array.

        ``parents[i]`` is the index of the parent of node ``i`` and ``-1`` for
        the root. ``hosts[i]`` labels leaf ``i`` and is ignored for internal
        nodes. Children keep the order in which they appear in ``parents``.
        """
        if not len(times) == len(parents) == len(hosts):
            raise InputValidationError("times, parents and hosts must have the same length.")
        children: list[list[int]] = [[] for _ in times]
        for i, p in enumerate(parents):
            if p >= 0:
                if p >= len(times):
                    raise InputValidationError(f"Node {i} has an invalid parent index {p}.")
                children[p].append(i)
        nodes = [
            PhyloNode(
                time=float(t),
                children=tuple(ch),
                host=None if ch else hosts[i],
            )
            for i, (t, ch) in enumerate(zip(times, children))
        ]
        return cls(nodes)

    def _traverse(self) -> tuple[int, ...]:
        # each node has at most one parent, so nothing is visited twice
        order = []
        stack = [self._root]
        while stack:
            i = stack.pop()
            order.append(i)
            stack.extend(reversed(self._nodes[i].children))
        return tuple(order)

    def __repr__(self) -> str:
        """String representation of the phylogeny."""
        return f"TimedPhylogeny(n_leaves={self.n_leaves}, n_nodes={self.n_nodes})"

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def n_nodes(self) -> int:
        """Number of nodes."""
        return len(self._nodes)

    @property
    def n_leaves(self) -> int:
        """Number of sampled tips."""
        return len(self._leaves)

    @property
    def root(self) -> int:
        """Index of the root node."""
        return self._root

    @property
    def times(self) -> FloatArray:
        """Read-only array of node times."""
        return self._times

    @property
    def parents(self) -> IntArray:
        """Read-only array of parent indices, -1 for the root."""
        return self._parents

    @property
    def leaves(self) -> tuple[int, ...]:
        """Leaf indices in preorder."""
        return self._leaves

    @property
    def preorder(self) -> tuple[int, ...]:
        """All node indices, parents before children."""
        return self._preorder

    @property
    def hosts(self) -> tuple[str, ...]:
        """Host identifiers of the leaves, in preorder."""
        return tuple(self._nodes[i].host for i in self._leaves)

    @property
    def root_time(self) -> float:
        """Time of the most recent common ancestor of all samples."""
        return float(self._times[self._root])

    @property
    def last_sample_time(self) -> float:
        """Time of the latest sample."""
        return float(max(self._times[i] for i in self._leaves))

    def node(self, i: int) -> PhyloNode:
        """Return node ``i``."""
        return self._nodes[i]

    def children(self, i: int) -> tuple[int, ...]:
        """Children of node ``i``."""
        return self._nodes[i].children

    def is_leaf(self, i: int) -> bool:
        """Whether node ``i`` is a leaf."""
        return self._nodes[i].is_leaf

    def host(self, i: int) -> str | None:
        """Host identifier of leaf ``i``."""
        return self._nodes[i].host

    def edge_neighbours(self, edge: int) -> tuple[int, ...]:
        """Edges sharing an end point with ``edge``.

        The root edge has no upper neighbour since the origin is not a node.
        """
        neighbours = list(self._nodes[edge].children)
        p = self._parents[edge]
        if p >= 0:
            neighbours.append(int(p))
            neighbours.extend(c for c in self._nodes[p].children if c != edge)
        return tuple(sorted(neighbours))
