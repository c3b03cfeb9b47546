"""Colored trees: phylogenies partitioned into hosts by transmission events.

A colored tree is a timed phylogeny plus the infection time of the index case
(the origin, above the phylogeny root) and a set of transmission events placed
on its edges. Cutting the tree at every transmission event splits it into
pieces, one per host. A piece holding a leaf is a sampled host, removed from
the outbreak at its sampling time; a piece without a leaf is an unsampled
host.

The coloring is stored as an immutable :class:`TreeState`. Moves build a new
state and the tree swaps it in wholesale, so rolling back a rejected move is a
single assignment of the previous state.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum, auto
from typing import TYPE_CHECKING

import numpy as np

from .exceptions import InputValidationError, InvalidMoveError
from .phylogeny import TimedPhylogeny
from .utils.types import FloatArray, TransmissionTreeArray

if TYPE_CHECKING:
    from .proposals import TreeMove


@dataclass(frozen=True)
class TreeState:
    """Immutable coloring of a phylogeny.

    ``transmissions`` holds ``(edge, time)`` pairs sorted by edge then time,
    where an edge is identified by the index of its lower node.
    """

    origin: float
    transmissions: tuple[tuple[int, float], ...] = ()

    @classmethod
    def build(cls, origin: float, transmissions: Iterable[tuple[int, float]]) -> "TreeState":
        """Create a state from transmissions in any order."""
        return cls(
            origin=float(origin),
            transmissions=tuple(sorted((int(e), float(t)) for e, t in transmissions)),
        )

    @property
    def n_transmissions(self) -> int:
        """Number of transmission events on the phylogeny."""
        return len(self.transmissions)

    def by_edge(self) -> dict[int, list[float]]:
        """Transmission times on each edge, oldest first."""
        events: dict[int, list[float]] = {}
        for edge, time in self.transmissions:
            events.setdefault(edge, []).append(time)
        return events

    def without(self, index: int) -> "TreeState":
        """Copy of the state with the ``index``-th transmission removed."""
        kept = self.transmissions[:index] + self.transmissions[index + 1 :]
        return TreeState(self.origin, kept)

    def adding(self, edge: int, time: float) -> "TreeState":
        """Copy of the state with one more transmission."""
        return TreeState.build(self.origin, self.transmissions + ((edge, time),))

    def replacing(self, index: int, edge: int, time: float) -> "TreeState":
        """Copy of the state with the ``index``-th transmission relocated."""
        kept = self.transmissions[:index] + self.transmissions[index + 1 :]
        return TreeState.build(self.origin, kept + ((edge, time),))


@dataclass
class Host:
    """One host of the transmission tree encoded by a coloring."""

    index: int
    infection_time: float
    infector: int
    leaves: list[int] = field(default_factory=list)
    removal_time: float | None = None
    infectees: list[int] = field(default_factory=list)
    transmission_times: list[float] = field(default_factory=list)
    coalescence_times: list[float] = field(default_factory=list)

    @property
    def sampled(self) -> bool:
        """Whether a sample was taken from this host."""
        return bool(self.leaves)

    @property
    def leaf(self) -> int | None:
        """The phylogeny leaf sampled from this host, if any."""
        return self.leaves[0] if self.leaves else None

    @property
    def tip_times(self) -> list[float]:
        """Times at which lineages leave the host: its sample and onward transmissions."""
        tips = list(self.transmission_times)
        if self.removal_time is not None:
            tips.append(self.removal_time)
        return tips


class MoveResult(StrEnum):
    """Outcome of applying a tree move."""

    APPLIED = auto()
    INVALID = auto()


def edge_bounds(phylogeny: TimedPhylogeny, origin: float, edge: int) -> tuple[float, float]:
    """Upper (older) and lower (younger) end times of an edge."""
    parent = phylogeny.parents[edge]
    top = origin if parent < 0 else float(phylogeny.times[parent])
    return top, float(phylogeny.times[edge])


def build_hosts(phylogeny: TimedPhylogeny, state: TreeState) -> tuple[Host, ...]:
    """Split the colored tree into hosts.

    Hosts are numbered in the order they are met walking down the tree from
    the origin, so the index case is host 0 and every infector precedes its
    infectees.
    """
    events = state.by_edge()
    hosts = [Host(index=0, infection_time=state.origin, infector=-1)]
    stack = [(phylogeny.root, 0)]
    while stack:
        node, current = stack.pop()
        for time in events.get(node, ()):
            infectee = Host(index=len(hosts), infection_time=time, infector=current)
            hosts[current].infectees.append(infectee.index)
            hosts[current].transmission_times.append(time)
            hosts.append(infectee)
            current = infectee.index
        time = float(phylogeny.times[node])
        if phylogeny.is_leaf(node):
            hosts[current].leaves.append(node)
            hosts[current].removal_time = time
        else:
            hosts[current].coalescence_times.append(time)
            for child in reversed(phylogeny.children(node)):
                stack.append((child, current))
    return tuple(hosts)


def check_state(phylogeny: TimedPhylogeny, state: TreeState) -> tuple[Host, ...]:
    """Check every colored-tree invariant and return the hosts.

    Raises
    ------
    InvalidMoveError
        If the state breaks an invariant.
    """
    if not np.isfinite(state.origin) or not state.origin < phylogeny.root_time:
        raise InvalidMoveError("The origin must precede the root of the phylogeny.")

    previous = None
    for edge, time in state.transmissions:
        if not 0 <= edge < phylogeny.n_nodes:
            raise InvalidMoveError(f"No edge above node {edge}.")
        top, bottom = edge_bounds(phylogeny, state.origin, edge)
        if not top < time < bottom:
            raise InvalidMoveError(f"Transmission at {time} lies outside edge {edge}.")
        if previous is not None and previous >= (edge, time):
            raise InvalidMoveError(f"Transmissions on edge {edge} are not strictly ordered.")
        previous = (edge, time)

    hosts = build_hosts(phylogeny, state)
    for host in hosts:
        if len(host.leaves) > 1:
            raise InvalidMoveError(f"Host {host.index} would hold {len(host.leaves)} samples.")
        if host.removal_time is not None and any(
            t >= host.removal_time for t in host.transmission_times
        ):
            raise InvalidMoveError(f"Host {host.index} would infect after its removal.")
    return hosts


class ColoredTree:
    """The latent transmission-tree state of one dataset.

    Parameters
    ----------
    phylogeny : TimedPhylogeny
        The observed phylogeny, shared read-only.
    state : TreeState
        A valid coloring of ``phylogeny``.

    Raises
    ------
    InputValidationError
        If ``state`` is not a valid coloring of ``phylogeny``.
    """

    def __init__(self, phylogeny: TimedPhylogeny, state: TreeState):
        try:
            hosts = check_state(phylogeny, state)
        except InvalidMoveError as e:
            raise InputValidationError(f"Invalid colored tree: {e}") from e
        self._phylogeny = phylogeny
        self._state = state
        self._hosts: tuple[Host, ...] | None = hosts

    @classmethod
    def initialize(
        cls,
        phylogeny: TimedPhylogeny,
        parameters: Mapping[str, float],
        date_t: float = np.inf,
    ) -> "ColoredTree":
        """Build a minimal valid coloring of ``phylogeny``.

        Every edge gets one transmission at its midpoint, giving one unsampled
        host per internal node and one sampled host per leaf. The index case is
        infected one mean generation interval before the root.

        Raises
        ------
        InputValidationError
            If no valid coloring exists, e.g. a sample is later than ``date_t``.
        """
        if phylogeny.last_sample_time > date_t:
            raise InputValidationError(
                f"Latest sample at {phylogeny.last_sample_time} is after the end of the study {date_t}."
            )
        offset = parameters["w.shape"] * parameters["w.scale"]
        if not np.isfinite(offset) or offset <= 0:
            raise InputValidationError("The generation interval must have a positive finite mean.")
        origin = phylogeny.root_time - offset
        times = phylogeny.times
        transmissions = [
            (node, 0.5 * (times[phylogeny.parents[node]] + times[node]))
            for node in phylogeny.preorder
            if node != phylogeny.root
        ]
        return cls(phylogeny, TreeState.build(origin, transmissions))

    def __repr__(self) -> str:
        """String representation of the colored tree."""
        return (
            f"ColoredTree(n_hosts={self.n_hosts}, n_unsampled={self.n_unsampled}, "
            f"origin={self._state.origin:.4f})"
        )

    @property
    def phylogeny(self) -> TimedPhylogeny:
        """The underlying phylogeny."""
        return self._phylogeny

    @property
    def state(self) -> TreeState:
        """The current coloring."""
        return self._state

    def restore(self, state: TreeState) -> None:
        """Reinstate a coloring previously read from :attr:`state`."""
        if state is not self._state:
            self._state = state
            self._hosts = None

    def copy(self) -> "ColoredTree":
        """Independent tree holding the current coloring."""
        clone = ColoredTree.__new__(ColoredTree)
        clone._phylogeny = self._phylogeny
        clone._state = self._state
        clone._hosts = self._hosts
        return clone

    def apply_move(self, move: "TreeMove") -> MoveResult:
        """Swap in the state proposed by ``move`` if it is a valid coloring.

        An invalid proposal leaves the tree untouched.
        """
        try:
            hosts = check_state(self._phylogeny, move.state)
        except InvalidMoveError:
            return MoveResult.INVALID
        self._state = move.state
        self._hosts = hosts
        return MoveResult.APPLIED

    @property
    def hosts(self) -> tuple[Host, ...]:
        """Hosts of the current coloring, index case first."""
        if self._hosts is None:
            self._hosts = build_hosts(self._phylogeny, self._state)
        return self._hosts

    @property
    def n_hosts(self) -> int:
        """Number of hosts, sampled or not."""
        return len(self.hosts)

    @property
    def n_unsampled(self) -> int:
        """Number of unsampled hosts."""
        return sum(1 for h in self.hosts if not h.sampled)

    @property
    def n_transmissions(self) -> int:
        """Number of transmission events within the phylogeny."""
        return self._state.n_transmissions

    @property
    def infection_times(self) -> FloatArray:
        """Infection time of every host."""
        return np.array([h.infection_time for h in self.hosts])

    @property
    def removal_times(self) -> FloatArray:
        """Removal (sampling) time of every host, NaN when unsampled."""
        return np.array([np.nan if h.removal_time is None else h.removal_time for h in self.hosts])

    @property
    def infectors(self) -> list[int]:
        """Infector of every host, -1 for the index case."""
        return [h.infector for h in self.hosts]

    def host_labels(self) -> list[str | None]:
        """Sample identifier of every host, None when unsampled."""
        return [None if h.leaf is None else self._phylogeny.host(h.leaf) for h in self.hosts]

    def transmission_tree(self) -> TransmissionTreeArray:
        """Who infected whom, one row per host.

        Columns are infection time, removal time (NaN when unsampled) and the
        index of the infector (-1 for the index case).
        """
        return np.column_stack(
            [self.infection_times, self.removal_times, np.array(self.infectors, dtype=float)]
        )

    def edge_length(self, edge: int) -> float:
        """Length of an edge, the root edge running from the origin."""
        top, bottom = edge_bounds(self._phylogeny, self._state.origin, edge)
        return bottom - top

    @property
    def total_branch_length(self) -> float:
        """Sum of all edge lengths, root edge included."""
        return float(sum(self.edge_length(e) for e in range(self._phylogeny.n_nodes)))
