"""Outbreak simulator producing test phylogenies with known colorings.

The simulator draws a transmission tree from the same branching process the
likelihood scores (negative-binomial offspring, gamma generation intervals,
sampling with probability ``pi`` after a gamma delay, sampling removing the
host), prunes the hosts with no sampled descendant, then grows a within-host
coalescent genealogy in every remaining host. It is a validation
collaborator: the sampler never calls it.
"""

import logging
from dataclasses import dataclass, field

import numpy as np
from numpy.random import Generator

from .colored_tree import ColoredTree, TreeState
from .exceptions import InputValidationError, PyTransTreeError
from .parameters import ParameterSnapshot
from .phylogeny import PhyloNode, TimedPhylogeny

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimulatedOutbreak:
    """A simulated phylogeny and the coloring it was generated from."""

    phylogeny: TimedPhylogeny
    colored_tree: ColoredTree
    n_infected: int

    @property
    def n_sampled(self) -> int:
        """Number of sampled hosts."""
        return self.phylogeny.n_leaves


@dataclass
class _Lineage:
    time: float
    node: int
    transmissions: list[float] = field(default_factory=list)


def _simulate_transmission(
    parameters: ParameterSnapshot,
    date_start: float,
    date_t: float,
    rng: Generator,
    max_hosts: int,
) -> tuple[list[float], list[int], list[float]] | None:
    """Branching process in order of discovery; None if it grew past ``max_hosts``."""
    infection = [date_start]
    infector = [-1]
    sampling: list[float] = []
    i = 0
    while i < len(infection):
        t = infection[i]
        sample = np.nan
        if rng.random() < parameters.pi:
            delay = rng.gamma(parameters.ws_shape, parameters.ws_scale)
            if t + delay <= date_t:
                sample = t + delay
        sampling.append(sample)
        removal = sample if np.isfinite(sample) else np.inf
        n_offspring = rng.negative_binomial(parameters.off_r, 1.0 - parameters.off_p)
        for _ in range(n_offspring):
            infected = t + rng.gamma(parameters.w_shape, parameters.w_scale)
            if infected < min(removal, date_t):
                infection.append(infected)
                infector.append(i)
        if len(infection) > max_hosts:
            return None
        i += 1
    return infection, infector, sampling


def _coalesce_within_host(
    tips: list[_Lineage],
    infection_time: float,
    neg: float,
    nodes: list[PhyloNode],
    edge_events: dict[int, list[float]],
    rng: Generator,
) -> _Lineage | None:
    """Kingman coalescent backwards from the tips down to a single lineage.

    Returns the surviving lineage, or None if the lineages have not all
    merged by the infection time; nothing is added to ``nodes`` then.
    """
    pending = sorted(tips, key=lambda lin: -lin.time)
    new_nodes: list[PhyloNode] = []
    new_events: dict[int, list[float]] = {}
    active: list[_Lineage] = []
    current = pending[0].time
    next_tip = 0
    while next_tip < len(pending) or len(active) > 1:
        k = len(active)
        coalescence = current - rng.exponential(neg / (0.5 * k * (k - 1))) if k > 1 else -np.inf
        if next_tip < len(pending) and pending[next_tip].time >= coalescence:
            active.append(pending[next_tip])
            current = pending[next_tip].time
            next_tip += 1
            continue
        if coalescence <= infection_time:
            return None
        a, b = rng.choice(k, size=2, replace=False)
        first, second = sorted((int(a), int(b)))
        merged = [active[first], active[second]]
        node = len(nodes) + len(new_nodes)
        new_nodes.append(PhyloNode(time=coalescence, children=tuple(lin.node for lin in merged)))
        for lin in merged:
            if lin.transmissions:
                new_events[lin.node] = lin.transmissions
        del active[second], active[first]
        active.append(_Lineage(coalescence, node))
        current = coalescence

    nodes.extend(new_nodes)
    edge_events.update(new_events)
    return active[0]


def simulate_outbreak(
    parameters: ParameterSnapshot,
    date_start: float,
    date_t: float,
    rng: Generator,
    min_sampled: int = 2,
    max_hosts: int = 2000,
    max_attempts: int = 1000,
) -> SimulatedOutbreak:
    """Simulate an outbreak and its sampled phylogeny.

    Parameters
    ----------
    parameters : ParameterSnapshot
        Parameters of the outbreak model.
    date_start : float
        Infection time of the index case.
    date_t : float
        End of sampling.
    rng : Generator
        Source of randomness.
    min_sampled : int, optional
        Outbreaks with fewer samples are discarded and redrawn. Default is 2.
    max_hosts : int, optional
        Outbreaks infecting more hosts are discarded and redrawn. Default is 2000.
    max_attempts : int, optional
        Number of draws before giving up. Default is 1000.

    Returns
    -------
    SimulatedOutbreak
        The phylogeny of the samples and its true coloring.

    Raises
    ------
    PyTransTreeError
        If no acceptable outbreak was drawn within ``max_attempts``.
    """
    parameters.validate()
    if not date_start < date_t:
        raise InputValidationError("date_start must precede date_t.")
    if min_sampled < 1:
        raise InputValidationError("min_sampled must be at least 1.")

    for attempt in range(max_attempts):
        drawn = _simulate_transmission(parameters, date_start, date_t, rng, max_hosts)
        if drawn is None:
            continue
        infection, infector, sampling = drawn
        if np.sum(np.isfinite(sampling)) < min_sampled:
            continue
        outbreak = _build_phylogeny(parameters, infection, infector, sampling, rng)
        if outbreak is not None:
            logger.debug("Simulated outbreak accepted after %d attempts", attempt + 1)
            return outbreak
    raise PyTransTreeError(f"No acceptable outbreak in {max_attempts} attempts.")


def _build_phylogeny(
    parameters: ParameterSnapshot,
    infection: list[float],
    infector: list[int],
    sampling: list[float],
    rng: Generator,
) -> SimulatedOutbreak | None:
    n = len(infection)
    keep = [bool(np.isfinite(s)) for s in sampling]
    infectees: list[list[int]] = [[] for _ in range(n)]
    # hosts are discovered after their infector, so children have larger indices
    for i in range(n - 1, 0, -1):
        if keep[i]:
            keep[infector[i]] = True
            infectees[infector[i]].append(i)

    nodes: list[PhyloNode] = []
    edge_events: dict[int, list[float]] = {}
    top: dict[int, _Lineage] = {}
    for h in range(n - 1, -1, -1):
        if not keep[h]:
            continue
        tips = []
        if np.isfinite(sampling[h]):
            nodes.append(PhyloNode(time=sampling[h], host=str(h + 1)))
            tips.append(_Lineage(sampling[h], len(nodes) - 1))
        for c in infectees[h]:
            lineage = top.pop(c)
            lineage.transmissions.insert(0, infection[c])
            tips.append(_Lineage(infection[c], lineage.node, lineage.transmissions))
        survivor = _coalesce_within_host(tips, infection[h], parameters.neg, nodes, edge_events, rng)
        if survivor is None:
            return None
        top[h] = survivor

    root = top.pop(0)
    if root.transmissions:
        edge_events[root.node] = root.transmissions
    phylogeny = TimedPhylogeny(nodes)
    state = TreeState.build(
        infection[0], [(edge, t) for edge, times in edge_events.items() for t in times]
    )
    return SimulatedOutbreak(phylogeny, ColoredTree(phylogeny, state), n_infected=n)
