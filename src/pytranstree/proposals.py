"""Metropolis-Hastings moves on colored trees and parameters.

Tree moves act on a single dataset:

- ``time``: resample one transmission time between its neighbouring events
  on the same edge, or shift the origin with a reflected random walk;
- ``add`` / ``remove``: insert a transmission uniformly over the total branch
  length, or delete one chosen uniformly, adding or removing a host;
- ``shift``: move one transmission onto an adjacent edge, handing the subtree
  below it to a different infector;
- ``swap``: exchange the uppermost transmission times on the two child edges
  of one node, reversing the order in which the two siblings were infected.
  A swap that would put a time below the next event on its new edge is
  refused, so swapping twice always returns the starting coloring.

Parameter moves are reflected random walks. A non-shared field is accepted
against its own dataset; a shared field is proposed once and accepted against
the pooled likelihood ratio of every dataset.
"""

import logging
from collections.abc import Sequence
from dataclasses import asdict, dataclass
from enum import StrEnum, auto

import numpy as np
from numpy.random import Generator

from .colored_tree import ColoredTree, MoveResult, TreeState, edge_bounds
from .exceptions import InvalidMoveError, NumericalInstabilityError
from .likelihood import LikelihoodEngine, LikelihoodTerms
from .parameters import ParameterSnapshot, ParameterVector, Priors, canonical_field

logger = logging.getLogger(__name__)

DEFAULT_STEPS = {
    "neg": 0.5,
    "off.r": 0.5,
    "off.p": 0.1,
    "pi": 0.1,
    "w.shape": 0.2,
    "w.scale": 0.2,
    "ws.shape": 0.2,
    "ws.scale": 0.2,
}
PI_FLOOR = 0.01


class TreeMoveType(StrEnum):
    """Kinds of colored-tree moves."""

    TIME = auto()
    ADD = auto()
    REMOVE = auto()
    SHIFT = auto()
    SWAP = auto()


@dataclass(frozen=True)
class MoveWeights:
    """Relative frequencies of the tree moves."""

    time: float = 0.3
    add: float = 0.2
    remove: float = 0.2
    shift: float = 0.2
    swap: float = 0.1

    def __post_init__(self):
        """Post-initialization checks."""
        weights = asdict(self)
        if any(not w >= 0 for w in weights.values()) or sum(weights.values()) <= 0:
            raise ValueError("Move weights must be non-negative and not all zero.")
        if (self.add > 0) != (self.remove > 0):
            raise ValueError("Adding and removing transmissions must both be enabled or both disabled.")

    def cumulative(self) -> tuple[list[TreeMoveType], np.ndarray]:
        """Move kinds with positive weight and their cumulative probabilities."""
        kinds = [TreeMoveType(k) for k, w in asdict(self).items() if w > 0]
        weights = np.array([getattr(self, k.value) for k in kinds])
        return kinds, np.cumsum(weights) / weights.sum()


@dataclass(frozen=True)
class TreeMove:
    """A proposed coloring and the log Hastings ratio of reaching it."""

    kind: TreeMoveType
    state: TreeState
    log_hastings: float


@dataclass(frozen=True)
class StepOutcome:
    """Result of one Metropolis-Hastings step on a single dataset."""

    kind: str
    accepted: bool
    terms: LikelihoodTerms


@dataclass(frozen=True)
class SharedStepOutcome:
    """Result of one pooled step on a shared parameter."""

    field: str
    accepted: bool
    value: float
    terms: tuple[LikelihoodTerms, ...]


def metropolis_hastings_accept(log_ratio: float, rng: Generator) -> bool:
    """Metropolis-Hastings criterion; ties favour acceptance."""
    log_u = np.log(rng.random())
    if np.isnan(log_ratio) or log_ratio == -np.inf:
        return False
    return bool(log_ratio >= log_u)


class ProposalEngine:
    """Proposes and resolves moves for the joint sampler.

    Parameters
    ----------
    likelihood : LikelihoodEngine
        Scores the proposed states.
    priors : Priors, optional
        Prior hyperparameters of the parameter fields.
    weights : MoveWeights, optional
        Relative frequencies of the tree moves.
    steps : dict, optional
        Random-walk widths per field, overriding ``DEFAULT_STEPS``.
    origin_step : float, optional
        Width of the random walk on the origin. Defaults to the mean
        generation interval of the current parameters.
    """

    def __init__(
        self,
        likelihood: LikelihoodEngine,
        priors: Priors | None = None,
        weights: MoveWeights | None = None,
        steps: dict[str, float] | None = None,
        origin_step: float | None = None,
    ):
        self.likelihood = likelihood
        self.priors = priors if priors is not None else Priors()
        self.weights = weights if weights is not None else MoveWeights()
        self.steps = dict(DEFAULT_STEPS)
        for name, step in (steps or {}).items():
            self.steps[canonical_field(name)] = float(step)
        self.origin_step = origin_step
        self._kinds, self._cumulative = self.weights.cumulative()

    def __repr__(self) -> str:
        """String representation of the proposal engine."""
        return f"ProposalEngine(weights={self.weights}, priors={self.priors})"

    # ------------------------------------------------------------------ tree

    def draw_move_kind(self, rng: Generator) -> TreeMoveType:
        """Pick a tree move kind according to the move weights."""
        position = int(np.searchsorted(self._cumulative, rng.random(), side="right"))
        return self._kinds[min(position, len(self._kinds) - 1)]

    def propose_tree_move(
        self,
        tree: ColoredTree,
        parameters: ParameterSnapshot,
        rng: Generator,
        kind: TreeMoveType | None = None,
    ) -> TreeMove:
        """Propose a new coloring with a move of the given (or a drawn) kind.

        Raises
        ------
        InvalidMoveError
            If the move has nothing to act on, e.g. removing from a tree
            without transmissions.
        """
        if kind is None:
            kind = self.draw_move_kind(rng)
        if kind == TreeMoveType.TIME:
            return self._time_move(tree, parameters, rng)
        if kind == TreeMoveType.ADD:
            return self._add_move(tree, rng)
        if kind == TreeMoveType.REMOVE:
            return self._remove_move(tree, rng)
        if kind == TreeMoveType.SHIFT:
            return self._shift_move(tree, rng)
        return self._swap_move(tree, rng)

    def _time_move(self, tree: ColoredTree, parameters: ParameterSnapshot, rng: Generator) -> TreeMove:
        state = tree.state
        phy = tree.phylogeny
        choice = int(rng.integers(state.n_transmissions + 1))

        if choice == state.n_transmissions:
            events = state.by_edge().get(phy.root, [])
            upper = events[0] if events else phy.root_time
            step = self.origin_step if self.origin_step is not None else parameters.generation_mean
            origin = state.origin + (rng.random() - 0.5) * step
            if origin >= upper:
                origin = 2.0 * upper - origin
            new_state = TreeState(origin, state.transmissions)
            return TreeMove(TreeMoveType.TIME, new_state, 0.0)

        edge, time = state.transmissions[choice]
        events = state.by_edge()[edge]
        top, bottom = edge_bounds(phy, state.origin, edge)
        position = events.index(time)
        lower = events[position - 1] if position > 0 else top
        upper = events[position + 1] if position + 1 < len(events) else bottom
        new_time = rng.uniform(lower, upper)
        return TreeMove(TreeMoveType.TIME, state.replacing(choice, edge, new_time), 0.0)

    def _add_move(self, tree: ColoredTree, rng: Generator) -> TreeMove:
        state = tree.state
        lengths = np.array([tree.edge_length(e) for e in range(tree.phylogeny.n_nodes)])
        total = lengths.sum()
        target = rng.random() * total
        edge = min(int(np.searchsorted(np.cumsum(lengths), target, side="right")), len(lengths) - 1)
        top, _ = edge_bounds(tree.phylogeny, state.origin, edge)
        time = top + target - (lengths[:edge].sum())
        log_hastings = (
            np.log(self.weights.remove) - np.log(self.weights.add)
            + np.log(total) - np.log(state.n_transmissions + 1)
        )
        return TreeMove(TreeMoveType.ADD, state.adding(edge, time), float(log_hastings))

    def _remove_move(self, tree: ColoredTree, rng: Generator) -> TreeMove:
        state = tree.state
        if state.n_transmissions == 0:
            raise InvalidMoveError("No transmission to remove.")
        choice = int(rng.integers(state.n_transmissions))
        log_hastings = (
            np.log(self.weights.add) - np.log(self.weights.remove)
            + np.log(state.n_transmissions) - np.log(tree.total_branch_length)
        )
        return TreeMove(TreeMoveType.REMOVE, state.without(choice), float(log_hastings))

    def _shift_move(self, tree: ColoredTree, rng: Generator) -> TreeMove:
        state = tree.state
        phy = tree.phylogeny
        if state.n_transmissions == 0:
            raise InvalidMoveError("No transmission to shift.")
        choice = int(rng.integers(state.n_transmissions))
        edge, _ = state.transmissions[choice]
        neighbours = phy.edge_neighbours(edge)
        if not neighbours:
            raise InvalidMoveError(f"Edge {edge} has no neighbouring edge.")
        target = neighbours[int(rng.integers(len(neighbours)))]
        top, bottom = edge_bounds(phy, state.origin, target)
        new_time = rng.uniform(top, bottom)
        log_hastings = (
            np.log(len(neighbours)) + np.log(bottom - top)
            - np.log(len(phy.edge_neighbours(target))) - np.log(tree.edge_length(edge))
        )
        return TreeMove(
            TreeMoveType.SHIFT, state.replacing(choice, target, new_time), float(log_hastings)
        )

    def _swap_move(self, tree: ColoredTree, rng: Generator) -> TreeMove:
        state = tree.state
        phy = tree.phylogeny
        events = state.by_edge()
        eligible = [
            node
            for node in phy.preorder
            if not phy.is_leaf(node) and all(c in events for c in phy.children(node))
        ]
        if not eligible:
            raise InvalidMoveError("No node has transmissions on both child edges.")
        node = eligible[int(rng.integers(len(eligible)))]
        a, b = phy.children(node)
        ta, tb = events[a][0], events[b][0]
        # the swapped times must stay uppermost on their new edges
        if any(len(events[e]) > 1 and t >= events[e][1] for e, t in ((a, tb), (b, ta))):
            raise InvalidMoveError("Swapping would reorder the transmissions on an edge.")
        swapped = [
            (e, tb if (e, t) == (a, ta) else ta if (e, t) == (b, tb) else t)
            for e, t in state.transmissions
        ]
        return TreeMove(TreeMoveType.SWAP, TreeState.build(state.origin, swapped), 0.0)

    def tree_step(
        self,
        tree: ColoredTree,
        parameters: ParameterSnapshot,
        terms: LikelihoodTerms,
        rng: Generator,
    ) -> StepOutcome:
        """Propose one tree move and accept or reject it.

        A rejected or invalid move leaves ``tree`` in its previous state.
        """
        before = tree.state
        kind = self.draw_move_kind(rng)
        label = f"tree.{kind}"
        try:
            move = self.propose_tree_move(tree, parameters, rng, kind=kind)
        except InvalidMoveError as e:
            logger.debug("Rejecting %s move: %s", kind, e)
            return StepOutcome(label, False, terms)

        if tree.apply_move(move) is MoveResult.INVALID:
            logger.debug("Rejecting invalid %s move", kind)
            return StepOutcome(label, False, terms)

        try:
            new_terms = self.likelihood.score(tree, parameters)
        except NumericalInstabilityError as e:
            logger.debug("Rejecting %s move: %s", kind, e)
            tree.restore(before)
            return StepOutcome(label, False, terms)

        log_ratio = new_terms.total - terms.total + move.log_hastings
        if metropolis_hastings_accept(log_ratio, rng):
            return StepOutcome(label, True, new_terms)
        tree.restore(before)
        return StepOutcome(label, False, terms)

    # ------------------------------------------------------------ parameters

    def propose_parameter(self, field: str, value: float, rng: Generator) -> tuple[float, float]:
        """Random-walk proposal for one field.

        Returns the proposed value and the log Hastings ratio, which is zero
        for the reflected walks and the log-scale Jacobian for the generation
        and sampling distribution fields.
        """
        step = self.steps[field]
        u = rng.random() - 0.5
        if field in ("neg", "off.r"):
            return abs(value + u * step), 0.0
        if field == "off.p":
            proposed = abs(value + u * step)
            if proposed > 1.0:
                proposed = 2.0 - proposed
            return proposed, 0.0
        if field == "pi":
            proposed = value + u * step
            if proposed < PI_FLOOR:
                proposed = 2.0 * PI_FLOOR - proposed
            if proposed > 1.0:
                proposed = 2.0 - proposed
            return proposed, 0.0
        proposed = value * np.exp(u * step)
        return float(proposed), float(u * step)

    def _rescore(
        self,
        field: str,
        tree: ColoredTree,
        candidate: ParameterSnapshot,
        terms: LikelihoodTerms,
    ) -> LikelihoodTerms:
        """Score ``candidate``, recomputing only the term that depends on ``field``."""
        if field == "neg":
            new_terms = LikelihoodTerms(
                self.likelihood.genealogical_term(tree, candidate.neg), terms.epidemiological
            )
        else:
            new_terms = LikelihoodTerms(
                terms.genealogical, self.likelihood.epidemiological_term(tree, candidate)
            )
        if not np.isfinite(new_terms.total):
            raise NumericalInstabilityError(f"Non-finite log-likelihood for {field}={candidate[field]}.")
        return new_terms

    def local_parameter_step(
        self,
        field: str,
        parameters: ParameterVector,
        tree: ColoredTree,
        terms: LikelihoodTerms,
        rng: Generator,
    ) -> StepOutcome:
        """Update one non-shared field against its own dataset."""
        current = parameters[field]
        proposed, log_hastings = self.propose_parameter(field, current, rng)
        log_prior_ratio = self.priors.log_prior(field, proposed) - self.priors.log_prior(field, current)
        if not np.isfinite(log_prior_ratio):
            return StepOutcome(field, False, terms)

        try:
            new_terms = self._rescore(field, tree, parameters.snapshot().with_value(field, proposed), terms)
        except NumericalInstabilityError as e:
            logger.debug("Rejecting %s update: %s", field, e)
            return StepOutcome(field, False, terms)

        log_ratio = new_terms.total - terms.total + log_prior_ratio + log_hastings
        if metropolis_hastings_accept(log_ratio, rng):
            parameters.set_local(field, proposed)
            return StepOutcome(field, True, new_terms)
        return StepOutcome(field, False, terms)

    def shared_parameter_step(
        self,
        field: str,
        current: float,
        datasets: Sequence[tuple[ColoredTree, ParameterVector, LikelihoodTerms]],
        rng: Generator,
    ) -> SharedStepOutcome:
        """Update one shared field against the pooled likelihood of every dataset.

        The proposal is drawn once. The prior ratio is counted once since the
        field is a single parameter of the joint model. Nothing is written:
        the caller stores the accepted value for every dataset at once.
        """
        unchanged = tuple(terms for _, _, terms in datasets)
        proposed, log_hastings = self.propose_parameter(field, current, rng)
        log_prior_ratio = self.priors.log_prior(field, proposed) - self.priors.log_prior(field, current)
        if not np.isfinite(log_prior_ratio):
            return SharedStepOutcome(field, False, current, unchanged)

        new_terms = []
        pooled = 0.0
        try:
            for tree, parameters, terms in datasets:
                candidate = parameters.snapshot().with_value(field, proposed)
                scored = self._rescore(field, tree, candidate, terms)
                pooled += scored.total - terms.total
                new_terms.append(scored)
        except NumericalInstabilityError as e:
            logger.debug("Rejecting shared %s update: %s", field, e)
            return SharedStepOutcome(field, False, current, unchanged)

        log_ratio = pooled + log_prior_ratio + log_hastings
        if metropolis_hastings_accept(log_ratio, rng):
            return SharedStepOutcome(field, True, proposed, tuple(new_terms))
        return SharedStepOutcome(field, False, current, unchanged)
