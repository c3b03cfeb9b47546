"""Joint MCMC over several transmission trees with shared parameters."""

import logging
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np
from tqdm import tqdm

from ..colored_tree import ColoredTree, TreeState
from ..exceptions import InputValidationError, NumericalInstabilityError
from ..likelihood import DEFAULT_DELTA_T, DEFAULT_MAX_STEPS, LikelihoodEngine, LikelihoodTerms
from ..parameters import (
    DEFAULT_FREE_FIELDS,
    ParameterSnapshot,
    ParameterVector,
    Priors,
    SharedParameterStore,
    ordered_fields,
    resolve_sharing_mask,
)
from ..phylogeny import TimedPhylogeny
from ..proposals import MoveWeights, ProposalEngine
from ..utils.types import Pool
from .recorder import ChainRecorder, ChainSample, JointChainResult, MoveCounts

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

_SEED_BOUND = 2**63 - 1


@dataclass(frozen=True)
class SamplerSettings:
    """Length, thinning and pacing of a joint run."""

    mcmc_iterations: int = 1000
    thinning: int = 1
    burn_in: int = 0
    tree_moves_per_sweep: int = 1
    seed: int | None = 61254557
    timeout: float | None = None
    progress: bool = False

    def __post_init__(self):
        """Post-initialization checks."""
        if self.mcmc_iterations < 1:
            raise InputValidationError("mcmc_iterations must be at least 1.")
        if self.thinning < 1:
            raise InputValidationError("thinning must be at least 1.")
        if self.burn_in < 0:
            raise InputValidationError("burn_in must not be negative.")
        if self.tree_moves_per_sweep < 0:
            raise InputValidationError("tree_moves_per_sweep must not be negative.")
        if self.timeout is not None and self.timeout <= 0:
            raise InputValidationError("timeout must be positive.")

    @property
    def n_records(self) -> int:
        """Number of samples retained per dataset by a complete run."""
        return self.mcmc_iterations // self.thinning


@dataclass
class DatasetChain:
    """Current state of one dataset's chain."""

    index: int
    tree: ColoredTree
    parameters: ParameterVector
    terms: LikelihoodTerms


@dataclass
class _SweepJob:
    tree: ColoredTree
    parameters: ParameterVector
    terms: LikelihoodTerms
    fields: tuple[str, ...]
    n_tree_moves: int
    proposals: ProposalEngine
    seed: int


@dataclass
class _SweepResult:
    state: TreeState
    local_values: dict[str, float]
    terms: LikelihoodTerms
    counts: MoveCounts = field(default_factory=MoveCounts)


def _sweep_dataset(job: _SweepJob) -> _SweepResult:
    """Run the single-dataset part of one sweep.

    Consumes only the dataset's own generator: tree moves first, then the
    non-shared fields in canonical order. Shared fields are only read.
    """
    rng = np.random.default_rng(job.seed)
    counts = MoveCounts()
    terms = job.terms
    for _ in range(job.n_tree_moves):
        outcome = job.proposals.tree_step(job.tree, job.parameters.snapshot(), terms, rng)
        counts.update(outcome.kind, outcome.accepted)
        terms = outcome.terms
    for name in job.fields:
        outcome = job.proposals.local_parameter_step(name, job.parameters, job.tree, terms, rng)
        counts.update(outcome.kind, outcome.accepted)
        terms = outcome.terms
    return _SweepResult(job.tree.state, job.parameters.local_values(), terms, counts)


class JointMCMCDriver:
    """Runs one chain per dataset, updating shared parameters jointly.

    Parameters
    ----------
    phylogenies : sequence of TimedPhylogeny
        One phylogeny per dataset.
    start : ParameterSnapshot
        Starting value of every field, common to all datasets. Fields that
        are not free stay at these values.
    share : iterable of str or sequence of iterables, optional
        Fields shared across datasets, either one collection for all or one
        per dataset (which must agree). Default is no sharing.
    free_fields : iterable of str, optional
        Fields updated by the sampler. Default is neg, off.r, off.p and pi.
    date_t : float, optional
        End of the study. Default is the latest sample over all datasets.
    priors : Priors, optional
        Prior hyperparameters.
    weights : MoveWeights, optional
        Relative frequencies of the tree moves.
    settings : SamplerSettings, optional
        Run length, thinning, burn-in, seed, timeout and progress display.
    delta_t : float, optional
        Grid step of the likelihood. Default is 0.01.
    max_grid_steps : int, optional
        Longest likelihood grid, in steps of ``delta_t``; infections earlier
        than ``date_t - max_grid_steps * delta_t`` are ruled out. Default is 8192.
    pool : Pool, optional
        Object with a ``map`` method used to run the per-dataset part of each
        sweep concurrently. Results are identical with or without it.

    Raises
    ------
    InputValidationError
        If any dataset cannot be given a valid initial colored tree with a
        finite likelihood, or the settings are invalid.
    SharingMaskMismatchError
        If per-dataset sharing masks disagree.

    Notes
    -----
    Random numbers come from one master generator seeded with
    ``settings.seed``. At the start of every sweep the master draws one child
    seed per dataset, in dataset order; each dataset's tree and non-shared
    parameter moves use only its child generator. The shared-parameter step
    that closes the sweep uses the master generator, shared fields in
    canonical order. This ordering makes runs with the same seed
    bit-identical whether or not a pool is used.
    """

    def __init__(
        self,
        phylogenies: Sequence[TimedPhylogeny],
        start: ParameterSnapshot,
        share: Iterable[str] | Sequence[Iterable[str]] | None = None,
        free_fields: Iterable[str] = DEFAULT_FREE_FIELDS,
        date_t: float | None = None,
        priors: Priors | None = None,
        weights: MoveWeights | None = None,
        settings: SamplerSettings | None = None,
        delta_t: float = DEFAULT_DELTA_T,
        max_grid_steps: int = DEFAULT_MAX_STEPS,
        pool: Pool | Any | None = None,
    ):
        phylogenies = list(phylogenies)
        if not phylogenies:
            raise InputValidationError("At least one phylogeny is required.")
        if any(not isinstance(p, TimedPhylogeny) for p in phylogenies):
            raise InputValidationError("Every dataset must be a TimedPhylogeny.")
        if pool is not None and not hasattr(pool, "map"):
            raise InputValidationError("pool must have a 'map' method.")
        start.validate()

        self.settings = settings if settings is not None else SamplerSettings()
        self.mask = resolve_sharing_mask(share, len(phylogenies))
        free = ordered_fields(free_fields)
        self.shared_free = tuple(f for f in free if f in self.mask)
        self.local_free = tuple(f for f in free if f not in self.mask)
        self.pool = pool

        if date_t is None:
            date_t = max(p.last_sample_time for p in phylogenies)
        self.likelihood = LikelihoodEngine(date_t, delta_t, max_grid_steps)
        self.proposals = ProposalEngine(self.likelihood, priors=priors, weights=weights)
        self.store = SharedParameterStore({f: start[f] for f in self.mask})

        self.chains = [
            self._initialize_chain(i, phylogeny, start) for i, phylogeny in enumerate(phylogenies)
        ]
        self.recorders = [ChainRecorder(chain.index) for chain in self.chains]
        self._rng = np.random.default_rng(self.settings.seed)

    def __repr__(self) -> str:
        """String representation of the driver."""
        return (
            f"JointMCMCDriver(n_datasets={self.n_datasets}, shared={sorted(self.mask)}, "
            f"free={list(self.local_free + self.shared_free)})"
        )

    @property
    def n_datasets(self) -> int:
        """Number of datasets."""
        return len(self.chains)

    def _initialize_chain(
        self, index: int, phylogeny: TimedPhylogeny, start: ParameterSnapshot
    ) -> DatasetChain:
        try:
            tree = ColoredTree.initialize(phylogeny, start, self.likelihood.date_t)
            parameters = ParameterVector(start, self.store, self.mask)
            terms = self.likelihood.score(tree, parameters)
        except (InputValidationError, NumericalInstabilityError) as e:
            raise InputValidationError(
                f"Dataset {index} cannot be given a valid initial colored tree: {e}"
            ) from e
        return DatasetChain(index, tree, parameters, terms)

    def sweep(self) -> None:
        """Advance every chain by one iteration."""
        seeds = self._rng.integers(_SEED_BOUND, size=self.n_datasets)
        jobs = [
            _SweepJob(
                tree=chain.tree,
                parameters=chain.parameters,
                terms=chain.terms,
                fields=self.local_free,
                n_tree_moves=self.settings.tree_moves_per_sweep,
                proposals=self.proposals,
                seed=int(seed),
            )
            for chain, seed in zip(self.chains, seeds)
        ]
        if self.pool is not None:
            results = list(self.pool.map(_sweep_dataset, jobs))
        else:
            results = [_sweep_dataset(job) for job in jobs]

        for chain, recorder, result in zip(self.chains, self.recorders, results):
            chain.tree.restore(result.state)
            for name, value in result.local_values.items():
                chain.parameters.set_local(name, value)
            chain.terms = result.terms
            recorder.counts.merge(result.counts)

        # barrier: every dataset has finished its sweep before shared fields move
        for name in self.shared_free:
            self._shared_step(name)

    def _shared_step(self, name: str) -> None:
        outcome = self.proposals.shared_parameter_step(
            name,
            self.store[name],
            [(chain.tree, chain.parameters, chain.terms) for chain in self.chains],
            self._rng,
        )
        if outcome.accepted:
            self.store.write(name, outcome.value)
            for chain, terms in zip(self.chains, outcome.terms):
                chain.terms = terms
        for recorder in self.recorders:
            recorder.counts.update(f"shared.{name}", outcome.accepted)

    def _record(self, iteration: int) -> None:
        for chain, recorder in zip(self.chains, self.recorders):
            recorder.append(
                ChainSample(
                    iteration=iteration,
                    tree=chain.tree.copy(),
                    parameters=chain.parameters.snapshot(),
                    terms=chain.terms,
                )
            )

    def run(self) -> JointChainResult:
        """Run burn-in then the recorded iterations.

        Returns
        -------
        JointChainResult
            One recorder per dataset holding ``mcmc_iterations // thinning``
            samples, fewer if the timeout stopped the run early.
        """
        s = self.settings
        logger.info("Running joint transmission-tree sampler")
        logger.info("Number of datasets: %d", self.n_datasets)
        logger.info("Shared parameters: %s", sorted(self.mask) or "none")
        logger.info("Iterations: %d (burn-in %d, thinning %d)", s.mcmc_iterations, s.burn_in, s.thinning)

        started = time.monotonic()
        stopped_early = False
        for step in tqdm(range(s.burn_in + s.mcmc_iterations), disable=not s.progress):
            if s.timeout is not None and time.monotonic() - started > s.timeout:
                logger.warning(
                    "Timeout of %.1f s reached after %d iterations; returning %d samples per dataset",
                    s.timeout,
                    step,
                    len(self.recorders[0]),
                )
                stopped_early = True
                break
            self.sweep()
            iteration = step - s.burn_in + 1
            if iteration > 0 and iteration % s.thinning == 0:
                self._record(iteration)

        return JointChainResult(self.recorders, shared=self.mask, stopped_early=stopped_early)


def run_joint_sampler(
    phylogenies: Sequence[TimedPhylogeny],
    w_shape: float = 2.0,
    w_scale: float = 1.0,
    ws_shape: float | None = None,
    ws_scale: float | None = None,
    date_t: float | None = None,
    mcmc_iterations: int = 1000,
    thinning: int = 1,
    burn_in: int = 0,
    start_neg: float = 100 / 365,
    start_off_r: float = 1.0,
    start_off_p: float = 0.5,
    start_pi: float = 0.5,
    update: Iterable[str] = DEFAULT_FREE_FIELDS,
    share: Iterable[str] | Sequence[Iterable[str]] | None = None,
    prior_pi_a: float = 1.0,
    prior_pi_b: float = 1.0,
    tree_moves_per_sweep: int = 1,
    move_weights: MoveWeights | None = None,
    delta_t: float = DEFAULT_DELTA_T,
    max_grid_steps: int = DEFAULT_MAX_STEPS,
    seed: int | None = 61254557,
    pool: Pool | Any | None = None,
    timeout: float | None = None,
    progress: bool = False,
) -> JointChainResult:
    """Infer one transmission tree per phylogeny, sharing selected parameters.

    Parameters
    ----------
    phylogenies : sequence of TimedPhylogeny
        One dated phylogeny per dataset.
    w_shape, w_scale : float, optional
        Gamma generation-interval distribution. Defaults are 2 and 1.
    ws_shape, ws_scale : float, optional
        Gamma infection-to-sampling distribution. Default to the generation
        interval values.
    date_t : float, optional
        End of the study. Default is the latest sample.
    mcmc_iterations : int, optional
        Number of recorded-phase iterations. Default is 1000.
    thinning : int, optional
        Keep one state every ``thinning`` iterations. Default is 1.
    burn_in : int, optional
        Unrecorded iterations run first. Default is 0.
    start_neg, start_off_r, start_off_p, start_pi : float, optional
        Starting parameter values.
    update : iterable of str, optional
        Fields updated by the sampler; the others are fixed. Default is
        neg, off.r, off.p and pi.
    share : iterable of str or sequence of iterables, optional
        Fields constrained to one value across all datasets.
    prior_pi_a, prior_pi_b : float, optional
        Beta prior of ``pi``. Default is uniform.
    tree_moves_per_sweep : int, optional
        Tree moves attempted per dataset per iteration. Default is 1.
    move_weights : MoveWeights, optional
        Relative frequencies of the tree moves.
    delta_t : float, optional
        Grid step of the likelihood. Default is 0.01.
    max_grid_steps : int, optional
        Longest likelihood grid, in steps of ``delta_t``; infections earlier
        than ``date_t - max_grid_steps * delta_t`` are ruled out. Default is 8192.
    seed : int, optional
        Seed of the random stream. Default is 61254557.
    pool : Any, optional
        Object with a ``map`` method to run per-dataset sweeps concurrently.
    timeout : float, optional
        Wall-clock limit in seconds; the run stops early and returns what it
        has recorded.
    progress : bool, optional
        Whether to display a progress bar. Default is False.

    Returns
    -------
    JointChainResult
        One ordered record of (colored tree, parameters) samples per dataset.

    Examples
    --------
    >>> result = run_joint_sampler(
    ...     [phylogeny_a, phylogeny_b],
    ...     w_shape=10, w_scale=0.1, date_t=2008,
    ...     mcmc_iterations=2000, thinning=10,
    ...     share=["neg", "off.r", "off.p", "pi"],
    ... )
    >>> result.trajectory("pi").shape
    (2, 200)
    """
    start = ParameterSnapshot(
        neg=start_neg,
        off_r=start_off_r,
        off_p=start_off_p,
        pi=start_pi,
        w_shape=w_shape,
        w_scale=w_scale,
        ws_shape=w_shape if ws_shape is None else ws_shape,
        ws_scale=w_scale if ws_scale is None else ws_scale,
    )
    settings = SamplerSettings(
        mcmc_iterations=mcmc_iterations,
        thinning=thinning,
        burn_in=burn_in,
        tree_moves_per_sweep=tree_moves_per_sweep,
        seed=seed,
        timeout=timeout,
        progress=progress,
    )
    driver = JointMCMCDriver(
        phylogenies,
        start,
        share=share,
        free_fields=update,
        date_t=date_t,
        priors=Priors(pi_a=prior_pi_a, pi_b=prior_pi_b),
        weights=move_weights,
        settings=settings,
        delta_t=delta_t,
        max_grid_steps=max_grid_steps,
        pool=pool,
    )
    return driver.run()


def run_single_sampler(phylogeny: TimedPhylogeny, **kwargs) -> ChainRecorder:
    """Infer the transmission tree of a single phylogeny.

    Accepts the keyword arguments of :func:`run_joint_sampler` except
    ``share`` and returns the record of the only dataset.
    """
    if "share" in kwargs:
        raise InputValidationError("A single dataset has nothing to share parameters with.")
    return run_joint_sampler([phylogeny], **kwargs)[0]
