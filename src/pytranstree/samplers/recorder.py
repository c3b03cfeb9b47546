"""Storage of the retained states of the joint sampler."""

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field

import numpy as np

from ..colored_tree import ColoredTree
from ..likelihood import LikelihoodTerms
from ..parameters import FIELDS, ParameterSnapshot, canonical_field
from ..utils.types import FloatArray, Trajectory


@dataclass(frozen=True)
class ChainSample:
    """One retained state of one dataset's chain."""

    iteration: int
    tree: ColoredTree
    parameters: ParameterSnapshot
    terms: LikelihoodTerms

    @property
    def log_likelihood(self) -> float:
        """Full log-likelihood of the retained state."""
        return self.terms.total


@dataclass
class MoveCounts:
    """Running tally of proposals and acceptances per move kind."""

    proposed: dict[str, int] = field(default_factory=dict)
    accepted: dict[str, int] = field(default_factory=dict)

    def update(self, kind: str, accepted: bool) -> None:
        """Count one proposal of ``kind``."""
        self.proposed[kind] = self.proposed.get(kind, 0) + 1
        self.accepted[kind] = self.accepted.get(kind, 0) + int(accepted)

    def merge(self, other: "MoveCounts") -> None:
        """Add the counts of ``other``."""
        for kind, n in other.proposed.items():
            self.proposed[kind] = self.proposed.get(kind, 0) + n
        for kind, n in other.accepted.items():
            self.accepted[kind] = self.accepted.get(kind, 0) + n

    def acceptance_rate(self, kind: str) -> float:
        """Fraction of accepted proposals of ``kind``, NaN if never proposed."""
        n = self.proposed.get(kind, 0)
        return self.accepted.get(kind, 0) / n if n else float("nan")

    @property
    def kinds(self) -> list[str]:
        """Move kinds proposed so far, sorted."""
        return sorted(self.proposed)


@dataclass
class ChainRecorder:
    """Append-only, thinned record of one dataset's chain."""

    dataset: int
    samples: list[ChainSample] = field(default_factory=list, init=False)
    counts: MoveCounts = field(default_factory=MoveCounts, init=False)

    def __repr__(self):
        """String representation of the recorder."""
        return f"ChainRecorder(dataset={self.dataset}, n_samples={self.n_samples})"

    def __len__(self) -> int:
        return len(self.samples)

    def __getitem__(self, i: int) -> ChainSample:
        return self.samples[i]

    def __iter__(self) -> Iterator[ChainSample]:
        return iter(self.samples)

    @property
    def n_samples(self) -> int:
        """Number of retained samples."""
        return len(self.samples)

    def append(self, sample: ChainSample) -> None:
        """Retain a sample; iterations must increase."""
        if self.samples and sample.iteration <= self.samples[-1].iteration:
            raise ValueError("Samples must be recorded in increasing iteration order.")
        self.samples.append(sample)

    @property
    def iterations(self) -> np.ndarray:
        """Iteration index of every retained sample."""
        return np.array([s.iteration for s in self.samples], dtype=int)

    def trajectory(self, field: str) -> Trajectory:
        """Values of one parameter field along the chain."""
        field = canonical_field(field)
        return np.array([s.parameters[field] for s in self.samples])

    def log_likelihoods(self) -> Trajectory:
        """Log-likelihood of every retained state."""
        return np.array([s.log_likelihood for s in self.samples])

    def tree_statistic(self, statistic: Callable[[ColoredTree], float]) -> Trajectory:
        """Apply ``statistic`` to every retained colored tree."""
        return np.array([statistic(s.tree) for s in self.samples], dtype=float)

    def parameter_table(self) -> FloatArray:
        """All parameter fields, one row per sample, in ``FIELDS`` order."""
        if not self.samples:
            return np.empty((0, len(FIELDS)))
        return np.array([list(s.parameters.as_dict().values()) for s in self.samples])


@dataclass
class JointChainResult:
    """Per-dataset records of a joint run."""

    chains: list[ChainRecorder]
    shared: frozenset[str] = frozenset()
    stopped_early: bool = False

    def __repr__(self):
        """String representation of the joint result."""
        return (
            f"JointChainResult(n_datasets={self.n_datasets}, n_samples={self.n_samples}, "
            f"shared={sorted(self.shared)})"
        )

    def __len__(self) -> int:
        return len(self.chains)

    def __getitem__(self, dataset: int) -> ChainRecorder:
        return self.chains[dataset]

    def __iter__(self) -> Iterator[ChainRecorder]:
        return iter(self.chains)

    @property
    def n_datasets(self) -> int:
        """Number of datasets."""
        return len(self.chains)

    @property
    def n_samples(self) -> int:
        """Number of retained samples per dataset."""
        return self.chains[0].n_samples if self.chains else 0

    def trajectory(self, field: str, dataset: int | None = None) -> FloatArray:
        """Values of ``field`` for one dataset, or stacked ``(n_datasets, n_samples)``."""
        if dataset is not None:
            return self.chains[dataset].trajectory(field)
        return np.array([chain.trajectory(field) for chain in self.chains])
