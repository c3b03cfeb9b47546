"""Epidemiological parameters, their priors and cross-dataset sharing.

Parameter fields use the dotted names of the outbreak model:

- ``neg``: within-host effective population size times generation time
- ``off.r``, ``off.p``: size and probability of the negative-binomial
  offspring distribution, whose mean is ``off.r * off.p / (1 - off.p)``
- ``pi``: sampling proportion
- ``w.shape``, ``w.scale``: gamma generation-interval distribution
- ``ws.shape``, ``ws.scale``: gamma infection-to-sampling distribution

Shared fields live once in a :class:`SharedParameterStore`. Each
:class:`ParameterVector` holds its own values for non-shared fields and reads
shared fields from the store, so there is never a per-dataset copy of a shared
value to fall out of step.
"""

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import asdict, dataclass, replace

import numpy as np
from scipy import stats

from .exceptions import InputValidationError, SharingMaskMismatchError

FIELDS: tuple[str, ...] = (
    "neg",
    "off.r",
    "off.p",
    "pi",
    "w.shape",
    "w.scale",
    "ws.shape",
    "ws.scale",
)
DEFAULT_FREE_FIELDS: tuple[str, ...] = ("neg", "off.r", "off.p", "pi")
FIXED_BY_DEFAULT: tuple[str, ...] = ("w.shape", "w.scale", "ws.shape", "ws.scale")

_ATTRIBUTES = {name: name.replace(".", "_") for name in FIELDS}
_ALIASES = {**{name: name for name in FIELDS}, **{a: n for n, a in _ATTRIBUTES.items()}}


def canonical_field(name: str) -> str:
    """Return the dotted name of a parameter field.

    Both ``"off.r"`` and ``"off_r"`` are accepted.

    Raises
    ------
    InputValidationError
        If ``name`` is not a parameter field.
    """
    try:
        return _ALIASES[name]
    except (KeyError, TypeError):
        raise InputValidationError(
            f"Unknown parameter field {name!r}; expected one of {', '.join(FIELDS)}."
        ) from None


def ordered_fields(names: Iterable[str]) -> tuple[str, ...]:
    """Canonicalise field names and sort them in the fixed field order."""
    wanted = {canonical_field(n) for n in names}
    return tuple(f for f in FIELDS if f in wanted)


@dataclass(frozen=True)
class ParameterSnapshot:
    """Immutable value of every parameter field for one dataset."""

    neg: float
    off_r: float
    off_p: float
    pi: float
    w_shape: float
    w_scale: float
    ws_shape: float
    ws_scale: float

    def __getitem__(self, field: str) -> float:
        return getattr(self, _ATTRIBUTES[canonical_field(field)])

    @classmethod
    def from_mapping(cls, values: Mapping[str, float]) -> "ParameterSnapshot":
        """Build a snapshot from a mapping keyed by field name."""
        given = {canonical_field(k): float(v) for k, v in values.items()}
        missing = [f for f in FIELDS if f not in given]
        if missing:
            raise InputValidationError(f"Missing parameter fields: {', '.join(missing)}.")
        return cls(**{_ATTRIBUTES[f]: given[f] for f in FIELDS})

    def as_dict(self) -> dict[str, float]:
        """Values keyed by dotted field name, in the fixed field order."""
        values = asdict(self)
        return {f: values[_ATTRIBUTES[f]] for f in FIELDS}

    def with_value(self, field: str, value: float) -> "ParameterSnapshot":
        """Copy of the snapshot with one field replaced."""
        return replace(self, **{_ATTRIBUTES[canonical_field(field)]: float(value)})

    @property
    def reproduction_number(self) -> float:
        """Mean of the offspring distribution."""
        return self.off_r * self.off_p / (1.0 - self.off_p)

    @property
    def generation_mean(self) -> float:
        """Mean generation interval."""
        return self.w_shape * self.w_scale

    @property
    def sampling_mean(self) -> float:
        """Mean time from infection to sampling."""
        return self.ws_shape * self.ws_scale

    def validate(self) -> None:
        """Check every field lies in its support.

        Raises
        ------
        InputValidationError
            If a value is outside the support of its field.
        """
        for f, v in self.as_dict().items():
            if not np.isfinite(v) or v <= 0:
                raise InputValidationError(f"Parameter {f} must be positive and finite, got {v}.")
        if not self.off_p < 1:
            raise InputValidationError(f"Parameter off.p must be below 1, got {self.off_p}.")
        if not self.pi <= 1:
            raise InputValidationError(f"Parameter pi must be at most 1, got {self.pi}.")


@dataclass(frozen=True)
class Priors:
    """Prior hyperparameters.

    ``neg`` and ``off.r`` have exponential priors, ``off.p`` is uniform on
    (0, 1) and ``pi`` is Beta(``pi_a``, ``pi_b``), which is uniform with the
    defaults. The generation and sampling distribution fields are normally
    fixed; when freed they get exponential priors with rate ``fixed_rate``.
    """

    neg_rate: float = 1.0
    off_r_rate: float = 1.0
    pi_a: float = 1.0
    pi_b: float = 1.0
    fixed_rate: float = 1.0

    def __post_init__(self):
        """Post-initialization checks."""
        for name, value in asdict(self).items():
            if not np.isfinite(value) or value <= 0:
                raise InputValidationError(f"Prior hyperparameter {name} must be positive, got {value}.")

    def log_prior(self, field: str, value: float) -> float:
        """Log prior density of ``value`` for ``field``."""
        field = canonical_field(field)
        if field == "neg":
            return float(stats.expon.logpdf(value, scale=1.0 / self.neg_rate))
        if field == "off.r":
            return float(stats.expon.logpdf(value, scale=1.0 / self.off_r_rate))
        if field == "off.p":
            return 0.0 if 0.0 < value < 1.0 else -np.inf
        if field == "pi":
            return float(stats.beta.logpdf(value, self.pi_a, self.pi_b))
        return float(stats.expon.logpdf(value, scale=1.0 / self.fixed_rate))


def resolve_sharing_mask(
    share: str | Iterable[str] | Sequence[Iterable[str]] | None,
    n_datasets: int,
) -> frozenset[str]:
    """Resolve the caller's ``share`` argument into one sharing mask.

    ``share`` is either a single collection of field names applied to every
    dataset, or one collection per dataset, in which case all of them must
    name the same fields.

    Raises
    ------
    SharingMaskMismatchError
        If per-dataset masks disagree or there is not one per dataset.
    InputValidationError
        If a field name is unknown.
    """
    if share is None:
        return frozenset()
    if isinstance(share, str):
        return frozenset({canonical_field(share)})
    items = list(share)
    if all(isinstance(item, str) for item in items):
        return frozenset(canonical_field(item) for item in items)

    if len(items) != n_datasets:
        raise SharingMaskMismatchError(
            f"Got {len(items)} sharing masks for {n_datasets} datasets."
        )
    masks = [
        frozenset({canonical_field(item)}) if isinstance(item, str)
        else frozenset(canonical_field(f) for f in item)
        for item in items
    ]
    if any(mask != masks[0] for mask in masks[1:]):
        raise SharingMaskMismatchError(
            "Datasets disagree on shared parameters: "
            + "; ".join(str(sorted(mask)) for mask in masks)
        )
    return masks[0]


class SharedParameterStore:
    """Single home of the shared parameter values of a joint run.

    The joint update step of the driver is its only writer.
    """

    def __init__(self, values: Mapping[str, float] | None = None):
        self._values = {canonical_field(k): float(v) for k, v in (values or {}).items()}

    def __repr__(self) -> str:
        """String representation of the store."""
        return f"SharedParameterStore({self._values})"

    def __contains__(self, field: str) -> bool:
        return field in self._values

    def __getitem__(self, field: str) -> float:
        return self._values[field]

    @property
    def fields(self) -> tuple[str, ...]:
        """Shared fields in the fixed field order."""
        return ordered_fields(self._values)

    def write(self, field: str, value: float) -> None:
        """Set a shared value; it is seen by every dataset at once."""
        if field not in self._values:
            raise KeyError(f"{field} is not a shared parameter.")
        self._values[field] = float(value)

    def as_dict(self) -> dict[str, float]:
        """Copy of the shared values."""
        return dict(self._values)


class ParameterVector:
    """Parameter values of one dataset.

    Non-shared fields are stored locally; shared fields are looked up in the
    store, keyed by field name.
    """

    def __init__(
        self,
        start: ParameterSnapshot,
        store: SharedParameterStore,
        mask: frozenset[str] = frozenset(),
    ):
        start.validate()
        if any(f not in store for f in mask):
            raise SharingMaskMismatchError("Every shared field must live in the shared store.")
        self._mask = frozenset(mask)
        self._store = store
        self._local = {f: v for f, v in start.as_dict().items() if f not in self._mask}

    def __repr__(self) -> str:
        """String representation of the parameter vector."""
        return f"ParameterVector({self.snapshot().as_dict()}, shared={sorted(self._mask)})"

    def __getitem__(self, field: str) -> float:
        field = canonical_field(field)
        if field in self._mask:
            return self._store[field]
        return self._local[field]

    @property
    def mask(self) -> frozenset[str]:
        """The shared fields."""
        return self._mask

    @property
    def store(self) -> SharedParameterStore:
        """The store holding the shared fields."""
        return self._store

    def is_shared(self, field: str) -> bool:
        """Whether ``field`` is shared across datasets."""
        return canonical_field(field) in self._mask

    def local_values(self) -> dict[str, float]:
        """Copy of the non-shared values."""
        return dict(self._local)

    def set_local(self, field: str, value: float) -> None:
        """Set a non-shared field.

        Raises
        ------
        KeyError
            If ``field`` is shared; shared values are written through the store.
        """
        field = canonical_field(field)
        if field in self._mask:
            raise KeyError(f"{field} is shared and can only be updated jointly.")
        self._local[field] = float(value)

    def snapshot(self) -> ParameterSnapshot:
        """Immutable copy of every field's current value."""
        return ParameterSnapshot.from_mapping({f: self[f] for f in FIELDS})
