"""Custom types for pytranstree."""

from collections.abc import Callable, Iterable, Iterator
from typing import Annotated, Any, Protocol, TypeAlias

import numpy as np
import numpy.typing as npt

# Shapes in the Annotated aliases below are notes for readers; only the dtype is checked.
IntArray: TypeAlias = npt.NDArray[np.integer]
FloatArray: TypeAlias = npt.NDArray[np.floating]
TransmissionTreeArray: TypeAlias = Annotated[
    FloatArray, "(n_hosts, 3): infection time, removal time or nan, infector or -1"
]
Trajectory: TypeAlias = Annotated[FloatArray, "(n_samples,)"]


class Pool(Protocol):
    """Protocol for user-supplied pools.

    Anything with a ``map`` compatible with the built-in ``map`` works:
    ``concurrent.futures`` executors, ``multiprocessing.Pool`` or schwimmbad
    pools.
    """

    def map(self, fn: Callable[..., Any], *iterables: Iterable[Any]) -> Iterator[Any]:
        """Apply ``fn`` to every item, returning results in input order."""
        ...
