"""Extract scalar trajectories and move statistics from joint runs."""

import numpy as np

from ..parameters import FIELDS, ordered_fields
from ..samplers.recorder import JointChainResult
from ..utils.autocorr import effective_sample_size
from ..utils.types import FloatArray


def get_parameter_trajectories(
    result: JointChainResult,
    fields=None,
    discard: int = 0,
    thin: int = 1,
) -> dict[str, FloatArray]:
    """Parameter trajectories of every dataset.

    Parameters
    ----------
    result : JointChainResult
        Output of the joint sampler.
    fields : iterable of str, optional
        Fields to extract. Default is every field.
    discard : int, optional
        Number of initial retained samples to drop. Default is 0.
    thin : int, optional
        Keep one retained sample in ``thin``. Default is 1.

    Returns
    -------
    dict
        Field name to an array of shape ``(n_datasets, n_samples)``.

    Examples
    --------
    >>> traj = get_parameter_trajectories(result, ["pi"], discard=50)
    >>> np.median(traj["pi"], axis=1)  # one median per dataset
    """
    names = FIELDS if fields is None else ordered_fields(fields)
    return {name: result.trajectory(name)[:, discard::thin] for name in names}


def get_acceptance_rates(result: JointChainResult) -> dict[str, FloatArray]:
    """Acceptance rate of every move kind, one entry per dataset."""
    kinds = sorted({kind for chain in result for kind in chain.counts.kinds})
    return {
        kind: np.array([chain.counts.acceptance_rate(kind) for chain in result])
        for kind in kinds
    }


def get_effective_sample_sizes(
    result: JointChainResult,
    field: str,
    discard: int = 0,
) -> FloatArray:
    """Effective sample size of ``field`` in every dataset."""
    return np.array(
        [effective_sample_size(chain.trajectory(field)[discard:]) for chain in result]
    )


def shared_discrepancy(result: JointChainResult) -> float:
    """Largest difference between datasets of any shared field at any sample.

    Zero whenever the shared parameters were kept in step.
    """
    worst = 0.0
    for name in result.shared:
        values = result.trajectory(name)
        if values.size:
            worst = max(worst, float(np.max(values.max(axis=0) - values.min(axis=0))))
    return worst


def interquartile_range(values: FloatArray, axis: int = -1) -> FloatArray:
    """Spread between the 25th and 75th percentiles."""
    q75, q25 = np.percentile(values, [75, 25], axis=axis)
    return q75 - q25
