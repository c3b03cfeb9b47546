"""Log-likelihood of a colored tree under the outbreak model.

The likelihood of a colored tree factorises into

- a genealogical term: within every host, the lineages of the phylogeny
  follow a Kingman coalescent with constant effective size ``neg`` and must
  all have merged by the time the host was infected;
- an epidemiological term: the transmission tree encoded by the coloring is
  scored against a branching process with negative-binomial offspring, gamma
  generation intervals, and sampling with probability ``pi`` after a gamma
  distributed delay, sampling removing the host. Offspring that left no
  sampled descendant before the end of the study are integrated out.

Everything is computed in log space.
"""

from dataclasses import dataclass
from functools import lru_cache

import numpy as np
from scipy import stats
from scipy.special import gammaln

from .colored_tree import ColoredTree, Host
from .exceptions import InputValidationError, NumericalInstabilityError
from .utils.types import FloatArray

DEFAULT_DELTA_T = 0.01
DEFAULT_MAX_STEPS = 8192
_PI_EPS = 1e-12
_GRID_BLOCK = 256


@dataclass(frozen=True)
class LikelihoodTerms:
    """The two additive terms of a colored-tree log-likelihood."""

    genealogical: float
    epidemiological: float

    @property
    def total(self) -> float:
        """Full log-likelihood."""
        return self.genealogical + self.epidemiological


@lru_cache(maxsize=64)
def _unobserved_grid(
    off_r: float,
    off_p: float,
    pi: float,
    w_shape: float,
    w_scale: float,
    ws_shape: float,
    ws_scale: float,
    delta_t: float,
    n_steps: int,
) -> tuple[FloatArray, FloatArray, FloatArray, FloatArray]:
    """Probabilities that hosts and their offspring go unobserved.

    Grid point ``k`` stands for infection at ``date_t - k * delta_t``.
    ``omega[k]`` is the probability that a host infected then is neither
    sampled nor has a sampled descendant before ``date_t``; ``alpha[k]`` is the
    probability that one of its offspring is unobserved, either because it is
    infected after ``date_t`` or because ``omega`` holds for it.

    Returns ``omega``, ``alpha``, the generation-interval CDF at the grid lags
    and the generation-interval mass of each grid step.
    """
    lags = np.arange(n_steps + 1) * delta_t
    w_cdf = stats.gamma.cdf(lags, a=w_shape, scale=w_scale)
    w_mass = np.diff(w_cdf)
    not_sampled = 1.0 - pi * stats.gamma.cdf(lags, a=ws_shape, scale=ws_scale)

    omega = np.empty(n_steps + 1)
    alpha = np.empty(n_steps + 1)
    alpha[0] = 1.0
    omega[0] = not_sampled[0]
    for k in range(1, n_steps + 1):
        a = 1.0 - w_cdf[k] + np.dot(w_mass[:k], omega[k - 1 :: -1])
        alpha[k] = min(max(a, 0.0), 1.0)
        # negative binomial probability generating function at alpha
        omega[k] = not_sampled[k] * ((1.0 - off_p) / (1.0 - off_p * alpha[k])) ** off_r

    for arr in (omega, alpha, w_cdf, w_mass):
        arr.setflags(write=False)
    return omega, alpha, w_cdf, w_mass


def _host_coalescent(host: Host, neg: float) -> float:
    events = [(t, 1) for t in host.tip_times] + [(t, -1) for t in host.coalescence_times]
    events.sort(key=lambda e: (-e[0], e[1]))
    log_lik = 0.0
    lineages = 0
    previous = events[0][0]
    for time, change in events:
        log_lik -= 0.5 * lineages * (lineages - 1) * (previous - time) / neg
        if change < 0:
            log_lik -= np.log(neg)
        lineages += change
        previous = time
    return log_lik


class LikelihoodEngine:
    """Scores colored trees for one study window.

    Parameters
    ----------
    date_t : float
        End of the study; no sample is later.
    delta_t : float, optional
        Step of the time grid used to integrate out unobserved hosts.
        Default is 0.01.
    max_steps : int, optional
        Longest grid, in steps of ``delta_t``, that the engine will build.
        Colorings with an infection earlier than
        ``date_t - max_steps * delta_t`` have zero probability. Default is 8192.

    Notes
    -----
    The engine is deterministic. The grid of unobserved-host probabilities
    depends only on the parameters and is memoised, so scoring a tree move
    with unchanged parameters does not rebuild it.
    """

    def __init__(
        self, date_t: float, delta_t: float = DEFAULT_DELTA_T, max_steps: int = DEFAULT_MAX_STEPS
    ):
        if not np.isfinite(date_t):
            raise InputValidationError("The end of the study date_t must be finite.")
        if not delta_t > 0:
            raise InputValidationError("delta_t must be positive.")
        if max_steps < 1:
            raise InputValidationError("max_steps must be at least 1.")
        self.date_t = float(date_t)
        self.delta_t = float(delta_t)
        self.max_steps = int(max_steps)

    def __repr__(self) -> str:
        """String representation of the engine."""
        return (
            f"LikelihoodEngine(date_t={self.date_t}, delta_t={self.delta_t}, "
            f"max_steps={self.max_steps})"
        )

    def genealogical_term(self, tree: ColoredTree, neg: float) -> float:
        """Log-probability of the within-host genealogies given ``neg``."""
        if not neg > 0:
            return -np.inf
        return float(sum(_host_coalescent(host, neg) for host in tree.hosts))

    def epidemiological_term(self, tree: ColoredTree, parameters) -> float:
        """Log-probability of the transmission tree given the parameters."""
        off_r = parameters["off.r"]
        off_p = parameters["off.p"]
        if not (off_r > 0 and 0 < off_p < 1):
            return -np.inf
        pi = min(max(parameters["pi"], _PI_EPS), 1.0 - _PI_EPS)
        w_shape, w_scale = parameters["w.shape"], parameters["w.scale"]
        ws_shape, ws_scale = parameters["ws.shape"], parameters["ws.scale"]

        hosts = tree.hosts
        infection = np.array([h.infection_time for h in hosts])
        n_steps = self._grid_size(infection.min())
        if n_steps is None:
            return -np.inf
        omega, alpha, w_cdf, w_mass = _unobserved_grid(
            off_r, off_p, pi, w_shape, w_scale, ws_shape, ws_scale, self.delta_t, n_steps
        )
        grid_pos = (self.date_t - infection) / self.delta_t

        n_offspring = np.array([len(h.infectees) for h in hosts], dtype=float)
        unobserved = np.interp(grid_pos, np.arange(n_steps + 1), alpha)
        for i, host in enumerate(hosts):
            if host.sampled:
                unobserved[i] = self._alpha_until_removal(host, grid_pos[i], omega, w_cdf, w_mass)

        log_lik = np.sum(
            off_r * np.log1p(-off_p)
            + n_offspring * np.log(off_p)
            + gammaln(off_r + n_offspring)
            - gammaln(off_r)
            - (off_r + n_offspring) * np.log1p(-off_p * unobserved)
        )

        intervals = np.array(
            [t - h.infection_time for h in hosts for t in h.transmission_times]
        )
        if intervals.size:
            log_lik += np.sum(stats.gamma.logpdf(intervals, a=w_shape, scale=w_scale))

        sampled = np.array([h.sampled for h in hosts])
        if sampled.any():
            delays = np.array([h.removal_time - h.infection_time for h in hosts if h.sampled])
            log_lik += sampled.sum() * np.log(pi)
            log_lik += np.sum(stats.gamma.logpdf(delays, a=ws_shape, scale=ws_scale))
        if not sampled.all():
            window = self.date_t - infection[~sampled]
            log_lik += np.sum(
                np.log1p(-pi * stats.gamma.cdf(window, a=ws_shape, scale=ws_scale))
            )
        return float(log_lik)

    def log_likelihood(self, tree: ColoredTree, parameters) -> float:
        """Full log-likelihood of ``tree`` under ``parameters``."""
        return self.genealogical_term(tree, parameters["neg"]) + self.epidemiological_term(
            tree, parameters
        )

    def score(self, tree: ColoredTree, parameters) -> LikelihoodTerms:
        """Both likelihood terms, checked to be finite.

        Raises
        ------
        NumericalInstabilityError
            If either term is not finite.
        """
        terms = LikelihoodTerms(
            genealogical=self.genealogical_term(tree, parameters["neg"]),
            epidemiological=self.epidemiological_term(tree, parameters),
        )
        if not np.isfinite(terms.total):
            raise NumericalInstabilityError(
                f"Non-finite log-likelihood (genealogical={terms.genealogical}, "
                f"epidemiological={terms.epidemiological})."
            )
        return terms

    def _grid_size(self, earliest: float) -> int | None:
        """Grid length reaching back to ``earliest``; None past ``max_steps``."""
        needed = int(np.ceil((self.date_t - earliest) / self.delta_t)) + 2
        if needed > self.max_steps:
            return None
        return min(_GRID_BLOCK * int(np.ceil(needed / _GRID_BLOCK)), self.max_steps)

    def _alpha_until_removal(
        self,
        host: Host,
        grid_pos: float,
        omega: FloatArray,
        w_cdf: FloatArray,
        w_mass: FloatArray,
    ) -> float:
        """Offspring-unobserved probability for a host removed when sampled.

        Offspring due after the removal never happen and count as unobserved.
        """
        k = int(round(grid_pos))
        steps = min(int((host.removal_time - host.infection_time) / self.delta_t), k)
        a = 1.0 - w_cdf[steps] + np.dot(w_mass[:steps], omega[k - steps : k][::-1])
        return min(max(a, 0.0), 1.0)
