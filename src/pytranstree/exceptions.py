"""Custom exceptions for pyTransTree.

This module defines the exception hierarchy for the pyTransTree package,
providing specific error types for the different failure modes of a joint
transmission-tree inference run.
"""


class PyTransTreeError(Exception):
    """Base exception class for all pyTransTree-specific errors.

    This is the root exception class from which all other pyTransTree
    exceptions inherit. It can be used to catch any pyTransTree-related
    error in a general exception handler.
    """

    pass


class InputValidationError(PyTransTreeError, ValueError):
    """Raised when an input phylogeny or run setting is malformed.

    This exception is raised before any chain starts when:
    - Node times do not strictly increase from the root to the leaves
    - The topology is disconnected, not binary, or has several roots
    - A leaf is sampled after the end of the study
    - Run settings (iterations, thinning, field names) are invalid

    Parameters
    ----------
    msg : str, optional
        Human-readable error message describing the input problem.
    """

    def __init__(self, msg="Invalid phylogeny or sampler input"):
        super().__init__(msg)


class InvalidMoveError(PyTransTreeError):
    """Raised when a proposed tree edit breaks a colored-tree invariant.

    Never surfaced to callers: the proposal machinery turns it into a
    rejection of the move.
    """

    pass


class NumericalInstabilityError(PyTransTreeError):
    """Raised when a log-likelihood evaluates to a non-finite value.

    The sampler treats the proposal that produced it as rejected.
    """

    pass


class SharingMaskMismatchError(PyTransTreeError):
    """Raised when datasets disagree on which parameters are shared."""

    def __init__(self, msg="Datasets disagree on the set of shared parameters"):
        super().__init__(msg)
