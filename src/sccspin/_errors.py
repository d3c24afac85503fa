from typing import Optional, Tuple


class SCCError(Exception):
    """Base class for all errors raised by the SCC engine."""


class ConfigurationError(SCCError, ValueError):
    """Invalid parameters or incongruent input shapes, detected before the loop starts."""


class InvariantViolation(SCCError, AssertionError):
    """
    Internal shape/size assertion failure.

    Parameters
    ----------
    message : str
        Human readable description.
    index : tuple of int, optional
        (shell or orbital, atom, spin) of the offending entry where known.
    """

    def __init__(self, message: str, index: Optional[Tuple[int, ...]] = None):
        if index is not None:
            message = f"{message} (at index {index})"
        super().__init__(message)
        self.index = index


class NumericalFailure(SCCError, RuntimeError):
    """The eigensolver reported a nonzero status or the charges went non-finite. The SCC loop is aborted."""

    def __init__(self, status: int, iteration: int, message: str = ""):
        text = f"Eigensolver failed with status {status} in SCC iteration {iteration}"
        if message:
            text = f"{text}: {message}"
        super().__init__(text)
        self.status = status
        self.iteration = iteration


class ConvergenceFailure(SCCError, RuntimeError):
    """
    Residual still above tolerance after the maximum number of SCC iterations.

    The last available (non-converged) result is attached as ``result`` so
    callers can decide to accept it.
    """

    def __init__(self, residual: float, iterations: int, result=None):
        super().__init__(
            "SCC did not converge in {} iterations, residual = {:.6e}".format(
                iterations, residual
            )
        )
        self.residual = residual
        self.iterations = iterations
        self.result = result
