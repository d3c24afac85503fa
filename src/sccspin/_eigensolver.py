from typing import NamedTuple

import numpy as np
import scipy.linalg
import torch

from ._tools import overlap_power


# Status codes reported in EigenResult.status
EIGEN_OK = 0
EIGEN_LINALG_ERROR = 1
EIGEN_NONFINITE = 2
EIGEN_OVERLAP_NOT_SPD = 3


class EigenResult(NamedTuple):
    """
    Output of an eigensolver call.

    eigenvalues : (n_channels, M) real tensor, ascending per channel
    eigenvectors : (n_channels, M, M) tensor, columns are S-orthonormal eigenvectors
    status : int, 0 on success
    message : str, diagnostic for a nonzero status
    """

    eigenvalues: torch.Tensor
    eigenvectors: torch.Tensor
    status: int = EIGEN_OK
    message: str = ""


def _failed(hamiltonian: torch.Tensor, status: int, message: str) -> EigenResult:
    n_ch, m = hamiltonian.shape[0], hamiltonian.shape[-1]
    return EigenResult(
        torch.full((n_ch, m), float("nan"), dtype=hamiltonian.real.dtype),
        torch.full_like(hamiltonian, float("nan")),
        status,
        message,
    )


class TorchEigensolver:
    """
    Generalised Hermitian eigensolver  H C = S C e  via Loewdin orthogonalisation.

    The orthogonaliser Z = S^(-1/2) is applied as Z^T H Z, the orthogonal problem
    is solved with ``torch.linalg.eigh`` (batched over the channel axis) and the
    eigenvectors are back-transformed, C = Z V. Errors never escape as
    exceptions; they are reported through ``EigenResult.status``.

    Parameters
    ----------
    overlap_tol : float
        Smallest accepted overlap eigenvalue.
    """

    def __init__(self, overlap_tol: float = 1e-10):
        self.overlap_tol = overlap_tol

    def __call__(self, hamiltonian: torch.Tensor, overlap: torch.Tensor) -> EigenResult:
        try:
            Z, s_min = overlap_power(overlap, -0.5)
            if s_min <= self.overlap_tol:
                return _failed(
                    hamiltonian,
                    EIGEN_OVERLAP_NOT_SPD,
                    f"Overlap matrix is not SPD (min eigenvalue={float(s_min):.3e})",
                )
            Z = Z.to(hamiltonian.dtype)
            h_orth = Z.transpose(-2, -1) @ hamiltonian @ Z
            h_orth = 0.5 * (h_orth + h_orth.transpose(-2, -1).conj())
            e, v = torch.linalg.eigh(h_orth)
        except RuntimeError as exc:  # torch.linalg.LinAlgError is a RuntimeError
            return _failed(hamiltonian, EIGEN_LINALG_ERROR, str(exc))

        C = Z @ v
        if not (torch.isfinite(e).all() and torch.isfinite(C).all()):
            return _failed(hamiltonian, EIGEN_NONFINITE, "Non-finite eigenpairs")
        return EigenResult(e, C)


class ScipyEigensolver:
    """Same contract as ``TorchEigensolver`` using ``scipy.linalg.eigh(H, S)`` per channel."""

    def __call__(self, hamiltonian: torch.Tensor, overlap: torch.Tensor) -> EigenResult:
        s_np = overlap.detach().cpu().numpy()
        e_all, c_all = [], []
        for h in hamiltonian:
            try:
                e, c = scipy.linalg.eigh(h.detach().cpu().numpy(), s_np)
            except (np.linalg.LinAlgError, ValueError) as exc:
                return _failed(hamiltonian, EIGEN_LINALG_ERROR, str(exc))
            e_all.append(e)
            c_all.append(c)

        e = torch.from_numpy(np.stack(e_all)).to(hamiltonian.device)
        C = torch.from_numpy(np.stack(c_all)).to(hamiltonian.device)
        if not (torch.isfinite(e).all() and torch.isfinite(C).all()):
            return _failed(hamiltonian, EIGEN_NONFINITE, "Non-finite eigenpairs")
        return EigenResult(e.to(hamiltonian.real.dtype), C.to(hamiltonian.dtype))
