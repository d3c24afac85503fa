from typing import Tuple

import torch


# @torch.compile
def overlap_power(S: torch.Tensor, power: float = -0.5) -> Tuple[torch.Tensor, torch.Tensor]:
    """
    Fractional power S**power of a symmetric (Hermitian) overlap matrix.

    One eigendecomposition serves both the power and the positive definiteness
    check of the caller, so the smallest eigenvalue is returned as well. For
    negative powers eigenvalues below machine epsilon are clamped.

    Parameters
    ----------
    S : torch.Tensor, shape (..., n, n)
    power : float, default -0.5
        -0.5 gives the Loewdin orthogonaliser.

    Returns
    -------
    S_power : torch.Tensor, shape (..., n, n)
        Q diag(w**power) Q^H.
    s_min : torch.Tensor
        Smallest eigenvalue of S (before clamping).
    """
    w, Q = torch.linalg.eigh(S)
    s_min = w.min()

    eps = torch.finfo(w.dtype).eps
    d = torch.clamp(w, min=eps).pow(power).to(Q.dtype)

    # column-scale Q instead of forming diag(d)
    return (Q * d.unsqueeze(-2)) @ Q.transpose(-2, -1).conj(), s_min
