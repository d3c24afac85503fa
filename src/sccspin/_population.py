import math
from typing import Tuple

import torch

from ._errors import ConfigurationError, InvariantViolation


kB = 8.61739e-5  # eV/K


def fermi_occupations(
    eigenvalues: torch.Tensor,
    n_electrons: float,
    Te: float,
    max_occ: float,
    eps: float = 1e-12,
    MaxIt: int = 200,
    degeneracy_tol: float = 1e-9,
) -> Tuple[torch.Tensor, torch.Tensor]:
    """
    Fill the levels of all channels up to a common Fermi level.

    Parameters
    ----------
    eigenvalues : torch.Tensor, shape (n_channels, M)
        Eigenvalues in eV.
    n_electrons : float
        Total number of electrons over all channels.
    Te : float
        Electronic temperature in Kelvin. ``Te == 0`` fills levels in order of
        energy; electrons left for a degenerate set of levels at the Fermi level
        are shared equally among them.
    max_occ : float
        Occupation of a completely filled level (2 closed shell, 1 otherwise).
    eps, MaxIt :
        Tolerance on the electron count and maximum number of bisection steps
        for ``Te > 0``.

    Returns
    -------
    occ : torch.Tensor, same shape as ``eigenvalues``
    mu0 : torch.Tensor
        Fermi level (0-dim).
    """
    capacity = max_occ * eigenvalues.numel()
    if n_electrons < 0 or n_electrons > capacity + 1e-12:
        raise ConfigurationError(
            f"Cannot place {n_electrons} electrons into {eigenvalues.numel()} levels "
            f"of occupation {max_occ}"
        )

    flat = eigenvalues.flatten()
    if Te == 0.0:
        e_sorted, _ = torch.sort(flat, stable=True)
        if n_electrons <= 0:
            return torch.zeros_like(eigenvalues), e_sorted[0]
        k = min(max(math.ceil(n_electrons / max_occ - 1e-12) - 1, 0), len(e_sorted) - 1)
        mu0 = e_sorted[k]
        below = flat < mu0 - degeneracy_tol
        at = (flat - mu0).abs() <= degeneracy_tol
        remaining = n_electrons - max_occ * below.sum()
        occ = below.to(eigenvalues.dtype) * max_occ
        occ[at] = remaining / at.sum()
        return occ.view_as(eigenvalues), mu0

    beta = 1.0 / (kB * Te)
    lo = flat.min() - 50.0 / beta
    hi = flat.max() + 50.0 / beta
    OccErr = 1.0
    Cnt = 0
    while OccErr > eps and Cnt < MaxIt:
        mu0 = 0.5 * (lo + hi)
        occ = max_occ * torch.sigmoid(-beta * (flat - mu0))
        n_occ = occ.sum()
        if n_occ > n_electrons:
            hi = mu0
        else:
            lo = mu0
        OccErr = abs(float(n_occ) - n_electrons)
        Cnt += 1
    return occ.view_as(eigenvalues), mu0


def get_electronic_entropy(occupations: torch.Tensor, max_occ: float) -> torch.Tensor:
    """Electronic entropy S in eV/K of the (fractional) occupations."""
    if torch.get_default_dtype() == torch.float32:
        eps = 1e-7
    else:
        eps = 1e-12
    f = occupations / max_occ
    mask = (f > eps) & (f < 1 - eps)
    f_safe = f.clamp(eps, 1 - eps)  # avoid log(0)
    term = f_safe * torch.log(f_safe) + (1 - f_safe) * torch.log(1 - f_safe)
    return -kB * max_occ * (term * mask).sum()


class MullikenPopulation:
    """
    Orbital resolved Mulliken populations  q_mu = sum_nu D_mu,nu S_nu,mu.

    The channel layout of the eigenvectors decides the output:

    * (1, N, N): closed shell, returns (N, 1) populations.
    * (2, N, N): collinear spin, returns (N, 2) up/down populations.
    * (1, 2N, 2N) spinors (up block first): returns (N, 4) as
      (charge, m_x, m_y, m_z).
    """

    def __call__(
        self,
        eigenvectors: torch.Tensor,
        occupations: torch.Tensor,
        overlap: torch.Tensor,
    ) -> torch.Tensor:
        n_orb = overlap.shape[-1]
        if eigenvectors.dim() != 3 or occupations.shape != eigenvectors.shape[:2]:
            raise InvariantViolation(
                f"Eigenvectors {tuple(eigenvectors.shape)} and occupations "
                f"{tuple(occupations.shape)} are not congruent"
            )

        C = eigenvectors
        D = torch.matmul(C * occupations.unsqueeze(-2).to(C.dtype), C.transpose(-1, -2).conj())

        if C.shape[-1] == n_orb:
            DS = (D * overlap.transpose(-1, -2).to(D.dtype)).sum(dim=-1).real  # diag(D @ S)
            return DS.transpose(0, 1).contiguous()

        if C.shape[0] != 1 or C.shape[-1] != 2 * n_orb:
            raise InvariantViolation(
                f"Cannot map eigenvectors {tuple(C.shape)} onto {n_orb} orbitals"
            )
        D = D[0]
        S = overlap.to(D.dtype)

        def block_pop(block):
            return (block * S.transpose(-1, -2)).sum(dim=-1)

        uu = block_pop(D[:n_orb, :n_orb])
        ud = block_pop(D[:n_orb, n_orb:])
        du = block_pop(D[n_orb:, :n_orb])
        dd = block_pop(D[n_orb:, n_orb:])
        q = (uu + dd).real
        mx = (ud + du).real
        my = (1j * (ud - du)).real
        mz = (uu - dd).real
        return torch.stack((q, mx, my, mz), dim=-1)
