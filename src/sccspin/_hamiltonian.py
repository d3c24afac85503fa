import torch

from ._errors import InvariantViolation
from ._layout import OrbitalLayout
from ._spin import to_up_down_


def shell_shift_to_matrix(
    shift: torch.Tensor, layout: OrbitalLayout, S: torch.Tensor
) -> torch.Tensor:
    """
    Matrix form  0.5 * S_mu,nu * (V_mu + V_nu)  of a shell resolved potential.

    Parameters
    ----------
    shift : torch.Tensor, shape (max_shells, n_atoms)
        One spin component of a shell shift.
    S : torch.Tensor, shape (n_orbitals, n_orbitals)
        Overlap matrix.
    """
    mu = layout.shell_to_orbital(shift)
    MU = mu.unsqueeze(0).expand(len(mu), -1)
    NU = mu.unsqueeze(1).expand(-1, len(mu))
    return 0.5 * S * (MU + NU)


def build_hamiltonian(
    H0: torch.Tensor, S: torch.Tensor, shift: torch.Tensor, layout: OrbitalLayout
) -> torch.Tensor:
    """
    Hamiltonian in the form the eigensolver consumes.

    Parameters
    ----------
    H0 : torch.Tensor, shape (N, N)
        Non-SCC Hamiltonian.
    S : torch.Tensor, shape (N, N)
        Overlap.
    shift : torch.Tensor, shape (max_shells, n_atoms, n_spin)
        Total shell shift in charge/magnetisation form.

    Returns
    -------
    H : torch.Tensor
        (1, N, N) for n_spin = 1, (2, N, N) up/down for n_spin = 2, and the
        complex (1, 2N, 2N) Pauli spinor Hamiltonian for n_spin = 4, i.e.
        H = Hq x 1 + Hx x sx + Hy x sy + Hz x sz.
    """
    n_spin = shift.shape[-1]
    if n_spin not in (1, 2, 4):
        raise InvariantViolation(f"Shift must have 1, 2 or 4 spin components, got {n_spin}")

    H_q = H0 + shell_shift_to_matrix(shift[..., 0], layout, S)
    if n_spin == 1:
        return H_q.unsqueeze(0)

    if n_spin == 2:
        H_m = shell_shift_to_matrix(shift[..., 1], layout, S)
        # factor 2 so that up/down become H_q +- H_m
        H = torch.stack((2.0 * H_q, 2.0 * H_m), dim=-1)
        to_up_down_(H)
        return H.permute(2, 0, 1).contiguous()

    H_x, H_y, H_z = (
        shell_shift_to_matrix(shift[..., i], layout, S) for i in (1, 2, 3)
    )
    zero = torch.zeros_like(H_q)
    top = torch.cat((torch.complex(H_q + H_z, zero), torch.complex(H_x, -H_y)), dim=1)
    bottom = torch.cat((torch.complex(H_x, H_y), torch.complex(H_q - H_z, zero)), dim=1)
    return torch.cat((top, bottom), dim=0).unsqueeze(0)


def spinor_overlap(S: torch.Tensor) -> torch.Tensor:
    """Block diagonal overlap of the two component spinor basis."""
    return torch.block_diag(S, S)
