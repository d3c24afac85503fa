import torch

from ._errors import InvariantViolation


def _check_spin_energy_input(charge_per_shell: torch.Tensor, shift_per_shell: torch.Tensor) -> None:
    if tuple(charge_per_shell.shape) != tuple(shift_per_shell.shape):
        raise InvariantViolation(
            f"Charge {tuple(charge_per_shell.shape)} and shift "
            f"{tuple(shift_per_shell.shape)} shapes differ"
        )
    if charge_per_shell.dim() != 3:
        raise InvariantViolation(
            f"Expected (shell, atom, spin) arrays, got {tuple(charge_per_shell.shape)}"
        )
    n_spin = charge_per_shell.shape[-1]
    if not 1 < n_spin < 5:
        raise InvariantViolation(
            f"Spin energy needs 2 to 4 spin components, got {n_spin}"
        )


def get_spin_energy_total(
    charge_per_shell: torch.Tensor, shift_per_shell: torch.Tensor
) -> torch.Tensor:
    """
    Total spin polarisation energy  sum_{l,a,s} q[l,a,s] * shift[l,a,s].

    Both arrays are (max_shells, n_atoms, n_spin) in charge/magnetisation
    form. The charge component of ``shift_per_shell`` must be zero, which
    holds for shifts built by ``get_spin_shift``.
    """
    _check_spin_energy_input(charge_per_shell, shift_per_shell)
    return torch.sum(charge_per_shell * shift_per_shell)


def get_spin_energy_atom(
    charge_per_shell: torch.Tensor, shift_per_shell: torch.Tensor
) -> torch.Tensor:
    """Atom resolved spin energy, shape (n_atoms,). Sums to ``get_spin_energy_total``."""
    _check_spin_energy_input(charge_per_shell, shift_per_shell)
    return (charge_per_shell * shift_per_shell).sum(dim=2).sum(dim=0)


def get_band_energy(eigenvalues: torch.Tensor, occupations: torch.Tensor) -> torch.Tensor:
    """Band structure energy  sum_i f_i eps_i  over all channels."""
    return torch.sum(occupations * eigenvalues)
