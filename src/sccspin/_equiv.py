import torch

from ._errors import ConfigurationError, InvariantViolation
from ._layout import OrbitalLayout


def get_orbital_equiv(layout: OrbitalLayout, n_spin: int) -> torch.Tensor:
    """
    Equivalence classes of the orbitals under the spin interaction.

    Within the first spin channel all orbitals of one shell of one atom share an
    id; ids run 1, 2, ... shell by shell, atom by atom, and are never reused.
    Every further spin channel repeats the pattern of the first one, offset by
    the largest id assigned so far, so equal orbitals of different channels are
    never merged. Padding beyond the orbitals of an atom stays 0.

    Only orbitals inside a shell are assumed equivalent; shells are never merged
    even if their coupling constants happen to coincide.

    Parameters
    ----------
    layout : OrbitalLayout
    n_spin : int
        Number of spin channels, 1, 2 or 4.

    Returns
    -------
    equiv : torch.LongTensor, shape (max_orbitals, n_atoms, n_spin)
    """
    if n_spin not in (1, 2, 4):
        raise InvariantViolation(f"n_spin must be 1, 2 or 4, got {n_spin}")

    equiv = torch.zeros(layout.max_orbitals, layout.n_atoms, n_spin, dtype=torch.int64)

    # first id of every atom
    atom_offset = torch.cumsum(layout.n_shells_per_atom, dim=0) - layout.n_shells_per_atom
    equiv[layout.orbital_local, layout.orbital_atom, 0] = (
        1 + atom_offset[layout.orbital_atom] + layout.orbital_shell
    )

    assigned = equiv[..., 0] != 0
    for i_spin in range(1, n_spin):
        ind = equiv.max()
        equiv[..., i_spin] = torch.where(assigned, equiv[..., 0] + ind, 0)

    return equiv


def _check_congruent(x: torch.Tensor, equiv: torch.Tensor) -> None:
    if tuple(x.shape) != tuple(equiv.shape):
        raise ConfigurationError(
            f"Array shape {tuple(x.shape)} does not match equivalence map {tuple(equiv.shape)}"
        )


def reduce_by_equiv(x: torch.Tensor, equiv: torch.Tensor) -> torch.Tensor:
    """
    Compress a per-orbital array to one value per equivalence class.

    Members of a class are summed, so the reduced vector keeps the total charge.

    Returns
    -------
    reduced : torch.Tensor, shape (max(equiv),)
    """
    _check_congruent(x, equiv)
    mask = equiv > 0
    reduced = x.new_zeros(int(equiv.max()))
    reduced.index_add_(0, equiv[mask] - 1, x[mask])
    return reduced


def expand_by_equiv(reduced: torch.Tensor, equiv: torch.Tensor) -> torch.Tensor:
    """
    Inverse of ``reduce_by_equiv``: share every class value evenly among its members.

    Returns
    -------
    x : torch.Tensor, same shape as ``equiv`` with zeros on the padding.
    """
    n_class = int(equiv.max())
    if reduced.dim() != 1 or reduced.shape[0] != n_class:
        raise ConfigurationError(
            f"Reduced vector must have {n_class} entries, got {tuple(reduced.shape)}"
        )
    mask = equiv > 0
    ids = equiv[mask] - 1
    counts = torch.bincount(ids, minlength=n_class).to(reduced.dtype)
    x = reduced.new_zeros(equiv.shape)
    x[mask] = (reduced / counts)[ids]
    return x
