from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence, Tuple, Union

import torch

from ._errors import ConfigurationError


@dataclass(frozen=True, eq=False)
class Species:
    """
    One chemical species of the tight-binding basis.

    Parameters
    ----------
    name : str
        Element label, e.g. ``"C"``.
    ang_momenta : sequence of int
        Angular momentum of every shell, e.g. ``(0, 1)`` for an sp basis.
    spin_w : float or (n_shells, n_shells) array-like
        Shell x shell spin coupling constants W. A scalar is used for all
        shell pairs. Must be symmetric.
    """

    name: str
    ang_momenta: Tuple[int, ...]
    spin_w: Union[float, torch.Tensor] = 0.0

    def __post_init__(self):
        ang = tuple(int(l) for l in self.ang_momenta)
        if len(ang) == 0 or any(l < 0 for l in ang):
            raise ConfigurationError(
                f"Species {self.name}: needs at least one shell with l >= 0, got {ang}"
            )
        object.__setattr__(self, "ang_momenta", ang)

        w = torch.as_tensor(self.spin_w, dtype=torch.get_default_dtype())
        if w.dim() == 0:
            w = w * torch.ones(len(ang), len(ang), dtype=w.dtype)
        if w.shape != (len(ang), len(ang)):
            raise ConfigurationError(
                f"Species {self.name}: spin W must be {len(ang)}x{len(ang)}, got {tuple(w.shape)}"
            )
        if not torch.allclose(w, w.T):
            raise ConfigurationError(f"Species {self.name}: spin W is not symmetric")
        object.__setattr__(self, "spin_w", w)

    @property
    def n_shells(self) -> int:
        return len(self.ang_momenta)

    @property
    def n_orbitals(self) -> int:
        return sum(2 * l + 1 for l in self.ang_momenta)

    @property
    def orbital_shell(self) -> torch.Tensor:
        """Shell index of every orbital of the species."""
        n_orb_per_shell = torch.tensor([2 * l + 1 for l in self.ang_momenta])
        return torch.repeat_interleave(torch.arange(self.n_shells), n_orb_per_shell)


@dataclass(frozen=True, eq=False)
class OrbitalLayout:
    """
    Orbital / shell / atom bookkeeping of one system. Immutable for a run.

    Per-orbital quantities are stored either flat, shape ``(n_orbitals, ...)``
    in basis order (atom by atom, shells in order, 2l+1 orbitals per shell), or
    padded, shape ``(max_orbitals, n_atoms, ...)``. Per-shell quantities are
    padded as ``(max_shells, n_atoms, ...)``. Padding entries are zero.

    Parameters
    ----------
    species : sequence of Species
        Species table.
    atom_species : sequence of int
        Index into ``species`` for every atom.
    """

    species: Tuple[Species, ...]
    atom_species: torch.Tensor
    n_atoms: int = field(init=False)
    n_orbitals: int = field(init=False)
    max_orbitals: int = field(init=False)
    max_shells: int = field(init=False)
    n_orbitals_per_atom: torch.Tensor = field(init=False)
    n_shells_per_atom: torch.Tensor = field(init=False)
    orbital_start: torch.Tensor = field(init=False)
    orbital_atom: torch.Tensor = field(init=False)
    orbital_local: torch.Tensor = field(init=False)
    orbital_shell: torch.Tensor = field(init=False)

    def __post_init__(self):
        species = tuple(self.species)
        if len(species) == 0:
            raise ConfigurationError("At least one species is required")
        object.__setattr__(self, "species", species)

        atom_species = torch.as_tensor(self.atom_species, dtype=torch.int64).flatten()
        if atom_species.numel() == 0:
            raise ConfigurationError("At least one atom is required")
        bad = (atom_species < 0) | (atom_species >= len(species))
        if bad.any():
            iat = int(torch.nonzero(bad)[0])
            raise ConfigurationError(
                f"Atom {iat} has invalid species index {int(atom_species[iat])}"
            )
        object.__setattr__(self, "atom_species", atom_species)

        n_orb_sp = torch.tensor([sp.n_orbitals for sp in species], dtype=torch.int64)
        n_sh_sp = torch.tensor([sp.n_shells for sp in species], dtype=torch.int64)
        n_orbitals_per_atom = n_orb_sp[atom_species]
        n_shells_per_atom = n_sh_sp[atom_species]

        orbital_start = torch.zeros_like(n_orbitals_per_atom)
        orbital_start[1:] = torch.cumsum(n_orbitals_per_atom, dim=0)[:-1]

        n_atoms = len(atom_species)
        orbital_atom = torch.repeat_interleave(
            torch.arange(n_atoms), n_orbitals_per_atom
        )  # Generate atom index for each orbital
        orbital_local = torch.arange(len(orbital_atom)) - orbital_start[orbital_atom]
        orbital_shell = torch.cat(
            [species[int(isp)].orbital_shell for isp in atom_species]
        )

        object.__setattr__(self, "n_atoms", n_atoms)
        object.__setattr__(self, "n_orbitals", int(n_orbitals_per_atom.sum()))
        object.__setattr__(self, "max_orbitals", int(n_orb_sp.max()))
        object.__setattr__(self, "max_shells", int(n_sh_sp.max()))
        object.__setattr__(self, "n_orbitals_per_atom", n_orbitals_per_atom)
        object.__setattr__(self, "n_shells_per_atom", n_shells_per_atom)
        object.__setattr__(self, "orbital_start", orbital_start)
        object.__setattr__(self, "orbital_atom", orbital_atom)
        object.__setattr__(self, "orbital_local", orbital_local)
        object.__setattr__(self, "orbital_shell", orbital_shell)

    @classmethod
    def from_species(cls, species: Sequence[Species], atom_species: Sequence[int]):
        return cls(tuple(species), torch.as_tensor(atom_species, dtype=torch.int64))

    def spin_w(self) -> torch.Tensor:
        """Spin coupling constants stacked per species, shape (n_species, max_shells, max_shells)."""
        w = torch.zeros(
            len(self.species), self.max_shells, self.max_shells,
            dtype=torch.get_default_dtype(),
        )
        for isp, sp in enumerate(self.species):
            w[isp, : sp.n_shells, : sp.n_shells] = sp.spin_w
        return w

    def pack_orbitals(self, vec: torch.Tensor) -> torch.Tensor:
        """(n_orbitals, ...) flat basis vector -> (max_orbitals, n_atoms, ...) padded array."""
        if vec.shape[0] != self.n_orbitals:
            raise ConfigurationError(
                f"Expected {self.n_orbitals} orbitals on the leading axis, got {vec.shape[0]}"
            )
        out = vec.new_zeros((self.max_orbitals, self.n_atoms) + tuple(vec.shape[1:]))
        local, atom = self._orbital_index(vec.device)
        out[local, atom] = vec
        return out

    def unpack_orbitals(self, arr: torch.Tensor) -> torch.Tensor:
        """(max_orbitals, n_atoms, ...) padded array -> (n_orbitals, ...) flat basis vector."""
        self.check_orbital_shape(arr)
        local, atom = self._orbital_index(arr.device)
        return arr[local, atom]

    def orbital_to_shell(self, arr: torch.Tensor) -> torch.Tensor:
        """Sum a padded per-orbital array into a padded per-shell array."""
        self.check_orbital_shape(arr)
        rest = tuple(arr.shape[2:])
        local, atom = self._orbital_index(arr.device)
        vals = arr[local, atom]
        flat_idx = self.orbital_shell.to(arr.device) * self.n_atoms + atom
        out = arr.new_zeros((self.max_shells * self.n_atoms,) + rest)
        out.index_add_(0, flat_idx, vals)
        return out.view((self.max_shells, self.n_atoms) + rest)

    def shell_to_orbital(self, arr: torch.Tensor) -> torch.Tensor:
        """Broadcast a padded per-shell array onto the flat basis, shape (n_orbitals, ...)."""
        self.check_shell_shape(arr)
        return arr[self.orbital_shell.to(arr.device), self.orbital_atom.to(arr.device)]

    def _orbital_index(self, device):
        # index maps live on the CPU; move them next to the data
        return self.orbital_local.to(device), self.orbital_atom.to(device)

    def check_orbital_shape(self, arr: torch.Tensor) -> None:
        if tuple(arr.shape[:2]) != (self.max_orbitals, self.n_atoms):
            raise ConfigurationError(
                f"Per-orbital array must start with ({self.max_orbitals}, {self.n_atoms}), "
                f"got {tuple(arr.shape)}"
            )

    def check_shell_shape(self, arr: torch.Tensor) -> None:
        if tuple(arr.shape[:2]) != (self.max_shells, self.n_atoms):
            raise ConfigurationError(
                f"Per-shell array must start with ({self.max_shells}, {self.n_atoms}), "
                f"got {tuple(arr.shape)}"
            )
