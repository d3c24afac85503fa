import torch

from ._errors import ConfigurationError
from ._layout import OrbitalLayout


class GammaShiftBuilder:
    """
    Second order charge shift from a precomputed gamma (Coulomb) matrix.

    The atom potential  V_a = sum_b (gamma_ab + delta_ab U_a) (q_b - q0_b)  is
    applied to every shell of atom a, as in ``Hcoul_diag = U * n + C @ q``.

    Parameters
    ----------
    gamma : torch.Tensor, shape (n_atoms, n_atoms)
        Long range Coulomb / gamma matrix.
    q0 : torch.Tensor, shape (n_atoms,)
        Reference (neutral atom) electron populations.
    layout : OrbitalLayout
    hubbard_u : torch.Tensor, optional, shape (n_atoms,)
        On-site Hubbard U added to the diagonal of ``gamma``.
    """

    def __init__(
        self,
        gamma: torch.Tensor,
        q0: torch.Tensor,
        layout: OrbitalLayout,
        hubbard_u: torch.Tensor = None,
    ):
        n_atoms = layout.n_atoms
        gamma = torch.as_tensor(gamma, dtype=torch.get_default_dtype())
        if gamma.shape != (n_atoms, n_atoms):
            raise ConfigurationError(
                f"gamma must be ({n_atoms}, {n_atoms}), got {tuple(gamma.shape)}"
            )
        if hubbard_u is not None:
            gamma = gamma + torch.diag(torch.as_tensor(hubbard_u, dtype=gamma.dtype))
        q0 = torch.as_tensor(q0, dtype=gamma.dtype)
        if q0.shape != (n_atoms,):
            raise ConfigurationError(f"q0 must be ({n_atoms},), got {tuple(q0.shape)}")

        self.gamma = gamma
        self.q0 = q0
        self.layout = layout
        shell_idx = torch.arange(layout.max_shells).unsqueeze(1)
        self.shell_mask = (shell_idx < layout.n_shells_per_atom.unsqueeze(0)).to(gamma.dtype)

    def _dq(self, charge_per_shell: torch.Tensor) -> torch.Tensor:
        self.layout.check_shell_shape(charge_per_shell)
        return charge_per_shell.sum(dim=0) - self.q0.to(charge_per_shell)

    def __call__(self, charge_per_shell: torch.Tensor) -> torch.Tensor:
        """(max_shells, n_atoms) electron populations -> (max_shells, n_atoms) shift."""
        CoulPot = self.gamma.to(charge_per_shell) @ self._dq(charge_per_shell)
        return self.shell_mask.to(charge_per_shell) * CoulPot.unsqueeze(0)

    def energy(self, charge_per_shell: torch.Tensor) -> torch.Tensor:
        dq = self._dq(charge_per_shell)
        return 0.5 * dq @ (self.gamma.to(dq) @ dq)
