import torch

from ._errors import InvariantViolation
from ._layout import OrbitalLayout


def _spin_axis_size(x: torch.Tensor) -> int:
    if x.dim() < 1:
        raise InvariantViolation("Spin resolved data needs a trailing spin axis")
    n_spin = x.shape[-1]
    if n_spin not in (1, 2, 4):
        raise InvariantViolation(
            f"Spin axis must have 1, 2 or 4 components, got {n_spin}"
        )
    if not (x.is_floating_point() or x.is_complex()):
        raise InvariantViolation(
            f"Spin conversion needs a floating point tensor, got {x.dtype}"
        )
    return n_spin


def _float_copy(x: torch.Tensor) -> torch.Tensor:
    if x.is_floating_point() or x.is_complex():
        return x.clone()
    return x.to(torch.get_default_dtype())


def to_up_down_(x: torch.Tensor) -> torch.Tensor:
    """
    In place charge/magnetisation -> up/down conversion along the trailing spin axis.

    For two components (q, m) the result is ((q + m) / 2, (q - m) / 2). One
    component (closed shell) and four components (non-collinear, already in the
    form the Hamiltonian needs) are left untouched. Works for any leading shape.

    Returns
    -------
    x : torch.Tensor
        The same tensor, for chaining.
    """
    n_spin = _spin_axis_size(x)
    if n_spin == 2:
        up, down = x[..., 0], x[..., 1]
        up.add_(down).mul_(0.5)
        down.neg_().add_(up)
    return x


def to_charge_mag_(x: torch.Tensor) -> torch.Tensor:
    """
    In place up/down -> charge/magnetisation conversion along the trailing spin axis.

    Inverse of ``to_up_down_``: (up, down) becomes (up + down, up - down).
    """
    n_spin = _spin_axis_size(x)
    if n_spin == 2:
        q, m = x[..., 0], x[..., 1]
        q.add_(m)
        m.mul_(-2.0).add_(q)
    return x


def to_up_down(x: torch.Tensor) -> torch.Tensor:
    """Charge/magnetisation -> up/down, returning a new tensor. Integer input is promoted."""
    return to_up_down_(_float_copy(x))


def to_charge_mag(x: torch.Tensor) -> torch.Tensor:
    """Up/down -> charge/magnetisation, returning a new tensor. Integer input is promoted."""
    return to_charge_mag_(_float_copy(x))


# @torch.compile
def get_spin_shift(
    charge_per_shell: torch.Tensor,
    layout: OrbitalLayout,
    spin_w: torch.Tensor = None,
) -> torch.Tensor:
    """
    Spin polarised shell shift  shift_l = sum_l' W_ll' p_l'  for every atom.

    Only magnetisation components may be passed (one for collinear spin, three
    for non-collinear spin), so that the charge component of the full shift
    stays exactly zero.

    Parameters
    ----------
    charge_per_shell : torch.Tensor, shape (max_shells, n_atoms, n_spin)
        Shell resolved magnetisation, n_spin in {1, 3}.
    layout : OrbitalLayout
        Shell structure and species of every atom.
    spin_w : torch.Tensor, optional
        Either (n_species, max_shells, max_shells) coupling matrices or
        (n_species,) one constant per species used for all shell pairs.
        Defaults to ``layout.spin_w()``.

    Returns
    -------
    shift : torch.Tensor, same shape as ``charge_per_shell``
    """
    if charge_per_shell.dim() != 3:
        raise InvariantViolation(
            f"Shell charges must have shape (shell, atom, spin), got {tuple(charge_per_shell.shape)}"
        )
    if tuple(charge_per_shell.shape[:2]) != (layout.max_shells, layout.n_atoms):
        raise InvariantViolation(
            f"Shell charges shape {tuple(charge_per_shell.shape)} does not match "
            f"layout ({layout.max_shells}, {layout.n_atoms}, n_spin)"
        )
    n_spin = charge_per_shell.shape[-1]
    if n_spin not in (1, 3):
        raise InvariantViolation(
            f"Spin shift takes 1 or 3 magnetisation components, got {n_spin}"
        )

    if spin_w is None:
        spin_w = layout.spin_w()
    spin_w = spin_w.to(charge_per_shell)

    # mask of shells present on each atom
    shell_idx = torch.arange(layout.max_shells, device=charge_per_shell.device)
    present = shell_idx.unsqueeze(0) < layout.n_shells_per_atom.to(
        charge_per_shell.device
    ).unsqueeze(1)  # (n_atoms, max_shells)
    pair_mask = present.unsqueeze(2) & present.unsqueeze(1)

    atom_species = layout.atom_species.to(charge_per_shell.device)
    if spin_w.dim() == 1:
        w_atom = spin_w[atom_species].unsqueeze(-1).unsqueeze(-1) * pair_mask
    else:
        if tuple(spin_w.shape[1:]) != (layout.max_shells, layout.max_shells):
            raise InvariantViolation(
                f"Spin W must be (n_species, {layout.max_shells}, {layout.max_shells}), "
                f"got {tuple(spin_w.shape)}"
            )
        w_atom = spin_w[atom_species] * pair_mask  # (n_atoms, max_shells, max_shells)

    return torch.einsum("aij,jas->ias", w_atom, charge_per_shell)
