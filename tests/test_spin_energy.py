import os

# Disable TorchDynamo/Inductor compilation in tests (keeps tests deterministic and avoids C++ toolchain)
os.environ.setdefault("TORCHDYNAMO_DISABLE", "1")
os.environ.setdefault("TORCH_COMPILE_DISABLE", "1")
os.environ.setdefault("TORCHINDUCTOR_DISABLE", "1")

import pytest
import torch

from sccspin import (
    InvariantViolation,
    OrbitalLayout,
    Species,
    get_spin_energy_atom,
    get_spin_energy_total,
    get_spin_shift,
)

torch.set_default_dtype(torch.float64)


@pytest.mark.parametrize("n_spin", [2, 4])
def test_total_equals_sum_over_atoms(n_spin):
    layout = OrbitalLayout.from_species(
        [Species("C", (0, 1), [[-0.03, -0.025], [-0.025, -0.023]]), Species("H", (0,), -0.07)],
        [0, 1, 1],
    )
    g = torch.Generator().manual_seed(7)
    q = torch.rand(2, 3, n_spin, generator=g)
    q[1, 1:] = 0.0
    shift = torch.zeros_like(q)
    shift[..., 1:] = get_spin_shift(q[..., 1:], layout)

    e_atom = get_spin_energy_atom(q, shift)
    assert e_atom.shape == (3,)
    assert torch.isclose(get_spin_energy_total(q, shift), e_atom.sum())
    # negative W lowers the energy of a polarised system
    assert get_spin_energy_total(q, shift) < 0


def test_three_components_allowed():
    q = torch.ones(1, 2, 3)
    shift = torch.full((1, 2, 3), 0.5)
    assert float(get_spin_energy_total(q, shift)) == pytest.approx(3.0)
    assert get_spin_energy_atom(q, shift).tolist() == [1.5, 1.5]


def test_value():
    q = torch.tensor([[[2.0, 0.4]]])
    shift = torch.tensor([[[0.0, -0.01]]])
    assert float(get_spin_energy_total(q, shift)) == pytest.approx(-0.004)


@pytest.mark.parametrize("n_spin", [1, 5])
def test_invalid_spin_count(n_spin):
    q = torch.zeros(1, 1, n_spin)
    with pytest.raises(InvariantViolation):
        get_spin_energy_total(q, q)
    with pytest.raises(InvariantViolation):
        get_spin_energy_atom(q, q)


def test_mismatched_shapes():
    with pytest.raises(InvariantViolation):
        get_spin_energy_total(torch.zeros(1, 2, 2), torch.zeros(1, 3, 2))
