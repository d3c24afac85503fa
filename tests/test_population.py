import os

# Disable TorchDynamo/Inductor compilation in tests (keeps tests deterministic and avoids C++ toolchain)
os.environ.setdefault("TORCHDYNAMO_DISABLE", "1")
os.environ.setdefault("TORCH_COMPILE_DISABLE", "1")
os.environ.setdefault("TORCHINDUCTOR_DISABLE", "1")

import pytest
import torch

from sccspin import (
    ConfigurationError,
    InvariantViolation,
    MullikenPopulation,
    TorchEigensolver,
    fermi_occupations,
)
from sccspin._hamiltonian import spinor_overlap
from sccspin._population import get_electronic_entropy

torch.set_default_dtype(torch.float64)


def random_system(n, seed=0):
    g = torch.Generator().manual_seed(seed)
    A = torch.randn(n, n, generator=g)
    H = 0.5 * (A + A.T)
    B = 0.1 * torch.randn(n, n, generator=g)
    S = torch.eye(n) + 0.5 * (B + B.T)
    return H, S


def test_zero_temperature_degenerate_sharing():
    occ, mu0 = fermi_occupations(torch.tensor([[0.0, 1.0, 1.0, 2.0]]), 2.0, 0.0, 1.0)
    assert occ.tolist() == [[1.0, 0.5, 0.5, 0.0]]
    assert float(mu0) == 1.0


def test_zero_temperature_fills_across_channels():
    eps = torch.tensor([[-2.0, 0.5], [-1.0, 1.0]])
    occ, _ = fermi_occupations(eps, 2.0, 0.0, 1.0)
    assert occ.tolist() == [[1.0, 0.0], [1.0, 0.0]]


@pytest.mark.parametrize("Te", [300.0, 5000.0])
def test_finite_temperature_electron_count(Te):
    eps = torch.tensor([[-3.0, -1.0, -0.5, 0.2, 2.0], [-2.5, -1.1, -0.4, 0.3, 1.5]])
    occ, mu0 = fermi_occupations(eps, 3.3, Te, 1.0)
    assert float(occ.sum()) == pytest.approx(3.3, abs=1e-8)
    assert torch.all((occ >= 0) & (occ <= 1))
    assert -2.5 < float(mu0) < 0.2


def test_too_many_electrons():
    with pytest.raises(ConfigurationError):
        fermi_occupations(torch.zeros(1, 2), 5.0, 0.0, 2.0)


def test_entropy_vanishes_for_integer_occupations():
    occ = torch.tensor([[1.0, 1.0, 0.0]])
    assert get_electronic_entropy(occ, 1.0) == 0
    assert get_electronic_entropy(torch.tensor([[0.5]]), 1.0) > 0


@pytest.mark.parametrize("device", ["cpu"])
def test_mulliken_closed_shell_and_collinear(device):
    H, S = random_system(6)
    eig = TorchEigensolver()(H.unsqueeze(0), S)
    occ, _ = fermi_occupations(eig.eigenvalues, 4.0, 1000.0, 2.0)
    q = MullikenPopulation()(eig.eigenvectors, occ, S)
    assert q.shape == (6, 1)
    assert float(q.sum()) == pytest.approx(4.0, abs=1e-8)

    # two identical channels carry half the population each
    eig2 = TorchEigensolver()(torch.stack((H, H)), S)
    occ2, _ = fermi_occupations(eig2.eigenvalues, 4.0, 1000.0, 1.0)
    q2 = MullikenPopulation()(eig2.eigenvectors, occ2, S)
    assert q2.shape == (6, 2)
    assert torch.allclose(q2[:, 0], q2[:, 1], atol=1e-8)
    assert torch.allclose(q2.sum(dim=1), q[:, 0], atol=1e-8)


def test_mulliken_spinor_without_spin_coupling():
    H, S = random_system(4, seed=3)
    n = 4
    eig = TorchEigensolver()(H.unsqueeze(0), S)
    occ, _ = fermi_occupations(eig.eigenvalues, 3.0, 500.0, 2.0)
    q_ref = MullikenPopulation()(eig.eigenvectors, occ, S)[:, 0]

    zero = torch.zeros(n, n)
    H_spinor = torch.complex(torch.block_diag(H, H), torch.block_diag(zero, zero)).unsqueeze(0)
    eig4 = TorchEigensolver()(H_spinor, spinor_overlap(S))
    assert eig4.status == 0
    occ4, _ = fermi_occupations(eig4.eigenvalues, 3.0, 500.0, 1.0)
    q4 = MullikenPopulation()(eig4.eigenvectors, occ4, S)

    assert q4.shape == (n, 4)
    assert torch.allclose(q4[:, 0], q_ref, atol=1e-8)
    assert torch.allclose(q4[:, 1:], torch.zeros(n, 3), atol=1e-8)


def test_mulliken_shape_mismatch():
    with pytest.raises(InvariantViolation):
        MullikenPopulation()(torch.zeros(1, 3, 3), torch.zeros(1, 2), torch.eye(3))
