import os

# Disable TorchDynamo/Inductor compilation in tests (keeps tests deterministic and avoids C++ toolchain)
os.environ.setdefault("TORCHDYNAMO_DISABLE", "1")
os.environ.setdefault("TORCH_COMPILE_DISABLE", "1")
os.environ.setdefault("TORCHINDUCTOR_DISABLE", "1")

import pytest
import torch

from sccspin import EigenResult, OrbitalLayout, ScipyEigensolver, Species, TorchEigensolver
from sccspin._eigensolver import EIGEN_OVERLAP_NOT_SPD
from sccspin._hamiltonian import build_hamiltonian, shell_shift_to_matrix, spinor_overlap

torch.set_default_dtype(torch.float64)


@pytest.fixture
def h2():
    layout = OrbitalLayout.from_species([Species("H", (0,), -0.5)], [0, 0])
    H0 = torch.tensor([[-6.5, -4.0], [-4.0, -6.5]])
    S = torch.tensor([[1.0, 0.3], [0.3, 1.0]])
    return layout, H0, S


def test_shift_matrix(h2):
    layout, _, S = h2
    V = torch.tensor([[0.1, 0.3]])
    M = shell_shift_to_matrix(V, layout, S)
    assert torch.allclose(M, torch.tensor([[0.1, 0.06], [0.06, 0.3]]))


def test_closed_shell(h2):
    layout, H0, S = h2
    shift = torch.tensor([[0.1, 0.3]]).unsqueeze(-1)
    H = build_hamiltonian(H0, S, shift, layout)
    assert H.shape == (1, 2, 2)
    assert torch.allclose(H[0], H0 + shell_shift_to_matrix(shift[..., 0], layout, S))


def test_collinear_up_down(h2):
    layout, H0, S = h2
    shift = torch.tensor([[[0.1, 0.05], [0.3, -0.05]]])
    H = build_hamiltonian(H0, S, shift, layout)
    Hq = H0 + shell_shift_to_matrix(shift[..., 0], layout, S)
    Hm = shell_shift_to_matrix(shift[..., 1], layout, S)
    assert H.shape == (2, 2, 2)
    assert torch.allclose(H[0], Hq + Hm)
    assert torch.allclose(H[1], Hq - Hm)


def test_spinor_matches_collinear_for_z_only(h2):
    layout, H0, S = h2
    shift4 = torch.zeros(1, 2, 4)
    shift4[0, :, 0] = torch.tensor([0.1, 0.3])
    shift4[0, :, 3] = torch.tensor([0.05, -0.05])
    H4 = build_hamiltonian(H0, S, shift4, layout)
    H2 = build_hamiltonian(H0, S, shift4[..., [0, 3]], layout)
    assert H4.shape == (1, 4, 4) and H4.is_complex()
    assert torch.allclose(H4[0], H4[0].conj().T)
    assert torch.allclose(H4[0, :2, :2].real, H2[0])
    assert torch.allclose(H4[0, 2:, 2:].real, H2[1])
    assert torch.all(H4[0, :2, 2:] == 0)


def test_spinor_off_diagonal_blocks(h2):
    layout, H0, S = h2
    shift4 = torch.zeros(1, 2, 4)
    shift4[0, :, 1] = 0.2
    shift4[0, :, 2] = 0.1
    H4 = build_hamiltonian(H0, S, shift4, layout)[0]
    Hx = shell_shift_to_matrix(shift4[..., 1], layout, S)
    Hy = shell_shift_to_matrix(shift4[..., 2], layout, S)
    assert torch.allclose(H4[:2, 2:], torch.complex(Hx, -Hy))
    assert torch.allclose(H4[2:, :2], torch.complex(Hx, Hy))


def test_eigensolvers_agree(h2):
    _, H0, S = h2
    H = torch.stack((H0, H0 + 0.2 * S))
    e_t, C_t, status, _ = TorchEigensolver()(H, S)
    e_s, C_s, status_s, _ = ScipyEigensolver()(H, S)
    assert status == 0 and status_s == 0
    assert torch.allclose(e_t, e_s, atol=1e-10)
    assert torch.allclose(e_t[0], torch.tensor([-10.5 / 1.3, -2.5 / 0.7]))
    for C in (C_t, C_s):
        CtSC = C.transpose(-1, -2) @ S @ C
        assert torch.allclose(CtSC, torch.eye(2).expand(2, 2, 2), atol=1e-10)


def test_spinor_eigensolver(h2):
    _, H0, S = h2
    zero = torch.zeros(2, 2)
    H = torch.complex(torch.block_diag(H0, H0), torch.block_diag(zero, zero)).unsqueeze(0)
    result = TorchEigensolver()(H, spinor_overlap(S))
    assert isinstance(result, EigenResult)
    assert result.status == 0
    assert torch.allclose(result.eigenvalues[0, :2], torch.full((2,), -10.5 / 1.3))


def test_overlap_not_positive_definite(h2):
    _, H0, _ = h2
    S_bad = torch.tensor([[1.0, 1.2], [1.2, 1.0]])
    result = TorchEigensolver()(H0.unsqueeze(0), S_bad)
    assert result.status == EIGEN_OVERLAP_NOT_SPD
    assert "SPD" in result.message
    assert torch.isnan(result.eigenvalues).all()

    result = ScipyEigensolver()(H0.unsqueeze(0), S_bad)
    assert result.status != 0
