import os

# Disable TorchDynamo/Inductor compilation in tests (keeps tests deterministic and avoids C++ toolchain)
os.environ.setdefault("TORCHDYNAMO_DISABLE", "1")
os.environ.setdefault("TORCH_COMPILE_DISABLE", "1")
os.environ.setdefault("TORCHINDUCTOR_DISABLE", "1")

import pytest
import torch

from sccspin import ConfigurationError, OrbitalLayout, Species
from sccspin.io import HARTREE_TO_EV, read_charges, read_spin_constants, write_charges

torch.set_default_dtype(torch.float64)


@pytest.fixture
def layout():
    return OrbitalLayout.from_species([Species("O", (0, 1)), Species("H", (0,))], [0, 1, 1])


def test_charges_file(tmp_path, layout):
    q = torch.zeros(layout.max_orbitals, layout.n_atoms, 2)
    q[:, 0, 0] = torch.tensor([1.9, 1.5, 1.5, 1.7])
    q[0, 1:, 0] = 0.7
    q[0, 2, 1] = 0.3

    fname = tmp_path / "charges.dat"
    write_charges(fname, q, layout, comment="water")
    text = fname.read_text()
    assert text.startswith("# n_orbitals 6 n_spin 2")
    assert "# water" in text

    q_read = read_charges(fname, layout, 2)
    assert q_read.shape == q.shape
    assert torch.allclose(q_read, q, atol=1e-14)


def test_read_charges_wrong_shape(tmp_path, layout):
    fname = tmp_path / "charges.dat"
    fname.write_text("1.0 0.0\n1.0 0.0\n")
    with pytest.raises(ConfigurationError):
        read_charges(fname, layout, 2)


def test_read_spin_constants(tmp_path):
    fname = tmp_path / "spinw.txt"
    fname.write_text(
        "# spin constants in Hartree\n"
        "H:\n"
        "-0.072\n"
        "\n"
        "C:\n"
        "-0.031 -0.025\n"
        "-0.025 -0.023\n"
    )
    W = read_spin_constants(fname)
    assert set(W) == {"H", "C"}
    assert W["H"].shape == (1, 1)
    assert torch.allclose(W["H"], torch.tensor([[-0.072 * HARTREE_TO_EV]]))
    assert torch.allclose(W["C"], W["C"].T)

    W_raw = read_spin_constants(fname, hartree=False)
    assert torch.allclose(W_raw["C"], torch.tensor([[-0.031, -0.025], [-0.025, -0.023]]))

    species = Species("C", (0, 1), W_raw["C"])
    assert torch.equal(species.spin_w, W_raw["C"])


def test_read_spin_constants_rejects_asymmetric(tmp_path):
    fname = tmp_path / "spinw.txt"
    fname.write_text("C:\n-0.031 -0.025\n-0.020 -0.023\n")
    with pytest.raises(ConfigurationError):
        read_spin_constants(fname)
