import re

import numpy as np
import torch

from ._errors import ConfigurationError
from ._layout import OrbitalLayout


HARTREE_TO_EV = 27.21138625


def write_charges(filename, q, layout: OrbitalLayout, comment=""):
    """
    Write per-orbital charges as a text table, one row per orbital, one column
    per spin component.

    Parameters
    ----------
    q : torch.Tensor
        Padded (max_orbitals, n_atoms, n_spin) charges.
    """
    flat = layout.unpack_orbitals(q).detach().cpu().numpy()
    header = f"n_orbitals {flat.shape[0]} n_spin {flat.shape[1]}"
    if comment:
        header = f"{header}\n{comment}"
    np.savetxt(filename, flat, fmt="%.15e", header=header)


def read_charges(filename, layout: OrbitalLayout, n_spin: int) -> torch.Tensor:
    """
    Read charges written by ``write_charges``.

    Returns
    -------
    q : torch.Tensor, shape (max_orbitals, n_atoms, n_spin)
    """
    data = np.loadtxt(filename, ndmin=2)
    if data.shape != (layout.n_orbitals, n_spin):
        raise ConfigurationError(
            f"{filename}: expected ({layout.n_orbitals}, {n_spin}) charges, got {data.shape}"
        )
    return layout.pack_orbitals(torch.tensor(data, dtype=torch.get_default_dtype()))


def read_spin_constants(path, hartree=True):
    """
    Parse a spinw.txt style file into per-element shell x shell matrices.

    The file holds one block per element: a header line ``C:`` followed by the
    rows of the symmetric W matrix in shell order, e.g.::

        C:
        -0.031 -0.025
        -0.025 -0.023

    Parameters
    ----------
    path : str
        File name.
    hartree : bool, default True
        Values in the file are in Hartree and converted to eV.

    Returns
    -------
    dict
        Element symbol -> torch.Tensor of shape (n_shells, n_shells).
    """
    W = {}
    element = None
    matrix_rows = []

    header_re = re.compile(r"^\s*([A-Za-z]{1,2})\s*:\s*$")

    def flush_current():
        nonlocal element, matrix_rows
        if element is None or not matrix_rows:
            return
        if any(len(row) != len(matrix_rows) for row in matrix_rows):
            raise ConfigurationError(
                f"{path}: spin constants of {element} are not a square matrix"
            )
        mat = torch.tensor(matrix_rows, dtype=torch.get_default_dtype())
        if not torch.allclose(mat, mat.T):
            raise ConfigurationError(f"{path}: spin constants of {element} are not symmetric")
        W[element] = mat * HARTREE_TO_EV if hartree else mat

        # Reset
        element = None
        matrix_rows = []

    with open(path, "r") as f:
        for line in f:
            line = line.split("#", 1)[0].rstrip("\n")
            if not line.strip():
                if matrix_rows:
                    flush_current()
                continue

            m = header_re.match(line)
            if m:
                flush_current()
                element = m.group(1)
                matrix_rows = []
                continue

            if element is not None:
                matrix_rows.append([float(x) for x in line.split()])

    flush_current()

    return W
