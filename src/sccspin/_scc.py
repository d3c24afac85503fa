import enum
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import pandas as pd
import torch

from ._energy import get_band_energy, get_spin_energy_atom, get_spin_energy_total
from ._equiv import expand_by_equiv, get_orbital_equiv, reduce_by_equiv
from ._errors import ConfigurationError, ConvergenceFailure, NumericalFailure
from ._eigensolver import EIGEN_NONFINITE, TorchEigensolver
from ._hamiltonian import build_hamiltonian, spinor_overlap
from ._layout import OrbitalLayout
from ._mixer import build_mixer
from ._params import get_scc_params
from ._population import MullikenPopulation, fermi_occupations, get_electronic_entropy
from ._spin import get_spin_shift, to_charge_mag_, to_up_down


logger = logging.getLogger(__name__)


class SCCStatus(enum.Enum):
    INIT = "init"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITER_REACHED = "max_iter_reached"
    DIAG_FAILED = "diag_failed"
    NONFINITE = "nonfinite"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self not in (SCCStatus.INIT, SCCStatus.ITERATING)


@dataclass
class SCCState:
    """Snapshot of the SCC loop. Charges are per orbital, charge/magnetisation basis."""

    status: SCCStatus = SCCStatus.INIT
    iteration: int = 0
    residual: float = float("inf")
    energy: float = 0.0
    q_in: Optional[torch.Tensor] = None
    q_out: Optional[torch.Tensor] = None
    trace: List[Dict[str, float]] = field(default_factory=list)


@dataclass
class SCCResult:
    """
    Final charges, shifts and energies of an SCC run.

    Per-orbital arrays are (max_orbitals, n_atoms, n_spin), per-shell arrays
    (max_shells, n_atoms, n_spin), both in charge/magnetisation basis unless
    stated otherwise. Energies are in the units of the Hamiltonian.
    """

    status: SCCStatus
    iterations: int
    residual: float
    q: torch.Tensor
    q_shell: torch.Tensor
    q_atom: torch.Tensor
    spin_density_ud: torch.Tensor  # shell resolved, up/down basis
    equiv: torch.Tensor
    shift: Optional[torch.Tensor] = None
    e_band: Optional[torch.Tensor] = None
    e_electrostatic: Optional[torch.Tensor] = None
    e_spin: Optional[torch.Tensor] = None
    e_spin_atom: Optional[torch.Tensor] = None
    e_entropy: Optional[torch.Tensor] = None
    energy: Optional[torch.Tensor] = None
    eigenvalues: Optional[torch.Tensor] = None
    eigenvectors: Optional[torch.Tensor] = None
    occupations: Optional[torch.Tensor] = None
    fermi_level: Optional[torch.Tensor] = None
    trace: List[Dict[str, float]] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        return self.status is SCCStatus.CONVERGED

    def trace_frame(self) -> pd.DataFrame:
        """Iteration trace as a DataFrame with columns iteration, residual, energy, e_band, time."""
        return pd.DataFrame(
            self.trace, columns=["iteration", "residual", "energy", "e_band", "time"]
        )


class SCCDriver(torch.nn.Module):
    """
    Spin resolved self-consistent-charge loop.

    Every iteration builds the shell shift (electrostatic shift on the charge
    component, spin shift on the magnetisation components), assembles and
    diagonalises the Hamiltonian in up/down form, fills the levels, runs the
    population analysis and converts the populations back to charge/magnetisation
    form. Input and output charges are compressed through the orbital
    equivalence map; the residual is max |q_out - q_in| of the compressed
    vectors and the mixer works on the compressed vectors as well.

    Parameters
    ----------
    scc_params : dict
        See ``SCC_PARAMS_DEFAULTS``.
    layout : OrbitalLayout
        Basis of the system.
    electrostatics : callable, optional
        ``(max_shells, n_atoms)`` electron populations -> shell shift of the
        same shape. May provide ``energy(charge_per_shell)``. None means no
        charge shift.
    eigensolver : callable, optional
        ``(hamiltonian, overlap) -> EigenResult``. Defaults to TorchEigensolver.
    population : callable, optional
        ``(eigenvectors, occupations, overlap) -> (n_orbitals, n_spin)``
        populations in up/down basis. Defaults to MullikenPopulation.
    mixer : Mixer, optional
        Defaults to the mixer named by ``scc_params['MIXER']``. Reset at the
        start of every run.
    spin_w : torch.Tensor, optional
        Spin coupling constants, defaults to ``layout.spin_w()``.
    """

    def __init__(
        self,
        scc_params: Dict[str, Any],
        layout: OrbitalLayout,
        electrostatics: Optional[Callable] = None,
        eigensolver: Optional[Callable] = None,
        population: Optional[Callable] = None,
        mixer=None,
        spin_w: Optional[torch.Tensor] = None,
        *args, **kwargs
    ):
        super().__init__(*args, **kwargs)
        self.scc_params = get_scc_params(scc_params)
        self.layout = layout
        self.n_spin = self.scc_params["SPIN_CHANNELS"]
        self.electrostatics = electrostatics
        self.eigensolver = eigensolver if eigensolver is not None else TorchEigensolver()
        self.population = population if population is not None else MullikenPopulation()
        self.mixer = mixer if mixer is not None else build_mixer(self.scc_params)
        self.spin_w = spin_w if spin_w is not None else layout.spin_w()
        self.max_occ = 2.0 if self.n_spin == 1 else 1.0
        self.register_buffer("equiv", get_orbital_equiv(layout, self.n_spin), persistent=False)
        self.state = SCCState()

    def _log(self, msg: str, *args) -> None:
        logger.log(logging.INFO if self.scc_params["VERBOSE"] else logging.DEBUG, msg, *args)

    def _check_input(self, H0, S, q_init) -> torch.Tensor:
        n_orb = self.layout.n_orbitals
        for name, mat in (("H0", H0), ("S", S)):
            if tuple(mat.shape) != (n_orb, n_orb):
                raise ConfigurationError(
                    f"{name} must be ({n_orb}, {n_orb}), got {tuple(mat.shape)}"
                )
        q_init = torch.as_tensor(q_init, dtype=H0.dtype, device=H0.device)
        if q_init.dim() == 2 and q_init.shape[0] == n_orb:
            q_init = self.layout.pack_orbitals(q_init)
        if tuple(q_init.shape) != tuple(self.equiv.shape):
            raise ConfigurationError(
                f"Initial charges must be {tuple(self.equiv.shape)} (orbital, atom, spin) "
                f"or ({n_orb}, {self.n_spin}), got {tuple(q_init.shape)}"
            )
        return q_init.clone()

    def get_shift(self, q_shell: torch.Tensor) -> torch.Tensor:
        """Total shell shift for shell charges in charge/magnetisation basis."""
        shift = torch.zeros_like(q_shell)
        if self.electrostatics is not None:
            shift[..., 0] = self.electrostatics(q_shell[..., 0])
        if self.n_spin > 1:
            shift[..., 1:] = get_spin_shift(q_shell[..., 1:], self.layout, self.spin_w)
        return shift

    def get_spin_energies(self, q_shell: torch.Tensor):
        """Total and atom resolved spin energy, 0.5 * q . (W q)."""
        if self.n_spin == 1:
            return q_shell.new_zeros(()), q_shell.new_zeros(self.layout.n_atoms)
        spin_shift = torch.zeros_like(q_shell)
        spin_shift[..., 1:] = get_spin_shift(q_shell[..., 1:], self.layout, self.spin_w)
        return (
            0.5 * get_spin_energy_total(q_shell, spin_shift),
            0.5 * get_spin_energy_atom(q_shell, spin_shift),
        )

    def get_electrostatic_energy(self, q_shell: torch.Tensor) -> torch.Tensor:
        energy = getattr(self.electrostatics, "energy", None)
        if energy is None:
            return q_shell.new_zeros(())
        return energy(q_shell[..., 0])

    def forward(
        self,
        H0: torch.Tensor,
        S: torch.Tensor,
        q_init: torch.Tensor,
        n_electrons: float,
        abort: Optional[Callable[[], bool]] = None,
    ) -> SCCResult:
        """
        Run the SCC loop.

        Parameters
        ----------
        H0, S : torch.Tensor, shape (n_orbitals, n_orbitals)
            Non-SCC Hamiltonian and overlap.
        q_init : torch.Tensor
            Initial per-orbital charges in charge/magnetisation basis, either
            padded (max_orbitals, n_atoms, n_spin) or flat (n_orbitals, n_spin).
        n_electrons : float
            Total number of electrons.
        abort : callable, optional
            Checked before every iteration; returning True stops the loop in
            the ABORTED state with the last complete charges.

        Returns
        -------
        SCCResult

        Raises
        ------
        ConfigurationError
            Inconsistent input shapes.
        NumericalFailure
            The eigensolver reported a nonzero status, or the charges
            of an iteration are not finite.
        ConvergenceFailure
            ``SCC_MAX_ITER`` exhausted and ``SCC_NONCONVERGED_FATAL`` set.
        """
        params = self.scc_params
        q_in = self._check_input(H0, S, q_init)
        overlap = spinor_overlap(S) if self.n_spin == 4 else S

        self.mixer.reset()
        self.state = state = SCCState(q_in=q_in.clone())
        self._log("### Do SCC ###")

        if params["SCC_MAX_ITER"] == 0:
            state.status = SCCStatus.MAX_ITER_REACHED
            return self._finish(self._bare_result(q_in))

        state.status = SCCStatus.ITERATING
        last = None
        energy_old = 0.0
        with torch.no_grad():
            for it in range(1, params["SCC_MAX_ITER"] + 1):
                if abort is not None and abort():
                    state.status = SCCStatus.ABORTED
                    break
                start_time = time.perf_counter()
                self._log("Iter %d", it)

                q_in_shell = self.layout.orbital_to_shell(q_in)
                shift = self.get_shift(q_in_shell)
                H = build_hamiltonian(H0, S, shift, self.layout)

                eig = self.eigensolver(H, overlap)
                if eig.status != 0:
                    state.iteration = it
                    state.status = SCCStatus.DIAG_FAILED
                    raise NumericalFailure(eig.status, it, eig.message)

                occ, mu0 = fermi_occupations(
                    eig.eigenvalues, n_electrons, params["TE"], self.max_occ
                )
                q_out = self.layout.pack_orbitals(
                    self.population(eig.eigenvectors, occ, S).to(q_in.dtype)
                )
                to_charge_mag_(q_out)

                q_in_red = reduce_by_equiv(q_in, self.equiv)
                res = reduce_by_equiv(q_out, self.equiv) - q_in_red
                residual = float(res.abs().max())
                if not math.isfinite(residual):
                    state.iteration = it
                    state.status = SCCStatus.NONFINITE
                    raise NumericalFailure(
                        EIGEN_NONFINITE, it, "non-finite charges in the population output"
                    )

                # E_band double counts  q_out . shift_in ; replace it by the functional at q_out
                q_out_shell = self.layout.orbital_to_shell(q_out)
                e_band = get_band_energy(eig.eigenvalues, occ)
                energy = (
                    e_band
                    - torch.sum(q_out_shell * shift)
                    + self.get_electrostatic_energy(q_out_shell)
                    + self.get_spin_energies(q_out_shell)[0]
                )
                dE = abs(float(energy) - energy_old)
                energy_old = float(energy)

                elapsed = time.perf_counter() - start_time
                state.trace.append(
                    {
                        "iteration": it,
                        "residual": residual,
                        "energy": float(energy),
                        "e_band": float(e_band),
                        "time": elapsed,
                    }
                )
                self._log("Res = %.9f, dE = %.9f, t = %.1f s", residual, dE, elapsed)

                state.iteration = it
                state.residual = residual
                state.energy = float(energy)
                state.q_out = q_out
                last = (eig, occ, mu0, e_band)

                if residual < params["SCC_TOL"]:
                    state.status = SCCStatus.CONVERGED
                    break
                if it == params["SCC_MAX_ITER"]:
                    state.status = SCCStatus.MAX_ITER_REACHED
                    break

                q_next = expand_by_equiv(self.mixer.mix(q_in_red, res), self.equiv)
                q_in = q_next
                state.q_in = q_in

        if last is None:
            return self._finish(self._bare_result(q_in))
        return self._finish(self._result(state.q_out, last))

    def _bare_result(self, q: torch.Tensor) -> SCCResult:
        q_shell = self.layout.orbital_to_shell(q)
        return SCCResult(
            status=self.state.status,
            iterations=self.state.iteration,
            residual=self.state.residual,
            q=q,
            q_shell=q_shell,
            q_atom=q_shell[..., 0].sum(dim=0),
            spin_density_ud=to_up_down(q_shell),
            equiv=self.equiv,
            trace=list(self.state.trace),
        )

    def _result(self, q: torch.Tensor, last) -> SCCResult:
        eig, occ, mu0, e_band = last
        result = self._bare_result(q)
        q_shell = result.q_shell
        shift = self.get_shift(q_shell)
        e_spin, e_spin_atom = self.get_spin_energies(q_shell)
        e_es = self.get_electrostatic_energy(q_shell)
        e_entropy = -self.scc_params["TE"] * get_electronic_entropy(occ, self.max_occ)

        result.shift = shift
        result.e_band = e_band
        result.e_electrostatic = e_es
        result.e_spin = e_spin
        result.e_spin_atom = e_spin_atom
        result.e_entropy = e_entropy
        result.energy = self.state.energy + e_entropy
        result.eigenvalues = eig.eigenvalues
        result.eigenvectors = eig.eigenvectors
        result.occupations = occ
        result.fermi_level = mu0
        return result

    def _finish(self, result: SCCResult) -> SCCResult:
        if result.status is SCCStatus.MAX_ITER_REACHED:
            logger.warning(
                "SCC did not converge in %d iterations, residual = %.3e",
                result.iterations, result.residual,
            )
            if self.scc_params["SCC_NONCONVERGED_FATAL"]:
                raise ConvergenceFailure(result.residual, result.iterations, result)
        elif result.status is SCCStatus.CONVERGED:
            self._log("SCC converged in %d iterations", result.iterations)
        return result
