"""
sccspin public API.

Users should import from `sccspin` (package root), e.g.:
    from sccspin import Species, OrbitalLayout, SCCDriver

Anything not exported here is considered internal and may change.
"""

from ._errors import (
    SCCError,
    ConfigurationError,
    ConvergenceFailure,
    NumericalFailure,
    InvariantViolation,
)
from ._params import SCC_PARAMS_DEFAULTS, get_scc_params
from ._layout import Species, OrbitalLayout
from ._spin import to_up_down, to_up_down_, to_charge_mag, to_charge_mag_, get_spin_shift
from ._equiv import get_orbital_equiv, reduce_by_equiv, expand_by_equiv
from ._energy import get_spin_energy_total, get_spin_energy_atom
from ._eigensolver import EigenResult, TorchEigensolver, ScipyEigensolver
from ._population import MullikenPopulation, fermi_occupations
from ._electrostatics import GammaShiftBuilder
from ._mixer import Mixer, SimpleMixer, AndersonMixer, BroydenMixer, build_mixer
from ._scc import SCCDriver, SCCResult, SCCState, SCCStatus

__all__ = [
    "SCCError",
    "ConfigurationError",
    "ConvergenceFailure",
    "NumericalFailure",
    "InvariantViolation",
    "SCC_PARAMS_DEFAULTS",
    "get_scc_params",
    "Species",
    "OrbitalLayout",
    "to_up_down",
    "to_up_down_",
    "to_charge_mag",
    "to_charge_mag_",
    "get_spin_shift",
    "get_orbital_equiv",
    "reduce_by_equiv",
    "expand_by_equiv",
    "get_spin_energy_total",
    "get_spin_energy_atom",
    "EigenResult",
    "TorchEigensolver",
    "ScipyEigensolver",
    "MullikenPopulation",
    "fermi_occupations",
    "GammaShiftBuilder",
    "Mixer",
    "SimpleMixer",
    "AndersonMixer",
    "BroydenMixer",
    "build_mixer",
    "SCCDriver",
    "SCCResult",
    "SCCState",
    "SCCStatus",
]
