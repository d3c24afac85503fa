from typing import Any, Dict

from ._errors import ConfigurationError
from ._mixer import MIXERS


SCC_PARAMS_DEFAULTS: Dict[str, Any] = {
    "SPIN_CHANNELS": 1,  # 1 closed shell, 2 collinear, 4 non-collinear
    "SCC_MAX_ITER": 100,  # Maximum number of SCC iterations
    "SCC_TOL": 1e-5,  # Convergence tolerance on max |q_out - q_in| (reduced charges)
    "SCC_NONCONVERGED_FATAL": False,  # Raise ConvergenceFailure when SCC_MAX_ITER is exhausted
    "MIXER": "broyden",  # 'simple', 'anderson' or 'broyden'
    "MIX_ALPHA": 0.2,  # Linear mixing coefficient, also the first step of the quasi-Newton mixers
    "MIX_HISTORY": 8,  # Number of previous iterates kept by the quasi-Newton mixers
    "TE": 0.0,  # Electronic temperature in Kelvin for the Fermi filling
    "VERBOSE": False,  # Log every SCC iteration at INFO level instead of DEBUG
}


def get_scc_params(scc_params: Dict[str, Any] = None) -> Dict[str, Any]:
    """
    Return a complete, validated copy of the SCC parameter dict.

    Missing keys are filled from ``SCC_PARAMS_DEFAULTS``. Unknown keys and
    out-of-range values raise ``ConfigurationError``.
    """
    params = dict(SCC_PARAMS_DEFAULTS)
    if scc_params is not None:
        unknown = sorted(set(scc_params) - set(SCC_PARAMS_DEFAULTS))
        if unknown:
            raise ConfigurationError(f"Unknown SCC parameters: {unknown}")
        params.update(scc_params)

    if params["SPIN_CHANNELS"] not in (1, 2, 4):
        raise ConfigurationError(
            f"SPIN_CHANNELS must be 1, 2 or 4, got {params['SPIN_CHANNELS']}"
        )
    if int(params["SCC_MAX_ITER"]) != params["SCC_MAX_ITER"] or params["SCC_MAX_ITER"] < 0:
        raise ConfigurationError(
            f"SCC_MAX_ITER must be a non-negative integer, got {params['SCC_MAX_ITER']}"
        )
    params["SCC_MAX_ITER"] = int(params["SCC_MAX_ITER"])
    if not params["SCC_TOL"] > 0.0:
        raise ConfigurationError(f"SCC_TOL must be positive, got {params['SCC_TOL']}")
    if params["MIXER"] not in MIXERS:
        raise ConfigurationError(
            f"MIXER must be one of {tuple(MIXERS)}, got {params['MIXER']!r}"
        )
    if not 0.0 < params["MIX_ALPHA"] <= 1.0:
        raise ConfigurationError(
            f"MIX_ALPHA must be in (0, 1], got {params['MIX_ALPHA']}"
        )
    if int(params["MIX_HISTORY"]) < 1:
        raise ConfigurationError(
            f"MIX_HISTORY must be at least 1, got {params['MIX_HISTORY']}"
        )
    if params["TE"] < 0.0:
        raise ConfigurationError(f"TE must be non-negative, got {params['TE']}")

    return params
