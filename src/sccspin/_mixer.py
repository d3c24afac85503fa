from collections import deque
from typing import Any, Dict

import torch


class Mixer:
    """
    Stateful charge mixer.

    ``mix(trial, residual)`` receives the current input vector and its residual
    ``F(trial) - trial`` and returns the next input vector. History is kept
    between calls of one SCC run; ``reset()`` must be called before a new run.
    """

    def __init__(self, alpha: float = 0.2):
        self.alpha = alpha

    def reset(self) -> None:
        pass

    def mix(self, trial: torch.Tensor, residual: torch.Tensor) -> torch.Tensor:
        raise NotImplementedError

    def __call__(self, trial: torch.Tensor, residual: torch.Tensor) -> torch.Tensor:
        return self.mix(trial, residual)


class SimpleMixer(Mixer):
    """Linear mixing  q_{k+1} = q_k + alpha r_k."""

    def mix(self, trial, residual):
        return trial + self.alpha * residual


class _HistoryMixer(Mixer):
    def __init__(self, alpha: float = 0.2, history: int = 8):
        super().__init__(alpha)
        self.history = max(1, int(history))
        self.reset()

    def reset(self):
        # one more entry than differences kept
        self.x_hist = deque(maxlen=self.history + 1)  # iterate history q_i
        self.f_hist = deque(maxlen=self.history + 1)  # residual history r_i

    def _differences(self):
        dX = torch.stack(
            [self.x_hist[i] - self.x_hist[i - 1] for i in range(1, len(self.x_hist))],
            dim=1,
        )
        dR = torch.stack(
            [self.f_hist[i] - self.f_hist[i - 1] for i in range(1, len(self.f_hist))],
            dim=1,
        )
        return dX, dR

    @torch.no_grad()
    def mix(self, trial, residual):
        self.x_hist.append(trial.detach().clone())
        self.f_hist.append(residual.detach().clone())
        if len(self.f_hist) < 2:
            return trial + self.alpha * residual
        try:
            q_next = self._quasi_newton_step(trial, residual)
        except RuntimeError:
            # Singular or ill-conditioned history; fallback to linear step
            return trial + self.alpha * residual
        if not torch.isfinite(q_next).all():
            return trial + self.alpha * residual
        return q_next

    def _quasi_newton_step(self, trial, residual):
        raise NotImplementedError


class AndersonMixer(_HistoryMixer):
    """
    Anderson mixing on the last ``history`` steps.

    beta solves  min || r_k - dR beta ||^2 + lam || beta ||^2  (normal
    equations with a small Tikhonov term) and the update is
    q_{k+1} = q_k + alpha r_k - (dX + alpha dR) beta.
    """

    def __init__(self, alpha: float = 0.2, history: int = 8, lam: float = 1e-10):
        self.lam = lam
        super().__init__(alpha, history)

    def _quasi_newton_step(self, trial, residual):
        dX, dR = self._differences()
        G = dR.T @ dR
        if self.lam > 0:
            G = G + self.lam * torch.eye(G.shape[0], dtype=G.dtype, device=G.device)
        beta = torch.linalg.solve(G, dR.T @ residual)  # (p,)
        return trial + self.alpha * residual - (dX + self.alpha * dR) @ beta


class BroydenMixer(_HistoryMixer):
    """
    Modified Broyden mixing (Johnson) with unit weights.

    With normalised residual differences dF_i and the matching update vectors
    dU_i = alpha dF_i + dX_i / |dR_i|:

        beta = (w0^2 I + dF^T dF)^-1,   gamma = (dF^T r) beta
        q_{k+1} = q_k + alpha r_k - dU gamma

    Parameters
    ----------
    alpha : float
        Linear mixing parameter, used for the first step.
    history : int
        Number of previous steps kept.
    w0 : float
        Regularisation weight of the inverse Jacobian update.
    """

    def __init__(self, alpha: float = 0.2, history: int = 8, w0: float = 0.01):
        self.w0 = w0
        super().__init__(alpha, history)

    def _quasi_newton_step(self, trial, residual):
        dX, dR = self._differences()
        inv_norm = 1.0 / torch.linalg.vector_norm(dR, dim=0)
        dF = dR * inv_norm
        dU = self.alpha * dF + dX * inv_norm
        a = dF.T @ dF
        eye = torch.eye(a.shape[0], dtype=a.dtype, device=a.device)
        beta = torch.linalg.inv(self.w0**2 * eye + a)
        gamma = (dF.T @ residual) @ beta
        return trial + self.alpha * residual - dU @ gamma


MIXERS = {
    "simple": SimpleMixer,
    "anderson": AndersonMixer,
    "broyden": BroydenMixer,
}


def build_mixer(scc_params: Dict[str, Any]) -> Mixer:
    """Mixer selected by ``scc_params["MIXER"]``, params as returned by ``get_scc_params``."""
    cls = MIXERS[scc_params["MIXER"]]
    if cls is SimpleMixer:
        return cls(scc_params["MIX_ALPHA"])
    return cls(scc_params["MIX_ALPHA"], scc_params["MIX_HISTORY"])
