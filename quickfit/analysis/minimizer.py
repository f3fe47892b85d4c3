"""Minimisation, curvature and profile-likelihood errors built on ``scipy.optimize``.

Status codes follow the usual minimiser convention: 0 means success, any
other value is a failure code of the step that produced it.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
from scipy.optimize import brentq, minimize

from quickfit.analysis.covariance import (
    ERRORDEF_NLL,
    CovarianceComputationError,
    estimate_covariance,
)
from quickfit.analysis.likelihood import NegativeLogLikelihood
from quickfit.utils.logging_config import StructuredLogger

ALGORITHMS = {
    "Minuit2": "L-BFGS-B",
    "Minuit": "L-BFGS-B",
    "Migrad": "L-BFGS-B",
    "Simplex": "Nelder-Mead",
}
SCIPY_METHODS = {"L-BFGS-B", "TNC", "SLSQP", "Powell", "Nelder-Mead", "BFGS", "CG", "trust-constr"}
BOUNDED_METHODS = {"L-BFGS-B", "TNC", "SLSQP", "Powell", "Nelder-Mead", "trust-constr"}

BASE_FTOL = 2.2e-9
BASE_GTOL = 1e-5
BASE_XTOL = 1e-6
ITERATIONS_PER_STRATEGY = 1000
MAX_BRACKET_DOUBLINGS = 30
INVALID_NLL = 1e30


def resolve_algorithm(name: str) -> str:
    """Map a minimiser algorithm name to the ``scipy.optimize.minimize`` method."""
    if name in ALGORITHMS:
        return ALGORITHMS[name]
    if name in SCIPY_METHODS:
        return name
    raise ValueError(f"Unknown minimizer algorithm {name!r}; expected one of {sorted(ALGORITHMS)} or a scipy method")


def _finite_or_none(value: float) -> Optional[float]:
    return value if math.isfinite(value) else None


class Minimizer:
    """Drive a :class:`NegativeLogLikelihood` to its minimum and compute errors.

    Parameters are read from and written back to the workspace, so after
    :meth:`minimize` the workspace holds the best-fit values, after
    :meth:`hesse` their symmetric errors and after :meth:`minos` their
    asymmetric errors.
    """

    def __init__(self, nll: NegativeLogLikelihood, logger: Optional[StructuredLogger] = None,
                 errordef: float = ERRORDEF_NLL) -> None:
        self.nll = nll
        self.errordef = errordef
        self.strategy = 1
        self.print_level = 0
        self.eps = 1.0
        self.profile = False
        self.fmin: Optional[float] = None
        self.covariance = None
        self.last_result = None
        self._logger = logger

    def _log(self, event, payload, message=None, level=logging.INFO):
        if self._logger is not None:
            self._logger.log_event(event, payload, level=level, message=message)

    # Settings ---------------------------------------------------------------
    def set_strategy(self, strategy: int) -> None:
        self.strategy = int(strategy)

    def set_print_level(self, level: int) -> None:
        self.print_level = int(level)

    def set_eps(self, eps: float) -> None:
        if not eps > 0:
            raise ValueError(f"Tolerance scale must be positive, got {eps}")
        self.eps = float(eps)

    def optimize_const(self, level: int) -> None:
        self.nll.set_optimize_const(level)

    def set_profile(self, flag: bool = True) -> None:
        self.profile = bool(flag)

    @property
    def max_iterations(self) -> int:
        return ITERATIONS_PER_STRATEGY * (self.strategy + 1)

    # Helpers ------------------------------------------------------------------
    def _parameters(self) -> Tuple[List[str], np.ndarray, List[Tuple[Optional[float], Optional[float]]]]:
        names = self.nll.floating_parameters()
        workspace = self.nll.workspace
        values = np.array([workspace.var(name).value for name in names], dtype=float)
        bounds = [
            (_finite_or_none(workspace.var(name).min), _finite_or_none(workspace.var(name).max))
            for name in names
        ]
        return names, values, bounds

    def _objective(self, names: Sequence[str]):
        def objective(x):
            value = self.nll.evaluate(names, x)
            return value if np.isfinite(value) else INVALID_NLL
        return objective

    def _options(self, method: str) -> dict:
        options = {"maxiter": self.max_iterations}
        if method == "L-BFGS-B":
            options.update(ftol=BASE_FTOL * self.eps, gtol=BASE_GTOL * self.eps)
        elif method == "Nelder-Mead":
            options.update(xatol=BASE_XTOL * self.eps, fatol=BASE_FTOL * self.eps, adaptive=True)
        return options

    def _run(self, method: str, names, x0, bounds, callback=None):
        return minimize(
            self._objective(names),
            x0,
            method=method,
            bounds=bounds if method in BOUNDED_METHODS else None,
            callback=callback,
            options=self._options(method),
        )

    def _report_profile(self, step: str, started: float, evaluations: int) -> None:
        if not self.profile:
            return
        self._log(
            "minimizer.profile",
            {
                "step": step,
                "wall_seconds": time.perf_counter() - started,
                "nll_evaluations": self.nll.n_evaluations - evaluations,
                "nll_seconds": self.nll.eval_time,
            },
            level=logging.DEBUG,
        )

    # Steps --------------------------------------------------------------------
    def minimize(self, algorithm: str = "Minuit2") -> int:
        method = resolve_algorithm(algorithm)
        return self._minimize_with(method, step=f"minimize.{algorithm}")

    def simplex(self) -> int:
        return self._minimize_with("Nelder-Mead", step="simplex")

    def _minimize_with(self, method: str, step: str) -> int:
        started, evaluations = time.perf_counter(), self.nll.n_evaluations
        names, x0, bounds = self._parameters()
        if not names:
            self.fmin = self.nll()
            self._log("minimizer.no_parameters", {"step": step}, level=logging.WARNING,
                      message="No floating parameters, nothing to minimize")
            return 0

        iteration = [0]

        def callback(xk, *args):
            iteration[0] += 1
            if self.print_level >= 2:
                self._log(
                    "minimizer.iteration",
                    {"step": step, "iteration": iteration[0], "parameters": dict(zip(names, np.atleast_1d(xk)))},
                    level=logging.DEBUG,
                )

        result = self._run(method, names, x0, bounds, callback)
        self.last_result = result
        self.fmin = self.nll.evaluate(names, result.x)
        status = 0 if result.success else max(int(result.status), 1)

        errors = self._approximate_errors(result, len(names))
        if errors is not None:
            for name, error in zip(names, errors):
                if error > 0:
                    self.nll.workspace.var(name).error = float(error)

        self._log(
            "minimizer.result",
            {
                "step": step,
                "method": method,
                "status": status,
                "message": str(result.message),
                "fmin": self.fmin,
                "iterations": int(getattr(result, "nit", 0) or 0),
                "parameters": dict(zip(names, result.x)),
            },
            message=(
                f"{step}: status {status}, NLL {self.fmin:.6g} after "
                f"{int(getattr(result, 'nfev', 0) or 0)} evaluations ({result.message})"
            ) if self.print_level >= 1 else None,
        )
        self._report_profile(step, started, evaluations)
        return status

    def _approximate_errors(self, result, n_params: int) -> Optional[np.ndarray]:
        hess_inv = getattr(result, "hess_inv", None)
        if hess_inv is None:
            return None
        if hasattr(hess_inv, "todense"):
            hess_inv = hess_inv.todense()
        matrix = np.asarray(hess_inv, dtype=float)
        if matrix.shape != (n_params, n_params):
            return None
        diag = np.diag(matrix) * 2.0 * self.errordef
        return np.sqrt(np.clip(diag, 0.0, None))

    def hesse(self) -> int:
        started, evaluations = time.perf_counter(), self.nll.n_evaluations
        names, theta, bounds = self._parameters()
        if not names:
            return 0
        try:
            result = estimate_covariance(
                lambda x: self.nll.evaluate(names, x), theta, names, bounds, errordef=self.errordef
            )
        except CovarianceComputationError as exc:
            self._log("minimizer.hesse_failed", {"error": str(exc)}, level=logging.WARNING,
                      message=f"HESSE failed: {exc}")
            return 2
        finally:
            self.nll.set_values(names, theta)

        self.covariance = result
        for name, error in result.errors.items():
            if error is not None:
                self.nll.workspace.var(name).error = error
        status = 0 if result.clean else 1
        self._log(
            "minimizer.hesse",
            {
                "status": status,
                "errors": result.errors,
                "condition_number": result.condition_number,
                "regularisation": result.regularisation,
            },
            level=logging.INFO if status == 0 else logging.WARNING,
            message=f"HESSE: status {status}" if self.print_level >= 1 or status else None,
        )
        self._report_profile("hesse", started, evaluations)
        return status

    def minos(self, params: Optional[Iterable] = None) -> int:
        """Profile each parameter in ``params`` (default: all floating) to ``NLL_min + errordef``."""
        started, evaluations = time.perf_counter(), self.nll.n_evaluations
        names, best, bounds = self._parameters()
        requested = names if params is None else [
            item if isinstance(item, str) else item.name for item in params
        ]
        status = 0
        try:
            fmin = self.nll.evaluate(names, best)
            target = fmin + self.errordef
            for name in requested:
                if name not in names:
                    self._log("minimizer.minos_skip", {"parameter": name}, level=logging.WARNING,
                              message=f"MINOS: {name} is not a floating parameter, skipping")
                    continue
                low, low_ok = self._crossing(name, names, best, bounds, target, direction=-1)
                high, high_ok = self._crossing(name, names, best, bounds, target, direction=+1)
                self.nll.set_values(names, best)
                index = names.index(name)
                var = self.nll.workspace.var(name)
                var.set_asym_error(low - best[index], high - best[index])
                if not (low_ok and high_ok):
                    status = 1
                self._log(
                    "minimizer.minos",
                    {"parameter": name, "error_lo": var.error_lo, "error_hi": var.error_hi,
                     "low_found": low_ok, "high_found": high_ok},
                    level=logging.INFO if low_ok and high_ok else logging.WARNING,
                    message=f"MINOS: {name} {var.error_lo:+.4g} / {var.error_hi:+.4g}" if self.print_level >= 1 else None,
                )
        finally:
            self.nll.set_values(names, best)
        self._report_profile("minos", started, evaluations)
        return status

    def _profiled(self, name: str, value: float, names, best, bounds) -> float:
        index = names.index(name)
        self.nll.workspace.var(name).set_value(value)
        others = [other for other in names if other != name]
        if not others:
            return self.nll()
        start = np.delete(best, index)
        other_bounds = [bound for i, bound in enumerate(bounds) if i != index]
        result = self._run("L-BFGS-B", others, start, other_bounds)
        return float(self.nll.evaluate(others, result.x))

    def _crossing(self, name, names, best, bounds, target, direction: int) -> Tuple[float, bool]:
        index = names.index(name)
        var = self.nll.workspace.var(name)
        limit = var.min if direction < 0 else var.max
        centre = best[index]
        step = var.error if var.error > 0 else max(abs(centre) * 0.1, 0.1)

        def delta(value):
            return self._profiled(name, value, names, best, bounds) - target

        edge = centre
        for _ in range(MAX_BRACKET_DOUBLINGS):
            edge = centre + direction * step
            if (edge - limit) * direction >= 0:
                edge = limit
                break
            if delta(edge) > 0:
                return float(brentq(delta, *sorted((centre, edge)), xtol=BASE_XTOL * max(step, 1.0))), True
            step *= 2.0
        else:
            return float(edge), False

        if math.isfinite(edge) and delta(edge) > 0 and edge != centre:
            return float(brentq(delta, *sorted((centre, edge)), xtol=BASE_XTOL * max(step, 1.0))), True
        self._log("minimizer.minos_limit", {"parameter": name, "limit": limit}, level=logging.WARNING,
                  message=f"MINOS: {name} reaches its limit {limit:g} before the crossing")
        return float(edge), False


__all__ = ["ALGORITHMS", "Minimizer", "resolve_algorithm"]
