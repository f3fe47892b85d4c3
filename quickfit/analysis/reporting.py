"""Console presentation of fit results."""
from __future__ import annotations

import math
import time
from typing import Iterable, List

import pandas as pd

from quickfit.models.parameters import RealVar

OKGREEN = "\033[92m"
FAIL = "\033[91m"
ENDC = "\033[0m"
RULE = "-" * 48


def status_label(status: int) -> str:
    if status:
        return f"{FAIL} STATUS FAILED {ENDC}"
    return f"{OKGREEN} STATUS OK {ENDC}"


def _bound(value: float) -> str:
    return f"{value:g}" if math.isfinite(value) else ("-inf" if value < 0 else "+inf")


def format_parameter(var: RealVar) -> str:
    """One-line rendering: value, error (asymmetric when available) and range."""
    if var.has_asym_error:
        error = f"({var.error_lo:+.4g}, {var.error_hi:+.4g})"
    else:
        error = f"+/- {var.error:.4g}"
    state = "C" if var.constant else "L"
    return f"{var.kind}::{var.name} = {var.value:.6g} {error}  {state}({_bound(var.min)} - {_bound(var.max)})"


def floating(fit_pois: Iterable) -> List[RealVar]:
    return [var for var in fit_pois if isinstance(var, RealVar) and not var.constant]


def failure_banner() -> str:
    return "\n".join([
        FAIL,
        "   *****************************************",
        "          WARNING: Fit status failed.       ",
        f"   *****************************************{ENDC}",
    ])


def format_summary(fit_pois: Iterable, status: int) -> str:
    """Summary block of the floating POIs headed by the status label."""
    lines = [f"\n  Fit Summary of POIs ({status_label(status)})", RULE]
    lines.extend(format_parameter(var) for var in floating(fit_pois))
    if status:
        lines.append(failure_banner())
    return "\n".join(lines)


def format_timing(cpu_minutes: float, real_minutes: float) -> str:
    return f"\nAll fits done in {cpu_minutes:.2f} min (cpu), {real_minutes:.2f} min (real)"


class Stopwatch:
    """CPU and wall-clock time elapsed since construction, in minutes."""

    def __init__(self) -> None:
        self._cpu_start = time.process_time()
        self._real_start = time.perf_counter()
        self.cpu_minutes = None
        self.real_minutes = None

    def stop(self):
        self.cpu_minutes = (time.process_time() - self._cpu_start) / 60.0
        self.real_minutes = (time.perf_counter() - self._real_start) / 60.0
        return self.cpu_minutes, self.real_minutes


def results_table(fit_pois: Iterable, save_errors: bool = False) -> pd.DataFrame:
    """Post-fit values of the floating POIs, with their errors when requested."""
    columns = ["name", "value"]
    if save_errors:
        columns += ["error", "error_lo", "error_hi"]
    rows = []
    for var in floating(fit_pois):
        row = {"name": var.name, "value": var.value}
        if save_errors:
            row.update(error=var.error, error_lo=var.error_lo, error_hi=var.error_hi)
        rows.append(row)
    return pd.DataFrame(rows, columns=columns)


__all__ = [
    "Stopwatch",
    "failure_banner",
    "format_parameter",
    "format_summary",
    "format_timing",
    "results_table",
    "status_label",
]
