"""Maximum-likelihood fit of a model configuration to a dataset."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Iterable, Optional

from quickfit.analysis.likelihood import create_nll
from quickfit.analysis.minimizer import Minimizer, resolve_algorithm
from quickfit.models.dataset import Dataset
from quickfit.models.pdfs import BINNED_LIKELIHOOD, BinnedSumPdf
from quickfit.models.workspace import ModelConfig
from quickfit.utils.command_set import CommandSet
from quickfit.utils.logging_config import StructuredLogger

# Tolerances are handed to the minimizer in units of this value.
TOLERANCE_UNIT = 1e-3


@dataclass(frozen=True)
class FitConfig:
    """Minimizer settings for one fit."""

    algorithm: str = "Minuit2"
    tolerance: float = 1e-3
    strategy: int = 0
    optimize_const: int = 0
    print_level: int = 2
    n_cpu: int = 1
    nll_offset: bool = True
    use_hesse: bool = True
    use_minos: bool = True
    use_simplex: bool = False
    fix_star_cache: bool = False

    def __post_init__(self) -> None:
        resolve_algorithm(self.algorithm)
        if not self.tolerance > 0:
            raise ValueError(f"Minimizer tolerance must be positive, got {self.tolerance}")
        if self.n_cpu < 1:
            raise ValueError(f"Number of CPUs must be at least 1, got {self.n_cpu}")
        if self.strategy < 0 or self.optimize_const < 0:
            raise ValueError("Minimizer strategy and constant optimisation level must be non-negative")

    @property
    def eps(self) -> float:
        return self.tolerance / TOLERANCE_UNIT


def aggregate_status(statuses: Iterable[int]) -> int:
    """Bitwise AND of stage statuses in execution order."""
    statuses = list(statuses)
    if not statuses:
        raise ValueError("At least one stage status is required")
    overall = statuses[0]
    for status in statuses[1:]:
        overall &= status
    return overall


class FitTool:
    """Run minimisation, HESSE and MINOS on the NLL of a model and dataset."""

    def __init__(
        self,
        config: Optional[FitConfig] = None,
        logger: Optional[StructuredLogger] = None,
        minimizer_factory: Callable[..., Minimizer] = Minimizer,
    ) -> None:
        self.config = config or FitConfig()
        self._logger = logger
        self._minimizer_factory = minimizer_factory
        self.stage_statuses: Dict[str, int] = {}
        self.simplex_status: Optional[int] = None
        self.minimizer: Optional[Minimizer] = None

    def _log(self, event, payload, message=None, level=logging.INFO):
        if self._logger is not None:
            self._logger.log_event(event, payload, level=level, message=message)

    def _mark_binned_pdfs(self, model: ModelConfig) -> None:
        for pdf in model.workspace.all_pdfs():
            if isinstance(pdf, BinnedSumPdf) and not pdf.get_attribute(BINNED_LIKELIHOOD):
                pdf.set_attribute(BINNED_LIKELIHOOD)
                self._log(
                    "fit.binned_likelihood",
                    {"pdf": pdf.name},
                    level=logging.DEBUG,
                    message=f"Activating binned likelihood evaluation for {pdf.name}",
                )

    def profile_to_data(self, model: ModelConfig, data: Optional[Dataset]) -> int:
        """Fit ``model`` to ``data`` and return the aggregated minimizer status."""
        pdf = model.pdf
        if pdf is None:
            raise ValueError(f"Model {model.name} has no pdf to fit")
        if data is None:
            raise ValueError("No dataset to fit")

        self.stage_statuses = {}
        self.simplex_status = None
        self._mark_binned_pdfs(model)
        self._log("fit.start", asdict(self.config) | {"pdf": pdf.name, "data": data.name})

        nll = create_nll(
            model.workspace,
            pdf,
            data,
            constrain=model.nuisance_parameters or (),
            global_observables=model.global_observables or (),
            offset=self.config.nll_offset,
            n_cpu=self.config.n_cpu,
            fix_cache=self.config.fix_star_cache,
        )
        with nll:
            minimizer = self._minimizer_factory(nll, logger=self._logger)
            self.minimizer = minimizer
            minimizer.set_strategy(self.config.strategy)
            minimizer.set_print_level(self.config.print_level - 1)
            minimizer.set_profile(True)
            minimizer.set_eps(self.config.eps)
            minimizer.optimize_const(self.config.optimize_const)

            if self.config.use_simplex:
                self._log("fit.simplex.start", {}, message="\nStarting fit with SIMPLEX...")
                self.simplex_status = minimizer.simplex()
                self._log("fit.simplex.complete", {"status": self.simplex_status})

            pois = model.parameters_of_interest
            stages = CommandSet("fit", self._logger)
            stages.register(
                "minimize",
                lambda: minimizer.minimize(self.config.algorithm),
                description=f"Starting fit with {self.config.algorithm}...",
            )
            stages.register(
                "hesse",
                minimizer.hesse,
                description="Starting fit with HESSE...",
                enabled=self.config.use_hesse,
            )
            stages.register(
                "minos",
                lambda: minimizer.minos(pois.names if pois is not None else []),
                description="Starting fit with MINOS...",
                enabled=self.config.use_minos,
            )
            self.stage_statuses = stages.execute()

        status = aggregate_status(self.stage_statuses.values())
        self._log(
            "fit.complete",
            {"status": status, "stages": self.stage_statuses, "simplex_status": self.simplex_status},
        )
        return status


__all__ = ["FitConfig", "FitTool", "TOLERANCE_UNIT", "aggregate_status"]
