"""Structural sanity checks of a model configuration before fitting."""
from __future__ import annotations

import logging
from typing import List, Optional

from quickfit.models.parameters import RealVar
from quickfit.models.workspace import ModelConfig
from quickfit.utils.logging_config import StructuredLogger

FLAT_PARAM = "flatParam"


class ModelValidationError(ValueError):
    """Raised for a model without a pdf, or for an invalid model when asked to."""


class ModelValidator:
    """Check the parameter partitions of a model against its pdf.

    Problems are accumulated in :attr:`messages` as ``ERROR:`` and
    ``WARNING:`` lines. Errors make the model invalid; warnings do not.
    Nuisance parameters the pdf does not depend on are removed from the
    nuisance partition.
    """

    def __init__(self, logger: Optional[StructuredLogger] = None) -> None:
        self._logger = logger
        self.messages: List[str] = []

    @property
    def errors(self) -> List[str]:
        return [line for line in self.messages if line.startswith("ERROR:")]

    @property
    def warnings(self) -> List[str]:
        return [line for line in self.messages if line.startswith("WARNING:")]

    def _error(self, text: str) -> None:
        self.messages.append(f"ERROR: {text}")

    def _warning(self, text: str) -> None:
        self.messages.append(f"WARNING: {text}")

    def validate(self, model: ModelConfig, throw_on_failure: bool = False) -> bool:
        self.messages = []
        pdf = model.pdf
        if pdf is None:
            raise ModelValidationError("Model without Pdf")
        workspace = model.workspace
        allowed_to_float = set()

        if model.observables is None:
            self._error("model does not define observables.")
            return self._finish(False, throw_on_failure)
        allowed_to_float.update(model.observables.names)

        ok = True
        if model.parameters_of_interest is None:
            ok = False
            self._error("model does not define parameters of interest.")
        else:
            for arg in model.parameters_of_interest:
                if not isinstance(arg, RealVar):
                    ok = False
                    self._error(f"parameter of interest {arg.name} is a {arg.kind} and not a RealVar")
                    continue
                if not workspace.depends_on(pdf.name, arg.name):
                    ok = False
                    self._error(f"pdf does not depend on parameter of interest {arg.name}")
                    continue
                allowed_to_float.add(arg.name)

        if model.nuisance_parameters is not None:
            for arg in model.nuisance_parameters:
                if not isinstance(arg, RealVar):
                    ok = False
                    self._error(f"nuisance parameter {arg.name} is a {arg.kind} and not a RealVar")
                    continue
                if arg.constant:
                    ok = False
                    self._error(f"nuisance parameter {arg.name} is constant")
                    continue
                if not workspace.depends_on(pdf.name, arg.name):
                    self._warning(f"pdf does not depend on nuisance parameter, removing {arg.name}")
                    model.nuisance_parameters.remove(arg)
                    continue
                allowed_to_float.add(arg.name)

        if model.global_observables is not None:
            for arg in model.global_observables:
                if not isinstance(arg, RealVar):
                    ok = False
                    self._error(f"global observable {arg.name} is a {arg.kind} and not a RealVar")
                    continue
                if not arg.constant:
                    ok = False
                    self._error(f"global observable {arg.name} is not constant")
                    continue
                if not workspace.depends_on(pdf.name, arg.name):
                    self._warning(f"pdf does not depend on global observable {arg.name}")

        for name in workspace.leaf_parameters(pdf.name, exclude=model.observables.names):
            param = workspace.var(name)
            if param.constant or name in allowed_to_float or param.get_attribute(FLAT_PARAM):
                continue
            self._warning(
                f"pdf parameter {name} (type {param.kind}) is not allowed to float "
                f"(it's not nuisance, poi, observable or global observable)"
            )

        return self._finish(ok, throw_on_failure)

    def _finish(self, ok: bool, throw_on_failure: bool) -> bool:
        if self._logger is not None:
            for line in self.messages:
                level = logging.ERROR if line.startswith("ERROR:") else logging.WARNING
                self._logger.log_event("model_check.message", {"message": line}, level=level, message=line)
            self._logger.log_event(
                "model_check.complete",
                {"valid": ok, "errors": len(self.errors), "warnings": len(self.warnings)},
            )
        if not ok and throw_on_failure:
            raise ModelValidationError("\n".join(self.messages))
        return ok


def check_model(model: ModelConfig, throw_on_failure: bool = False,
                logger: Optional[StructuredLogger] = None) -> bool:
    """Validate ``model``; see :class:`ModelValidator`."""
    return ModelValidator(logger).validate(model, throw_on_failure)


__all__ = ["FLAT_PARAM", "ModelValidationError", "ModelValidator", "check_model"]
