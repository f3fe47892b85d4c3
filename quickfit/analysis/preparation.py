"""Parameter defaulting and command-line driven parameter edits before a fit."""
from __future__ import annotations

import logging
from typing import List, Optional

from quickfit.analysis.directives import (
    DirectiveParseError,
    apply_directive,
    parse_directive,
    split_tokens,
)
from quickfit.analysis.reporting import ENDC, FAIL
from quickfit.models.parameters import ArgSet, RealVar
from quickfit.models.workspace import ModelConfig, Workspace
from quickfit.utils.logging_config import StructuredLogger


class PreparationError(RuntimeError):
    """Raised when the parameters of interest cannot be prepared at all."""


def describe(var: RealVar) -> str:
    state = "C" if var.constant else "L"
    return f"{var.kind}::{var.name} = {var.value:g}  {state}({var.min:g} - {var.max:g})"


def set_all_constant(members: Optional[ArgSet], constant: bool) -> None:
    if members is None:
        return
    for arg in members:
        if isinstance(arg, RealVar):
            arg.set_constant(constant)


class ParameterPreparer:
    """Apply defaults, NP fixing and POI directives to a model in place."""

    def __init__(self, workspace: Workspace, model: ModelConfig,
                 logger: Optional[StructuredLogger] = None) -> None:
        self.workspace = workspace
        self.model = model
        self._logger = logger

    def _log(self, event, payload, message=None, level=logging.INFO):
        if self._logger is not None:
            self._logger.log_event(event, payload, level=level, message=message)

    def set_defaults(self) -> None:
        """Global observables constant, nuisance parameters floating, POIs constant."""
        set_all_constant(self.model.global_observables, True)
        set_all_constant(self.model.nuisance_parameters, False)
        set_all_constant(self.model.parameters_of_interest, True)

    def fix_nuisance_parameters(self, patterns: Optional[str]) -> List[str]:
        """Fix the nuisance parameters matching the comma separated wildcard ``patterns``."""
        fixed: List[str] = []
        if not patterns or self.model.nuisance_parameters is None:
            return fixed
        self._log("prepare.fix_np.start", {"patterns": patterns}, message="\nFixing nuisance parameters : ")
        for pattern in split_tokens(patterns, ","):
            for arg in self.model.nuisance_parameters.select_by_name(pattern):
                if not isinstance(arg, RealVar):
                    continue
                arg.set_constant(True)
                fixed.append(arg.name)
                self._log(
                    "prepare.fix_np",
                    {"pattern": pattern, "parameter": arg.name},
                    message=f"   Fixing nuisance parameter {arg.name}",
                )
        return fixed

    def prepare_pois(self, poi_spec: Optional[str]) -> ArgSet:
        """Return the POIs to fit, applying the directives in ``poi_spec``."""
        fit_pois = ArgSet(self.workspace)
        if poi_spec:
            self._log("prepare.poi.start", {"spec": poi_spec}, message="\nPreparing parameters of interest :")
            for token in split_tokens(poi_spec, ","):
                try:
                    directive = parse_directive(token)
                except DirectiveParseError as exc:
                    self._log(
                        "prepare.poi.invalid",
                        {"directive": token, "error": str(exc)},
                        level=logging.ERROR,
                        message=f"{FAIL}Invalid POI directive {token}: {exc}. Skipping.{ENDC}",
                    )
                    continue
                var = self.workspace.var(directive.name)
                if var is None:
                    self._log(
                        "prepare.poi.missing",
                        {"parameter": directive.name},
                        level=logging.WARNING,
                        message=f"{FAIL}Variable {directive.name} not in workspace. Skipping.{ENDC}",
                    )
                    continue
                fit_pois.add(var)
                apply_directive(directive, var)
                self._log("prepare.poi", var.state() | {"parameter": var.name}, message=f"   {describe(var)}")
            return fit_pois

        pois = self.model.parameters_of_interest
        first = pois.first() if pois is not None else None
        if first is None:
            raise PreparationError(f"Model {self.model.name} defines no parameters of interest to float")
        if not isinstance(first, RealVar):
            raise PreparationError(f"First parameter of interest {first.name} is a {first.kind} and not a RealVar")
        self._log(
            "prepare.poi.default",
            {"parameter": first.name},
            message=f"\nNo POIs specified. Will only float the first POI {first.name}",
        )
        first.set_constant(False)
        self._log("prepare.poi", first.state() | {"parameter": first.name}, message=f"   {describe(first)}")
        fit_pois.add(first)
        return fit_pois

    def prepare(self, fix_np: Optional[str] = None, poi: Optional[str] = None,
                apply_defaults: bool = True) -> ArgSet:
        """Run the full preparation and make the fit POIs the model's POI set."""
        if apply_defaults:
            self.set_defaults()
        self.fix_nuisance_parameters(fix_np)
        fit_pois = self.prepare_pois(poi)
        self.model.set_parameters_of_interest(fit_pois)
        return fit_pois


__all__ = ["ParameterPreparer", "PreparationError", "describe", "set_all_constant"]
