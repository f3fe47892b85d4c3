"""Model validation, parameter preparation and likelihood fitting."""

from .covariance import CovarianceComputationError, CovarianceResult, estimate_covariance
from .directives import DirectiveParseError, ParameterDirective, apply_directive, parse_directive, split_tokens
from .fit_tool import FitConfig, FitTool, TOLERANCE_UNIT, aggregate_status
from .likelihood import NegativeLogLikelihood, create_nll
from .minimizer import Minimizer, resolve_algorithm
from .preparation import ParameterPreparer, PreparationError
from .reporting import Stopwatch, format_summary, format_timing, results_table, status_label
from .validation import FLAT_PARAM, ModelValidationError, ModelValidator, check_model

__all__ = [
    "CovarianceComputationError",
    "CovarianceResult",
    "DirectiveParseError",
    "FLAT_PARAM",
    "FitConfig",
    "FitTool",
    "Minimizer",
    "ModelValidationError",
    "ModelValidator",
    "NegativeLogLikelihood",
    "ParameterDirective",
    "ParameterPreparer",
    "PreparationError",
    "Stopwatch",
    "TOLERANCE_UNIT",
    "aggregate_status",
    "apply_directive",
    "check_model",
    "create_nll",
    "estimate_covariance",
    "format_summary",
    "format_timing",
    "parse_directive",
    "resolve_algorithm",
    "results_table",
    "split_tokens",
    "status_label",
]
