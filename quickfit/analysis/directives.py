"""Command-line mini-language for parameter values, ranges and constancy.

A directive is one of::

    name                  float the parameter, keep value and range
    name=value            fix the parameter at value
    name=value_low_high   float the parameter in [low, high] starting at value

Several directives are joined with commas on the command line.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from quickfit.models.parameters import RealVar


class DirectiveParseError(ValueError):
    """Raised when a parameter directive does not follow the mini-language."""


@dataclass(frozen=True)
class ParameterDirective:
    name: str
    value: Optional[float] = None
    low: Optional[float] = None
    high: Optional[float] = None

    @property
    def floats(self) -> bool:
        return self.value is None or self.has_range

    @property
    def has_range(self) -> bool:
        return self.low is not None and self.high is not None


def split_tokens(text: str, delimiter: str) -> List[str]:
    """Split ``text`` on ``delimiter`` dropping empty tokens and surrounding blanks."""
    return [token.strip() for token in text.split(delimiter) if token.strip()]


def _to_float(token: str, directive: str) -> float:
    try:
        return float(token)
    except ValueError:
        raise DirectiveParseError(f"'{token}' in directive '{directive}' is not a number") from None


def parse_directive(text: str) -> ParameterDirective:
    terms = text.strip().split("=")
    name = terms[0].strip()
    if not name:
        raise DirectiveParseError(f"Directive '{text}' has no parameter name")
    if len(terms) == 1:
        return ParameterDirective(name)
    if len(terms) > 2:
        raise DirectiveParseError(f"Directive '{text}' contains more than one '='")

    values = terms[1].strip().split("_")
    if len(values) == 1:
        return ParameterDirective(name, _to_float(values[0], text))
    if len(values) == 3:
        value, low, high = (_to_float(token, text) for token in values)
        if low > high:
            raise DirectiveParseError(f"Directive '{text}' has a lower bound above its upper bound")
        if not low <= value <= high:
            raise DirectiveParseError(f"Directive '{text}' sets a value outside its range")
        return ParameterDirective(name, value, low, high)
    raise DirectiveParseError(
        f"Directive '{text}' must be 'name', 'name=value' or 'name=value_low_high' "
        f"(got {len(values)} '_'-separated values)"
    )


def parse_directives(text: str) -> List[ParameterDirective]:
    """Parse a comma separated directive list, failing on the first malformed entry."""
    return [parse_directive(token) for token in split_tokens(text, ",")]


def _widen(var: RealVar, low: float, high: float) -> None:
    # an inverted range leaves the current one in place
    if low <= high:
        var.set_range(low, high)


def apply_directive(directive: ParameterDirective, var: RealVar) -> None:
    if directive.value is None:
        var.set_constant(False)
        return
    if directive.has_range:
        var.set_range(directive.low, directive.high)
        var.set_value(directive.value)
        var.set_constant(False)
        return

    # widen the range towards the fixed value; set_value clamps what is still outside
    value = directive.value
    if value > var.max:
        _widen(var, var.min, 2 * value)
    if value < var.min:
        _widen(var, -2 * abs(value), var.max)
    var.set_value(value)
    var.set_constant(True)


__all__ = [
    "DirectiveParseError",
    "ParameterDirective",
    "apply_directive",
    "parse_directive",
    "parse_directives",
    "split_tokens",
]
