"""Real-valued parameters and name-keyed parameter sets."""
from __future__ import annotations

import fnmatch
import math
from typing import Dict, Iterable, Iterator, List, Optional, Sequence


class RealVar:
    """A named real-valued parameter with a range and a constancy flag.

    The value is kept inside ``[min, max]``: :meth:`set_value` clamps and
    :meth:`set_range` clamps the current value into the new range.
    """

    kind = "RealVar"

    def __init__(
        self,
        name: str,
        value: float = 0.0,
        minimum: float = -math.inf,
        maximum: float = math.inf,
        constant: bool = False,
        error: float = 0.0,
        attributes: Optional[Iterable[str]] = None,
    ) -> None:
        if not name:
            raise ValueError("RealVar requires a non-empty name")
        self.name = name
        self._min = -math.inf
        self._max = math.inf
        self._value = float(value)
        self.set_range(minimum, maximum)
        self.constant = bool(constant)
        self.error = float(error)
        self.error_lo: Optional[float] = None
        self.error_hi: Optional[float] = None
        self.attributes = set(attributes or ())

    def __repr__(self) -> str:
        return (
            f"RealVar({self.name!r}, value={self._value!r}, min={self._min!r}, "
            f"max={self._max!r}, constant={self.constant!r})"
        )

    @property
    def value(self) -> float:
        return self._value

    @property
    def min(self) -> float:
        return self._min

    @property
    def max(self) -> float:
        return self._max

    @property
    def has_range(self) -> bool:
        return math.isfinite(self._min) or math.isfinite(self._max)

    @property
    def has_asym_error(self) -> bool:
        return self.error_lo is not None and self.error_hi is not None

    def set_value(self, value: float) -> None:
        self._value = min(max(float(value), self._min), self._max)

    def set_range(self, low: float, high: float) -> None:
        low = -math.inf if low is None else float(low)
        high = math.inf if high is None else float(high)
        if low > high:
            raise ValueError(f"Invalid range [{low}, {high}] for {self.name}: low exceeds high")
        self._min = low
        self._max = high
        self.set_value(self._value)

    def set_constant(self, constant: bool = True) -> None:
        self.constant = bool(constant)

    def set_asym_error(self, low: float, high: float) -> None:
        self.error_lo = float(low)
        self.error_hi = float(high)

    def remove_asym_error(self) -> None:
        self.error_lo = None
        self.error_hi = None

    def set_attribute(self, name: str, on: bool = True) -> None:
        if on:
            self.attributes.add(name)
        else:
            self.attributes.discard(name)

    def get_attribute(self, name: str) -> bool:
        return name in self.attributes

    def servers(self) -> List[str]:
        return []

    def evaluate(self, workspace) -> float:
        return self._value

    # Snapshot/serialisation helpers ----------------------------------------
    def state(self) -> Dict[str, object]:
        return {
            "value": self._value,
            "min": self._min,
            "max": self._max,
            "constant": self.constant,
            "error": self.error,
            "error_lo": self.error_lo,
            "error_hi": self.error_hi,
        }

    def restore(self, state: Dict[str, object]) -> None:
        self.set_range(state.get("min"), state.get("max"))
        self.set_value(float(state["value"]))
        self.constant = bool(state.get("constant", self.constant))
        self.error = float(state.get("error") or 0.0)
        if state.get("error_lo") is not None and state.get("error_hi") is not None:
            self.set_asym_error(state["error_lo"], state["error_hi"])
        else:
            self.remove_asym_error()

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {"name": self.name, "type": self.kind}
        payload.update(self.state())
        payload["attributes"] = sorted(self.attributes)
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, object]) -> "RealVar":
        var = cls(
            payload["name"],
            value=float(payload.get("value", 0.0)),
            minimum=payload.get("min"),
            maximum=payload.get("max"),
            constant=bool(payload.get("constant", False)),
            error=float(payload.get("error") or 0.0),
            attributes=payload.get("attributes"),
        )
        if payload.get("error_lo") is not None and payload.get("error_hi") is not None:
            var.set_asym_error(payload["error_lo"], payload["error_hi"])
        return var


class ProductVar:
    """Derived real value: the product of other named variables."""

    kind = "ProductVar"

    def __init__(self, name: str, factors: Sequence[str]) -> None:
        if not factors:
            raise ValueError(f"ProductVar {name} needs at least one factor")
        self.name = name
        self.factors = list(factors)
        self.attributes: set = set()

    def __repr__(self) -> str:
        return f"ProductVar({self.name!r}, factors={self.factors!r})"

    def servers(self) -> List[str]:
        return list(self.factors)

    def evaluate(self, workspace) -> float:
        result = 1.0
        for factor in self.factors:
            result *= workspace.value(factor)
        return result

    def set_attribute(self, name: str, on: bool = True) -> None:
        if on:
            self.attributes.add(name)
        else:
            self.attributes.discard(name)

    def get_attribute(self, name: str) -> bool:
        return name in self.attributes

    def to_dict(self) -> Dict[str, object]:
        return {"name": self.name, "type": self.kind, "factors": list(self.factors)}

    @classmethod
    def from_dict(cls, payload: Dict[str, object]) -> "ProductVar":
        return cls(payload["name"], payload["factors"])


VARIABLE_TYPES = {cls.kind: cls for cls in (RealVar, ProductVar)}


class ArgSet:
    """Ordered set of variable names resolved against one workspace.

    Membership is tracked by name only, so several sets can share the same
    parameters without holding copies of them.
    """

    def __init__(self, workspace, names: Iterable = ()) -> None:
        self._workspace = workspace
        self._names: List[str] = []
        for item in names:
            self.add(item)

    def __repr__(self) -> str:
        return f"ArgSet({self._names!r})"

    def __iter__(self) -> Iterator:
        for name in list(self._names):
            yield self._workspace.function(name)

    def __len__(self) -> int:
        return len(self._names)

    def __bool__(self) -> bool:
        return bool(self._names)

    def __contains__(self, item) -> bool:
        return _name_of(item) in self._names

    @property
    def names(self) -> List[str]:
        return list(self._names)

    def add(self, item) -> bool:
        """Add ``item`` (object or name); return False when already present."""
        name = _name_of(item)
        if self._workspace.function(name) is None:
            raise KeyError(f"Variable {name} does not exist in workspace {self._workspace.name}")
        if name in self._names:
            return False
        self._names.append(name)
        return True

    def remove(self, item) -> bool:
        name = _name_of(item)
        if name not in self._names:
            return False
        self._names.remove(name)
        return True

    def first(self):
        if not self._names:
            return None
        return self._workspace.function(self._names[0])

    def select_by_name(self, patterns: str) -> "ArgSet":
        """Return the members matching any of the comma separated wildcard patterns."""
        tokens = [token.strip() for token in patterns.split(",") if token.strip()]
        selected = [
            name for name in self._names
            if any(fnmatch.fnmatchcase(name, token) for token in tokens)
        ]
        return ArgSet(self._workspace, selected)

    def copy(self) -> "ArgSet":
        return ArgSet(self._workspace, self._names)


def _name_of(item) -> str:
    if isinstance(item, str):
        return item
    return item.name


__all__ = ["ArgSet", "ProductVar", "RealVar", "VARIABLE_TYPES"]
