"""Observed datasets over the model observables."""
from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional

import numpy as np


class Dataset:
    """Named columns of observed values with optional per-entry weights.

    Binned data is stored the same way: one entry per bin centre, weighted by
    the bin count.
    """

    def __init__(self, name: str, columns: Mapping[str, Iterable[float]], weights: Optional[Iterable[float]] = None):
        self.name = name
        self._columns: Dict[str, np.ndarray] = {
            key: np.asarray(list(values), dtype=float) for key, values in columns.items()
        }
        lengths = {len(values) for values in self._columns.values()}
        if len(lengths) > 1:
            raise ValueError(f"Dataset {name} has columns of different lengths: {sorted(lengths)}")
        n_entries = lengths.pop() if lengths else 0
        if weights is None:
            self._weights = np.ones(n_entries, dtype=float)
            self._weighted = False
        else:
            self._weights = np.asarray(list(weights), dtype=float)
            self._weighted = True
            if self._weights.shape != (n_entries,):
                raise ValueError(
                    f"Dataset {name} has {self._weights.size} weights for {n_entries} entries"
                )

    def __repr__(self) -> str:
        return f"Dataset({self.name!r}, observables={self.observables!r}, entries={self.n_entries})"

    @property
    def observables(self) -> List[str]:
        return list(self._columns)

    @property
    def n_entries(self) -> int:
        return int(self._weights.size)

    @property
    def weights(self) -> np.ndarray:
        return self._weights

    @property
    def sum_weights(self) -> float:
        return float(np.sum(self._weights))

    def columns(self, start: int = 0, stop: Optional[int] = None) -> Dict[str, np.ndarray]:
        return {key: values[start:stop] for key, values in self._columns.items()}

    def histogram(self, observable: str, edges) -> np.ndarray:
        """Weighted counts of ``observable`` in the bins defined by ``edges``."""
        counts, _ = np.histogram(self._columns[observable], bins=np.asarray(edges, dtype=float), weights=self._weights)
        return counts

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "name": self.name,
            "observables": {key: values.tolist() for key, values in self._columns.items()},
        }
        if self._weighted:
            payload["weights"] = self._weights.tolist()
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "Dataset":
        return cls(payload["name"], payload.get("observables") or {}, payload.get("weights"))


__all__ = ["Dataset"]
