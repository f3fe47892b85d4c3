"""Probability density functions evaluated against a workspace.

Pdfs only hold the *names* of the variables they depend on. Every evaluation
receives the workspace, which resolves those names to current values. This
keeps a single owner for parameter state: the workspace.

Three kinds are provided:

* :class:`GaussianPdf` - unbinned Gaussian in one variable. When its variable
  is not a dataset column (a global observable) it is evaluated at the current
  workspace value, which is how auxiliary constraint terms are expressed.
* :class:`BinnedSumPdf` - extended sum of binned templates with normalisation
  factors and piecewise-linear shape systematics.
* :class:`ProductPdf` - product of component pdfs.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np

YIELD_FLOOR = 1e-12
BINNED_LIKELIHOOD = "BinnedLikelihood"


class Pdf:
    """Base class for all densities."""

    kind = "Pdf"
    extended = False

    def __init__(self, name: str) -> None:
        if not name:
            raise ValueError(f"{self.kind} requires a non-empty name")
        self.name = name
        self.attributes: set = set()

    def __repr__(self) -> str:
        return f"{self.kind}({self.name!r})"

    def servers(self) -> List[str]:
        raise NotImplementedError

    def log_pdf(self, workspace, columns: Optional[Mapping[str, np.ndarray]] = None,
                cache=None, fix_cache: bool = False) -> np.ndarray:
        raise NotImplementedError

    def in_range(self, columns: Mapping[str, np.ndarray], n_entries: int) -> np.ndarray:
        """Mask of the entries this pdf is defined on."""
        return np.ones(n_entries, dtype=bool)

    def expected_events(self, workspace, cache=None, fix_cache: bool = False) -> Optional[float]:
        return None

    def set_attribute(self, name: str, on: bool = True) -> None:
        if on:
            self.attributes.add(name)
        else:
            self.attributes.discard(name)

    def get_attribute(self, name: str) -> bool:
        return name in self.attributes

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {"name": self.name, "type": self.kind}
        if self.attributes:
            payload["attributes"] = sorted(self.attributes)
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "Pdf":
        raise NotImplementedError


class GaussianPdf(Pdf):
    kind = "GaussianPdf"

    def __init__(self, name: str, x: str, mean: str, sigma: str) -> None:
        super().__init__(name)
        self.x = x
        self.mean = mean
        self.sigma = sigma

    def servers(self) -> List[str]:
        return [self.x, self.mean, self.sigma]

    def log_pdf(self, workspace, columns=None, cache=None, fix_cache: bool = False) -> np.ndarray:
        if columns is not None and self.x in columns:
            x = np.asarray(columns[self.x], dtype=float)
        else:
            x = np.array([workspace.value(self.x)], dtype=float)
        mean = workspace.value(self.mean)
        sigma = workspace.value(self.sigma)
        if not sigma > 0:
            return np.full(x.shape, -np.inf)
        z = (x - mean) / sigma
        return -0.5 * z * z - np.log(sigma) - 0.5 * np.log(2.0 * np.pi)

    def to_dict(self) -> Dict[str, object]:
        payload = super().to_dict()
        payload.update({"x": self.x, "mean": self.mean, "sigma": self.sigma})
        return payload

    @classmethod
    def from_dict(cls, payload):
        return cls(payload["name"], payload["x"], payload["mean"], payload["sigma"])


@dataclass
class ShapeSystematic:
    """Per-bin up/down variation driven by one parameter."""

    param: str
    up: np.ndarray
    down: np.ndarray

    def __post_init__(self) -> None:
        self.up = np.asarray(self.up, dtype=float)
        self.down = np.asarray(self.down, dtype=float)


@dataclass
class TemplateSample:
    """One binned template contributing to a :class:`BinnedSumPdf`."""

    name: str
    nominal: np.ndarray
    norm_factors: List[str] = field(default_factory=list)
    shape_systematics: List[ShapeSystematic] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.nominal = np.asarray(self.nominal, dtype=float)
        for syst in self.shape_systematics:
            if syst.up.shape != self.nominal.shape or syst.down.shape != self.nominal.shape:
                raise ValueError(
                    f"Shape systematic {syst.param} of sample {self.name} does not match the template binning"
                )

    def parameters(self) -> List[str]:
        return list(self.norm_factors) + [syst.param for syst in self.shape_systematics]

    def yields(self, workspace) -> np.ndarray:
        values = self.nominal.copy()
        for syst in self.shape_systematics:
            alpha = workspace.value(syst.param)
            if alpha >= 0:
                values += alpha * (syst.up - self.nominal)
            else:
                values += alpha * (self.nominal - syst.down)
        for factor in self.norm_factors:
            values *= workspace.value(factor)
        return values

    def to_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "nominal": self.nominal.tolist(),
            "norm_factors": list(self.norm_factors),
            "shape_systematics": [
                {"param": syst.param, "up": syst.up.tolist(), "down": syst.down.tolist()}
                for syst in self.shape_systematics
            ],
        }

    @classmethod
    def from_dict(cls, payload) -> "TemplateSample":
        return cls(
            payload["name"],
            payload["nominal"],
            list(payload.get("norm_factors") or []),
            [ShapeSystematic(**syst) for syst in payload.get("shape_systematics") or []],
        )


class BinnedSumPdf(Pdf):
    """Extended sum of binned templates over one observable."""

    kind = "BinnedSumPdf"
    extended = True

    def __init__(self, name: str, observable: str, edges: Sequence[float], samples: Sequence[TemplateSample]) -> None:
        super().__init__(name)
        self.observable = observable
        self.edges = np.asarray(edges, dtype=float)
        if self.edges.ndim != 1 or self.edges.size < 2 or np.any(np.diff(self.edges) <= 0):
            raise ValueError(f"{name}: bin edges must be a strictly increasing sequence of at least two values")
        self.samples = list(samples)
        if not self.samples:
            raise ValueError(f"{name}: at least one template sample is required")
        for sample in self.samples:
            if sample.nominal.shape != (self.n_bins,):
                raise ValueError(f"{name}: sample {sample.name} has {sample.nominal.size} bins, expected {self.n_bins}")

    @property
    def n_bins(self) -> int:
        return self.edges.size - 1

    @property
    def widths(self) -> np.ndarray:
        return np.diff(self.edges)

    def servers(self) -> List[str]:
        names = [self.observable]
        for sample in self.samples:
            for param in sample.parameters():
                if param not in names:
                    names.append(param)
        return names

    def expected_yields(self, workspace, cache=None, fix_cache: bool = False) -> np.ndarray:
        """Expected events per bin.

        With a ``cache`` mapping, yields of samples whose parameters are all
        constant are reused while those constant values are unchanged, or
        unconditionally when ``fix_cache`` is set.
        """
        total = np.zeros(self.n_bins, dtype=float)
        for sample in self.samples:
            total += self._sample_yields(sample, workspace, cache, fix_cache)
        return np.maximum(total, YIELD_FLOOR)

    def _sample_yields(self, sample, workspace, cache, fix_cache):
        if cache is None:
            return sample.yields(workspace)
        leaves = []
        for param in sample.parameters():
            leaves.extend(workspace.leaf_parameters(param))
        if not all(workspace.var(name).constant for name in leaves):
            return sample.yields(workspace)
        key = tuple(workspace.value(name) for name in leaves)
        cached = cache.get((self.name, sample.name))
        if cached is not None and (fix_cache or cached[0] == key):
            return cached[1]
        values = sample.yields(workspace)
        cache[(self.name, sample.name)] = (key, values)
        return values

    def expected_events(self, workspace, cache=None, fix_cache: bool = False) -> float:
        return float(np.sum(self.expected_yields(workspace, cache, fix_cache)))

    def bin_index(self, x: np.ndarray) -> np.ndarray:
        index = np.searchsorted(self.edges, x, side="right") - 1
        # the last edge closes the last bin
        index[x == self.edges[-1]] = self.n_bins - 1
        return index

    def in_range(self, columns, n_entries):
        x = np.asarray(columns[self.observable], dtype=float)
        return (x >= self.edges[0]) & (x <= self.edges[-1])

    def log_pdf(self, workspace, columns=None, cache=None, fix_cache: bool = False) -> np.ndarray:
        if columns is None or self.observable not in columns:
            x = np.array([workspace.value(self.observable)], dtype=float)
        else:
            x = np.asarray(columns[self.observable], dtype=float)
        nu = self.expected_yields(workspace, cache, fix_cache)
        index = np.clip(self.bin_index(x), 0, self.n_bins - 1)
        density = nu[index] / (np.sum(nu) * self.widths[index])
        return np.log(density)

    def binned_nll(self, workspace, counts: np.ndarray, cache=None, fix_cache: bool = False) -> float:
        """Poisson negative log-likelihood of per-bin ``counts`` (without the log n! term)."""
        nu = self.expected_yields(workspace, cache, fix_cache)
        return float(np.sum(nu) - np.sum(counts * np.log(nu)))

    def to_dict(self) -> Dict[str, object]:
        payload = super().to_dict()
        payload.update({
            "observable": self.observable,
            "edges": self.edges.tolist(),
            "samples": [sample.to_dict() for sample in self.samples],
        })
        return payload

    @classmethod
    def from_dict(cls, payload):
        samples = [TemplateSample.from_dict(sample) for sample in payload.get("samples") or []]
        return cls(payload["name"], payload["observable"], payload["edges"], samples)


class ProductPdf(Pdf):
    kind = "ProductPdf"

    def __init__(self, name: str, components: Sequence[str]) -> None:
        super().__init__(name)
        if not components:
            raise ValueError(f"{name}: a product needs at least one component")
        self.components = list(components)

    def servers(self) -> List[str]:
        return list(self.components)

    def log_pdf(self, workspace, columns=None, cache=None, fix_cache: bool = False) -> np.ndarray:
        total = 0.0
        for component in self.components:
            total = total + workspace.pdf(component).log_pdf(workspace, columns, cache, fix_cache)
        return np.asarray(total, dtype=float)

    def to_dict(self) -> Dict[str, object]:
        payload = super().to_dict()
        payload["components"] = list(self.components)
        return payload

    @classmethod
    def from_dict(cls, payload):
        return cls(payload["name"], payload["components"])


PDF_TYPES = {cls.kind: cls for cls in (GaussianPdf, BinnedSumPdf, ProductPdf)}


def pdf_from_dict(payload: Mapping[str, object]) -> Pdf:
    kind = payload.get("type")
    if kind not in PDF_TYPES:
        raise ValueError(f"Unknown pdf type {kind!r} for {payload.get('name')!r}")
    pdf = PDF_TYPES[kind].from_dict(payload)
    for attribute in payload.get("attributes") or []:
        pdf.set_attribute(attribute)
    return pdf


__all__ = [
    "BINNED_LIKELIHOOD",
    "BinnedSumPdf",
    "GaussianPdf",
    "PDF_TYPES",
    "Pdf",
    "ProductPdf",
    "ShapeSystematic",
    "TemplateSample",
    "pdf_from_dict",
]
