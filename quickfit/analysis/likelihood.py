"""Negative log-likelihood of a dataset under a workspace pdf.

The pdf is split into its product components. Components that depend on a
dataset observable contribute data terms, evaluated per event or, for a
:class:`~quickfit.models.pdfs.BinnedSumPdf` carrying the ``BinnedLikelihood``
attribute, directly as a Poisson sum over bins. Extended components add
``nu - N log(nu)``. The remaining components that depend on a constrained
nuisance parameter are auxiliary constraint terms, evaluated at the current
global observable values. Components that match neither are left out.
"""
from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np

from quickfit.models.dataset import Dataset
from quickfit.models.pdfs import BINNED_LIKELIHOOD, BinnedSumPdf, Pdf, ProductPdf
from quickfit.models.workspace import Workspace


def _names(items: Iterable) -> List[str]:
    return [item if isinstance(item, str) else item.name for item in items or ()]


def flatten_components(workspace: Workspace, pdf: Pdf) -> List[Pdf]:
    """Leaf factors of nested :class:`ProductPdf` instances, in order."""
    if not isinstance(pdf, ProductPdf):
        return [pdf]
    components: List[Pdf] = []
    for name in pdf.components:
        for component in flatten_components(workspace, workspace.pdf(name)):
            if component not in components:
                components.append(component)
    return components


class NegativeLogLikelihood:
    """Callable NLL evaluated at the current workspace parameter values."""

    def __init__(
        self,
        workspace: Workspace,
        pdf: Pdf,
        data: Dataset,
        constrain: Iterable = (),
        global_observables: Iterable = (),
        offset: bool = False,
        optimize_const: int = 0,
        n_cpu: int = 1,
        fix_cache: bool = False,
    ) -> None:
        self.workspace = workspace
        self.pdf = pdf
        self.data = data
        self.constrain = _names(constrain)
        self.global_observables = _names(global_observables)
        self.offset = offset
        self.fix_cache = fix_cache
        self.n_cpu = max(int(n_cpu), 1)
        self.optimize_const = 0
        self.n_evaluations = 0
        self.eval_time = 0.0
        self._offset_value: Optional[float] = None
        self._yield_cache: Dict = {}
        self._constraint_cache: Dict[str, tuple] = {}
        self._executor = ThreadPoolExecutor(max_workers=self.n_cpu) if self.n_cpu > 1 else None

        observables = set(data.observables)
        self.data_components: List[Pdf] = []
        self.constraint_components: List[Pdf] = []
        self.ignored_components: List[Pdf] = []
        for component in flatten_components(workspace, pdf):
            servers = set(workspace.servers(component.name))
            if servers & observables:
                self.data_components.append(component)
            elif servers & set(self.constrain):
                self.constraint_components.append(component)
            else:
                self.ignored_components.append(component)

        columns = data.columns()
        mask = np.ones(data.n_entries, dtype=bool)
        for component in self.data_components:
            mask &= component.in_range(columns, data.n_entries)
        self._columns = {key: values[mask] for key, values in columns.items()}
        self._weights = data.weights[mask]
        self._sum_weights = float(np.sum(self._weights))
        self._counts: Dict[str, np.ndarray] = {}
        for component in self.data_components:
            if isinstance(component, BinnedSumPdf) and component.get_attribute(BINNED_LIKELIHOOD):
                self._counts[component.name] = data.histogram(component.observable, component.edges)

        self.set_optimize_const(optimize_const)

    def __enter__(self) -> "NegativeLogLikelihood":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def set_optimize_const(self, level: int) -> None:
        """Select constant-term caching: 1 caches constraint terms, 2 also template yields."""
        self.optimize_const = int(level)
        self._yield_cache.clear()
        self._constraint_cache.clear()

    def reset_offset(self) -> None:
        self._offset_value = None

    def floating_parameters(self) -> List[str]:
        """Non-constant leaf parameters, excluding dataset observables and global observables."""
        excluded = set(self.data.observables) | set(self.global_observables)
        return [
            name for name in self.workspace.leaf_parameters(self.pdf.name, exclude=excluded)
            if not self.workspace.var(name).constant
        ]

    def set_values(self, names: Sequence[str], values: Sequence[float]) -> None:
        for name, value in zip(names, values):
            self.workspace.var(name).set_value(value)

    def __call__(self) -> float:
        start = time.perf_counter()
        value = self._data_terms() + self._constraint_terms()
        if self.offset:
            if self._offset_value is None and np.isfinite(value):
                self._offset_value = value
            if self._offset_value is not None:
                value -= self._offset_value
        self.n_evaluations += 1
        self.eval_time += time.perf_counter() - start
        return float(value)

    def evaluate(self, names: Sequence[str], values: Sequence[float]) -> float:
        self.set_values(names, values)
        return self()

    # Terms --------------------------------------------------------------------
    def _data_terms(self) -> float:
        cache = self._yield_cache if self.optimize_const >= 2 else None
        total = 0.0
        for component in self.data_components:
            counts = self._counts.get(component.name)
            if counts is not None:
                total += component.binned_nll(self.workspace, counts, cache, self.fix_cache)
                continue
            total += self._event_term(component, cache)
            if component.extended:
                nu = component.expected_events(self.workspace, cache, self.fix_cache)
                total += nu - self._sum_weights * np.log(nu)
        return total

    def _event_term(self, component: Pdf, cache) -> float:
        n_entries = self._weights.size
        if n_entries == 0:
            return 0.0

        def chunk_term(bounds):
            start, stop = bounds
            columns = {key: values[start:stop] for key, values in self._columns.items()}
            log_pdf = component.log_pdf(self.workspace, columns, cache, self.fix_cache)
            return -float(np.sum(self._weights[start:stop] * log_pdf))

        if self._executor is None:
            return chunk_term((0, n_entries))
        edges = np.linspace(0, n_entries, self.n_cpu + 1).astype(int)
        chunks = [(lo, hi) for lo, hi in zip(edges[:-1], edges[1:]) if hi > lo]
        return float(sum(self._executor.map(chunk_term, chunks)))

    def _constraint_terms(self) -> float:
        total = 0.0
        for component in self.constraint_components:
            if self.optimize_const >= 1:
                total += self._cached_constraint(component)
            else:
                total += self._constraint_value(component)
        return total

    def _constraint_value(self, component: Pdf) -> float:
        return -float(np.sum(component.log_pdf(self.workspace)))

    def _cached_constraint(self, component: Pdf) -> float:
        leaves = self.workspace.leaf_parameters(component.name)
        if not all(self.workspace.var(name).constant for name in leaves):
            return self._constraint_value(component)
        key = tuple(self.workspace.value(name) for name in leaves)
        cached = self._constraint_cache.get(component.name)
        if cached is not None and (self.fix_cache or cached[0] == key):
            return cached[1]
        value = self._constraint_value(component)
        self._constraint_cache[component.name] = (key, value)
        return value


def create_nll(workspace: Workspace, pdf: Pdf, data: Dataset, constrain: Iterable = (),
               global_observables: Iterable = (), offset: bool = False, optimize_const: int = 0,
               n_cpu: int = 1, fix_cache: bool = False) -> NegativeLogLikelihood:
    return NegativeLogLikelihood(
        workspace,
        pdf,
        data,
        constrain=constrain,
        global_observables=global_observables,
        offset=offset,
        optimize_const=optimize_const,
        n_cpu=n_cpu,
        fix_cache=fix_cache,
    )


__all__ = ["NegativeLogLikelihood", "create_nll", "flatten_components"]
