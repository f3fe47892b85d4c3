"""Workspace container and model configuration.

A :class:`Workspace` owns every variable, pdf, dataset and model configuration
of one statistical model under a single flat namespace. The four parameter
partitions of a :class:`ModelConfig` are :class:`~quickfit.models.parameters.ArgSet`
instances, i.e. lists of names into that namespace.
"""
from __future__ import annotations

import copy
from typing import Dict, Iterable, List, Mapping, Optional

from quickfit.models.dataset import Dataset
from quickfit.models.parameters import VARIABLE_TYPES, ArgSet, RealVar
from quickfit.models.pdfs import Pdf, pdf_from_dict


class Workspace:
    """Flat namespace of variables and pdfs plus datasets, configs and snapshots."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._variables: Dict[str, object] = {}
        self._pdfs: Dict[str, Pdf] = {}
        self._datasets: Dict[str, Dataset] = {}
        self._objects: Dict[str, "ModelConfig"] = {}
        self._snapshots: Dict[str, Dict[str, Dict[str, object]]] = {}

    def __repr__(self) -> str:
        return (
            f"Workspace({self.name!r}, variables={len(self._variables)}, pdfs={len(self._pdfs)}, "
            f"datasets={len(self._datasets)})"
        )

    # Import -----------------------------------------------------------------
    def _check_free(self, name: str) -> None:
        if name in self._variables or name in self._pdfs:
            raise ValueError(f"Workspace {self.name} already contains an object named {name}")

    def import_var(self, variable):
        self._check_free(variable.name)
        self._variables[variable.name] = variable
        return variable

    def import_pdf(self, pdf: Pdf) -> Pdf:
        self._check_free(pdf.name)
        self._pdfs[pdf.name] = pdf
        return pdf

    def import_data(self, dataset: Dataset) -> Dataset:
        if dataset.name in self._datasets:
            raise ValueError(f"Workspace {self.name} already contains a dataset named {dataset.name}")
        self._datasets[dataset.name] = dataset
        return dataset

    def import_obj(self, model_config: "ModelConfig") -> "ModelConfig":
        self._objects[model_config.name] = model_config
        return model_config

    # Lookup -----------------------------------------------------------------
    def var(self, name: str) -> Optional[RealVar]:
        """Return the plain real parameter ``name`` or ``None``."""
        variable = self._variables.get(name)
        return variable if isinstance(variable, RealVar) else None

    def function(self, name: str):
        """Return the variable ``name`` (plain or derived) or ``None``."""
        return self._variables.get(name)

    def pdf(self, name: str) -> Optional[Pdf]:
        return self._pdfs.get(name)

    def arg(self, name: str):
        if name in self._variables:
            return self._variables[name]
        return self._pdfs.get(name)

    def data(self, name: str) -> Optional[Dataset]:
        return self._datasets.get(name)

    def obj(self, name: str) -> Optional["ModelConfig"]:
        return self._objects.get(name)

    def all_vars(self) -> List[RealVar]:
        return [variable for variable in self._variables.values() if isinstance(variable, RealVar)]

    def all_pdfs(self) -> List[Pdf]:
        return list(self._pdfs.values())

    # Graph helpers ------------------------------------------------------------
    def value(self, name: str) -> float:
        variable = self._variables.get(name)
        if variable is None:
            raise KeyError(f"Variable {name} does not exist in workspace {self.name}")
        return variable.evaluate(self)

    def servers(self, name: str) -> List[str]:
        """Every object ``name`` depends on, directly or through other objects."""
        seen: List[str] = []
        pending = list(self._direct_servers(name))
        while pending:
            current = pending.pop(0)
            if current in seen:
                continue
            seen.append(current)
            pending.extend(self._direct_servers(current))
        return seen

    def _direct_servers(self, name: str) -> List[str]:
        node = self.arg(name)
        if node is None:
            raise KeyError(f"Object {name} does not exist in workspace {self.name}")
        return node.servers()

    def depends_on(self, name: str, other: str) -> bool:
        return other in self.servers(name)

    def leaf_parameters(self, name: str, exclude: Iterable[str] = ()) -> List[str]:
        """Names of the plain real parameters ``name`` depends on, minus ``exclude``."""
        excluded = set(exclude)
        if isinstance(self.arg(name), RealVar):
            return [] if name in excluded else [name]
        return [
            server for server in self.servers(name)
            if isinstance(self._variables.get(server), RealVar) and server not in excluded
        ]

    # Snapshots --------------------------------------------------------------
    def save_snapshot(self, label: str, args: Iterable) -> None:
        """Store the state of the plain real parameters among ``args`` under ``label``."""
        states = {}
        for item in args:
            name = item if isinstance(item, str) else item.name
            variable = self.var(name)
            if variable is not None:
                states[name] = variable.state()
        self._snapshots[label] = states

    def load_snapshot(self, label: str) -> bool:
        states = self._snapshots.get(label)
        if states is None:
            return False
        for name, state in states.items():
            variable = self.var(name)
            if variable is not None:
                variable.restore(state)
        return True

    # Serialisation ------------------------------------------------------------
    def to_dict(self) -> Dict[str, object]:
        return {
            "variables": [variable.to_dict() for variable in self._variables.values()],
            "pdfs": [pdf.to_dict() for pdf in self._pdfs.values()],
            "datasets": [dataset.to_dict() for dataset in self._datasets.values()],
            "model_configs": [config.to_dict() for config in self._objects.values()],
            "snapshots": copy.deepcopy(self._snapshots),
        }

    @classmethod
    def from_dict(cls, name: str, payload: Mapping[str, object]) -> "Workspace":
        workspace = cls(name)
        for entry in payload.get("variables") or []:
            kind = entry.get("type", RealVar.kind)
            if kind not in VARIABLE_TYPES:
                raise ValueError(f"Unknown variable type {kind!r} for {entry.get('name')!r}")
            workspace.import_var(VARIABLE_TYPES[kind].from_dict(entry))
        for entry in payload.get("pdfs") or []:
            workspace.import_pdf(pdf_from_dict(entry))
        for entry in payload.get("datasets") or []:
            workspace.import_data(Dataset.from_dict(entry))
        for entry in payload.get("model_configs") or []:
            workspace.import_obj(ModelConfig.from_dict(workspace, entry))
        for label, states in (payload.get("snapshots") or {}).items():
            workspace._snapshots[label] = copy.deepcopy(states)
        workspace.validate_references()
        return workspace

    def validate_references(self) -> None:
        """Raise ``KeyError`` when an object refers to a name that does not exist."""
        for node in list(self._variables.values()) + list(self._pdfs.values()):
            for server in node.servers():
                if self.arg(server) is None:
                    raise KeyError(f"{node.name} refers to unknown object {server} in workspace {self.name}")


class ModelConfig:
    """Statistical model: a pdf plus its four parameter partitions."""

    PARTITIONS = ("observables", "parameters_of_interest", "nuisance_parameters", "global_observables")

    def __init__(
        self,
        name: str,
        workspace: Workspace,
        pdf: Optional[str] = None,
        observables: Optional[Iterable] = None,
        parameters_of_interest: Optional[Iterable] = None,
        nuisance_parameters: Optional[Iterable] = None,
        global_observables: Optional[Iterable] = None,
    ) -> None:
        self.name = name
        self._workspace = workspace
        self.pdf_name = pdf
        self.observables = self._as_set(observables)
        self.parameters_of_interest = self._as_set(parameters_of_interest)
        self.nuisance_parameters = self._as_set(nuisance_parameters)
        self.global_observables = self._as_set(global_observables)

    def __repr__(self) -> str:
        return f"ModelConfig({self.name!r}, pdf={self.pdf_name!r})"

    def _as_set(self, members) -> Optional[ArgSet]:
        if members is None:
            return None
        if isinstance(members, ArgSet):
            return members.copy()
        return ArgSet(self._workspace, members)

    @property
    def workspace(self) -> Workspace:
        return self._workspace

    @property
    def pdf(self) -> Optional[Pdf]:
        if self.pdf_name is None:
            return None
        return self._workspace.pdf(self.pdf_name)

    def set_parameters_of_interest(self, members: Iterable) -> None:
        self.parameters_of_interest = self._as_set(members)

    def collect_everything(self) -> ArgSet:
        """Every leaf parameter of the pdf plus all partition members."""
        everything = ArgSet(self._workspace)
        if self.pdf is not None:
            for name in self._workspace.leaf_parameters(self.pdf.name):
                everything.add(name)
        for partition in self.PARTITIONS:
            members = getattr(self, partition)
            if members is None:
                continue
            for name in members.names:
                everything.add(name)
        return everything

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {"name": self.name, "pdf": self.pdf_name}
        for partition in self.PARTITIONS:
            members = getattr(self, partition)
            payload[partition] = members.names if members is not None else None
        return payload

    @classmethod
    def from_dict(cls, workspace: Workspace, payload: Mapping[str, object]) -> "ModelConfig":
        return cls(
            payload["name"],
            workspace,
            pdf=payload.get("pdf"),
            **{partition: payload.get(partition) for partition in cls.PARTITIONS},
        )


__all__ = ["ModelConfig", "Workspace"]
