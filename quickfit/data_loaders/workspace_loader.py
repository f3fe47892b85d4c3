"""Workspace file loading and fit output persistence."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from quickfit.models.dataset import Dataset
from quickfit.models.workspace import ModelConfig, Workspace
from quickfit.utils.logging_config import to_json_value

YAML_SUFFIXES = {'.yaml', '.yml'}


class WorkspaceLoadError(RuntimeError):
    """Base class for every failure to obtain the fit inputs from a file."""


class WorkspaceFileNotFoundError(WorkspaceLoadError):
    def __init__(self, path):
        self.path = str(path)
        super().__init__(f"File '{self.path}' was not found.")


class WorkspaceFormatError(WorkspaceLoadError):
    """Raised when the file exists but does not hold a readable workspace document."""


class ObjectNotFoundError(WorkspaceLoadError):
    def __init__(self, kind: str, name: str, container: str):
        self.kind = kind
        self.name = name
        self.container = container
        super().__init__(f"{kind} '{name}' does not exist in {container}.")


class SnapshotNotFoundError(WorkspaceLoadError):
    def __init__(self, name: str, workspace: str):
        self.name = name
        self.workspace = workspace
        super().__init__(f"Unable to load snapshot {name} from workspace {workspace}.")


def _read_document(path: Path) -> Mapping[str, Any]:
    try:
        with path.open('r', encoding='utf-8') as handle:
            if path.suffix.lower() in YAML_SUFFIXES:
                document = yaml.safe_load(handle)
            else:
                document = json.load(handle)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise WorkspaceFormatError(f"Could not parse workspace file {path}: {exc}") from exc
    except OSError as exc:
        raise WorkspaceFormatError(f"Could not read workspace file {path}: {exc}") from exc
    if not isinstance(document, dict) or not isinstance(document.get('workspaces'), dict):
        raise WorkspaceFormatError(f"Workspace file {path} must contain a 'workspaces' mapping")
    return document


class WorkspaceFile:
    """Lazily decoded container of named workspaces stored in one file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        if not self.path.is_file():
            raise WorkspaceFileNotFoundError(self.path)
        self._document = _read_document(self.path)
        self._cache: Dict[str, Workspace] = {}

    def names(self):
        return list(self._document['workspaces'])

    def get(self, name: str) -> Optional[Workspace]:
        if name in self._cache:
            return self._cache[name]
        payload = self._document['workspaces'].get(name)
        if payload is None:
            return None
        try:
            workspace = Workspace.from_dict(name, payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise WorkspaceFormatError(f"Workspace '{name}' in {self.path} is malformed: {exc}") from exc
        self._cache[name] = workspace
        return workspace


def load_inputs(
    path: str | Path,
    ws_name: str,
    mc_name: str,
    data_name: str,
    snapshot: Optional[str] = None,
) -> Tuple[Workspace, ModelConfig, Dataset]:
    """Return the workspace, model configuration and dataset to fit.

    Raises
    ------
    WorkspaceLoadError
        The typed subclass names what could not be found.
    """
    container = WorkspaceFile(path)
    workspace = container.get(ws_name)
    if workspace is None:
        raise ObjectNotFoundError('Workspace', ws_name, 'the file')
    model_config = workspace.obj(mc_name)
    if model_config is None:
        raise ObjectNotFoundError('ModelConfig', mc_name, 'workspace')
    dataset = workspace.data(data_name)
    if dataset is None:
        raise ObjectNotFoundError('Dataset', data_name, 'workspace')
    if snapshot:
        if not workspace.load_snapshot(snapshot):
            raise SnapshotNotFoundError(snapshot, ws_name)
    return workspace, model_config, dataset


def save_workspace_file(path: str | Path, workspaces: Mapping[str, Workspace]) -> Path:
    """Write ``workspaces`` to ``path`` in the format :func:`load_inputs` reads."""
    return save_output(path, {'workspaces': {name: ws.to_dict() for name, ws in workspaces.items()}})


def save_output(path: str | Path, payload: Mapping[str, Any]) -> Path:
    """Write a JSON document, creating parent directories as needed."""
    output = Path(path)
    output.parent.mkdir(parents=True, exist_ok=True)
    with output.open('w', encoding='utf-8') as handle:
        json.dump(to_json_value(payload), handle, indent=2)
    return output


__all__ = [
    'ObjectNotFoundError',
    'SnapshotNotFoundError',
    'WorkspaceFile',
    'WorkspaceFileNotFoundError',
    'WorkspaceFormatError',
    'WorkspaceLoadError',
    'load_inputs',
    'save_output',
    'save_workspace_file',
]
