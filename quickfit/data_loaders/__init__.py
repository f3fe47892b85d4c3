"""Data loader package exports."""
from .workspace_loader import (
    ObjectNotFoundError,
    SnapshotNotFoundError,
    WorkspaceFile,
    WorkspaceFileNotFoundError,
    WorkspaceFormatError,
    WorkspaceLoadError,
    load_inputs,
    save_output,
    save_workspace_file,
)

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
