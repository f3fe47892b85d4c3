"""Utility exports shared by the fit workflow."""
from .command_set import Command, CommandSet
from .logging_config import StructuredLogger, build_run_metadata, compute_sha256
from .validation import ConfigValidationError, require_existing_file, require_mapping, resolve_path

__all__ = [
    'Command',
    'CommandSet',
    'ConfigValidationError',
    'StructuredLogger',
    'build_run_metadata',
    'compute_sha256',
    'require_existing_file',
    'require_mapping',
    'resolve_path',
]
