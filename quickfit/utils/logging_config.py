"""Run bookkeeping for fits: JSONL event stream, artifacts and run metadata.

Every invocation of the command-line tool gets a run directory
``<log_dir>/<run_id>/`` holding ``events.jsonl`` (one JSON object per event),
the post-fit results table and ``run_metadata.json``.
"""
from __future__ import annotations

import dataclasses
import json
import logging
import platform
import sys
from datetime import datetime, timezone
from hashlib import sha256
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Mapping, Optional

import numpy as np
import pandas as pd

TRACKED_PACKAGES = ("numpy", "scipy", "yaml", "pandas")


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _generate_run_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")


def to_json_value(value: Any) -> Any:
    """Convert fit objects, numpy values and tables into plain JSON values.

    Workspace objects are written through their ``to_dict``, parameter sets
    as their member names and data frames as a list of row records with
    missing cells as ``None``.
    """
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, pd.DataFrame):
        records = value.astype(object).where(value.notna(), None).to_dict(orient="records")
        return [to_json_value(record) for record in records]
    if isinstance(value, Mapping):
        return {str(key): to_json_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json_value(item) for item in value]
    if hasattr(value, "to_dict"):
        return to_json_value(value.to_dict())
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return to_json_value(dataclasses.asdict(value))
    if hasattr(value, "names"):
        return list(value.names)
    return str(value)


def compute_sha256(path: str | Path) -> Optional[str]:
    """SHA-256 of the file at ``path``, or ``None`` when there is no such file."""
    resolved = Path(path).expanduser()
    if not resolved.is_file():
        return None
    digest = sha256()
    with resolved.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


@dataclasses.dataclass
class StructuredLogger:
    """Console messages plus a machine-readable event log for one fit run.

    ``log_event`` always appends to ``events.jsonl``; the optional ``message``
    is what the user sees on stdout.
    """

    run_id: str = None  # type: ignore[assignment]
    base_dir: Path = Path("results") / "runs"
    console_level: int = logging.INFO

    def __post_init__(self) -> None:
        if self.run_id is None:
            self.run_id = _generate_run_id()
        self.base_dir = Path(self.base_dir)
        self.run_dir = self.base_dir / self.run_id
        self.run_dir.mkdir(parents=True, exist_ok=True)
        self._events_path = self.run_dir / "events.jsonl"
        self._lock = Lock()

        self._logger = logging.getLogger(f"quickfit.run.{self.run_id}")
        self._logger.handlers = []
        self._logger.setLevel(logging.DEBUG)
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(self.console_level)
        console_handler.setFormatter(logging.Formatter("%(message)s"))
        self._logger.addHandler(console_handler)
        self._logger.propagate = False

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    @property
    def events_path(self) -> Path:
        return self._events_path

    def log_event(
        self,
        event_type: str,
        payload: Optional[Mapping[str, Any]] = None,
        *,
        level: int = logging.INFO,
        message: Optional[str] = None,
    ) -> None:
        record: Dict[str, Any] = {
            "timestamp": _timestamp(),
            "event": event_type,
            "level": logging.getLevelName(level),
        }
        if payload:
            record["payload"] = to_json_value(payload)
        with self._lock:
            with self._events_path.open("a", encoding="utf-8") as handle:
                json.dump(record, handle, sort_keys=True)
                handle.write("\n")
        if message:
            self._logger.log(level, message)

    def read_events(self) -> List[Dict[str, Any]]:
        if not self._events_path.exists():
            return []
        with self._events_path.open("r", encoding="utf-8") as handle:
            return [json.loads(line) for line in handle if line.strip()]

    def artifact_path(self, relative: str | Path) -> Path:
        path = self.run_dir / Path(relative)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def save_json(self, relative: str | Path, data: Any) -> Path:
        path = self.artifact_path(relative)
        with path.open("w", encoding="utf-8") as handle:
            json.dump(to_json_value(data), handle, indent=2, sort_keys=True)
        return path

    def save_results_table(self, relative: str | Path, table: pd.DataFrame) -> Path:
        """Write the post-fit parameter table as CSV inside the run directory."""
        path = self.artifact_path(relative)
        table.to_csv(path, index=False)
        return path


def collect_environment_metadata() -> Dict[str, Any]:
    metadata: Dict[str, Any] = {
        "python_version": sys.version,
        "python_executable": sys.executable,
        "platform": platform.platform(),
    }
    for module_name in TRACKED_PACKAGES:
        try:
            module = __import__(module_name)
        except ImportError:  # pragma: no cover - reported as missing
            metadata[f"{module_name}_version"] = None
            continue
        metadata[f"{module_name}_version"] = getattr(module, "__version__", "unknown")
    return metadata


def build_run_metadata(
    logger: StructuredLogger,
    *,
    arguments: Mapping[str, Any],
    config_snapshot: Mapping[str, Any],
    checksums: Mapping[str, Optional[str]],
    fit_status: Optional[int] = None,
    stage_statuses: Optional[Mapping[str, int]] = None,
    timing_minutes: Optional[Mapping[str, float]] = None,
    output_path: Optional[Path] = None,
) -> Dict[str, Any]:
    """Payload of ``run_metadata.json`` for one fit run."""
    return {
        "run_id": logger.run_id,
        "timestamp": _timestamp(),
        "arguments": to_json_value(arguments),
        "config_snapshot": to_json_value(config_snapshot),
        "fit_status": fit_status,
        "stage_statuses": to_json_value(stage_statuses or {}),
        "timing_minutes": to_json_value(timing_minutes or {}),
        "output_path": str(output_path) if output_path is not None else None,
        "environment": collect_environment_metadata(),
        "checksums": {key: value for key, value in checksums.items() if value is not None},
    }


__all__ = [
    "StructuredLogger",
    "build_run_metadata",
    "collect_environment_metadata",
    "compute_sha256",
    "to_json_value",
]
