"""Utility helpers for executing ordered fit stages sequentially."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .logging_config import StructuredLogger


@dataclass
class Command:
    """Representation of one stage within a command set."""

    name: str
    callback: Callable[[], Any]
    description: Optional[str] = None
    enabled: bool = True


class CommandSet:
    """Execute a sequence of stages in a deterministic, single-threaded order.

    Each stage runs to completion before the next one starts. Disabled stages
    are recorded as skipped and produce no output. The wall time of every
    executed stage is kept in :attr:`timings` (seconds).
    """

    def __init__(self, name: str = "command_set", logger: Optional[StructuredLogger] = None) -> None:
        self.name = name
        self._logger = logger
        self._commands: List[Command] = []
        self.timings: Dict[str, float] = {}
        self.skipped: List[str] = []

    def register(
        self,
        name: str,
        callback: Callable[[], Any],
        description: Optional[str] = None,
        enabled: bool = True,
    ) -> None:
        """Register a new stage to be executed after the ones already registered."""

        if any(command.name == name for command in self._commands):
            raise ValueError(f"Stage '{name}' is already registered in {self.name}")
        self._commands.append(Command(name, callback, description, enabled))

    @property
    def names(self) -> List[str]:
        return [command.name for command in self._commands]

    def execute(self) -> Dict[str, Any]:
        """Run all enabled stages in registration order and return their outputs."""

        results: Dict[str, Any] = {}
        for command in self._commands:
            if not command.enabled:
                self.skipped.append(command.name)
                self._log(
                    f"{self.name}.{command.name}.skipped",
                    {"command": command.name},
                    level=logging.DEBUG,
                )
                continue
            if command.description:
                self._log(
                    f"{self.name}.{command.name}.start",
                    {"command": command.name, "description": command.description},
                    message=f"\n{command.description}",
                )
            started = time.perf_counter()
            try:
                output = command.callback()
            except Exception as exc:
                self._log(
                    f"{self.name}.{command.name}.error",
                    {"command": command.name, "error": str(exc)},
                    level=logging.ERROR,
                    message=f"Stage '{command.name}' failed: {exc}",
                )
                raise
            elapsed = time.perf_counter() - started
            self.timings[command.name] = elapsed
            results[command.name] = output
            self._log(
                f"{self.name}.{command.name}.complete",
                {"command": command.name, "output": output, "seconds": elapsed},
            )
        return results

    def _log(self, event, payload, level=logging.INFO, message=None):
        if self._logger is not None:
            self._logger.log_event(event, payload, level=level, message=message)
