from __future__ import annotations

import tempfile
import uuid
from dataclasses import dataclass, field
from pathlib import Path

from modforge.output.console import ConsoleProtocol
from modforge.pipeline.lookups import RemoteVersion


def _new_run_id() -> str:
    return uuid.uuid4().hex


def _default_temp_base() -> Path:
    return Path(tempfile.gettempdir()) / "modforge"


@dataclass
class RunContext:
    """Per-run state passed explicitly through planning and execution.

    Caches live here rather than in module globals so two runs in one process
    never observe each other.
    """

    console: ConsoleProtocol
    run_id: str = field(default_factory=_new_run_id)
    temp_base: Path = field(default_factory=_default_temp_base)
    ensured_repositories: set[str] = field(default_factory=set[str])
    remote_versions: dict[tuple[str, bool], list[RemoteVersion]] = field(
        default_factory=dict[tuple[str, bool], list[RemoteVersion]]
    )

    @property
    def temp_root(self) -> Path:
        return self.temp_base / self.run_id

    def scratch_dir(self, purpose: str, name: str) -> Path:
        """A fresh, uniquely named directory below the run's temp root."""
        path = self.temp_root / purpose / f"{name}_{uuid.uuid4().hex[:12]}"
        path.mkdir(parents=True, exist_ok=True)
        return path
