"""Run context passed to the sync components."""

from dataclasses import dataclass, field
from pathlib import Path

from .config import STATE_DIR_NAME, ProjectConfig, Settings


@dataclass
class SyncContext:
    """Everything a sync operation needs to know about its environment.

    Built once by the CLI and injected into the engine instead
    of having them reach for a global config object.
    """

    root: Path
    """Working tree root"""

    project: ProjectConfig
    settings: Settings = field(default_factory=Settings)

    @property
    def app_id(self) -> str:
        return self.project.app_id

    @property
    def state_dir(self) -> Path:
        return self.root / STATE_DIR_NAME

    @property
    def state_file(self) -> Path:
        return self.state_dir / "sync-state.json"
