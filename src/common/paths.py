from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .atomic import PERM_DIR


# Environment variable names
ENV_HOME = "VARNISH_HOME"
ENV_LOG_LEVEL = "VARNISH_LOG_LEVEL"

DIR_NAME = ".varnish"
STORE_FILE_NAME = "store.yaml"
REGISTRY_FILE_NAME = "registry.yaml"
PROJECTS_DIR_NAME = "projects"


def _getenv(name: str, environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    env = os.environ if environ is None else environ
    val = env.get(name)
    return val if val not in (None, "") else None


@dataclass(frozen=True)
class VarnishPaths:
    """
    Filesystem layout of the varnish data directory.

    Layout under `home` (default `~/.varnish`, override with `VARNISH_HOME`):
    - store.yaml: the central variable store (0600, may be encrypted)
    - registry.yaml: directory -> project name map (0644)
    - projects/<name>.yaml: per-project configuration (0644)
    """

    home: Path

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "VarnishPaths":
        base = _getenv(ENV_HOME, environ)
        if base:
            return cls(home=Path(base).expanduser())
        return cls(home=Path.home() / DIR_NAME)

    @property
    def store_path(self) -> Path:
        return self.home / STORE_FILE_NAME

    @property
    def registry_path(self) -> Path:
        return self.home / REGISTRY_FILE_NAME

    @property
    def projects_dir(self) -> Path:
        return self.home / PROJECTS_DIR_NAME

    def project_config_path(self, project: str) -> Path:
        if not project or "/" in project or "\\" in project or project in (".", ".."):
            raise ValueError(f"invalid project name: {project!r}")
        return self.projects_dir / f"{project}.yaml"

    def ensure_home(self) -> None:
        self.home.mkdir(mode=PERM_DIR, parents=True, exist_ok=True)

    def ensure_projects_dir(self) -> None:
        self.ensure_home()
        self.projects_dir.mkdir(mode=PERM_DIR, parents=True, exist_ok=True)


__all__ = [
    "ENV_HOME",
    "ENV_LOG_LEVEL",
    "VarnishPaths",
]
