from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml
from pydantic import ValidationError

from common.atomic import PERM_CONFIG, PERM_DIR, PERM_SECURE, atomic_write
from common.paths import VarnishPaths

from .crypto import PasswordRequiredError, decrypt, encrypt, is_encrypted, password_from_env
from .models import ProjectConfig, Registry, Store


logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


class StoreDecodeError(ValueError):
    """The store file exists but is not a valid store document."""


class ConfigurationError(RuntimeError):
    """Invalid or missing configuration; the message is meant for the user."""


class ProjectNotFoundError(ConfigurationError):
    """No configuration file exists for the requested project."""


class ProjectConfigError(ConfigurationError):
    """A project configuration file could not be parsed."""


class RegistryDecodeError(ValueError):
    """The registry file exists but is not a valid registry document."""


# -------- YAML helpers --------
def _dump_yaml(doc: Dict[str, Any]) -> bytes:
    return yaml.safe_dump(
        doc, sort_keys=False, default_flow_style=False, allow_unicode=True
    ).encode("utf-8")


class _TextLoader(yaml.SafeLoader):
    """SafeLoader that keeps plain scalars as their source text.

    Only `null` (and an empty value) is still resolved, to None. `01234`,
    `0x1F`, `on`, `1.10` and `2024-01-01` all load as the strings written.
    """


_NULL_TAG = "tag:yaml.org,2002:null"
_TextLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag == _NULL_TAG]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def _load_yaml_mapping(data: bytes) -> Dict[str, Any]:
    raw = yaml.load(data.decode("utf-8"), Loader=_TextLoader)
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"expected a mapping at top level, got {type(raw).__name__}")
    return raw


def _read_bytes(path: Path) -> Optional[bytes]:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


def _dump_store(store: Store) -> bytes:
    # Deterministic output: sorted keys so identical content yields identical bytes
    return _dump_yaml(
        {"version": store.version, "variables": dict(sorted(store.variables.items()))}
    )


def parse_store_data(data: bytes, *, password: Optional[str] = None) -> Store:
    """Decode raw store file bytes, decrypting first when the blob is encrypted."""
    encrypted = is_encrypted(data)
    if encrypted:
        if not password:
            raise PasswordRequiredError("encrypted store requires VARNISH_PASSWORD")
        data = decrypt(data, password)

    try:
        store = Store.model_validate(_load_yaml_mapping(data))
    except (yaml.YAMLError, UnicodeDecodeError, ValueError, ValidationError) as ex:
        raise StoreDecodeError(f"parse store: {ex}") from ex

    store._mark_encrypted(encrypted)
    return store


# -------- Store --------
def load_store(path: PathLike, *, password: Optional[str] = None) -> Store:
    """Load the store at `path`.

    - Missing file: returns `Store.empty()` (first run, not an error).
    - Encrypted file: requires `password`; crypto errors propagate unchanged.
    - Malformed file: raises `StoreDecodeError`.
    """
    p = Path(path)
    data = _read_bytes(p)
    if data is None:
        logger.debug("no store at %s; starting empty", p)
        return Store.empty()

    store = parse_store_data(data, password=password)
    logger.debug("loaded store %s (%d variables, encrypted=%s)", p, len(store), store.encrypted)
    return store


def save_store(store: Store, path: PathLike, *, password: Optional[str] = None) -> None:
    """Persist `store` atomically with owner-only permissions.

    When the store is marked encrypted the payload is wrapped with the codec
    using `password`; a missing password raises `PasswordRequiredError` before
    anything touches the disk.
    """
    p = Path(path)
    payload = _dump_store(store)
    if store.encrypted:
        if not password:
            raise PasswordRequiredError("encryption requires VARNISH_PASSWORD")
        payload = encrypt(payload, password)

    p.parent.mkdir(mode=PERM_DIR, parents=True, exist_ok=True)
    atomic_write(p, payload, mode=PERM_SECURE)
    logger.debug("saved store %s (%d variables, encrypted=%s)", p, len(store), store.encrypted)


# -------- Project config --------
def load_project_config(path: PathLike) -> ProjectConfig:
    p = Path(path)
    data = _read_bytes(p)
    if data is None:
        raise ProjectNotFoundError(f"project config not found: {p}")

    try:
        return ProjectConfig.model_validate(_load_yaml_mapping(data))
    except (yaml.YAMLError, UnicodeDecodeError, ValueError, ValidationError) as ex:
        raise ProjectConfigError(f"parse project config {p}: {ex}") from ex


def save_project_config(config: ProjectConfig, path: PathLike) -> None:
    if not config.project:
        raise ConfigurationError("project name is required")
    p = Path(path)
    p.parent.mkdir(mode=PERM_DIR, parents=True, exist_ok=True)
    atomic_write(p, _dump_yaml(config.to_document()), mode=PERM_CONFIG)


# -------- Registry --------
def load_registry(path: PathLike) -> Registry:
    p = Path(path)
    data = _read_bytes(p)
    if data is None:
        return Registry.empty()

    try:
        return Registry.model_validate(_load_yaml_mapping(data))
    except (yaml.YAMLError, UnicodeDecodeError, ValueError, ValidationError) as ex:
        raise RegistryDecodeError(f"parse registry {p}: {ex}") from ex


def save_registry(registry: Registry, path: PathLike) -> None:
    p = Path(path)
    p.parent.mkdir(mode=PERM_DIR, parents=True, exist_ok=True)
    doc = {"version": registry.version, "projects": dict(sorted(registry.projects.items()))}
    atomic_write(p, _dump_yaml(doc), mode=PERM_CONFIG)


class LocalStateStore:
    """
    Everything varnish persists under one data directory.

    Usage
    - `LocalStateStore.from_env()` reads `VARNISH_HOME` and `VARNISH_PASSWORD`
      once; tests construct it directly with a temp directory and password.
    - Store, project configs and the registry are loaded and saved through
      this object; nothing is cached between calls.
    """

    def __init__(self, paths: VarnishPaths, *, password: Optional[str] = None) -> None:
        self.paths = paths
        self._password = password

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "LocalStateStore":
        return cls(VarnishPaths.from_env(environ), password=password_from_env(environ))

    @property
    def password(self) -> Optional[str]:
        return self._password

    def with_password(self, password: Optional[str]) -> "LocalStateStore":
        return LocalStateStore(self.paths, password=password or self._password)

    # -------- Store --------
    def load_store(self) -> Store:
        return load_store(self.paths.store_path, password=self._password)

    def save_store(self, store: Store) -> None:
        self.paths.ensure_home()
        save_store(store, self.paths.store_path, password=self._password)

    # -------- Projects --------
    def project_exists(self, name: str) -> bool:
        return self.paths.project_config_path(name).exists()

    def load_project(self, name: str) -> ProjectConfig:
        return load_project_config(self.paths.project_config_path(name))

    def save_project(self, config: ProjectConfig) -> Path:
        if not config.project:
            raise ConfigurationError("project name is required")
        self.paths.ensure_projects_dir()
        path = self.paths.project_config_path(config.project)
        save_project_config(config, path)
        return path

    def delete_project(self, name: str) -> bool:
        try:
            self.paths.project_config_path(name).unlink()
        except FileNotFoundError:
            return False
        return True

    # -------- Registry --------
    def load_registry(self) -> Registry:
        return load_registry(self.paths.registry_path)

    def save_registry(self, registry: Registry) -> None:
        self.paths.ensure_home()
        save_registry(registry, self.paths.registry_path)

    def current_project(self, directory: Optional[PathLike] = None) -> str:
        """Project registered for `directory` (default: cwd) or "" if none."""
        return self.load_registry().lookup(directory if directory is not None else os.getcwd())

    def load_current_project(self, directory: Optional[PathLike] = None) -> ProjectConfig:
        name = self.current_project(directory)
        if not name:
            raise ConfigurationError("directory not registered (run 'varnish init' first)")
        return self.load_project(name)


__all__ = [
    "ConfigurationError",
    "LocalStateStore",
    "ProjectConfigError",
    "ProjectNotFoundError",
    "RegistryDecodeError",
    "StoreDecodeError",
    "load_project_config",
    "load_registry",
    "load_store",
    "parse_store_data",
    "save_project_config",
    "save_registry",
    "save_store",
]
