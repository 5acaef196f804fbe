from __future__ import annotations

import os
from typing import Any, Dict, List, Tuple

from pydantic import BaseModel, Field, PrivateAttr, field_validator

from common.patterns import match_pattern

from .crypto import PasswordRequiredError


CURRENT_VERSION = 1


def _scalar_to_str(value: Any) -> str:
    # Values built in code may still be ints or bools
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, (int, float, str)):
        return str(value)
    raise ValueError(f"expected a scalar value, got {type(value).__name__}")


def _coerce_str_map(value: Any) -> Any:
    if value is None:
        return {}
    if isinstance(value, dict):
        return {_scalar_to_str(k): _scalar_to_str(v) for k, v in value.items()}
    return value


class Store(BaseModel):
    """
    The central variable store, one flat namespace of dotted keys.

    Fields
    - version: schema tag (currently 1).
    - variables: dotted key -> string value. Keys are namespaced by convention
      as "project.segment.segment"; an un-prefixed key is a global variable.

    Notes
    - Whether the on-disk form is encrypted is a runtime flag (`encrypted`),
      never part of the serialized payload.
    - Mutations are in-memory only; persistence is `state.file_store.save_store`.
    """

    version: int = Field(default=CURRENT_VERSION, description="Store schema version")
    variables: Dict[str, str] = Field(default_factory=dict, description="Dotted key -> value")

    _encrypted: bool = PrivateAttr(default=False)

    @field_validator("variables", mode="before")
    @classmethod
    def _variables_as_strings(cls, value: Any) -> Any:
        return _coerce_str_map(value)

    @classmethod
    def empty(cls) -> "Store":
        """Fresh store: version 1, no variables, not encrypted."""
        return cls()

    # -------- Map operations (in-memory only) --------
    def set(self, key: str, value: str) -> None:
        self.variables[key] = value

    def get(self, key: str) -> Tuple[str, bool]:
        """Return `(value, found)`; `("", False)` when the key is absent."""
        if key in self.variables:
            return (self.variables[key], True)
        return ("", False)

    def delete(self, key: str) -> bool:
        """Remove `key`; returns True if it existed."""
        if key not in self.variables:
            return False
        del self.variables[key]
        return True

    def keys(self) -> List[str]:
        return sorted(self.variables)

    def keys_with_prefix(self, prefix: str) -> List[str]:
        return [k for k in self.keys() if k.startswith(prefix)]

    def project_names(self) -> Dict[str, int]:
        """Map of namespace (first key segment) -> variable count, for dotted keys."""
        counts: Dict[str, int] = {}
        for key in self.keys():
            head, sep, _ = key.partition(".")
            if sep and head:
                counts[head] = counts.get(head, 0) + 1
        return dict(sorted(counts.items()))

    def __len__(self) -> int:
        return len(self.variables)

    def __contains__(self, key: object) -> bool:
        return key in self.variables

    # -------- Encryption flag --------
    @property
    def encrypted(self) -> bool:
        return self._encrypted

    def enable_encryption(self, password: str | None) -> None:
        """Mark the store for encryption; the payload is re-encrypted on the next save.

        Raises `PasswordRequiredError` when no password is available.
        """
        if not password:
            raise PasswordRequiredError("encryption requires a password (set VARNISH_PASSWORD)")
        self._encrypted = True

    def _mark_encrypted(self, encrypted: bool) -> None:
        self._encrypted = encrypted


class ProjectConfig(BaseModel):
    """
    Per-project configuration, stored as ~/.varnish/projects/<project>.yaml.

    Fields
    - version: schema tag.
    - project: namespace prefix for store lookups ("" = global namespace).
    - include: glob patterns over logical (un-prefixed) keys.
    - overrides: logical key -> value; always wins over the store.
    - mappings: logical key -> explicit env var name.
    - computed: env var name -> template with `${logical.key}` references.

    All four collections are always present, possibly empty.
    """

    version: int
    project: str = ""
    include: List[str] = Field(default_factory=list)
    overrides: Dict[str, str] = Field(default_factory=dict)
    mappings: Dict[str, str] = Field(default_factory=dict)
    computed: Dict[str, str] = Field(default_factory=dict)

    @field_validator("project", mode="before")
    @classmethod
    def _project_as_string(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("include", mode="before")
    @classmethod
    def _include_as_strings(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [_scalar_to_str(v) for v in value]
        return value

    @field_validator("overrides", "mappings", "computed", mode="before")
    @classmethod
    def _maps_as_strings(cls, value: Any) -> Any:
        return _coerce_str_map(value)

    @field_validator("mappings")
    @classmethod
    def _mappings_have_names(cls, value: Dict[str, str]) -> Dict[str, str]:
        for key, name in value.items():
            if not name:
                raise ValueError(f"mapping for {key!r} has an empty variable name")
        return value

    @classmethod
    def empty(cls, project: str = "") -> "ProjectConfig":
        return cls(version=CURRENT_VERSION, project=project)

    def ensure_include(self, key: str) -> bool:
        """Add a literal include for `key` unless a pattern already covers it.

        Returns True if the include list changed.
        """
        if any(match_pattern(p, key) for p in self.include):
            return False
        self.include.append(key)
        return True

    def to_document(self) -> Dict[str, Any]:
        """Serializable form; empty optional fields are omitted."""
        doc: Dict[str, Any] = {"version": self.version}
        if self.project:
            doc["project"] = self.project
        if self.include:
            doc["include"] = list(self.include)
        for name in ("overrides", "mappings", "computed"):
            value = getattr(self, name)
            if value:
                doc[name] = dict(sorted(value.items()))
        return doc


class Registry(BaseModel):
    """
    Directory -> project name map, stored as ~/.varnish/registry.yaml.

    Directories are stored as absolute paths. Lookup checks the directory
    itself, then each parent up to the filesystem root.
    """

    version: int = Field(default=CURRENT_VERSION)
    projects: Dict[str, str] = Field(default_factory=dict)

    @field_validator("projects", mode="before")
    @classmethod
    def _projects_as_strings(cls, value: Any) -> Any:
        return _coerce_str_map(value)

    @classmethod
    def empty(cls) -> "Registry":
        return cls()

    def register(self, directory: str | os.PathLike[str], project: str) -> None:
        self.projects[os.path.abspath(directory)] = project

    def unregister(self, directory: str | os.PathLike[str]) -> bool:
        return self.projects.pop(os.path.abspath(directory), None) is not None

    def unregister_project(self, project: str) -> List[str]:
        dirs = self.project_dirs(project)
        for d in dirs:
            del self.projects[d]
        return dirs

    def lookup(self, directory: str | os.PathLike[str]) -> str:
        """Project registered for `directory` or its nearest ancestor; "" if none."""
        current = os.path.abspath(directory)
        while True:
            project = self.projects.get(current)
            if project:
                return project
            parent = os.path.dirname(current)
            if parent == current:
                return ""
            current = parent

    def project_dirs(self, project: str) -> List[str]:
        return sorted(d for d, p in self.projects.items() if p == project)

    def all_projects(self) -> List[str]:
        return sorted(set(self.projects.values()))
