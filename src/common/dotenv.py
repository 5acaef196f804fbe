from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from state.models import ProjectConfig


@dataclass(frozen=True)
class ExampleVar:
    """A variable parsed from an example.env / .env file.

    Attributes
    - env_name: original variable name (DATABASE_HOST)
    - key: logical store key derived from it (database.host)
    - default: default or literal value, "" if none
    - has_value: whether a non-empty default/value was found
    """

    env_name: str
    key: str
    default: str = ""
    has_value: bool = False


_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_DEFAULT_RE = re.compile(r"^\$\{[^}]*?:?-([^}]*)\}$")
_SHELL_STYLE_RE = re.compile(r"^[A-Z0-9_]+$")


def env_name_to_key(name: str) -> str:
    """DATABASE_HOST -> database.host (split on `_`, lowercase, join with `.`)."""
    return ".".join(part.lower() for part in name.split("_"))


def key_to_env_name(key: str) -> str:
    """database.host -> DATABASE_HOST."""
    return key.replace(".", "_").upper()


def normalize_key(key: str) -> str:
    """Convert UPPER_SNAKE input to dotted lowercase; anything else is returned unchanged.

    DATABASE_HOST -> database.host, PORT -> port, database.host -> database.host
    """
    if not _SHELL_STYLE_RE.match(key):
        return key
    return key.replace("_", ".").lower()


def _trim_quotes(s: str) -> str:
    if len(s) >= 2 and s[0] == s[-1] and s[0] in ("'", '"'):
        return s[1:-1]
    return s


def parse_line(line: str) -> Optional[ExampleVar]:
    """Parse one assignment line; None for anything that is not `NAME=value`.

    Supports `VAR=value`, `VAR=${VAR:-default}`, `VAR=${VAR}` and an
    optional leading `export `.
    """
    line = line.strip()
    if line.startswith("export "):
        line = line[len("export "):]

    name, sep, value = line.partition("=")
    if not sep:
        return None
    name = name.strip()
    if not _ENV_NAME_RE.match(name):
        return None

    value = _trim_quotes(value.strip())

    m = _DEFAULT_RE.match(value)
    if m:
        default = m.group(1)
    elif value.startswith("${"):
        # bare reference to another variable: nothing to import
        default = ""
    else:
        default = value

    return ExampleVar(env_name=name, key=env_name_to_key(name), default=default, has_value=default != "")


def parse_example_text(text: str) -> List[ExampleVar]:
    out: List[ExampleVar] = []
    seen: set[str] = set()
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        var = parse_line(line)
        if var is None or var.env_name in seen:
            continue
        seen.add(var.env_name)
        out.append(var)
    return out


def parse_example_env(path: Union[str, os.PathLike]) -> List[ExampleVar]:
    """Read an example.env / .env file; first definition of each name wins."""
    with open(path, "r", encoding="utf-8") as f:
        return parse_example_text(f.read())


def generate_project_config(vars: List[ExampleVar], *, project: str = "") -> ProjectConfig:
    """Build a project config whose include list covers `vars`.

    Keys sharing a first segment with at least one other key collapse into a
    single `prefix.*` pattern; the rest are included literally. Order follows
    first appearance in `vars`.
    """
    cfg = ProjectConfig.empty(project=project)

    prefix_count: Dict[str, int] = {}
    for v in vars:
        head, sep, _ = v.key.partition(".")
        if sep:
            prefix_count[head] = prefix_count.get(head, 0) + 1

    used: set[str] = set()
    for v in vars:
        head, sep, _ = v.key.partition(".")
        if sep and prefix_count[head] >= 2:
            if head not in used:
                cfg.include.append(f"{head}.*")
                used.add(head)
        elif v.key not in cfg.include:
            cfg.include.append(v.key)
    return cfg


__all__ = [
    "ExampleVar",
    "env_name_to_key",
    "generate_project_config",
    "key_to_env_name",
    "normalize_key",
    "parse_example_env",
    "parse_example_text",
    "parse_line",
]
