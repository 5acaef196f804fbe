from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Tuple

from common.dotenv import key_to_env_name
from common.patterns import has_wildcard, match_pattern
from state.models import ProjectConfig, Store


logger = logging.getLogger(__name__)

SOURCE_STORE = "store"
SOURCE_OVERRIDE = "override"
SOURCE_COMPUTED = "computed"

_REFERENCE_RE = re.compile(r"\$\{([^}]+)\}")


@dataclass(frozen=True)
class ResolvedVar:
    """One output environment variable.

    Attributes
    - env_name: final variable name (DATABASE_HOST)
    - value: resolved value
    - source: "store", "override" or "computed"
    - key: logical key it came from; "" for computed values
    """

    env_name: str
    value: str
    source: str
    key: str = ""


def unresolved_references(value: str) -> List[str]:
    """Identifiers of `${...}` placeholders still present in `value`, in order."""
    return _REFERENCE_RE.findall(value)


class Resolver:
    """
    Combine a Store snapshot and a ProjectConfig into environment variables.

    Precedence (later wins):
    1. store variables matching `include` patterns (under the project prefix)
    2. `overrides`
    3. `computed` templates, interpolated with `${logical.key}` references

    Computed templates only see store/override values, never other computed
    outputs; a reference to a computed name is left as-is.

    The resolver never mutates the store.
    """

    def __init__(self, store: Store, project: ProjectConfig) -> None:
        self._store = store
        self._project = project

    @property
    def prefix(self) -> str:
        return f"{self._project.project}." if self._project.project else ""

    def env_name_for(self, key: str) -> str:
        if key in self._project.mappings:
            return self._project.mappings[key]
        return key_to_env_name(key)

    def _merge(self) -> Dict[str, Tuple[str, str]]:
        """Logical key -> (value, source) after include matching and overrides."""
        prefix = self.prefix
        merged: Dict[str, Tuple[str, str]] = {}

        candidates = [
            (store_key, store_key[len(prefix):])
            for store_key in self._store.keys()
            if store_key.startswith(prefix)
        ]
        for pattern in self._project.include:
            for store_key, logical in candidates:
                if match_pattern(pattern, logical):
                    merged[logical] = (self._store.variables[store_key], SOURCE_STORE)

        for key, value in self._project.overrides.items():
            merged[key] = (value, SOURCE_OVERRIDE)
        return merged

    def _interpolate(self, template: str, values: Dict[str, str]) -> str:
        prefix = self.prefix
        variables = self._store.variables

        def _sub(m: re.Match[str]) -> str:
            ident = m.group(1)
            if ident in values:
                return values[ident]
            if prefix and prefix + ident in variables:
                return variables[prefix + ident]
            if ident in variables:
                return variables[ident]
            # Unknown reference stays visible in the output
            return m.group(0)

        return _REFERENCE_RE.sub(_sub, template)

    def resolve(self) -> List[ResolvedVar]:
        """Return the final variables sorted by env name."""
        merged = self._merge()

        out: Dict[str, ResolvedVar] = {}
        # Sorted so that two keys mapping to the same name resolve deterministically
        for key in sorted(merged):
            value, source = merged[key]
            name = self.env_name_for(key)
            out[name] = ResolvedVar(env_name=name, value=value, source=source, key=key)

        context = {key: value for key, (value, _) in merged.items()}
        for name, template in self._project.computed.items():
            out[name] = ResolvedVar(
                env_name=name,
                value=self._interpolate(template, context),
                source=SOURCE_COMPUTED,
                key="",
            )

        logger.debug(
            "resolved %d variables for project %r (%d computed)",
            len(out), self._project.project, len(self._project.computed),
        )
        return [out[name] for name in sorted(out)]

    def missing_vars(self) -> List[str]:
        """Literal include patterns with no matching store key, sorted.

        Wildcard patterns are skipped: there is no way to know which keys
        should exist under them.
        """
        prefix = self.prefix
        missing = {
            pattern
            for pattern in self._project.include
            if not has_wildcard(pattern) and prefix + pattern not in self._store.variables
        }
        return sorted(missing)


__all__ = [
    "ResolvedVar",
    "Resolver",
    "SOURCE_COMPUTED",
    "SOURCE_OVERRIDE",
    "SOURCE_STORE",
    "unresolved_references",
]
