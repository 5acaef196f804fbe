from __future__ import annotations

import json
import re
from typing import Iterable, List, Sequence

from resolver.resolver import SOURCE_COMPUTED, ResolvedVar


_SIMPLE_VALUE_RE = re.compile(r"^[A-Za-z0-9_\-./:]+$")


def shell_quote(value: str) -> str:
    """Quote a value for POSIX shells.

    Simple values (letters, digits, `_-./:`) pass through bare; anything else,
    including the empty string, is single-quoted with `'` escaped as `'\\''`.
    """
    if _SIMPLE_VALUE_RE.fullmatch(value):
        return value
    return "'" + value.replace("'", "'\\''") + "'"


def format_exports(vars: Iterable[ResolvedVar]) -> str:
    """`export NAME=value` lines suitable for `eval $(varnish export)`."""
    lines = [f"export {v.env_name}={shell_quote(v.value)}" for v in vars]
    return "\n".join(lines) + ("\n" if lines else "")


def format_dotenv(vars: Iterable[ResolvedVar], *, header: str = "") -> str:
    """`.env` file text, one `NAME=value` per line."""
    lines: List[str] = []
    if header:
        lines.extend(f"# {h}" if h else "#" for h in header.splitlines())
    lines.extend(f"{v.env_name}={shell_quote(v.value)}" for v in vars)
    return "\n".join(lines) + ("\n" if lines else "")


def format_source(var: ResolvedVar) -> str:
    if var.source == SOURCE_COMPUTED:
        return SOURCE_COMPUTED
    return f"{var.source}: {var.key}"


def format_resolved_listing(vars: Sequence[ResolvedVar], missing: Sequence[str]) -> str:
    """Human-readable listing used by `varnish list`."""
    if not vars and not missing:
        return "no variables configured\n"

    lines: List[str] = []
    if vars:
        lines.append("resolved variables:")
        lines.extend(f"  {v.env_name}={v.value}  ({format_source(v)})" for v in vars)
    if missing:
        if lines:
            lines.append("")
        lines.append("missing from store:")
        lines.extend(f"  {key}" for key in missing)
    return "\n".join(lines) + "\n"


def resolved_to_json(vars: Sequence[ResolvedVar], missing: Sequence[str]) -> str:
    payload = {
        "variables": [
            {"name": v.env_name, "value": v.value, "source": v.source, "key": v.key}
            for v in vars
        ],
        "missing": list(missing),
    }
    return json.dumps(payload, indent=2)


__all__ = [
    "format_dotenv",
    "format_exports",
    "format_resolved_listing",
    "format_source",
    "resolved_to_json",
    "shell_quote",
]
