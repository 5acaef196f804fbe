from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, TextIO

from common.atomic import PERM_SECURE, AtomicWriteError, atomic_write
from common.dotenv import ExampleVar, generate_project_config, normalize_key, parse_example_env
from common.formatting import (
    format_dotenv,
    format_exports,
    format_resolved_listing,
    resolved_to_json,
)
from common.paths import ENV_LOG_LEVEL
from common.patterns import match_pattern
from resolver.resolver import SOURCE_COMPUTED, Resolver, unresolved_references
from state.crypto import CryptoError
from state.file_store import (
    ConfigurationError,
    LocalStateStore,
    RegistryDecodeError,
    StoreDecodeError,
)
from state.models import ProjectConfig, Store

from . import __version__


logger = logging.getLogger(__name__)

PROG = "varnish"

# Errors reported to the user as `error: <message>` with exit code 1
_REPORTED_ERRORS = (
    AtomicWriteError,
    ConfigurationError,
    CryptoError,
    RegistryDecodeError,
    StoreDecodeError,
    OSError,
    ValueError,
)


class CommandError(RuntimeError):
    """A command could not complete; the message is shown to the user."""


@dataclass
class Context:
    state: LocalStateStore
    stdout: TextIO
    stderr: TextIO
    stdin: TextIO
    cwd: str

    def out(self, msg: str = "") -> None:
        print(msg, file=self.stdout)

    def err(self, msg: str) -> None:
        print(msg, file=self.stderr)


# -------- Helpers --------
def _project_for(ctx: Context, explicit: Optional[str], use_global: bool) -> str:
    """Namespace for store commands: --project, else the cwd's registered project."""
    if explicit:
        return explicit
    if use_global:
        return ""
    return ctx.state.current_project(ctx.cwd)


def _store_key(project: str, key: str) -> str:
    return f"{project}.{key}" if project else key


def _load_resolver(ctx: Context) -> tuple[Resolver, ProjectConfig, Store]:
    cfg = ctx.state.load_current_project(ctx.cwd)
    store = ctx.state.load_store()
    return Resolver(store, cfg), cfg, store


def _import_vars(store: Store, project: str, vars: List[ExampleVar]) -> int:
    """Seed the store from parsed vars; keys without a value are created empty."""
    changed = 0
    for v in vars:
        key = _store_key(project, v.key)
        _, exists = store.get(key)
        if v.has_value:
            store.set(key, v.default)
            changed += 1
        elif not exists:
            store.set(key, "")
            changed += 1
    return changed


# -------- init --------
def cmd_init(args: argparse.Namespace, ctx: Context) -> int:
    state = ctx.state.with_password(args.password)
    if args.encrypt and not state.password:
        raise CommandError("--encrypt requires --password or VARNISH_PASSWORD")

    name = args.project or os.path.basename(os.path.abspath(ctx.cwd))
    registry = state.load_registry()
    existing = registry.lookup(ctx.cwd)
    if existing and existing != name and not args.force:
        raise CommandError(f"directory already registered to project '{existing}' (use --force to change)")
    if state.project_exists(name) and not args.force:
        raise CommandError(f"project '{name}' already exists (use --force to overwrite)")

    env_path = args.from_file
    if not env_path:
        for candidate in (".env", "example.env"):
            if os.path.exists(os.path.join(ctx.cwd, candidate)):
                env_path = os.path.join(ctx.cwd, candidate)
                break
    if not env_path:
        raise CommandError("no .env or example.env found (use: varnish init -f path/to/.env)")

    vars = parse_example_env(env_path)
    if vars:
        cfg = generate_project_config(vars, project=name)
        ctx.out(f"parsed {len(vars)} variables from {env_path}")
    else:
        ctx.err(f"warning: no variables found in {env_path}")
        cfg = ProjectConfig.empty(project=name)

    config_path = state.save_project(cfg)
    registry.register(ctx.cwd, name)
    state.save_registry(registry)
    ctx.out(f"registered {os.path.abspath(ctx.cwd)} -> project '{name}'")
    ctx.out(f"config: {config_path}")

    if (args.no_import or not vars) and not args.encrypt:
        return 0

    store = state.load_store()
    if not args.no_import:
        added = _import_vars(store, name, vars)
        ctx.out(f"imported {added} variables into store")
        if args.sync:
            wanted = {_store_key(name, v.key) for v in vars}
            for key in store.keys_with_prefix(f"{name}."):
                if key not in wanted:
                    store.delete(key)
                    ctx.out(f"removed {key[len(name) + 1:]} (not in {os.path.basename(env_path)})")
    if args.encrypt:
        store.enable_encryption(state.password)
        ctx.out("store encryption enabled")
    state.save_store(store)
    return 0


# -------- store --------
def cmd_store_set(args: argparse.Namespace, ctx: Context) -> int:
    raw_key = args.key
    value = args.value
    if "=" in raw_key and raw_key.index("=") > 0 and value is None:
        raw_key, value = raw_key.split("=", 1)
    elif args.stdin:
        value = ctx.stdin.readline().rstrip("\r\n")
    if value is None:
        raise CommandError("missing value (usage: varnish store set <key> <value> | <key>=<value> | <key> --stdin)")

    key = normalize_key(raw_key)
    project = _project_for(ctx, args.project, args.global_)
    store_key = _store_key(project, key)

    store = ctx.state.load_store()
    store.set(store_key, value)
    ctx.state.save_store(store)
    ctx.out(f"set {store_key}")

    if project and ctx.state.project_exists(project):
        try:
            cfg = ctx.state.load_project(project)
            if cfg.ensure_include(key):
                ctx.state.save_project(cfg)
                ctx.out(f"added {key} to project '{project}' include list")
        except (ConfigurationError, OSError) as ex:
            ctx.err(f"warning: could not update project config: {ex}")
    return 0


def cmd_store_get(args: argparse.Namespace, ctx: Context) -> int:
    project = _project_for(ctx, args.project, args.global_)
    store_key = _store_key(project, normalize_key(args.key))
    value, found = ctx.state.load_store().get(store_key)
    if not found:
        raise CommandError(f"key not found: {store_key}")
    ctx.out(value)
    return 0


def cmd_store_list(args: argparse.Namespace, ctx: Context) -> int:
    project = _project_for(ctx, args.project, args.global_)
    pattern = args.pattern or ""
    if project:
        pattern = f"{project}.{pattern or '*'}"

    store = ctx.state.load_store()
    variables: Dict[str, str] = {
        key: store.variables[key]
        for key in store.keys()
        if not pattern or match_pattern(pattern, key)
    }

    if args.json:
        ctx.out(json.dumps({"variables": variables}, indent=2, sort_keys=True))
        return 0
    if not variables:
        ctx.err("store is empty" if not len(store) else "no matching variables")
        return 0
    for key, value in variables.items():
        ctx.out(f"{key}={value}")
    return 0


def cmd_store_delete(args: argparse.Namespace, ctx: Context) -> int:
    project = _project_for(ctx, args.project, args.global_)
    store_key = _store_key(project, normalize_key(args.key))
    store = ctx.state.load_store()
    if not store.delete(store_key):
        raise CommandError(f"key not found: {store_key}")
    ctx.state.save_store(store)
    ctx.out(f"deleted {store_key}")
    return 0


def cmd_store_import(args: argparse.Namespace, ctx: Context) -> int:
    project = _project_for(ctx, args.project, args.global_)
    vars = [v for v in parse_example_env(args.file) if v.has_value]
    if not vars:
        ctx.err("no variables with values to import")
        return 0

    store = ctx.state.load_store()
    for v in vars:
        store_key = _store_key(project, v.key)
        store.set(store_key, v.default)
        ctx.out(f"imported {v.env_name} -> {store_key}")
    ctx.state.save_store(store)
    ctx.out(f"imported {len(vars)} variables")
    return 0


def cmd_store_encrypt(args: argparse.Namespace, ctx: Context) -> int:
    state = ctx.state.with_password(args.password)
    if not state.password:
        raise CommandError("encryption requires --password or VARNISH_PASSWORD")

    store = state.load_store()
    if store.encrypted:
        ctx.out("store is already encrypted")
        return 0
    store.enable_encryption(state.password)
    state.save_store(store)
    ctx.out(f"store encrypted ({len(store)} variables)")
    return 0


# -------- resolution output --------
def cmd_env(args: argparse.Namespace, ctx: Context) -> int:
    resolver, cfg, _ = _load_resolver(ctx)
    text = format_dotenv(resolver.resolve(), header=f"generated by varnish for project {cfg.project}")
    if args.output == "-":
        ctx.stdout.write(text)
        return 0

    target = Path(args.output)
    if not target.is_absolute():
        target = Path(ctx.cwd) / target
    if target.exists() and not args.force:
        raise CommandError(f"{target} already exists (use --force to overwrite)")
    atomic_write(target, text.encode("utf-8"), mode=PERM_SECURE)
    ctx.out(f"wrote {target}")
    return 0


def cmd_export(args: argparse.Namespace, ctx: Context) -> int:
    resolver, _, _ = _load_resolver(ctx)
    ctx.stdout.write(format_exports(resolver.resolve()))
    return 0


def cmd_run(args: argparse.Namespace, ctx: Context) -> int:
    command = list(args.cmd)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        raise CommandError("no command specified (usage: varnish run [--clean] -- <command> [args...])")

    resolver, _, _ = _load_resolver(ctx)
    if args.clean:
        env = {k: os.environ[k] for k in ("PATH", "HOME") if os.environ.get(k)}
    else:
        env = dict(os.environ)
    env.update({v.env_name: v.value for v in resolver.resolve()})

    ctx.stdout.flush()
    os.execvpe(command[0], command, env)
    return 0  # unreachable: execvpe replaces the process


def cmd_list(args: argparse.Namespace, ctx: Context) -> int:
    resolver, _, _ = _load_resolver(ctx)
    missing = resolver.missing_vars()
    if args.missing:
        if args.json:
            ctx.out(json.dumps({"missing": missing}, indent=2))
        elif not missing:
            ctx.out("no missing variables")
        else:
            ctx.out("missing variables:")
            for key in missing:
                ctx.out(f"  {key}")
        return 0

    vars = resolver.resolve()
    if args.json:
        ctx.out(resolved_to_json(vars, missing))
    else:
        ctx.stdout.write(format_resolved_listing(vars, missing))
    return 0


def cmd_check(args: argparse.Namespace, ctx: Context) -> int:
    errors: List[str] = []
    warnings: List[str] = []

    cfg = ctx.state.load_current_project(ctx.cwd)
    ctx.out(f"ok: project config is valid (project: {cfg.project})")
    if not cfg.include:
        warnings.append("no include patterns defined - no variables will be resolved")
    else:
        ctx.out(f"ok: {len(cfg.include)} include pattern(s) defined")

    store = ctx.state.load_store()
    ctx.out(f"ok: store loaded ({len(store)} total variables)")

    resolver = Resolver(store, cfg)
    missing = resolver.missing_vars()
    if missing:
        bucket = errors if args.strict else warnings
        bucket.extend(f"missing variable: {key}" for key in missing)
    else:
        ctx.out("ok: all variables are present")

    if cfg.computed:
        for var in resolver.resolve():
            if var.source != SOURCE_COMPUTED:
                continue
            refs = unresolved_references(var.value)
            if refs:
                warnings.append(f"computed {var.env_name} has unresolved references: {', '.join(refs)}")
        ctx.out(f"ok: {len(cfg.computed)} computed value(s) checked")

    if warnings:
        ctx.out("\nwarnings:")
        for w in warnings:
            ctx.out(f"  ! {w}")
    if errors:
        ctx.err("\nerrors:")
        for e in errors:
            ctx.err(f"  x {e}")
        raise CommandError(f"check failed with {len(errors)} error(s)")

    ctx.out("\nall checks passed")
    return 0


# -------- project --------
def cmd_project_name(args: argparse.Namespace, ctx: Context) -> int:
    name = ctx.state.current_project(ctx.cwd)
    if not name:
        raise CommandError("directory not registered (run 'varnish init' first)")
    ctx.out(str(ctx.state.paths.project_config_path(name)) if args.path else name)
    return 0


def cmd_project_list(args: argparse.Namespace, ctx: Context) -> int:
    counts = ctx.state.load_store().project_names()
    registry = ctx.state.load_registry()
    names = sorted(set(counts) | set(registry.all_projects()))
    if not names:
        ctx.err("no projects found")
        return 0
    for name in names:
        line = f"{name} ({counts.get(name, 0)} variables)"
        dirs = registry.project_dirs(name)
        if dirs:
            line += f" -> {dirs[0]}"
        ctx.out(line)
    return 0


def cmd_project_delete(args: argparse.Namespace, ctx: Context) -> int:
    name = args.name
    store = ctx.state.load_store()
    keys = store.keys_with_prefix(f"{name}.")
    if not keys and not ctx.state.project_exists(name):
        raise CommandError(f"no variables or config found for project: {name}")

    if args.dry_run:
        ctx.out(f"would delete {len(keys)} variables for project '{name}':")
        for key in keys:
            ctx.out(f"  {key}")
        return 0

    if keys:
        for key in keys:
            store.delete(key)
        ctx.state.save_store(store)

    registry = ctx.state.load_registry()
    if registry.unregister_project(name):
        ctx.state.save_registry(registry)
    ctx.state.delete_project(name)
    ctx.out(f"deleted {len(keys)} variables for project '{name}'")
    return 0


def cmd_version(args: argparse.Namespace, ctx: Context) -> int:
    ctx.out(f"{PROG} {__version__}")
    return 0


# -------- Parser --------
def _add_namespace_flags(p: argparse.ArgumentParser) -> None:
    p.add_argument("-p", "--project", help="namespace under this project name")
    p.add_argument("-g", "--global", dest="global_", action="store_true", help="bypass project auto-detection")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=PROG, description="environment variable manager")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging to stderr")
    sub = parser.add_subparsers(dest="command", metavar="<command>")

    p = sub.add_parser("init", help="register this directory as a project")
    p.add_argument("-p", "--project", help="project name (default: directory name)")
    p.add_argument("-f", "--from", dest="from_file", help="path to .env file (default: .env or example.env)")
    p.add_argument("--no-import", action="store_true", help="don't import values into the store")
    p.add_argument("-s", "--sync", action="store_true", help="remove project variables not in the .env file")
    p.add_argument("--force", action="store_true", help="overwrite an existing project config")
    p.add_argument("--encrypt", action="store_true", help="enable store encryption")
    p.add_argument("--password", help="encryption password (or set VARNISH_PASSWORD)")
    p.set_defaults(func=cmd_init)

    store = sub.add_parser("store", help="manage the central variable store")
    store_sub = store.add_subparsers(dest="store_command", metavar="<subcommand>")
    store_sub.required = True

    p = store_sub.add_parser("set", help="add or update a variable")
    p.add_argument("key")
    p.add_argument("value", nargs="?")
    p.add_argument("--stdin", action="store_true", help="read the value from stdin")
    _add_namespace_flags(p)
    p.set_defaults(func=cmd_store_set)

    p = store_sub.add_parser("get", help="print a variable")
    p.add_argument("key")
    _add_namespace_flags(p)
    p.set_defaults(func=cmd_store_get)

    p = store_sub.add_parser("list", aliases=["ls"], help="list variables")
    p.add_argument("--pattern", help="glob over keys (`*` matches anything)")
    p.add_argument("--json", action="store_true")
    _add_namespace_flags(p)
    p.set_defaults(func=cmd_store_list)

    p = store_sub.add_parser("delete", aliases=["rm"], help="remove a variable")
    p.add_argument("key")
    _add_namespace_flags(p)
    p.set_defaults(func=cmd_store_delete)

    p = store_sub.add_parser("import", help="import values from a .env file")
    p.add_argument("file")
    _add_namespace_flags(p)
    p.set_defaults(func=cmd_store_import)

    p = store_sub.add_parser("encrypt", help="encrypt the store at rest")
    p.add_argument("--password", help="encryption password (or set VARNISH_PASSWORD)")
    p.set_defaults(func=cmd_store_encrypt)

    p = sub.add_parser("env", help="write the resolved variables to a .env file")
    p.add_argument("-o", "--output", default=".env", help="output path, or - for stdout")
    p.add_argument("--force", action="store_true", help="overwrite an existing file")
    p.set_defaults(func=cmd_env)

    p = sub.add_parser("export", help="print shell export statements")
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("run", help="run a command with the resolved variables")
    p.add_argument("--clean", action="store_true", help="start from an empty environment (PATH and HOME kept)")
    p.add_argument("cmd", nargs=argparse.REMAINDER, metavar="command")
    p.set_defaults(func=cmd_run)

    p = sub.add_parser("list", help="show resolved variables")
    p.add_argument("--missing", action="store_true", help="only show missing variables")
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("check", help="validate project config and store")
    p.add_argument("--strict", action="store_true", help="fail if any variables are missing")
    p.set_defaults(func=cmd_check)

    project = sub.add_parser("project", help="manage projects")
    project_sub = project.add_subparsers(dest="project_command", metavar="<subcommand>")
    project_sub.required = True

    p = project_sub.add_parser("name", help="print the current directory's project")
    p.add_argument("--path", action="store_true", help="print the project config path instead")
    p.set_defaults(func=cmd_project_name)

    p = project_sub.add_parser("list", help="list projects")
    p.set_defaults(func=cmd_project_list)

    p = project_sub.add_parser("delete", help="delete a project's variables and config")
    p.add_argument("name")
    p.add_argument("--dry-run", action="store_true")
    p.set_defaults(func=cmd_project_delete)

    p = sub.add_parser("version", help="print the version")
    p.set_defaults(func=cmd_version)

    return parser


def _configure_logging(verbose: bool, stream: TextIO) -> None:
    level_name = "DEBUG" if verbose else (os.environ.get(ENV_LOG_LEVEL) or "WARNING")
    level = getattr(logging, level_name.upper(), logging.WARNING)
    logging.basicConfig(level=level, stream=stream, format="%(levelname)s %(name)s: %(message)s")


def run(
    argv: Sequence[str],
    *,
    state: Optional[LocalStateStore] = None,
    stdout: Optional[TextIO] = None,
    stderr: Optional[TextIO] = None,
    stdin: Optional[TextIO] = None,
    cwd: Optional[str] = None,
    configure_logging: bool = False,
) -> int:
    """Parse `argv` and run one command; returns the process exit code.

    `configure_logging` installs the stderr log handler from `--verbose` /
    `VARNISH_LOG_LEVEL`; only the console entry point asks for it.
    """
    out = stdout or sys.stdout
    err = stderr or sys.stderr
    parser = build_parser()
    try:
        args = parser.parse_args(list(argv))
    except SystemExit as ex:
        return int(ex.code or 0)

    if configure_logging:
        _configure_logging(args.verbose, err)

    func: Optional[Callable[[argparse.Namespace, Context], int]] = getattr(args, "func", None)
    if func is None:
        parser.print_help(out)
        return 0

    ctx = Context(
        state=state or LocalStateStore.from_env(),
        stdout=out,
        stderr=err,
        stdin=stdin or sys.stdin,
        cwd=cwd or os.getcwd(),
    )
    try:
        return func(args, ctx)
    except CommandError as ex:
        ctx.err(f"error: {ex}")
        return 1
    except _REPORTED_ERRORS as ex:
        logger.debug("command failed", exc_info=True)
        ctx.err(f"error: {ex}")
        return 1


def main() -> None:
    sys.exit(run(sys.argv[1:], configure_logging=True))


if __name__ == "__main__":
    main()
