from __future__ import annotations

from typing import Dict, List, Optional

from resolver.resolver import ResolvedVar, Resolver, unresolved_references
from state.models import ProjectConfig, Store


def _resolver(
    variables: Dict[str, str],
    *,
    project: str = "myapp",
    include: Optional[List[str]] = None,
    overrides: Optional[Dict[str, str]] = None,
    mappings: Optional[Dict[str, str]] = None,
    computed: Optional[Dict[str, str]] = None,
) -> Resolver:
    store = Store(variables=variables)
    cfg = ProjectConfig(
        version=1,
        project=project,
        include=include or [],
        overrides=overrides or {},
        mappings=mappings or {},
        computed=computed or {},
    )
    return Resolver(store, cfg)


def _by_name(vars: List[ResolvedVar]) -> Dict[str, ResolvedVar]:
    return {v.env_name: v for v in vars}


def test_store_variables_matched_and_prefix_stripped():
    r = _resolver({"myapp.db.host": "localhost", "myapp.db.port": "5432"}, include=["db.*"])
    assert r.resolve() == [
        ResolvedVar(env_name="DB_HOST", value="localhost", source="store", key="db.host"),
        ResolvedVar(env_name="DB_PORT", value="5432", source="store", key="db.port"),
    ]


def test_override_wins_over_store():
    r = _resolver(
        {"myapp.db.host": "a"},
        include=["db.*"],
        overrides={"db.host": "b"},
        mappings={"db.host": "DATABASE_HOST"},
    )
    out = _by_name(r.resolve())
    assert out["DATABASE_HOST"].value == "b"
    assert out["DATABASE_HOST"].source == "override"
    assert out["DATABASE_HOST"].key == "db.host"


def test_override_without_matching_include_is_still_output():
    r = _resolver({}, include=[], overrides={"log.level": "debug"})
    assert r.resolve() == [ResolvedVar("LOG_LEVEL", "debug", "override", "log.level")]


def test_computed_interpolation():
    r = _resolver(
        {"myapp.db.host": "localhost", "myapp.db.port": "5432", "myapp.db.name": "mydb"},
        include=["db.*"],
        computed={"DATABASE_URL": "postgres://${db.host}:${db.port}/${db.name}"},
    )
    out = _by_name(r.resolve())
    assert out["DATABASE_URL"].value == "postgres://localhost:5432/mydb"
    assert out["DATABASE_URL"].source == "computed"
    assert out["DATABASE_URL"].key == ""


def test_computed_sees_overrides():
    r = _resolver(
        {"myapp.db.host": "store-host"},
        include=["db.*"],
        overrides={"db.host": "override-host"},
        computed={"URL": "http://${db.host}"},
    )
    assert _by_name(r.resolve())["URL"].value == "http://override-host"


def test_computed_falls_back_to_store_outside_include():
    r = _resolver(
        {"myapp.secret.token": "t0k", "shared.domain": "example.com"},
        include=[],
        computed={"TOKEN": "${secret.token}", "HOST": "api.${shared.domain}"},
    )
    out = _by_name(r.resolve())
    assert out["TOKEN"].value == "t0k"
    assert out["HOST"].value == "api.example.com"


def test_prefixed_store_key_preferred_over_global():
    r = _resolver(
        {"myapp.region": "eu-west-1", "region": "us-east-1"},
        computed={"REGION": "${region}"},
    )
    assert _by_name(r.resolve())["REGION"].value == "eu-west-1"


def test_unknown_reference_left_verbatim():
    r = _resolver({}, computed={"URL": "http://${nope.host}:${nope.port}/"})
    out = _by_name(r.resolve())
    assert out["URL"].value == "http://${nope.host}:${nope.port}/"
    assert unresolved_references(out["URL"].value) == ["nope.host", "nope.port"]


def test_computed_cannot_reference_other_computed():
    r = _resolver(
        {"myapp.db.host": "h"},
        include=["db.*"],
        computed={"BASE": "${db.host}", "URL": "x://${BASE}"},
    )
    out = _by_name(r.resolve())
    assert out["BASE"].value == "h"
    assert out["URL"].value == "x://${BASE}"


def test_computed_overwrites_same_named_entry():
    r = _resolver(
        {"myapp.db.url": "from-store", "myapp.db.host": "h"},
        include=["db.*"],
        computed={"DB_URL": "computed://${db.host}"},
    )
    out = _by_name(r.resolve())
    assert out["DB_URL"].value == "computed://h"
    assert out["DB_URL"].source == "computed"


def test_glob_scoping():
    r = _resolver(
        {"myapp.database.host": "db", "myapp.cache.host": "cache"},
        include=["database.*"],
    )
    vars = r.resolve()
    assert [v.key for v in vars] == ["database.host"]


def test_other_projects_never_leak():
    r = _resolver(
        {"myapp.db.host": "mine", "other.db.host": "theirs", "db.host": "global"},
        include=["db.*"],
    )
    assert [(v.env_name, v.value) for v in r.resolve()] == [("DB_HOST", "mine")]


def test_overlapping_patterns_are_idempotent():
    r = _resolver({"myapp.db.host": "h"}, include=["db.*", "db.host", "*"])
    assert r.resolve() == [ResolvedVar("DB_HOST", "h", "store", "db.host")]


def test_empty_project_uses_global_namespace():
    r = _resolver(
        {"aws.region": "us-east-1", "myapp.db.host": "h"},
        project="",
        include=["aws.*"],
        computed={"HOST": "${myapp.db.host}"},
    )
    out = _by_name(r.resolve())
    assert out["AWS_REGION"].key == "aws.region"
    assert out["HOST"].value == "h"
    assert "MYAPP_DB_HOST" not in out


def test_mapping_renames_output():
    r = _resolver({"myapp.api.key": "k"}, include=["api.key"], mappings={"api.key": "API_TOKEN"})
    assert r.resolve() == [ResolvedVar("API_TOKEN", "k", "store", "api.key")]


def test_env_name_for_uses_mapping_when_present():
    r = _resolver({}, mappings={"api.key": "API_TOKEN"})
    assert r.env_name_for("api.key") == "API_TOKEN"
    assert r.env_name_for("api.secret") == "API_SECRET"

    # a config built without validation still honours the key being present
    cfg = ProjectConfig.model_construct(
        version=1, project="", include=[], overrides={}, mappings={"api.key": ""}, computed={}
    )
    assert Resolver(Store(), cfg).env_name_for("api.key") == ""


def test_output_sorted_by_env_name():
    r = _resolver(
        {"myapp.z.last": "1", "myapp.a.first": "2", "myapp.m.mid": "3"},
        include=["*"],
        computed={"B_COMPUTED": "x"},
    )
    names = [v.env_name for v in r.resolve()]
    assert names == sorted(names)
    assert names == ["A_FIRST", "B_COMPUTED", "M_MID", "Z_LAST"]


def test_colliding_env_names_resolve_deterministically():
    r = _resolver({"myapp.db.host": "dotted", "myapp.db_host": "underscored"}, include=["*"])
    out = r.resolve()
    assert len(out) == 1
    # "db_host" sorts after "db.host", so it is applied last
    assert out[0].value == "underscored"


def test_resolve_does_not_mutate_store():
    store = Store(variables={"myapp.db.host": "h"})
    cfg = ProjectConfig(version=1, project="myapp", include=["db.*"], overrides={"x": "y"}, computed={"Z": "${db.host}"})
    Resolver(store, cfg).resolve()
    assert store.variables == {"myapp.db.host": "h"}


def test_missing_vars_literal_only():
    r = _resolver({"myapp.db.host": "h"}, include=["db.host", "db.port"])
    assert r.missing_vars() == ["db.port"]


def test_missing_vars_ignores_wildcards():
    r = _resolver({}, include=["db.*", "cache.*"])
    assert r.missing_vars() == []


def test_missing_vars_deduplicated_and_sorted():
    r = _resolver({}, include=["z.key", "a.key", "z.key"])
    assert r.missing_vars() == ["a.key", "z.key"]


def test_missing_literal_not_satisfied_by_wildcard_match():
    # the literal is checked by exact store key only
    r = _resolver({"myapp.db.hostname": "h"}, include=["db.*", "db.host"])
    assert r.missing_vars() == ["db.host"]


def test_missing_vars_empty_project():
    r = _resolver({"db.host": "h"}, project="", include=["db.host", "db.port"])
    assert r.missing_vars() == ["db.port"]
