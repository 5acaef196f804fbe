from __future__ import annotations

import json

import pytest

from common.formatting import (
    format_dotenv,
    format_exports,
    format_resolved_listing,
    format_source,
    resolved_to_json,
    shell_quote,
)
from resolver.resolver import ResolvedVar


VARS = [
    ResolvedVar("DATABASE_HOST", "localhost", "store", "database.host"),
    ResolvedVar("DATABASE_PASSWORD", "p@ss word", "override", "database.password"),
    ResolvedVar("DATABASE_URL", "postgres://localhost:5432/db", "computed"),
]


@pytest.mark.parametrize(
    "value,expected",
    [
        ("simple", "simple"),
        ("a-b_c.d/e:f", "a-b_c.d/e:f"),
        ("", "''"),
        ("has space", "'has space'"),
        ("it's", "'it'\\''s'"),
        ("$HOME", "'$HOME'"),
        ("a;rm -rf /", "'a;rm -rf /'"),
        ("line\nbreak", "'line\nbreak'"),
        ("trailing\n", "'trailing\n'"),
    ],
)
def test_shell_quote(value, expected):
    assert shell_quote(value) == expected


def test_format_exports():
    assert format_exports(VARS) == (
        "export DATABASE_HOST=localhost\n"
        "export DATABASE_PASSWORD='p@ss word'\n"
        "export DATABASE_URL=postgres://localhost:5432/db\n"
    )


def test_format_exports_empty():
    assert format_exports([]) == ""


def test_format_dotenv_with_header():
    text = format_dotenv(VARS[:1], header="generated by varnish\n\nproject: myapp")
    assert text == "# generated by varnish\n#\n# project: myapp\nDATABASE_HOST=localhost\n"


def test_format_source():
    assert format_source(VARS[0]) == "store: database.host"
    assert format_source(VARS[1]) == "override: database.password"
    assert format_source(VARS[2]) == "computed"


def test_format_resolved_listing():
    text = format_resolved_listing(VARS[:1], ["db.port"])
    assert text == (
        "resolved variables:\n"
        "  DATABASE_HOST=localhost  (store: database.host)\n"
        "\n"
        "missing from store:\n"
        "  db.port\n"
    )


def test_format_resolved_listing_empty():
    assert format_resolved_listing([], []) == "no variables configured\n"


def test_resolved_to_json():
    payload = json.loads(resolved_to_json(VARS, ["x.y"]))
    assert payload["missing"] == ["x.y"]
    assert payload["variables"][2] == {
        "name": "DATABASE_URL",
        "value": "postgres://localhost:5432/db",
        "source": "computed",
        "key": "",
    }
