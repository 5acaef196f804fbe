from __future__ import annotations

import pytest

from common.patterns import has_wildcard, match_pattern


@pytest.mark.parametrize(
    "pattern,key,expected",
    [
        ("database.*", "database.host", True),
        ("database.*", "database.pool.size", True),
        ("database.*", "database", False),
        ("database.*", "cache.host", False),
        ("*.host", "cache.host", True),
        ("*", "anything.at.all", True),
        ("db.host", "db.host", True),
        ("db.host", "dbxhost", False),
        ("db.*.port", "db.replica.port", True),
        ("db.*.port", "db.replica.host", False),
        ("", "", True),
        ("", "x", False),
    ],
)
def test_match_pattern(pattern: str, key: str, expected: bool):
    assert match_pattern(pattern, key) is expected


def test_dot_is_literal_not_any_char():
    # A regex-style reading of "." would match any character here
    assert not match_pattern("a.b", "axb")
    assert not match_pattern("a.*", "ab")


def test_regex_metacharacters_are_literal():
    assert match_pattern("price.$(usd)+", "price.$(usd)+")
    assert not match_pattern("price.$(usd)+", "price.usd")
    assert match_pattern("api?.key", "api?.key")
    assert not match_pattern("api?.key", "apix.key")


def test_has_wildcard():
    assert has_wildcard("db.*")
    assert has_wildcard("*")
    assert not has_wildcard("db.host")
    assert not has_wildcard("")
