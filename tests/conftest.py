import os
import sys

import pytest


def pytest_configure():
    # Ensure `src/` is importable as top-level for `common.*` / `state.*` imports
    root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    src_path = os.path.join(root, "src")
    if src_path not in sys.path:
        sys.path.insert(0, src_path)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path):
    # Never touch the real ~/.varnish or pick up a developer's password
    monkeypatch.setenv("VARNISH_HOME", str(tmp_path / "varnish-home"))
    monkeypatch.delenv("VARNISH_PASSWORD", raising=False)
