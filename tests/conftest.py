from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

# Ensure local "src/" takes precedence over any globally-installed "permarchive" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Tests never see an operator's PERMARCHIVE_* settings or .env file."""
    for k in list(os.environ):
        if k.startswith("PERMARCHIVE_"):
            monkeypatch.delenv(k, raising=False)
    monkeypatch.setenv("PERMARCHIVE_DOTENV_PATH", str(tmp_path / "absent.env"))
    yield
