import os
import subprocess
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]


@pytest.mark.parametrize(
    "first",
    ["app.auth.models", "app.core.models", "app.auth.services", "app.main"],
)
def test_entry_modules_import_in_a_fresh_interpreter(first):
    # conftest has already imported everything by now, so each entry point gets its own interpreter
    env = dict(os.environ, DATABASE_URL="sqlite+aiosqlite:///:memory:", JWT_SECRET_KEY="test-secret-key")
    result = subprocess.run(
        [sys.executable, "-c", f"import {first}; import app.main"],
        cwd=ROOT,
        env=env,
        capture_output=True,
        text=True,
    )
    assert result.returncode == 0, result.stderr
