from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure project root is on sys.path for package imports like `pipeline.*`
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

FIXTURES = Path(__file__).resolve().parent / "fixtures"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def sandbox_env_path() -> Path:
    return FIXTURES / "sandbox_small.yaml"
