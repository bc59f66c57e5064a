"""
Pytest Configuration and Fixtures

Sets environment defaults required by Settings before any docintel
import, and exposes the in-memory fakes from ``tests.fakes`` as fixtures.
"""

import os

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Test environment defaults: MUST be set before any docintel imports.
#
# 1. Load .env first so that local credentials are available.
# 2. setdefault fills in anything still missing (CI runners, fresh clones
#    without a .env file) so that pydantic Settings validation doesn't crash.
# ---------------------------------------------------------------------------
load_dotenv()  # .env → os.environ (no-op if file is missing)

_test_env = {
    "POSTGRES_USER": "docintel",
    "POSTGRES_PASSWORD": "docintel_password",
    "POSTGRES_HOST": "localhost",
    "POSTGRES_PORT": "5432",
    "POSTGRES_DB": "docintel_db",
    "OPENAI_API_KEY": "mock",
}
for _key, _value in _test_env.items():
    os.environ.setdefault(_key, _value)

# ---------------------------------------------------------------------------
# Imports (safe now that env vars are set)
# ---------------------------------------------------------------------------
import pytest  # noqa: E402

from tests.fakes import (  # noqa: E402
    FakeDenseEmbedder,
    FakeSparseEmbedder,
    FakeVectorStore,
    ScriptedLLM,
)

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> FakeVectorStore:
    return FakeVectorStore()


@pytest.fixture
def dense() -> FakeDenseEmbedder:
    return FakeDenseEmbedder()


@pytest.fixture
def sparse() -> FakeSparseEmbedder:
    return FakeSparseEmbedder()


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()
