"""
Shared pytest fixtures for the Little Helper test suite.

Everything runs against real components on temporary directories; HTTP is
stubbed with httpx.MockTransport.

Usage in tests:
    def test_something(helper_env):
        path = helper_env.write_file("a.txt", "x")
        helper_env.file_ops.modify(path, b"y")
"""

import pytest

from tests.factories import HelperTestFactory


@pytest.fixture
def helper_env(tmp_path):
    """
    A complete environment with the built-in skills registered.

    The work dir is the only allowed dir of contexts built by the factory.
    """
    factory = HelperTestFactory(tmp_path)
    yield factory
    factory.close()


@pytest.fixture
def work_dir(helper_env):
    return helper_env.work_dir


@pytest.fixture(autouse=True)
def _isolated_profile(tmp_path, monkeypatch):
    """Keep settings, data and credentials away from the real user profile."""
    monkeypatch.setenv("LH_CONFIG_DIR", str(tmp_path / "profile" / "config"))
    monkeypatch.setenv("LH_DATA_DIR", str(tmp_path / "profile" / "data"))
    for key in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GEMINI_API_KEY", "OLLAMA_BASE_URL",
                "LH_SKILL_TIMEOUT", "LH_HYBRID_ALPHA", "LH_EMBED_URL", "LH_LOG_LEVEL"):
        monkeypatch.delenv(key, raising=False)
