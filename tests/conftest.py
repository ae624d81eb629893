"""Shared test fixtures for Stagegate.

Every fixture builds its sandbox under pytest's ``tmp_path`` so no test
touches the real home directory.
"""

from pathlib import Path

import pytest
from pydantic import SecretStr

from stagegate.settings import Settings
from stagegate.staging.config import StagingConfig
from stagegate.staging.identity import SandboxResolver

TEST_CREDENTIAL = "test-credential-0123456789"


# =============================================================================
# SETTINGS
# =============================================================================


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Provide test settings with safe defaults."""
    return Settings(
        _env_file=None,
        environment="testing",
        debug=True,
        zipline_token=SecretStr(TEST_CREDENTIAL),
        sandbox_base_dir=tmp_path / "zipline_tmp",
    )


@pytest.fixture
def mock_settings(test_settings: Settings, monkeypatch: pytest.MonkeyPatch) -> Settings:
    """Mock get_settings() to return test settings."""
    from stagegate import settings

    monkeypatch.setattr(settings, "get_settings", lambda: test_settings)
    return test_settings


# =============================================================================
# STAGING
# =============================================================================


@pytest.fixture
def staging_config(tmp_path: Path) -> StagingConfig:
    """Staging config rooted in a temporary base directory."""
    return StagingConfig(base_dir=tmp_path / "zipline_tmp")


@pytest.fixture
def sandbox_root(staging_config: StagingConfig) -> Path:
    """Created sandbox root for ``TEST_CREDENTIAL``."""
    root = SandboxResolver(staging_config).resolve_sandbox_root(TEST_CREDENTIAL)
    root.mkdir(parents=True)
    return root


@pytest.fixture
def credential() -> str:
    """Identity credential the sandbox fixtures are bound to."""
    return TEST_CREDENTIAL
