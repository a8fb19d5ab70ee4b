"""Pytest configuration for deploy_claim tests."""
import sys
from pathlib import Path

# Add src/ to path for src-layout imports
_PROJECT_ROOT = Path(__file__).parent.parent
_SRC = _PROJECT_ROOT / 'src'
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

import pytest

from deploy_claim.app.providers.hosting_client import _reset_shared_async_client_for_tests
from deploy_claim.app.provisioning.templates import clear_artifact_cache
from deploy_claim.app.settings import DeployClaimSettings


@pytest.fixture(autouse=True)
def _isolated_caches():
    yield
    clear_artifact_cache()
    _reset_shared_async_client_for_tests()


@pytest.fixture
def templates_dir(tmp_path):
    """A templates directory holding one small archive per registered template."""
    directory = tmp_path / 'templates'
    directory.mkdir()
    for key in ('nextjs', 'nextjs_with_prisma', 'nextjs_with_prisma_and_better_auth'):
        (directory / f'{key}.tgz').write_bytes(f'archive:{key}'.encode())
    return directory


@pytest.fixture
def settings(templates_dir):
    return DeployClaimSettings(
        access_token='tok_test',
        team_id='team_123',
        integration_config_id='icfg_1',
        cron_secret='cron-secret',
        templates_dir=str(templates_dir),
        deploy_timeout_seconds=5,
    )
