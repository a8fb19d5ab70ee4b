from __future__ import annotations

import pytest

from deploy_claim.app.errors import ConfigurationError
from deploy_claim.app.settings import (
    DEFAULT_API_URL,
    DEFAULT_BILLING_PLAN_ID,
    DEFAULT_DEPLOY_TIMEOUT_SECONDS,
    DEFAULT_REGION,
    DeployClaimSettings,
)


def test_from_env_reads_values():
    settings = DeployClaimSettings.from_env({
        'ACCESS_TOKEN': 'tok',
        'TEAM_ID': 'team_1',
        'INTEGRATION_CONFIG_ID': 'icfg_1',
        'VERCEL_REGION': 'fra1',
        'CRON_SECRET': 's3cret',
        'DEPLOY_TIMEOUT_SECONDS': '90',
        'TEMPLATES_DIR': '/srv/templates',
    })

    assert settings.access_token == 'tok'
    assert settings.team_id == 'team_1'
    assert settings.integration_config_id == 'icfg_1'
    assert settings.region == 'fra1'
    assert settings.cron_secret == 's3cret'
    assert settings.deploy_timeout_seconds == 90
    assert settings.templates_dir == '/srv/templates'
    assert settings.validate() == []


def test_from_env_defaults():
    settings = DeployClaimSettings.from_env({})

    assert settings.api_url == DEFAULT_API_URL
    assert settings.region == DEFAULT_REGION
    assert settings.billing_plan_id == DEFAULT_BILLING_PLAN_ID
    assert settings.deploy_timeout_seconds == DEFAULT_DEPLOY_TIMEOUT_SECONDS
    assert settings.cron_secret == ''


def test_validate_lists_missing_required_settings():
    errors = DeployClaimSettings().validate()
    assert errors == [
        'ACCESS_TOKEN is required',
        'TEAM_ID is required',
        'INTEGRATION_CONFIG_ID is required',
    ]


def test_require_names_the_environment_variable():
    with pytest.raises(ConfigurationError) as exc_info:
        DeployClaimSettings(access_token='tok').require('access_token', 'team_id')
    assert exc_info.value.message == 'TEAM_ID environment variable is required'
    assert exc_info.value.status_code == 500


def test_bad_timeout_is_configuration_error():
    with pytest.raises(ConfigurationError, match='DEPLOY_TIMEOUT_SECONDS'):
        DeployClaimSettings.from_env({'DEPLOY_TIMEOUT_SECONDS': 'soon'})


def test_non_positive_timeout_fails_validation():
    settings = DeployClaimSettings(
        access_token='t', team_id='t', integration_config_id='i', deploy_timeout_seconds=0,
    )
    assert settings.validate() == ['DEPLOY_TIMEOUT_SECONDS must be positive']
