"""Service configuration settings.

DeployClaimSettings is the single configuration object accepted by
create_app(). It is a plain dataclass (not env-coupled) so tests can inject
config without touching os.environ; ``from_env()`` is the production path.

Only the hosting credential, team scope and integration configuration are
hard requirements, and only for the routes that use them. Billing plan,
region and product id fall back to defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from .errors import ConfigurationError

DEFAULT_API_URL = 'https://api.vercel.com'
DEFAULT_INTEGRATION_ID = 'prisma'
DEFAULT_INTEGRATION_PRODUCT_ID = 'iap_yVdbiKqs5fLkYDAB'
DEFAULT_BILLING_PLAN_ID = 'business'
DEFAULT_REGION = 'iad1'
DEFAULT_REPO_URL = 'https://github.com/prisma/vercel-deployment-claim-demo'
DEFAULT_DEPLOY_TIMEOUT_SECONDS = 4 * 60

# Environment variable name for each required setting.
_ENV_NAMES = {
    'access_token': 'ACCESS_TOKEN',
    'team_id': 'TEAM_ID',
    'integration_config_id': 'INTEGRATION_CONFIG_ID',
}


@dataclass(frozen=True, slots=True)
class DeployClaimSettings:
    """Configuration for the deploy-claim FastAPI application."""

    # ── Hosting API ────────────────────────────────────────────────
    access_token: str = ''
    """Bearer credential for the hosting API. Never log this."""

    team_id: str = ''
    """Team scope appended as ``teamId`` to every hosting API call."""

    api_url: str = DEFAULT_API_URL

    # ── Managed database integration ───────────────────────────────
    integration_config_id: str = ''
    integration_id: str = DEFAULT_INTEGRATION_ID
    integration_product_id: str = DEFAULT_INTEGRATION_PRODUCT_ID
    billing_plan_id: str = DEFAULT_BILLING_PLAN_ID
    region: str = DEFAULT_REGION

    # ── Cleanup ────────────────────────────────────────────────────
    cron_secret: str = ''
    """Shared secret for cleanup triggers. Empty disables the check."""

    repo_url: str = DEFAULT_REPO_URL
    """Projects linked to any other repository are never reaped."""

    # ── Deploy ─────────────────────────────────────────────────────
    templates_dir: str = 'templates'
    deploy_timeout_seconds: float = DEFAULT_DEPLOY_TIMEOUT_SECONDS

    def require(self, *names: str) -> None:
        """Raise ConfigurationError for the first missing required setting."""
        for name in names:
            if not getattr(self, name):
                raise ConfigurationError(_ENV_NAMES.get(name, name.upper()))

    def validate(self) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        for name, env_name in _ENV_NAMES.items():
            if not getattr(self, name):
                errors.append(f'{env_name} is required')
        if self.deploy_timeout_seconds <= 0:
            errors.append('DEPLOY_TIMEOUT_SECONDS must be positive')
        return errors

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> DeployClaimSettings:
        """Build settings from environment variables."""
        if env is None:
            env = dict(os.environ)

        timeout_raw = env.get('DEPLOY_TIMEOUT_SECONDS', '').strip()
        try:
            timeout = float(timeout_raw) if timeout_raw else DEFAULT_DEPLOY_TIMEOUT_SECONDS
        except ValueError:
            raise ConfigurationError(
                'DEPLOY_TIMEOUT_SECONDS',
                f'DEPLOY_TIMEOUT_SECONDS must be a number, got {timeout_raw!r}',
            ) from None

        return cls(
            access_token=env.get('ACCESS_TOKEN', ''),
            team_id=env.get('TEAM_ID', ''),
            api_url=env.get('HOSTING_API_URL', '') or DEFAULT_API_URL,
            integration_config_id=env.get('INTEGRATION_CONFIG_ID', ''),
            integration_product_id=(
                env.get('PRISMA_INTEGRATION_PRODUCT_ID', '')
                or DEFAULT_INTEGRATION_PRODUCT_ID
            ),
            billing_plan_id=env.get('DEFAULT_BILLING_PLAN_ID', '') or DEFAULT_BILLING_PLAN_ID,
            region=env.get('VERCEL_REGION', '') or DEFAULT_REGION,
            cron_secret=env.get('CRON_SECRET', ''),
            repo_url=env.get('REPO_URL', '') or DEFAULT_REPO_URL,
            templates_dir=env.get('TEMPLATES_DIR', '') or 'templates',
            deploy_timeout_seconds=timeout,
        )
