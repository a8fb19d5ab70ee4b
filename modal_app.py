"""Modal deployment entrypoint for the deploy-and-claim service.

Deploy with: ``modal deploy modal_app.py``
Run locally: ``modal serve modal_app.py``
"""

from __future__ import annotations

import modal

# --- Modal App Configuration ---

app = modal.App(
    name="deploy-claim",
    secrets=[
        modal.Secret.from_name("hosting-creds", required_keys=["ACCESS_TOKEN", "TEAM_ID"]),
        modal.Secret.from_name("integration-config", required_keys=["INTEGRATION_CONFIG_ID"]),
        modal.Secret.from_name("cron-secret", required_keys=["CRON_SECRET"]),
    ],
)

# --- Container Image ---

image = (
    modal.Image.debian_slim(python_version="3.11")
    .pip_install(
        "fastapi>=0.100.0",
        "uvicorn[standard]>=0.23.0",
        "python-multipart>=0.0.6",
        "structlog>=24.1.0",
        "prometheus-client>=0.20.0",
        "httpx>=0.24.0",
    )
    .env({"PYTHONPATH": "/app/src", "TEMPLATES_DIR": "/app/templates"})
    # Keep local code mounts last (Modal requirement) to avoid rebuild loops.
    .add_local_dir("templates", "/app/templates")
    .add_local_dir("src/deploy_claim", "/app/src/deploy_claim")
)


# --- FastAPI ASGI App ---


@app.function(
    image=image,
    cpu=1.0,
    memory=512,
    # A provisioning request waits up to DEPLOY_TIMEOUT_SECONDS for readiness.
    timeout=600,
    min_containers=0,  # Scale to zero when idle
    max_containers=10,
)
@modal.concurrent(max_inputs=100)
@modal.asgi_app()
def deploy_claim_web_app():
    """Modal ASGI entry point for the provisioning and cleanup APIs."""
    from deploy_claim.app import create_app

    return create_app()


# --- Scheduled cleanup ---


@app.function(image=image, timeout=900, schedule=modal.Cron("0 */6 * * *"))
async def scheduled_cleanup():
    """Reap expired temporary projects and storage every six hours."""
    from deploy_claim.app.dependencies import run_scheduled_cleanup
    from deploy_claim.app.observability import configure_logging
    from deploy_claim.app.settings import DeployClaimSettings

    configure_logging()
    report = await run_scheduled_cleanup(DeployClaimSettings.from_env())
    return report.to_payload()


# --- CLI Commands ---

@app.local_entrypoint()
def main():
    """Local entrypoint for testing and development."""
    print("Deploy and Claim - Modal Deployment")
    print("=" * 50)
    print()
    print("Commands:")
    print("  modal deploy modal_app.py      - Deploy web endpoint and cleanup schedule")
    print("  modal serve modal_app.py       - Run locally with hot reload")
    print()
    print("Functions:")
    print("  - deploy_claim_web_app: provisioning, claim and cleanup APIs")
    print("  - scheduled_cleanup: reaper run every six hours")
    print()
