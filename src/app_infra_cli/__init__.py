"""
App Infrastructure CLI - GitOps repository provisioning for application teams.

This package creates an application's infrastructure repository from the
platform template, configures its GitOps branches and deployment
environments, and validates that the result is ready to deploy.
"""

__version__ = "1.0.0"
__author__ = "Platform Engineering Team"

# Re-export main components for convenience
from app_infra_cli.cli import app
from app_infra_cli.exceptions import AppInfraError, ConfigurationError, StageError
from app_infra_cli.services.orchestrator import ProvisioningOrchestrator
from app_infra_cli.utils.validation import ProvisioningRequest, validate_request

__all__ = [
    "app",
    "ProvisioningOrchestrator",
    "ProvisioningRequest",
    "validate_request",
    "AppInfraError",
    "ConfigurationError",
    "StageError",
    "__version__",
]
