"""Utils package - Utility functions and helpers."""

from app_infra_cli.utils.audit import AuditLogger
from app_infra_cli.utils.config import RequestConfigLoader, load_schema
from app_infra_cli.utils.secrets import ProvisionerSettings
from app_infra_cli.utils.templating import ScaffoldTemplateEngine
from app_infra_cli.utils.validation import ProvisioningRequest, validate_request

__all__ = [
    "AuditLogger",
    "RequestConfigLoader",
    "load_schema",
    "ProvisionerSettings",
    "ScaffoldTemplateEngine",
    "ProvisioningRequest",
    "validate_request",
]
