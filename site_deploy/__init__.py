"""Plan and provision the AWS resources that host a static website."""

from site_deploy.config import WebsiteConfig, load_config_file, resolve
from site_deploy.deployer import DeployResult, deploy
from site_deploy.errors import (
    CertificateValidationError,
    DependencyError,
    ProvisioningError,
    SiteDeployError,
    ValidationError,
    ZoneNotFoundError,
)
from site_deploy.planner import (
    CERTIFICATE_REGION,
    Mode,
    ProvisionedResource,
    ResourceStep,
    StepKind,
    describe_plan,
    execute,
    parse_mode,
    plan,
)
from site_deploy.provisioning import Boto3ProvisioningClient, ProvisioningClient

__version__ = "0.1.0"

__all__ = [
    "Boto3ProvisioningClient",
    "CERTIFICATE_REGION",
    "CertificateValidationError",
    "DependencyError",
    "DeployResult",
    "Mode",
    "ProvisionedResource",
    "ProvisioningClient",
    "ProvisioningError",
    "ResourceStep",
    "SiteDeployError",
    "StepKind",
    "ValidationError",
    "WebsiteConfig",
    "ZoneNotFoundError",
    "deploy",
    "describe_plan",
    "execute",
    "parse_mode",
    "load_config_file",
    "plan",
    "resolve",
]
