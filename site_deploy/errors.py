"""Exceptions raised while resolving, planning and provisioning a site."""


class SiteDeployError(Exception):
    """Base exception for all site_deploy errors."""


class ValidationError(SiteDeployError, ValueError):
    """Raised when the website configuration is missing or malformed."""


class ZoneNotFoundError(SiteDeployError, LookupError):
    """
    Raised when no existing hosted zone matches the domain.

    Zones are never created on the fly: a new zone gets its own name servers,
    which won't match the registrar's delegation, so DNS validation of the
    certificate would never complete.
    """


class DependencyError(SiteDeployError, RuntimeError):
    """Raised when a step references a resource that isn't planned or provisioned."""


class ProvisioningError(SiteDeployError):
    """Raised when the provisioning client detects a failure on its own."""


class CertificateValidationError(ProvisioningError):
    """Raised when a DNS-validated certificate fails or never gets issued."""
