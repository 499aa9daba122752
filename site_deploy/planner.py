"""Turn a WebsiteConfig into an ordered list of resource steps, and run them."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from site_deploy.config import WebsiteConfig
from site_deploy.errors import DependencyError, ValidationError

logger = logging.getLogger(__name__)

# CloudFront only checks us-east-1 for certificates.
CERTIFICATE_REGION = "us-east-1"
DEFAULT_REGION = "us-east-1"


class Mode(str, Enum):
    BUCKET_ONLY = "bucket-only"
    CDN_ONLY = "cdn-only"
    CDN_WITH_CUSTOM_DOMAIN = "cdn-custom-domain"


class StepKind(str, Enum):
    # declaration order is the tie-break order when planning
    BUCKET = "Bucket"
    REDIRECT_BUCKET = "RedirectBucket"
    HOSTED_ZONE = "HostedZoneLookup"
    CERTIFICATE = "Certificate"
    ACCESS_IDENTITY = "AccessIdentity"
    BUCKET_POLICY = "BucketPolicy"
    DISTRIBUTION = "Distribution"
    DNS_RECORD = "DnsAliasRecord"
    APEX_RECORD = "ApexAliasRecord"


_DECLARATION_ORDER = {kind: i for i, kind in enumerate(StepKind)}


@dataclass(frozen=True)
class ResourceStep:
    kind: StepKind
    depends_on: Tuple[StepKind, ...] = ()
    params: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "dependsOn": [dep.value for dep in self.depends_on],
            "params": dict(self.params),
        }


@dataclass(frozen=True)
class ProvisionedResource:
    """Handle returned by the platform for a created (or reused) resource."""

    kind: StepKind
    id: str
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "id": self.id, "attributes": dict(self.attributes)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProvisionedResource":
        return cls(StepKind(data["kind"]), data["id"], dict(data.get("attributes") or {}))


def parse_mode(mode) -> Mode:
    try:
        return Mode(mode)
    except ValueError:
        choices = ", ".join(m.value for m in Mode)
        raise ValidationError(f"Unknown mode {mode!r}, expected one of: {choices}") from None


def _error_responses(index_document: str) -> List[dict]:
    # client-side routed apps need unknown paths to load the index page
    return [
        {"error_code": code, "response_code": 200, "response_page_path": f"/{index_document}"}
        for code in (403, 404)
    ]


def _candidate_steps(config: WebsiteConfig, mode: Mode, region: str) -> List[ResourceStep]:
    """Build the steps the mode needs, in declaration order."""
    public = mode is Mode.BUCKET_ONLY
    custom_domain = mode is Mode.CDN_WITH_CUSTOM_DOMAIN

    steps = [
        ResourceStep(
            StepKind.BUCKET,
            params={
                "name": config.site_domain,
                "region": region,
                "public": public,
                "index_document": config.index_document,
                "error_document": config.error_document,
                "encryption": "AES256",
            },
        )
    ]

    if config.redirect_apex:
        # example.com -> www.example.com
        steps.append(
            ResourceStep(
                StepKind.REDIRECT_BUCKET,
                params={
                    "name": config.domain_name,
                    "region": region,
                    "index_document": config.index_document,
                    "redirect_host": config.site_domain,
                    "redirect_protocol": "https",
                    "redirect_code": "302",
                },
            )
        )

    if public:
        return steps

    if custom_domain:
        steps.append(
            ResourceStep(StepKind.HOSTED_ZONE, params={"domain_name": config.domain_name})
        )
        steps.append(
            ResourceStep(
                StepKind.CERTIFICATE,
                depends_on=(StepKind.HOSTED_ZONE,),
                params={
                    "domain_name": config.domain_name,
                    "alternative_names": [f"*.{config.domain_name}"],
                    "region": CERTIFICATE_REGION,
                    "validation_method": "DNS",
                },
            )
        )

    steps.append(
        ResourceStep(
            StepKind.ACCESS_IDENTITY,
            params={
                "comment": f"Origin Access Identity for CloudFront to access {config.site_domain}",
            },
        )
    )
    steps.append(
        ResourceStep(
            StepKind.BUCKET_POLICY,
            depends_on=(StepKind.BUCKET, StepKind.ACCESS_IDENTITY),
            params={"actions": ["s3:GetObject"], "objects": "*"},
        )
    )

    distribution_deps = (StepKind.BUCKET, StepKind.ACCESS_IDENTITY, StepKind.BUCKET_POLICY)
    if custom_domain:
        distribution_deps += (StepKind.CERTIFICATE,)
    steps.append(
        ResourceStep(
            StepKind.DISTRIBUTION,
            depends_on=distribution_deps,
            params={
                "aliases": [config.site_domain] if custom_domain else [],
                "default_root_object": config.index_document,
                "viewer_protocol_policy": "redirect-to-https",
                "allowed_methods": ["GET", "HEAD"],
                "compress": True,
                "error_responses": _error_responses(config.index_document),
            },
        )
    )

    if custom_domain:
        steps.append(
            ResourceStep(
                StepKind.DNS_RECORD,
                depends_on=(StepKind.HOSTED_ZONE, StepKind.DISTRIBUTION),
                params={"record_name": config.site_domain, "record_type": "A"},
            )
        )
        if config.redirect_apex:
            # apex -> redirect bucket website endpoint
            steps.append(
                ResourceStep(
                    StepKind.APEX_RECORD,
                    depends_on=(StepKind.HOSTED_ZONE, StepKind.REDIRECT_BUCKET),
                    params={"record_name": config.domain_name, "record_type": "A"},
                )
            )

    return steps


def order_steps(steps: List[ResourceStep]) -> List[ResourceStep]:
    """
    Topologically sort ``steps``, breaking ties by StepKind declaration order.

    Raises DependencyError if a step references a kind that isn't among
    ``steps`` or if the references form a cycle.
    """
    by_kind = {}
    for step in steps:
        if step.kind in by_kind:
            raise DependencyError(f"Duplicate step: {step.kind.value}")
        by_kind[step.kind] = step

    for step in steps:
        for dep in step.depends_on:
            if dep not in by_kind:
                raise DependencyError(
                    f"{step.kind.value} references {dep.value}, which is not in the plan"
                )

    ordered = []
    emitted = set()
    pending = sorted(by_kind, key=_DECLARATION_ORDER.get)
    while pending:
        ready = [kind for kind in pending if emitted.issuperset(by_kind[kind].depends_on)]
        if not ready:
            names = ", ".join(kind.value for kind in pending)
            raise DependencyError(f"Dependency cycle between: {names}")
        kind = ready[0]
        ordered.append(by_kind[kind])
        emitted.add(kind)
        pending.remove(kind)
    return ordered


def plan(
    config: WebsiteConfig, mode: Mode, region: Optional[str] = None
) -> List[ResourceStep]:
    """Return the ordered resource steps that host ``config`` in ``mode``."""
    mode = parse_mode(mode)
    steps = order_steps(_candidate_steps(config, mode, region or DEFAULT_REGION))
    logger.debug("Planned %s: %s", mode.value, [step.kind.value for step in steps])
    return steps


def describe_plan(steps: List[ResourceStep]) -> List[dict]:
    """JSON-serializable form of a plan."""
    return [step.to_dict() for step in steps]


def execute(
    steps: List[ResourceStep],
    client,
    on_created: Optional[Callable[[Dict[StepKind, ProvisionedResource]], None]] = None,
) -> Dict[StepKind, ProvisionedResource]:
    """
    Create every step in order through ``client``.

    Each call gets the handles of the steps it references. ``on_created`` is
    called with everything provisioned so far after each step, so a failure
    later on still leaves a record of what exists. Stops at the first error;
    errors raised by the client propagate unchanged.
    """
    created: Dict[StepKind, ProvisionedResource] = {}
    for step in steps:
        missing = [dep for dep in step.depends_on if dep not in created]
        if missing:
            names = ", ".join(dep.value for dep in missing)
            raise DependencyError(f"{step.kind.value} needs {names}, which was not provisioned yet")
        resolved = {dep: created[dep] for dep in step.depends_on}
        logger.info("Provisioning %s", step.kind.value)
        created[step.kind] = client.create(step, resolved)
        if on_created is not None:
            on_created(dict(created))
    return created
