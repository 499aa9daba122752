"""Programmatic entry point: resolve, plan, provision and upload in one call."""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional

from site_deploy.config import WebsiteConfig, resolve
from site_deploy.errors import ValidationError
from site_deploy.planner import (
    Mode,
    ProvisionedResource,
    ResourceStep,
    StepKind,
    execute,
    parse_mode,
    plan,
)

logger = logging.getLogger(__name__)

STATE_FILE = "site_deploy.json"


@dataclass
class DeployResult:
    config: WebsiteConfig
    mode: Mode
    steps: List[ResourceStep]
    resources: Dict[StepKind, ProvisionedResource] = field(default_factory=dict)
    uploaded: Optional[int] = None

    @property
    def url(self) -> Optional[str]:
        if StepKind.DNS_RECORD in self.resources:
            return f"https://{self.config.site_domain}"
        if StepKind.DISTRIBUTION in self.resources:
            return f"https://{self.resources[StepKind.DISTRIBUTION].attributes['domain_name']}"
        bucket = self.resources.get(StepKind.BUCKET)
        if bucket is not None:
            return bucket.attributes.get("website_url")
        return None

    def to_state(self) -> dict:
        return build_state(self.config, self.mode, self.resources, url=self.url)


def build_state(
    config: WebsiteConfig,
    mode: Mode,
    resources: Mapping[StepKind, ProvisionedResource],
    url: Optional[str] = None,
) -> dict:
    return {
        "domain": config.site_domain,
        "mode": mode.value,
        "url": url,
        "resources": [resource.to_dict() for resource in resources.values()],
    }


def deploy(
    raw_config,
    mode,
    client,
    region: Optional[str] = None,
    upload: bool = True,
    on_created: Optional[Callable[[Dict[StepKind, ProvisionedResource]], None]] = None,
) -> DeployResult:
    """
    Host the site described by ``raw_config`` in ``mode`` through ``client``.

    Content is uploaded after every resource exists, so that when a
    distribution is present its cache can be invalidated. ``on_created`` is
    handed to ``execute`` and sees the resources after every step.
    """
    config = resolve(raw_config)
    mode = parse_mode(mode)
    steps = plan(config, mode, region)
    result = DeployResult(config=config, mode=mode, steps=steps)
    result.resources = execute(steps, client, on_created=on_created)

    if upload:
        result.uploaded = client.upload_content(
            result.resources[StepKind.BUCKET],
            config.source_code_location,
            distribution=result.resources.get(StepKind.DISTRIBUTION),
        )
    return result


def load_state(state_dir: str) -> dict:
    path = os.path.join(state_dir, STATE_FILE)
    if os.path.exists(path):
        try:
            with open(path) as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise ValidationError(f"State file {path} is not valid JSON: {e}") from e
    return {"resources": []}


def save_state(state_dir: str, state: dict) -> str:
    path = os.path.join(state_dir, STATE_FILE)
    with open(path, "w") as f:
        json.dump(state, f, indent=2)
    logger.info("State saved to %s", path)
    return path


def known_resources(state: dict, config: WebsiteConfig) -> Dict[StepKind, ProvisionedResource]:
    """
    Handles recorded by an earlier run for the same site.

    A state file written for another site domain is ignored.
    """
    if state.get("domain") != config.site_domain:
        if state.get("domain"):
            logger.warning(
                "State file is for %s, not %s; ignoring it.", state["domain"], config.site_domain
            )
        return {}
    known = {}
    for data in state.get("resources", []):
        try:
            resource = ProvisionedResource.from_dict(data)
        except (KeyError, ValueError) as e:
            raise ValidationError(f"State file has an unreadable resource entry: {data!r}") from e
        known[resource.kind] = resource
    return known
