"""In-memory provisioning client that records calls instead of touching AWS."""

from typing import List, Optional, Tuple

from site_deploy.planner import ProvisionedResource, StepKind
from site_deploy.provisioning import ProvisioningClient


class RecordingProvisioningClient(ProvisioningClient):
    """
    Records every ``create`` call and returns deterministic stub handles.

    ``fail_on`` makes ``create`` raise ``error`` (a RuntimeError by default)
    when it reaches that kind, after recording the call.
    """

    def __init__(self, fail_on: Optional[StepKind] = None, error: Optional[Exception] = None):
        self.calls = []
        self.uploads = []
        self.fail_on = fail_on
        self.error = error

    @property
    def call_order(self) -> List[StepKind]:
        return [step.kind for step, _ in self.calls]

    def dependencies_of(self, kind: StepKind) -> Tuple[StepKind, ...]:
        for step, resolved in self.calls:
            if step.kind is kind:
                return tuple(resolved)
        raise KeyError(kind)

    def create(self, step, resolved):
        self.calls.append((step, dict(resolved)))
        if step.kind is self.fail_on:
            raise self.error or RuntimeError(f"stub failure creating {step.kind.value}")

        stub_id = f"stub-{step.kind.value.lower()}-{len(self.calls)}"
        attributes = {}
        if step.kind is StepKind.BUCKET:
            stub_id = step.params["name"]
            attributes = {"arn": f"arn:aws:s3:::{stub_id}", "region": step.params["region"]}
            if step.params["public"]:
                attributes["website_url"] = (
                    f"http://{stub_id}.s3-website-{step.params['region']}.amazonaws.com"
                )
        elif step.kind is StepKind.DISTRIBUTION:
            attributes = {"domain_name": f"{stub_id}.cloudfront.net"}
        elif step.kind is StepKind.DNS_RECORD:
            stub_id = step.params["record_name"]
        return ProvisionedResource(step.kind, stub_id, attributes)

    def upload_content(self, bucket, source_path, distribution=None):
        self.uploads.append((bucket.id, source_path, distribution.id if distribution else None))
        return 0
