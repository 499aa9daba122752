"""Provisioning clients: the abstract interface and the boto3-backed implementation."""

import json
import logging
import mimetypes
import time
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Mapping, Optional

import boto3
from botocore.exceptions import ClientError

from site_deploy.errors import (
    CertificateValidationError,
    ProvisioningError,
    ValidationError,
    ZoneNotFoundError,
)
from site_deploy.planner import ProvisionedResource, ResourceStep, StepKind

logger = logging.getLogger(__name__)

CLOUDFRONT_HOSTED_ZONE_ID = "Z2FDTNDATAQYW2"  # CloudFront's fixed hosted zone ID
CACHING_OPTIMIZED_POLICY_ID = "658327ea-f89d-4fab-a63d-7e88639e58f6"
S3_ORIGIN_ID = "s3origin"

# region -> (hosted zone id, website endpoint) for Route53 aliases to S3 website buckets
S3_WEBSITE_ENDPOINTS = {
    "us-east-1": ("Z3AQBSTGFYJSTF", "s3-website-us-east-1.amazonaws.com"),
    "us-east-2": ("Z2O1EMRO9K5GLX", "s3-website.us-east-2.amazonaws.com"),
    "us-west-1": ("Z2F56UZL2M1ACD", "s3-website-us-west-1.amazonaws.com"),
    "us-west-2": ("Z3BJ6K6RIION7M", "s3-website-us-west-2.amazonaws.com"),
    "ca-central-1": ("Z1QDHH18159H29", "s3-website.ca-central-1.amazonaws.com"),
    "eu-west-1": ("Z1BKCTXD74EZPE", "s3-website-eu-west-1.amazonaws.com"),
    "eu-west-2": ("Z3GKZC51ZF0DB4", "s3-website.eu-west-2.amazonaws.com"),
    "eu-west-3": ("Z3R1K369G5AVDG", "s3-website.eu-west-3.amazonaws.com"),
    "eu-central-1": ("Z21DNDUVLTQW6Q", "s3-website.eu-central-1.amazonaws.com"),
    "eu-north-1": ("Z3BAZG2TWCNX0D", "s3-website.eu-north-1.amazonaws.com"),
    "ap-south-1": ("Z11RGJOFQNVJUP", "s3-website.ap-south-1.amazonaws.com"),
    "ap-northeast-1": ("Z2M4EHUR26P7ZW", "s3-website-ap-northeast-1.amazonaws.com"),
    "ap-northeast-2": ("Z3W03O7B5YMIYP", "s3-website.ap-northeast-2.amazonaws.com"),
    "ap-southeast-1": ("Z3O0J2DXBE1FTB", "s3-website-ap-southeast-1.amazonaws.com"),
    "ap-southeast-2": ("Z1WCIGYICN2BYD", "s3-website-ap-southeast-2.amazonaws.com"),
    "sa-east-1": ("Z7KQH4QJS55SO", "s3-website-sa-east-1.amazonaws.com"),
}


class ProvisioningClient(ABC):
    """Creates the platform resource described by a ResourceStep."""

    @abstractmethod
    def create(
        self, step: ResourceStep, resolved: Mapping[StepKind, ProvisionedResource]
    ) -> ProvisionedResource:
        """Create ``step``; ``resolved`` holds the handles of the steps it references."""

    @abstractmethod
    def upload_content(
        self,
        bucket: ProvisionedResource,
        source_path: str,
        distribution: Optional[ProvisionedResource] = None,
    ) -> int:
        """Upload the site files; invalidate ``/*`` when fronted by a distribution."""


class Boto3ProvisioningClient(ProvisioningClient):
    def __init__(
        self,
        session: Optional[boto3.Session] = None,
        region: str = "us-east-1",
        poll_interval: float = 2,
        max_attempts: int = 90,
        known: Optional[Mapping[StepKind, ProvisionedResource]] = None,
    ):
        self.region = region
        self.session = session or boto3.Session(region_name=region)
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        # handles recorded by an earlier run, reused when they still exist
        self.known = dict(known or {})
        self._handlers = {
            StepKind.BUCKET: self._create_bucket,
            StepKind.REDIRECT_BUCKET: self._create_redirect_bucket,
            StepKind.HOSTED_ZONE: self._lookup_hosted_zone,
            StepKind.CERTIFICATE: self._request_certificate,
            StepKind.ACCESS_IDENTITY: self._create_access_identity,
            StepKind.BUCKET_POLICY: self._attach_read_policy,
            StepKind.DISTRIBUTION: self._create_distribution,
            StepKind.DNS_RECORD: self._create_alias_record,
            StepKind.APEX_RECORD: self._create_apex_record,
        }

    def create(self, step, resolved):
        return self._handlers[step.kind](step, resolved)

    # -- storage -----------------------------------------------------------

    def _ensure_bucket(self, s3, name: str, region: str) -> bool:
        """Create bucket if it doesn't exist. Returns True if bucket was just created."""
        try:
            s3.head_bucket(Bucket=name)
            logger.info("Bucket %s already exists.", name)
            return False
        except ClientError:
            pass

        logger.info("Creating bucket %s in %s...", name, region)
        params = {"Bucket": name}
        if region != "us-east-1":
            params["CreateBucketConfiguration"] = {"LocationConstraint": region}
        s3.create_bucket(**params)
        return True

    def _create_bucket(self, step, resolved):
        p = step.params
        name, region = p["name"], p["region"]
        s3 = self.session.client("s3", region_name=region)
        created = self._ensure_bucket(s3, name, region)

        s3.put_bucket_encryption(
            Bucket=name,
            ServerSideEncryptionConfiguration={
                "Rules": [
                    {"ApplyServerSideEncryptionByDefault": {"SSEAlgorithm": p["encryption"]}}
                ]
            },
        )

        attributes = {
            "arn": f"arn:aws:s3:::{name}",
            "regional_domain_name": f"{name}.s3.{region}.amazonaws.com",
            "region": region,
            "created": created,
        }

        if p["public"]:
            logger.info("Configuring S3 static website hosting for %s...", name)
            s3.put_public_access_block(
                Bucket=name,
                PublicAccessBlockConfiguration={
                    "BlockPublicAcls": False,
                    "IgnorePublicAcls": False,
                    "BlockPublicPolicy": False,
                    "RestrictPublicBuckets": False,
                },
            )
            policy = {
                "Version": "2012-10-17",
                "Statement": [
                    {
                        "Sid": "PublicReadGetObject",
                        "Effect": "Allow",
                        "Principal": "*",
                        "Action": "s3:GetObject",
                        "Resource": f"arn:aws:s3:::{name}/*",
                    }
                ],
            }
            s3.put_bucket_policy(Bucket=name, Policy=json.dumps(policy))
            s3.put_bucket_website(
                Bucket=name,
                WebsiteConfiguration={
                    "IndexDocument": {"Suffix": p["index_document"]},
                    "ErrorDocument": {"Key": p["error_document"]},
                },
            )
            attributes["website_url"] = f"http://{name}.s3-website-{region}.amazonaws.com"
        else:
            # CloudFront is the only reader; the identity policy is not public
            s3.put_public_access_block(
                Bucket=name,
                PublicAccessBlockConfiguration={
                    "BlockPublicAcls": True,
                    "IgnorePublicAcls": True,
                    "BlockPublicPolicy": True,
                    "RestrictPublicBuckets": True,
                },
            )

        return ProvisionedResource(step.kind, name, attributes)

    def _create_redirect_bucket(self, step, resolved):
        p = step.params
        name, region = p["name"], p["region"]
        s3 = self.session.client("s3", region_name=region)
        self._ensure_bucket(s3, name, region)

        logger.info("Redirecting %s to %s://%s", name, p["redirect_protocol"], p["redirect_host"])
        s3.put_bucket_website(
            Bucket=name,
            WebsiteConfiguration={
                "IndexDocument": {"Suffix": p["index_document"]},
                "RoutingRules": [
                    {
                        "Redirect": {
                            "HostName": p["redirect_host"],
                            "HttpRedirectCode": p["redirect_code"],
                            "Protocol": p["redirect_protocol"],
                        }
                    }
                ],
            },
        )
        return ProvisionedResource(
            step.kind,
            name,
            {"arn": f"arn:aws:s3:::{name}", "region": region},
        )

    def upload_content(self, bucket, source_path, distribution=None):
        """Upload all files under ``source_path`` to the bucket."""
        output_path = Path(source_path)
        if not output_path.is_dir():
            raise ValidationError(f"Source directory not found: {source_path}")

        s3 = self.session.client("s3", region_name=bucket.attributes.get("region", self.region))
        files = sorted(f for f in output_path.rglob("*") if f.is_file())
        logger.info("Uploading %d files to s3://%s/...", len(files), bucket.id)

        for file_path in files:
            key = file_path.relative_to(output_path).as_posix()
            content_type, _ = mimetypes.guess_type(str(file_path))
            if content_type is None:
                content_type = "application/octet-stream"

            extra_args = {"ContentType": content_type}

            # long cache for hashed assets, none for html
            if file_path.suffix == ".html":
                extra_args["CacheControl"] = "no-cache"
            elif key.startswith("assets/") or "/assets/" in key:
                extra_args["CacheControl"] = "public, max-age=31536000, immutable"

            logger.debug("Uploading %s (%s)", key, content_type)
            s3.upload_file(str(file_path), bucket.id, key, ExtraArgs=extra_args)

        if distribution is not None:
            self._invalidate(distribution.id)
        return len(files)

    # -- dns / certificates ------------------------------------------------

    def _lookup_hosted_zone(self, step, resolved):
        domain = step.params["domain_name"]
        route53 = self.session.client("route53")

        # walk up the domain to find a matching zone (app.example.com -> example.com)
        parts = domain.split(".")
        for i in range(len(parts) - 1):
            candidate = ".".join(parts[i:])
            resp = route53.list_hosted_zones_by_name(DNSName=candidate, MaxItems="1")
            for zone in resp["HostedZones"]:
                zone_name = zone["Name"].rstrip(".")
                if zone_name == candidate:
                    zone_id = zone["Id"].split("/")[-1]
                    logger.info("Found hosted zone: %s (%s)", zone_name, zone_id)
                    return ProvisionedResource(step.kind, zone_id, {"name": zone_name})

        raise ZoneNotFoundError(
            f"No Route53 hosted zone found for {domain}. "
            "Register the domain (or delegate it to Route53) before deploying."
        )

    def _request_certificate(self, step, resolved):
        """Request an ACM certificate with DNS validation and wait for it to be issued."""
        p = step.params
        zone = resolved[StepKind.HOSTED_ZONE]
        acm = self.session.client("acm", region_name=p["region"])
        route53 = self.session.client("route53")

        cert_arn, status = self._tracked_certificate(acm)
        if status == "ISSUED":
            logger.info("ACM certificate already issued: %s", cert_arn)
            return ProvisionedResource(step.kind, cert_arn, {"region": p["region"]})
        if cert_arn is None:
            logger.info("Requesting ACM certificate for %s in %s...", p["domain_name"], p["region"])
            cert_resp = acm.request_certificate(
                DomainName=p["domain_name"],
                SubjectAlternativeNames=list(p["alternative_names"]),
                ValidationMethod=p["validation_method"],
            )
            cert_arn = cert_resp["CertificateArn"]

        records = self._wait_for_validation_records(acm, cert_arn)
        for record in records:
            logger.info("Creating validation record: %s -> %s", record["Name"], record["Value"])
            route53.change_resource_record_sets(
                HostedZoneId=zone.id,
                ChangeBatch={
                    "Changes": [
                        {
                            "Action": "UPSERT",
                            "ResourceRecordSet": {
                                "Name": record["Name"],
                                "Type": record["Type"],
                                "TTL": 300,
                                "ResourceRecords": [{"Value": record["Value"]}],
                            },
                        }
                    ]
                },
            )

        logger.info("Waiting for certificate validation (this may take a few minutes)...")
        for i in range(self.max_attempts):
            resp = acm.describe_certificate(CertificateArn=cert_arn)
            status = resp["Certificate"]["Status"]
            if status == "ISSUED":
                logger.info("Certificate issued: %s", cert_arn)
                return ProvisionedResource(step.kind, cert_arn, {"region": p["region"]})
            if status == "FAILED":
                reason = resp["Certificate"].get("FailureReason")
                raise CertificateValidationError(f"Certificate validation failed: {reason}")
            if i % 15 == 0 and i > 0:
                logger.info("Still waiting... (status: %s)", status)
            time.sleep(self.poll_interval)

        raise CertificateValidationError(f"Timed out waiting for certificate {cert_arn} to be issued.")

    def _tracked_certificate(self, acm):
        """Return (arn, status) of a certificate from an earlier run that is issued or still validating."""
        known = self.known.get(StepKind.CERTIFICATE)
        if known is None:
            return None, None
        try:
            resp = acm.describe_certificate(CertificateArn=known.id)
        except ClientError:
            logger.info("Previously tracked certificate not found, requesting new one...")
            return None, None
        status = resp["Certificate"]["Status"]
        if status in ("ISSUED", "PENDING_VALIDATION"):
            return known.id, status
        logger.info("Previously tracked certificate is %s, requesting new one...", status)
        return None, None

    def _wait_for_validation_records(self, acm, cert_arn: str) -> list:
        # every name on the certificate must report its record before we can upsert
        for _ in range(self.max_attempts):
            resp = acm.describe_certificate(CertificateArn=cert_arn)
            options = resp["Certificate"].get("DomainValidationOptions", [])
            if options and all("ResourceRecord" in o for o in options):
                unique = {}
                for o in options:
                    unique.setdefault(o["ResourceRecord"]["Name"], o["ResourceRecord"])
                return list(unique.values())
            time.sleep(self.poll_interval)
        raise CertificateValidationError("Timed out waiting for ACM validation details.")

    def _create_alias_record(self, step, resolved):
        """Point the record at the CloudFront distribution."""
        zone = resolved[StepKind.HOSTED_ZONE]
        distribution = resolved[StepKind.DISTRIBUTION]
        name = step.params["record_name"]
        cf_domain = distribution.attributes["domain_name"]

        logger.info("Creating Route53 alias: %s -> %s", name, cf_domain)
        route53 = self.session.client("route53")
        route53.change_resource_record_sets(
            HostedZoneId=zone.id,
            ChangeBatch={
                "Changes": [
                    {
                        "Action": "UPSERT",
                        "ResourceRecordSet": {
                            "Name": name,
                            "Type": step.params["record_type"],
                            "AliasTarget": {
                                "HostedZoneId": CLOUDFRONT_HOSTED_ZONE_ID,
                                "DNSName": cf_domain,
                                "EvaluateTargetHealth": False,
                            },
                        },
                    }
                ]
            },
        )
        return ProvisionedResource(step.kind, name, {"zone_id": zone.id, "target": cf_domain})

    def _create_apex_record(self, step, resolved):
        """Point the apex domain at the redirect bucket's website endpoint."""
        zone = resolved[StepKind.HOSTED_ZONE]
        bucket = resolved[StepKind.REDIRECT_BUCKET]
        region = bucket.attributes.get("region", self.region)
        if region not in S3_WEBSITE_ENDPOINTS:
            raise ProvisioningError(f"No S3 website alias target known for region {region}")
        target_zone_id, endpoint = S3_WEBSITE_ENDPOINTS[region]
        name = step.params["record_name"]

        logger.info("Creating Route53 alias: %s -> %s", name, endpoint)
        route53 = self.session.client("route53")
        route53.change_resource_record_sets(
            HostedZoneId=zone.id,
            ChangeBatch={
                "Changes": [
                    {
                        "Action": "UPSERT",
                        "ResourceRecordSet": {
                            "Name": name,
                            "Type": step.params["record_type"],
                            "AliasTarget": {
                                "HostedZoneId": target_zone_id,
                                "DNSName": endpoint,
                                "EvaluateTargetHealth": False,
                            },
                        },
                    }
                ]
            },
        )
        return ProvisionedResource(step.kind, name, {"zone_id": zone.id, "target": endpoint})

    # -- cloudfront --------------------------------------------------------

    def _create_access_identity(self, step, resolved):
        cf = self.session.client("cloudfront")
        known = self.known.get(StepKind.ACCESS_IDENTITY)
        if known is not None:
            try:
                resp = cf.get_cloud_front_origin_access_identity(Id=known.id)
                identity = resp["CloudFrontOriginAccessIdentity"]
                logger.info("Origin Access Identity already exists: %s", identity["Id"])
                return ProvisionedResource(
                    step.kind,
                    identity["Id"],
                    {"s3_canonical_user_id": identity["S3CanonicalUserId"]},
                )
            except ClientError:
                logger.info("Previously tracked Origin Access Identity not found, creating new one...")

        logger.info("Creating Origin Access Identity...")
        resp = cf.create_cloud_front_origin_access_identity(
            CloudFrontOriginAccessIdentityConfig={
                "CallerReference": str(uuid.uuid4()),
                "Comment": step.params["comment"],
            }
        )
        identity = resp["CloudFrontOriginAccessIdentity"]
        return ProvisionedResource(
            step.kind,
            identity["Id"],
            {"s3_canonical_user_id": identity["S3CanonicalUserId"]},
        )

    def _attach_read_policy(self, step, resolved):
        """Give the origin access identity read access to the bucket objects."""
        bucket = resolved[StepKind.BUCKET]
        identity = resolved[StepKind.ACCESS_IDENTITY]
        s3 = self.session.client("s3", region_name=bucket.attributes.get("region", self.region))

        policy = {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Sid": "AllowCloudFrontOriginAccessIdentity",
                    "Effect": "Allow",
                    "Principal": {"CanonicalUser": identity.attributes["s3_canonical_user_id"]},
                    "Action": step.params["actions"],
                    "Resource": f"{bucket.attributes['arn']}/{step.params['objects']}",
                }
            ],
        }
        logger.info("Attaching read policy for %s to bucket %s", identity.id, bucket.id)
        s3.put_bucket_policy(Bucket=bucket.id, Policy=json.dumps(policy))
        return ProvisionedResource(step.kind, bucket.id, {"policy": policy})

    def _create_distribution(self, step, resolved):
        """Create the CloudFront distribution fronting the bucket."""
        p = step.params
        bucket = resolved[StepKind.BUCKET]
        identity = resolved[StepKind.ACCESS_IDENTITY]
        certificate = resolved.get(StepKind.CERTIFICATE)
        cf = self.session.client("cloudfront")

        known = self.known.get(StepKind.DISTRIBUTION)
        if known is not None:
            # aliases can only belong to one distribution, so never create a second
            try:
                dist = cf.get_distribution(Id=known.id)["Distribution"]
                logger.info("CloudFront distribution already exists: %s (%s)", dist["Id"], dist["DomainName"])
                return ProvisionedResource(
                    step.kind,
                    dist["Id"],
                    {"domain_name": dist["DomainName"], "arn": dist["ARN"]},
                )
            except ClientError:
                logger.info("Previously tracked distribution not found, creating new one...")

        dist_config = {
            "CallerReference": str(uuid.uuid4()),
            "Comment": f"Static site: {bucket.id}",
            "Enabled": True,
            "DefaultRootObject": p["default_root_object"],
            "Origins": {
                "Quantity": 1,
                "Items": [
                    {
                        "Id": S3_ORIGIN_ID,
                        "DomainName": bucket.attributes["regional_domain_name"],
                        "S3OriginConfig": {
                            "OriginAccessIdentity": f"origin-access-identity/cloudfront/{identity.id}"
                        },
                    }
                ],
            },
            "DefaultCacheBehavior": {
                "TargetOriginId": S3_ORIGIN_ID,
                "ViewerProtocolPolicy": p["viewer_protocol_policy"],
                "AllowedMethods": {
                    "Quantity": len(p["allowed_methods"]),
                    "Items": list(p["allowed_methods"]),
                },
                "CachePolicyId": CACHING_OPTIMIZED_POLICY_ID,
                "Compress": p["compress"],
            },
            "CustomErrorResponses": {
                "Quantity": len(p["error_responses"]),
                "Items": [
                    {
                        "ErrorCode": r["error_code"],
                        "ResponsePagePath": r["response_page_path"],
                        "ResponseCode": str(r["response_code"]),
                        "ErrorCachingMinTTL": 10,
                    }
                    for r in p["error_responses"]
                ],
            },
        }

        if certificate is not None:
            dist_config["Aliases"] = {"Quantity": len(p["aliases"]), "Items": list(p["aliases"])}
            dist_config["ViewerCertificate"] = {
                "ACMCertificateArn": certificate.id,
                "SSLSupportMethod": "sni-only",
                "MinimumProtocolVersion": "TLSv1.2_2021",
            }
        else:
            dist_config["ViewerCertificate"] = {"CloudFrontDefaultCertificate": True}

        logger.info("Creating CloudFront distribution...")
        dist_resp = cf.create_distribution(DistributionConfig=dist_config)
        dist = dist_resp["Distribution"]
        logger.info("CloudFront distribution created: %s (%s)", dist["Id"], dist["DomainName"])
        return ProvisionedResource(
            step.kind,
            dist["Id"],
            {"domain_name": dist["DomainName"], "arn": dist["ARN"]},
        )

    def _invalidate(self, distribution_id: str):
        cf = self.session.client("cloudfront")
        logger.info("Creating cache invalidation for %s...", distribution_id)
        cf.create_invalidation(
            DistributionId=distribution_id,
            InvalidationBatch={
                "Paths": {"Quantity": 1, "Items": ["/*"]},
                "CallerReference": str(uuid.uuid4()),
            },
        )
