"""Command line interface: plan or deploy a static site to S3, optionally behind CloudFront."""

import argparse
import json
import logging
import os
import sys

import boto3

from site_deploy.config import load_config_file, resolve
from site_deploy.deployer import build_state, deploy, known_resources, load_state, save_state
from site_deploy.errors import SiteDeployError
from site_deploy.planner import DEFAULT_REGION, Mode, describe_plan, plan
from site_deploy.provisioning import Boto3ProvisioningClient

# CLI flag -> config-file key
_FLAG_OPTIONS = {
    "domain": "domainName",
    "subdomain": "subdomain",
    "source": "websiteSourceCodeLocation",
    "index_document": "websiteIndexDocument",
    "error_document": "websiteErrorDocument",
    "redirect_apex": "redirectApex",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="site-deploy",
        description="Host a static website in S3, optionally fronted by CloudFront with a custom domain, ACM TLS certificate and Route53 alias record.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""examples:
  %(prog)s --domain example.com --mode bucket-only --source build
      Create www.example.com as a public S3 static website and upload build/.

  %(prog)s --domain example.com --mode cdn-only
      Serve the bucket privately through a CloudFront distribution (HTTPS on
      the generated *.cloudfront.net name).

  %(prog)s --domain example.com --mode cdn-custom-domain
      Also request a DNS-validated certificate in us-east-1 and point
      www.example.com at the distribution. The hosted zone must already exist.

  %(prog)s --config site.json --dry-run
      Print the resource plan as JSON without touching AWS.

config file keys:
  domainName, subdomain, websiteSourceCodeLocation, websiteIndexDocument,
  websiteErrorDocument, redirectApex. Command line flags override them.""",
    )
    parser.add_argument("--config", help="JSON file with website options.")
    parser.add_argument("--domain", help="Registered apex domain, e.g. example.com.")
    parser.add_argument("--subdomain", help="Subdomain the site is served on (default: www).")
    parser.add_argument("--source", help="Directory with the built site (default: build).")
    parser.add_argument("--index-document", help="Index document (default: index.html).")
    parser.add_argument(
        "--error-document", help="Bucket error document (default: the index document)."
    )
    parser.add_argument(
        "--redirect-apex",
        action="store_true",
        default=None,
        help="Also create a bucket for the apex domain that redirects to the subdomain. With cdn-custom-domain an apex alias record to the bucket is created too; in the other modes the apex DNS record is left to you.",
    )
    parser.add_argument(
        "--mode",
        choices=[m.value for m in Mode],
        default=Mode.CDN_WITH_CUSTOM_DOMAIN.value,
        help="What to provision (default: %(default)s).",
    )
    parser.add_argument(
        "--region",
        default=DEFAULT_REGION,
        help="AWS region for the S3 bucket (default: us-east-1). ACM certificates for CloudFront are always created in us-east-1.",
    )
    parser.add_argument(
        "--dry-run", action="store_true", help="Print the plan as JSON and exit."
    )
    parser.add_argument(
        "--skip-upload", action="store_true", help="Provision resources without uploading files."
    )
    parser.add_argument(
        "--state-dir",
        default=".",
        help="Directory for the site_deploy.json state file (default: current directory).",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    return parser


def collect_options(args: argparse.Namespace) -> dict:
    """Merge config-file options with command line flags (flags win)."""
    options = load_config_file(args.config) if args.config else {}
    for flag, key in _FLAG_OPTIONS.items():
        value = getattr(args, flag)
        if value is not None:
            options[key] = value
    return options


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    # boto's own debug output drowns ours
    logging.getLogger("botocore").setLevel(logging.WARNING)

    try:
        config = resolve(collect_options(args))

        if args.dry_run:
            steps = plan(config, args.mode, args.region)
            print(json.dumps({"mode": args.mode, "steps": describe_plan(steps)}, indent=2))
            return

        state_dir = os.path.abspath(args.state_dir)
        if not os.path.isdir(state_dir):
            sys.exit(f"State directory not found: {state_dir}")

        known = known_resources(load_state(state_dir), config)
        mode = Mode(args.mode)

        def record_progress(created):
            # keep earlier handles so a failed re-run still remembers them
            recorded = dict(known)
            recorded.update(created)
            save_state(state_dir, build_state(config, mode, recorded))

        session = boto3.Session(region_name=args.region)
        client = Boto3ProvisioningClient(session=session, region=args.region, known=known)
        result = deploy(
            config,
            mode,
            client,
            region=args.region,
            upload=not args.skip_upload,
            on_created=record_progress,
        )
    except SiteDeployError as e:
        sys.exit(f"Error: {e}")

    path = save_state(state_dir, result.to_state())
    print(f"State saved to {path}")
    if result.uploaded is not None:
        print(f"Uploaded {result.uploaded} files.")
    if result.url:
        print(f"\nSite URL: {result.url}")
    if args.mode != Mode.BUCKET_ONLY.value:
        print("Note: Distribution may take a few minutes to deploy globally.")
    print("Done!")


if __name__ == "__main__":
    main()
