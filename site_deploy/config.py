"""Resolve user supplied website settings into an immutable WebsiteConfig."""

import json
import re
from dataclasses import asdict, dataclass
from typing import Any, Mapping, Union

from site_deploy.errors import ValidationError

DEFAULT_SUBDOMAIN = "www"
DEFAULT_SOURCE_LOCATION = "build"
DEFAULT_INDEX_DOCUMENT = "index.html"

_LABEL_RE = re.compile(r"(?!-)[a-z0-9-]{1,63}(?<!-)")

# config-file key -> WebsiteConfig field
RECOGNIZED_OPTIONS = {
    "domainName": "domain_name",
    "subdomain": "subdomain",
    "websiteSourceCodeLocation": "source_code_location",
    "websiteIndexDocument": "index_document",
    "websiteErrorDocument": "error_document",
    "redirectApex": "redirect_apex",
}


@dataclass(frozen=True)
class WebsiteConfig:
    domain_name: str
    subdomain: str = DEFAULT_SUBDOMAIN
    source_code_location: str = DEFAULT_SOURCE_LOCATION
    index_document: str = DEFAULT_INDEX_DOCUMENT
    error_document: str = DEFAULT_INDEX_DOCUMENT
    redirect_apex: bool = False

    @property
    def site_domain(self) -> str:
        """The fully qualified name the site is served on, e.g. www.example.com."""
        return f"{self.subdomain}.{self.domain_name}"


def _normalize_domain(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("domainName is required")
    domain = value.strip().lower().rstrip(".")
    labels = domain.split(".")
    if len(labels) < 2 or len(domain) > 253:
        raise ValidationError(f"domainName is not a valid DNS name: {value!r}")
    for label in labels:
        if not _LABEL_RE.fullmatch(label):
            raise ValidationError(f"domainName is not a valid DNS name: {value!r}")
    return domain


def _normalize_subdomain(value: Any) -> str:
    if value is None:
        return DEFAULT_SUBDOMAIN
    if not isinstance(value, str):
        raise ValidationError(f"subdomain must be a string, got {type(value).__name__}")
    label = value.strip().lower()
    if not _LABEL_RE.fullmatch(label):
        raise ValidationError(f"subdomain must be a single DNS label: {value!r}")
    return label


def _normalize_document(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip("/ "):
        raise ValidationError(f"{name} must be a non-empty file name")
    # stored relative to the bucket root
    return value.strip().lstrip("/")


def _collect(raw: Mapping[str, Any]) -> dict:
    fields = set(RECOGNIZED_OPTIONS.values())
    values = {}
    for key, value in raw.items():
        if key in RECOGNIZED_OPTIONS:
            field = RECOGNIZED_OPTIONS[key]
        elif key in fields:
            field = key
        else:
            raise ValidationError(f"Unrecognized configuration option: {key}")
        if value is not None:
            values[field] = value
    return values


def resolve(raw: Union[Mapping[str, Any], WebsiteConfig]) -> WebsiteConfig:
    """
    Validate ``raw`` and fill in defaults.

    ``raw`` may use the config-file keys (``domainName``, ``subdomain``,
    ``websiteSourceCodeLocation``, ``websiteIndexDocument``,
    ``websiteErrorDocument``, ``redirectApex``) or the WebsiteConfig field
    names. An already resolved WebsiteConfig resolves to an equal value.
    """
    if isinstance(raw, WebsiteConfig):
        raw = asdict(raw)
    if not isinstance(raw, Mapping):
        raise ValidationError(f"Configuration must be a mapping, got {type(raw).__name__}")

    values = _collect(raw)
    domain_name = _normalize_domain(values.get("domain_name"))
    subdomain = _normalize_subdomain(values.get("subdomain"))

    index_document = _normalize_document(
        "websiteIndexDocument", values.get("index_document", DEFAULT_INDEX_DOCUMENT)
    )
    error_document = _normalize_document(
        "websiteErrorDocument", values.get("error_document", index_document)
    )

    source = values.get("source_code_location", DEFAULT_SOURCE_LOCATION)
    if not isinstance(source, str) or not source.strip():
        raise ValidationError("websiteSourceCodeLocation must be a non-empty path")

    redirect_apex = values.get("redirect_apex", False)
    if not isinstance(redirect_apex, bool):
        raise ValidationError("redirectApex must be true or false")

    return WebsiteConfig(
        domain_name=domain_name,
        subdomain=subdomain,
        source_code_location=source.strip(),
        index_document=index_document,
        error_document=error_document,
        redirect_apex=redirect_apex,
    )


def load_config_file(path: str) -> dict:
    """Read raw (unresolved) website options from a JSON file."""
    try:
        with open(path) as f:
            data = json.load(f)
    except OSError as e:
        raise ValidationError(f"Cannot read config file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ValidationError(f"Config file {path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError(f"Config file {path} must contain a JSON object")
    return data
