"""Shared fixtures: mock AWS credentials, a recording client and a built site."""

from unittest.mock import MagicMock

import pytest

from site_deploy.fakes import RecordingProvisioningClient


@pytest.fixture
def aws_credentials(monkeypatch) -> None:
    """Set up mock AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def raw_config(tmp_path):
    return {
        "domainName": "example.com",
        "websiteIndexDocument": "index.html",
        "websiteSourceCodeLocation": str(tmp_path / "site"),
    }


@pytest.fixture
def site_dir(tmp_path):
    """A small built site: html, hashed asset, and a file without a known type."""
    site = tmp_path / "site"
    (site / "assets").mkdir(parents=True)
    (site / "index.html").write_text("<html>home</html>")
    (site / "assets" / "app.3f2a.js").write_text("console.log('hi')")
    (site / "robots").write_text("User-agent: *")
    return site


@pytest.fixture
def recording_client():
    return RecordingProvisioningClient()


@pytest.fixture
def fake_session():
    """A boto3.Session stand-in handing out one MagicMock client per service."""
    clients = {}

    def client(service, **kwargs):
        return clients.setdefault(service, MagicMock(name=service))

    session = MagicMock()
    session.client.side_effect = client
    session.clients = clients
    return session
