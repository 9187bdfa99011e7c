"""
Tests our ability to serialize/deserialize the proxy settings, and to build
proxies from them.
"""

import json
import logging
import sys

import pytest
from loguru import logger
from pydantic import ValidationError

from archive_proxy import settings as settings_module
from archive_proxy.exceptions import ConfigurationError
from archive_proxy.models import ArchiveType
from archive_proxy.proxies import proxy_class_from_name, proxy_from_settings
from archive_proxy.proxies.globus import GlobusDataTransferProxy
from archive_proxy.proxies.s3 import S3DataTransferProxy
from archive_proxy.settings import LogSettings, ProxySettings, load_settings

ARCHIVE = {
    "file_location": {"file_container_id": "bucket", "file_id": "archive"},
    "type": "temporary_archive",
}


@pytest.fixture
def config_file(tmp_path):
    password_file = tmp_path / "password"
    password_file.write_text("very-secret\n")

    path = tmp_path / "archive_proxy.json"
    path.write_text(
        json.dumps(
            {
                "proxy_type": "s3",
                "archive": ARCHIVE,
                "placement": "flat",
                "account_username": "access-key",
                "account_password_file": str(password_file),
                "s3_endpoint_url": "http://localhost:9000",
                "max_directory_depth": 4,
            }
        )
    )

    yield path


def test_settings_from_file(config_file):
    settings = ProxySettings.from_file(config_file)

    assert settings.proxy_type == "s3"
    assert settings.archive.type == ArchiveType.TEMPORARY_ARCHIVE
    assert settings.archive.file_location.file_container_id == "bucket"
    assert settings.account_password == "very-secret"

    account = settings.account
    assert account.username == "access-key"
    assert account.password == "very-secret"
    assert account.integrated_system == "s3"
    assert "very-secret" not in repr(account)


def test_settings_empty():
    settings = ProxySettings()

    assert settings.archive is None

    with pytest.raises(ConfigurationError):
        settings.account


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("ARCHIVE_PROXY_PROXY_TYPE", "globus")
    monkeypatch.setenv("ARCHIVE_PROXY_ACCOUNT_USERNAME", "client-id")
    monkeypatch.setenv("ARCHIVE_PROXY_ACCOUNT_PASSWORD", "client-secret")

    settings = ProxySettings()

    assert settings.proxy_type == "globus"
    assert settings.account.password == "client-secret"


@pytest.mark.parametrize(
    "field,value", [("proxy_type", "ftp"), ("placement", "scattered")]
)
def test_settings_invalid(field, value):
    with pytest.raises(ValidationError):
        ProxySettings.model_validate({field: value})


def test_load_settings(config_file, monkeypatch):
    monkeypatch.setenv("ARCHIVE_PROXY_CONFIG", str(config_file))
    monkeypatch.setattr(settings_module, "_settings", None)

    settings = load_settings()

    assert settings.placement == "flat"
    assert settings_module.proxy_settings is settings


def test_proxy_from_settings(config_file):
    proxy = proxy_from_settings(ProxySettings.from_file(config_file))

    assert isinstance(proxy, S3DataTransferProxy)
    assert proxy.endpoint_url == "http://localhost:9000"
    assert proxy.placement == "flat"
    assert proxy.max_directory_depth == 4
    assert proxy.archive.type == ArchiveType.TEMPORARY_ARCHIVE


def test_globus_proxy_from_settings():
    settings = ProxySettings.model_validate(
        {
            "proxy_type": "globus",
            "archive": ARCHIVE,
            "globus_client_native_app": True,
        }
    )

    proxy = proxy_from_settings(settings)

    assert isinstance(proxy, GlobusDataTransferProxy)
    assert proxy.native_app


def test_proxy_needs_archive():
    with pytest.raises(ConfigurationError):
        proxy_from_settings(ProxySettings(proxy_type="s3"))


def test_proxy_needs_archive_container():
    settings = ProxySettings.model_validate(
        {
            "proxy_type": "s3",
            "archive": {"file_location": {"file_container_id": " ", "file_id": "a"}},
        }
    )

    with pytest.raises(ConfigurationError):
        proxy_from_settings(settings)


def test_proxy_class_from_name():
    assert proxy_class_from_name("globus") is GlobusDataTransferProxy
    assert proxy_class_from_name("s3") is S3DataTransferProxy

    with pytest.raises(KeyError):
        proxy_class_from_name("ftp")


def test_log_settings(tmp_path, monkeypatch):
    webhook_file = tmp_path / "webhook"
    webhook_file.write_text("https://hooks.slack.com/services/ABC\n")

    handlers = []

    def fake_handler(provider, defaults):
        handlers.append((provider, defaults))
        return logging.NullHandler()

    monkeypatch.setattr(settings_module, "NotificationHandler", fake_handler)

    log_settings = LogSettings.model_validate(
        {
            "files": {str(tmp_path / "proxy.log"): "1 week"},
            "slack_webhook_url_file": str(webhook_file),
        }
    )

    assert log_settings.slack_webhook_url == "https://hooks.slack.com/services/ABC"

    log_settings.setup_logs("test")

    logger.info("Logging to a file")
    logger.remove()
    logger.add(sys.stderr)

    assert (tmp_path / "proxy.log").exists()
    assert handlers == [
        (
            "slack",
            {"username": "test", "webhook_url": "https://hooks.slack.com/services/ABC"},
        )
    ]


def test_log_settings_without_slack(monkeypatch):
    monkeypatch.setattr(
        settings_module,
        "NotificationHandler",
        lambda *args, **kwargs: pytest.fail("no webhook is configured"),
    )

    LogSettings().setup_logs("test")
