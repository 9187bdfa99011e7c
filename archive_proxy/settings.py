"""
Settings for the archive proxy. This is a pydantic model deserialized from
the available config path, with environment variable overrides.
"""

import os
from pathlib import Path
from typing import TYPE_CHECKING, Optional

import loguru
from notifiers.logging import NotificationHandler
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError
from .models import ArchiveDestination, DataTransferAccount
from .placement import Placements
from .proxies import ProxyNames

if TYPE_CHECKING:
    proxy_settings: "ProxySettings"


class LogSettings(BaseModel):
    """
    Where log records go besides stderr.
    """

    level: str = "INFO"
    files: dict[Path, str] = {}
    "Log file paths, each with its loguru rotation (e.g. '500 MB', '1 week')."

    slack_webhook_url: Optional[str] = None
    "Records at slack_webhook_level and above are posted here, when set."
    slack_webhook_url_file: Optional[Path] = None
    slack_webhook_level: str = "ERROR"

    def model_post_init(self, __context):
        if self.slack_webhook_url_file is not None:
            self.slack_webhook_url = self.slack_webhook_url_file.read_text().strip()

    def setup_logs(self, name: str):
        for path, rotation in self.files.items():
            loguru.logger.add(path, level=self.level, rotation=rotation, enqueue=True)

        if self.slack_webhook_url is None:
            return

        handler = NotificationHandler(
            "slack", defaults={"username": name, "webhook_url": self.slack_webhook_url}
        )
        loguru.logger.add(
            handler,
            level=self.slack_webhook_level,
            format="{name}:{function}:{line} *{message}*",
        )


class ProxySettings(BaseSettings):
    """
    Settings for the archive proxy. Note that because this is a BaseSettings
    object, you can overwrite the values in the config file with environment
    variables.
    """

    # Name used when posting log alerts.
    name: str = "archive_proxy"

    # Which backend to use: "globus" or "s3". A deployment uses exactly one.
    proxy_type: str = "s3"

    # Root of the archive that uploads land in, e.g.
    # {"file_location": {"file_container_id": "bucket", "file_id": "archive"},
    #  "type": "archive"}
    archive: Optional[ArchiveDestination] = None
    placement: str = "logical_path"

    # Credentials for the backend. Don't write the password in the config
    # file, set it as an environment variable or point at a file.
    account_username: Optional[str] = None
    account_password: Optional[str] = None
    account_password_file: Optional[Path] = None

    # Globus integration. With a native app, the password is a refresh token;
    # with a confidential app (default) it is the client secret.
    globus_client_native_app: bool = False
    globus_activation_expires_in: int = 100

    # S3 integration.
    s3_endpoint_url: Optional[str] = None
    s3_region: Optional[str] = None
    s3_verify_on_authenticate: bool = True
    s3_max_concurrency: int = 10
    s3_multipart_threshold: int = 8 * 1024 * 1024

    # Bounds on recursive directory walks.
    max_directory_depth: int = 64
    max_directory_entries: int = 1_000_000

    # Log settings
    log_settings: LogSettings = Field(default_factory=LogSettings)

    model_config = SettingsConfigDict(env_prefix="archive_proxy_")

    @field_validator("proxy_type")
    def proxy_type_is_valid(cls, v: str) -> str:
        if v not in ProxyNames:
            raise ValueError(f"Invalid proxy type {v}")

        return v

    @field_validator("placement")
    def placement_is_valid(cls, v: str) -> str:
        if v not in Placements:
            raise ValueError(f"Invalid placement {v}")

        return v

    def model_post_init(__context, *args, **kwargs):
        """
        Read sensitive data from their appropriate files.
        """

        if __context.account_password_file is not None:
            with open(__context.account_password_file, "r") as handle:
                __context.account_password = handle.read().strip()

    @property
    def account(self) -> DataTransferAccount:
        """
        The configured backend account.
        """
        if self.account_username is None or self.account_password is None:
            raise ConfigurationError(
                "account_username and account_password (or account_password_file) "
                "must be set to log in to the backend."
            )

        return DataTransferAccount(
            username=self.account_username,
            password=self.account_password,
            integrated_system=self.proxy_type,
        )

    @classmethod
    def from_file(cls, config_path: Path | str) -> "ProxySettings":
        """
        Loads the settings from the given path.
        """

        with open(config_path, "r") as handle:
            return cls.model_validate_json(handle.read())


# Automatically create a settings object on use.

_settings = None


def load_settings() -> ProxySettings:
    """
    Load the settings from the config file.
    """

    global _settings

    try_paths = [
        os.environ.get("ARCHIVE_PROXY_CONFIG", None),
        Path.home() / ".archive_proxy.json",
    ]

    for path in try_paths:
        if path is not None:
            path = Path(path)
        else:
            continue

        if path.exists():
            _settings = ProxySettings.from_file(path)
            return _settings

    _settings = ProxySettings()

    return _settings


def __getattr__(name):
    """
    Try to load the settings if they haven't been loaded yet.
    """

    if name == "proxy_settings":
        global _settings

        if _settings is not None:
            return _settings

        return load_settings()

    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
