"""
Data transfer proxies. A deployment uses exactly one of these, chosen by
configuration.
"""

from typing import TYPE_CHECKING

from pydantic import ValidationError

from ..exceptions import ConfigurationError
from .core import CoreDataTransferProxy, TransferSession
from .globus import GlobusDataTransferProxy, GlobusSession
from .s3 import S3DataTransferProxy, S3Session

if TYPE_CHECKING:
    from ..settings import ProxySettings

DataTransferProxies: dict[int, type[CoreDataTransferProxy]] = {
    0: CoreDataTransferProxy,
    1: GlobusDataTransferProxy,
    2: S3DataTransferProxy,
}

ProxyNames: dict[str, int] = {
    "globus": 1,
    "s3": 2,
}


def proxy_class_from_name(name: str) -> type[CoreDataTransferProxy]:
    """
    Get a data transfer proxy class from its name.
    """
    return DataTransferProxies[ProxyNames[name]]


def proxy_from_settings(settings: "ProxySettings") -> CoreDataTransferProxy:
    """
    Build the configured data transfer proxy. Configuration problems are
    raised here, not on first use.

    Raises
    ------
    ConfigurationError
        If the settings do not describe a usable proxy.
    """
    if settings.archive is None:
        raise ConfigurationError("No archive destination is configured.")

    common = {
        "archive": settings.archive,
        "placement": settings.placement,
        "max_directory_depth": settings.max_directory_depth,
        "max_directory_entries": settings.max_directory_entries,
    }

    if settings.proxy_type == "globus":
        specific = {
            "native_app": settings.globus_client_native_app,
            "activation_expires_in": settings.globus_activation_expires_in,
        }
    else:
        specific = {
            "endpoint_url": settings.s3_endpoint_url,
            "region": settings.s3_region,
            "verify_on_authenticate": settings.s3_verify_on_authenticate,
            "max_concurrency": settings.s3_max_concurrency,
            "multipart_threshold": settings.s3_multipart_threshold,
        }

    try:
        return proxy_class_from_name(settings.proxy_type)(**common, **specific)
    except (KeyError, ValidationError) as e:
        raise ConfigurationError(
            f"Invalid configuration for {settings.proxy_type} proxy: {e}"
        ) from e
