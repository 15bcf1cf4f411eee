"""Service plugins — image matching, credentials, and alert evaluation."""

from src.plugins.base import ContainerPlugin, PluginAlertContext
from src.plugins.credentials import CredentialStore, InMemoryCredentialStore, credential_key
from src.plugins.exceptions import (
    HTTPStatusError,
    MalformedResponseError,
    ServiceClientError,
    UnauthorizedError,
    UnreachableError,
)
from src.plugins.factory import create_plugin_registry
from src.plugins.registry import PluginRegistry, normalize_image_name

__all__ = [
    "ContainerPlugin",
    "CredentialStore",
    "HTTPStatusError",
    "InMemoryCredentialStore",
    "MalformedResponseError",
    "PluginAlertContext",
    "PluginRegistry",
    "ServiceClientError",
    "UnauthorizedError",
    "UnreachableError",
    "create_plugin_registry",
    "credential_key",
    "normalize_image_name",
]
