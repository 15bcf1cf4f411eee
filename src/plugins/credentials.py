"""Credential store boundary — one secret per (plugin, purpose, server)."""

from __future__ import annotations

import abc


def credential_key(plugin_id: str, purpose: str, server_id: str) -> str:
    """Namespaced key, e.g. ``n8n-apikey-<server-id>``."""
    return f"{plugin_id}-{purpose}-{server_id}"


class CredentialStore(abc.ABC):
    """Opaque key-value secret store.

    Persistence and encryption belong to the implementation; callers only
    read and write strings by key.
    """

    @abc.abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored secret, or None if absent."""

    @abc.abstractmethod
    def set(self, key: str, secret: str) -> None:
        """Store (or replace) a secret."""

    @abc.abstractmethod
    def delete(self, key: str) -> None:
        """Remove a secret. Missing keys are ignored."""

    def load(self, plugin_id: str, purpose: str, server_id: str) -> str | None:
        return self.get(credential_key(plugin_id, purpose, server_id))

    def save(self, plugin_id: str, purpose: str, server_id: str, secret: str) -> None:
        self.set(credential_key(plugin_id, purpose, server_id), secret)


class InMemoryCredentialStore(CredentialStore):
    """Process-local store; secrets are lost on restart."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._secrets: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._secrets.get(key)

    def set(self, key: str, secret: str) -> None:
        self._secrets[key] = secret

    def delete(self, key: str) -> None:
        self._secrets.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._secrets
