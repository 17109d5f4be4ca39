from __future__ import annotations
"""Credential resolution: a provider chain or a single registered provider."""
from dataclasses import dataclass
import logging
from typing import Callable, Optional
from urllib.parse import unquote, urlsplit
import warnings

from botocore.credentials import (
    CredentialProvider,
    Credentials,
    EnvProvider,
    InstanceMetadataFetcher,
    InstanceMetadataProvider,
)
from botocore.exceptions import BotoCoreError

from .errors import CredentialResolutionError
from .keychain import KeychainStore
from .settings import FileSystemSettings

LOGGER = logging.getLogger(__name__)

ProviderFactory = Callable[[str, FileSystemSettings], CredentialProvider]

_PROVIDER_REGISTRY: dict[str, ProviderFactory] = {}


def register_credential_provider(name: str, factory: ProviderFactory) -> None:
    """Make ``factory`` selectable through the ``credentials_provider`` setting.

    The factory is called with the filesystem's canonical URI and its settings.
    """

    cleaned = name.strip()
    if not cleaned:
        raise ValueError("Provider name cannot be empty")
    _PROVIDER_REGISTRY[cleaned] = factory


def unregister_credential_provider(name: str) -> None:
    _PROVIDER_REGISTRY.pop(name.strip(), None)


def registered_credential_providers() -> list[str]:
    return sorted(_PROVIDER_REGISTRY)


@dataclass(frozen=True)
class AccessKeys:
    """An access key and secret, either of which may be missing."""

    access_key: Optional[str] = None
    secret_key: Optional[str] = None


class StaticCredentialsProvider(CredentialProvider):
    METHOD = "static"
    CANONICAL_NAME = "Static"

    def __init__(self, access_key: str | None, secret_key: str | None):
        self._access_key = access_key
        self._secret_key = secret_key

    def load(self) -> Credentials | None:
        if self._access_key and self._secret_key:
            return Credentials(self._access_key, self._secret_key, method=self.METHOD)
        return None


class AnonymousCredentialsProvider(CredentialProvider):
    """Terminates a chain: requests are sent unsigned."""

    METHOD = "anonymous"
    CANONICAL_NAME = "Anonymous"

    def load(self) -> None:
        return None


class CredentialProviderChain(CredentialProvider):
    """Returns the credentials of the first provider that has any."""

    METHOD = "chain"
    CANONICAL_NAME = "Chain"

    def __init__(self, *providers: CredentialProvider):
        self._providers = list(providers)

    @property
    def providers(self) -> list[CredentialProvider]:
        return list(self._providers)

    def load(self) -> Credentials | None:
        for provider in self._providers:
            credentials = provider.load()
            if credentials is not None:
                LOGGER.debug("Using credentials from %s", provider.METHOD)
                return credentials
        LOGGER.debug("No credentials found, using anonymous access")
        return None


def default_instance_provider(settings: FileSystemSettings) -> CredentialProvider:
    fetcher = InstanceMetadataFetcher(
        timeout=max(settings.establish_timeout / 1000.0, 1.0),
        num_attempts=1,
    )
    return InstanceMetadataProvider(iam_role_fetcher=fetcher)


def get_access_keys(
    uri: str,
    settings: FileSystemSettings,
    keychain: KeychainStore | None = None,
) -> AccessKeys:
    """Return the access key and secret for ``uri``.

    Each value comes from the first source that has it: the URI user-info,
    the keychain (then the plaintext setting), the deprecated setting.

    Raises:
        CredentialResolutionError: when the keychain cannot be read.
    """

    parts = urlsplit(uri)
    access_key = unquote(parts.username) if parts.username else None
    secret_key = unquote(parts.password) if parts.password else None

    if access_key is None or secret_key is None:
        keychain = keychain or KeychainStore(settings.secret_store_service)
    if access_key is None:
        access_key = _lookup_key(
            keychain, "access_key", settings.access_key, settings.legacy_access_key, "awsAccessKeyId"
        )
    if secret_key is None:
        secret_key = _lookup_key(
            keychain, "secret_key", settings.secret_key, settings.legacy_secret_key, "awsSecretAccessKey"
        )
    return AccessKeys(access_key=access_key, secret_key=secret_key)


def _lookup_key(
    keychain: KeychainStore,
    name: str,
    configured: str | None,
    legacy: str | None,
    legacy_name: str,
) -> str | None:
    try:
        value = keychain.get_secret(name)
    except CredentialResolutionError as exc:
        raise CredentialResolutionError(f"Cannot find AWS {name.replace('_', ' ')}.") from exc
    if value:
        return value
    if configured and configured.strip():
        return configured.strip()
    if legacy and legacy.strip():
        message = f"{legacy_name} is deprecated, use {name} instead."
        warnings.warn(message, DeprecationWarning, stacklevel=4)
        LOGGER.warning(message)
        return legacy.strip()
    return None


def build_credentials_provider(
    uri: str,
    canonical_uri: str,
    settings: FileSystemSettings,
    *,
    keychain: KeychainStore | None = None,
    instance_provider: CredentialProvider | None = None,
) -> CredentialProvider:
    """Create the standard provider chain, or the one named in the settings.

    Raises:
        CredentialResolutionError: on an unknown provider name, a factory that
            cannot be called with ``(uri, settings)``, a factory that fails, or
            an unreadable keychain.
    """

    name = settings.credentials_provider.strip()
    if not name:
        keys = get_access_keys(uri, settings, keychain)
        return CredentialProviderChain(
            StaticCredentialsProvider(keys.access_key, keys.secret_key),
            instance_provider or default_instance_provider(settings),
            AnonymousCredentialsProvider(),
        )

    LOGGER.debug("Credential provider is %s", name)
    try:
        factory = _PROVIDER_REGISTRY[name]
    except KeyError:
        raise CredentialResolutionError(f"{name} not found.") from None
    try:
        provider = factory(canonical_uri, settings)
    except TypeError as exc:
        raise CredentialResolutionError(f"{name} constructor exception.") from exc
    except Exception as exc:
        raise CredentialResolutionError(f"{name} instantiation exception.") from exc
    if not callable(getattr(provider, "load", None)):
        raise CredentialResolutionError(f"{name} did not return a credential provider.")
    LOGGER.debug("Using %s for %s.", name, canonical_uri)
    return provider


def load_credentials(provider: CredentialProvider) -> Credentials | None:
    """Resolve ``provider``; None means requests are sent unsigned.

    Raises:
        CredentialResolutionError: when the provider fails.
    """

    try:
        return provider.load()
    except BotoCoreError as exc:
        raise CredentialResolutionError(f"Unable to load credentials: {exc}") from exc


register_credential_provider("instance", lambda uri, settings: default_instance_provider(settings))
register_credential_provider("environment", lambda uri, settings: EnvProvider())
register_credential_provider("anonymous", lambda uri, settings: AnonymousCredentialsProvider())
