from __future__ import annotations
"""Secret-store access for credential material."""
import logging

import keyring
from keyring.errors import KeyringError, NoKeyringError, PasswordDeleteError

from .errors import CredentialResolutionError

LOGGER = logging.getLogger(__name__)


class KeychainStore:
    """Encapsulates OS keychain access for secrets."""

    def __init__(self, service_name: str = "pys3a"):
        self._service_name = service_name

    @property
    def service_name(self) -> str:
        return self._service_name

    def get_secret(self, name: str) -> str | None:
        """Return the stored secret for ``name``, or None when absent.

        A missing keyring backend is treated as an empty store.

        Raises:
            CredentialResolutionError: when the keyring backend fails.
        """

        if not name or not self._service_name:
            return None
        try:
            value = keyring.get_password(self._service_name, name)
        except NoKeyringError:
            LOGGER.debug("No keyring backend available for '%s'", self._service_name)
            return None
        except KeyringError as exc:
            raise CredentialResolutionError(
                f"Cannot read '{name}' from keychain '{self._service_name}'"
            ) from exc
        if value is None:
            return None
        return value.strip() or None

    def set_secret(self, name: str, secret: str) -> None:
        if not name:
            return
        if not secret:
            self.delete_secret(name)
            return
        keyring.set_password(self._service_name, name, secret)

    def delete_secret(self, name: str) -> None:
        if not name:
            return
        try:
            keyring.delete_password(self._service_name, name)
        except PasswordDeleteError:
            LOGGER.debug("No stored secret '%s' to delete", name)
