"""API key lookup for cloud adapters.

Keys are configured as secret references in ``[credentials]``
(``env://VAR``, ``${VAR}``, ``keychain://service/account``) or as literal
values. A provider without a configured reference falls back to the
conventional ``<PROVIDER>_API_KEY`` environment variable.
"""

from __future__ import annotations

import logging
import os
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from urllib.parse import urlparse

from switchboard.exceptions import SwitchboardError

logger = logging.getLogger(__name__)

_ENV_REF_RE = re.compile(r"^\$\{([A-Za-z_][A-Za-z0-9_]*)\}$")
_NON_IDENT_RE = re.compile(r"[^A-Za-z0-9]+")


class SecretResolutionError(SwitchboardError):
    """Raised when a credential reference cannot be resolved."""


class SecretResolver:
    """Turn a secret reference into its value."""

    def __init__(self, environ: Mapping[str, str] | None = None):
        self._environ = environ if environ is not None else os.environ

    @staticmethod
    def is_reference(value: str) -> bool:
        stripped = str(value).strip()
        lowered = stripped.lower()
        return bool(
            _ENV_REF_RE.match(stripped)
            or lowered.startswith("env://")
            or lowered.startswith("keychain://")
        )

    def resolve(self, reference: str) -> str:
        raw = str(reference or "").strip()
        if not raw:
            raise SecretResolutionError("Secret reference is empty.")

        env_match = _ENV_REF_RE.match(raw)
        if env_match is not None:
            return self._from_env(env_match.group(1), raw)

        parsed = urlparse(raw)
        scheme = parsed.scheme.lower()
        if scheme == "env":
            name = (parsed.netloc or parsed.path.lstrip("/")).strip()
            if not name:
                raise SecretResolutionError(
                    f"Invalid env reference {raw!r}: missing variable name."
                )
            return self._from_env(name, raw)
        if scheme == "keychain":
            return self._from_keychain(raw, parsed.netloc, parsed.path)

        raise SecretResolutionError(
            f"Unsupported secret reference {raw!r}. "
            "Supported: env://..., ${ENV_VAR}, keychain://service/account"
        )

    def resolve_maybe(self, value: str) -> str:
        """Resolve ``value`` when it is a reference; return literals unchanged."""
        if self.is_reference(value):
            return self.resolve(value)
        return str(value)

    def _from_env(self, name: str, raw: str) -> str:
        value = self._environ.get(name)
        if value is None:
            raise SecretResolutionError(
                f"Reference {raw!r} could not be resolved; env var {name!r} is not set."
            )
        return value

    @staticmethod
    def _from_keychain(raw: str, service: str, path: str) -> str:
        service = service.strip()
        account = "/".join(part for part in path.split("/") if part)
        if not service or not account:
            raise SecretResolutionError(
                f"Invalid keychain reference {raw!r}: expected keychain://service/account"
            )
        try:
            import keyring  # type: ignore[import-not-found]
        except ImportError as e:  # pragma: no cover - depends on extras
            raise SecretResolutionError(
                "Keychain references require the `keyring` package "
                "(pip install switchboard-llm[keychain])."
            ) from e

        try:
            secret = keyring.get_password(service, account)
        except Exception as e:
            raise SecretResolutionError(f"Keychain lookup failed for {raw!r}: {e}") from e
        if secret is None:
            raise SecretResolutionError(f"No keychain secret found for {raw!r}.")
        return secret


class CredentialProvider(ABC):
    """Supplies API keys by provider tag."""

    @abstractmethod
    def get_api_key(self, provider: str) -> str | None:
        """Return the key for ``provider``, or None when none is configured."""
        ...


class StaticCredentialProvider(CredentialProvider):
    """Fixed keys, mostly for tests and embedding."""

    def __init__(self, keys: Mapping[str, str] | None = None):
        self._keys = {k.lower(): v for k, v in (keys or {}).items()}

    def get_api_key(self, provider: str) -> str | None:
        return self._keys.get(provider.lower()) or None


class ConfigCredentialProvider(CredentialProvider):
    """Keys from ``[credentials]`` references, then ``<PROVIDER>_API_KEY``."""

    def __init__(
        self,
        references: Mapping[str, str] | None = None,
        resolver: SecretResolver | None = None,
        environ: Mapping[str, str] | None = None,
    ):
        self._references = {k.lower(): v for k, v in (references or {}).items()}
        self._environ = environ if environ is not None else os.environ
        self._resolver = resolver or SecretResolver(self._environ)

    @staticmethod
    def env_var_for(provider: str) -> str:
        return f"{_NON_IDENT_RE.sub('_', provider).strip('_').upper()}_API_KEY"

    def get_api_key(self, provider: str) -> str | None:
        tag = provider.lower()
        reference = self._references.get(tag)
        if reference:
            try:
                return self._resolver.resolve_maybe(reference) or None
            except SecretResolutionError as e:
                raise SecretResolutionError(
                    f"Could not resolve credential for {tag!r}: {e}"
                ) from e

        value = self._environ.get(self.env_var_for(tag))
        if value:
            logger.debug("Using %s for provider %s", self.env_var_for(tag), tag)
        return value or None
