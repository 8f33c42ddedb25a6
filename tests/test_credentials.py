"""Tests for credential resolution."""

from __future__ import annotations

import pytest

from switchboard.credentials import (
    ConfigCredentialProvider,
    SecretResolutionError,
    SecretResolver,
    StaticCredentialProvider,
)


class TestSecretResolver:
    def test_env_forms(self):
        resolver = SecretResolver({"API_TOKEN": "abc"})
        assert resolver.resolve("${API_TOKEN}") == "abc"
        assert resolver.resolve("env://API_TOKEN") == "abc"

    def test_missing_env_var(self):
        with pytest.raises(SecretResolutionError, match="not set"):
            SecretResolver({}).resolve("env://NOPE")

    def test_empty_reference(self):
        with pytest.raises(SecretResolutionError):
            SecretResolver({}).resolve("  ")

    def test_unsupported_scheme(self):
        with pytest.raises(SecretResolutionError, match="Unsupported"):
            SecretResolver({}).resolve("vault://kv/key")

    def test_invalid_keychain_reference(self):
        with pytest.raises(SecretResolutionError, match="keychain://service/account"):
            SecretResolver({}).resolve("keychain://only-service")

    def test_is_reference(self):
        assert SecretResolver.is_reference("${X}")
        assert SecretResolver.is_reference("ENV://X")
        assert SecretResolver.is_reference("keychain://svc/acct")
        assert not SecretResolver.is_reference("sk-literal")

    def test_resolve_maybe_passes_literals(self):
        assert SecretResolver({}).resolve_maybe("sk-literal") == "sk-literal"


class TestProviders:
    def test_static(self):
        provider = StaticCredentialProvider({"anthropic": "k"})
        assert provider.get_api_key("anthropic") == "k"
        assert provider.get_api_key("openai") is None

    def test_configured_reference(self):
        provider = ConfigCredentialProvider(
            {"Anthropic": "env://CLAUDE_KEY"}, environ={"CLAUDE_KEY": "sk-1"},
        )
        assert provider.get_api_key("anthropic") == "sk-1"

    def test_literal_value(self):
        provider = ConfigCredentialProvider({"openai": "sk-literal"}, environ={})
        assert provider.get_api_key("openai") == "sk-literal"

    def test_environment_fallback(self):
        provider = ConfigCredentialProvider(environ={"OPENAI_API_KEY": "sk-env"})
        assert provider.get_api_key("openai") == "sk-env"
        assert provider.get_api_key("anthropic") is None

    def test_env_var_name(self):
        assert ConfigCredentialProvider.env_var_for("openai_compatible") == "OPENAI_COMPATIBLE_API_KEY"
        assert ConfigCredentialProvider.env_var_for("lm-studio") == "LM_STUDIO_API_KEY"

    def test_unresolvable_reference_names_provider(self):
        provider = ConfigCredentialProvider({"anthropic": "env://MISSING"}, environ={})
        with pytest.raises(SecretResolutionError, match="credential for 'anthropic'"):
            provider.get_api_key("anthropic")
